import pytest

from npc_chat.text_utils import calculate_max_line_width


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        (None, 0),
        ("", 0),
        ("hello", 5),
        ("short\nmuch longer line", 16),
        ("**bold** text", 9),
        ("see [docs](https://example.com)", 8),
        ("# Title", 5),
        ("- item one\r\n- two", 8),
        ("run `make`", 3),
    ],
)
def test_calculate_max_line_width(text, expected):
    assert calculate_max_line_width(text) == expected
