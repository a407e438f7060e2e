"""Agent profiles consumed by the pipeline.

Agent CRUD lives outside this service; the directory only answers "which
model, provider and system prompt does this agent use".
"""

import json
import logging
from dataclasses import dataclass, replace
from pathlib import Path

from npc_chat import config

logger = logging.getLogger(__name__)

FALLBACK_SYSTEM_PROMPT = "You are a friendly character in a chat application. Stay in character and reply concisely."


@dataclass(frozen=True)
class AgentProfile:
    id: str
    name: str
    model: str
    provider: str = "openai"
    system_prompt: str = FALLBACK_SYSTEM_PROMPT

    def summary(self) -> dict:
        return {"id": self.id, "name": self.name, "model": self.model}


class AgentDirectory:
    """Lookup of agent profiles by id.

    With a ``default`` profile, unknown ids resolve to a copy of it carrying
    the requested id; without one they resolve to ``None``.
    """

    def __init__(self, profiles: dict[str, AgentProfile] | None = None, default: AgentProfile | None = None):
        self.profiles = dict(profiles or {})
        self.default = default

    def get_agent(self, agent_id: str) -> AgentProfile | None:
        profile = self.profiles.get(agent_id)
        if profile is None and self.default is not None:
            profile = replace(self.default, id=agent_id, name=agent_id)
        return profile


def _default_system_prompt() -> str:
    if config.SYSTEM_PROMPT_PATH.exists():
        return config.load_system_prompt()
    return FALLBACK_SYSTEM_PROMPT


def load_agent_directory(
    path: Path | None = None,
    allow_unknown: bool | None = None,
) -> AgentDirectory:
    """Build the directory from a JSON list of agent objects.

    Each object has ``id``, ``name`` and ``model``, and optionally
    ``provider`` and ``systemPrompt``.
    """
    path = path or config.AGENTS_PATH
    allow_unknown = config.ALLOW_UNKNOWN_AGENTS if allow_unknown is None else allow_unknown
    system_prompt = _default_system_prompt()

    profiles = {}
    if path.exists():
        for item in json.loads(path.read_text(encoding="utf-8")):
            profile = AgentProfile(
                id=item["id"],
                name=item.get("name", item["id"]),
                model=item.get("model", config.OPENAI_MODEL),
                provider=item.get("provider", "openai"),
                system_prompt=item.get("systemPrompt") or system_prompt,
            )
            profiles[profile.id] = profile
        logger.info(f"[AGENTS] Loaded {len(profiles)} agent profiles from {path}")

    default = None
    if allow_unknown:
        default = AgentProfile(id="default", name="default", model=config.OPENAI_MODEL, system_prompt=system_prompt)
    return AgentDirectory(profiles, default)
