from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from string import Template
from typing import Any

PROMPTS_PATH = Path(__file__).resolve().parents[1] / "prompts" / "prompts.json"
_catalog: dict[str, Any] | None = None


def _load_catalog() -> dict[str, Any]:
    global _catalog
    if _catalog is None:
        payload = json.loads(PROMPTS_PATH.read_text(encoding="utf-8"))
        if not isinstance(payload, dict):
            raise ValueError("Prompt catalog must be a JSON object.")
        _catalog = payload
    return _catalog


def _lookup(key: str) -> str:
    node: Any = _load_catalog()
    for part in key.split("."):
        if not isinstance(node, dict) or part not in node:
            raise KeyError(f"Prompt key not found: {key}")
        node = node[part]
    # Long prompts are stored as a list of lines.
    if isinstance(node, list) and all(isinstance(line, str) for line in node):
        return "\n".join(node)
    if not isinstance(node, str):
        raise TypeError(f"Prompt key must map to a string: {key}")
    return node


def render_prompt(key: str, **values: Any) -> str:
    template = Template(_lookup(key))
    try:
        return template.substitute(**values)
    except KeyError as exc:
        missing = str(exc.args[0])
        raise KeyError(f"Missing template value '{missing}' for prompt '{key}'") from exc


def chat_system_prompt(now: datetime | None = None) -> str:
    """System prompt for the chat agent, stamped with the current date."""
    now = now or datetime.now(timezone.utc)
    return render_prompt(
        "chat_agent.system_prompt",
        formatted_date=now.strftime("%A, %B %d, %Y %H:%M %Z").strip(),
        iso_date=now.isoformat(),
    )
