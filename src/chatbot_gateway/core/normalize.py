from __future__ import annotations

import json
import re
from typing import Any, Iterable, Optional

from .types import ParsedCommand


def parse_json_dict(text: str | None) -> dict[str, Any]:
    if not text:
        return {}
    try:
        data = json.loads(text)
    except Exception:
        return {}
    return data if isinstance(data, dict) else {}


def dump_json(data: dict[str, Any]) -> str:
    return json.dumps(data, ensure_ascii=True, separators=(",", ":"))


def match_prefix(text: str, prefixes: Iterable[str]) -> Optional[str]:
    for prefix in prefixes:
        if prefix and text.startswith(prefix):
            return prefix
    return None


def parse_command(text: str, prefixes: Iterable[str]) -> ParsedCommand | None:
    if not text:
        return None
    prefix = match_prefix(text, prefixes)
    if prefix is None:
        return None
    tokens = text[len(prefix):].strip().split()
    if not tokens:
        return None
    return ParsedCommand(prefix=prefix, name=tokens[0].lower(), args=tokens[1:])


def extract_mention_command(text: str, self_id: str) -> Optional[str]:
    if not text or not self_id:
        return None
    match = re.search(rf"@{re.escape(self_id)}\s+(.+)", text, flags=re.IGNORECASE | re.DOTALL)
    if match is None:
        return None
    command = match.group(1).strip()
    return command or None


def format_mention(participant_id: str) -> str:
    if not participant_id or "@" not in participant_id:
        return participant_id
    return "@" + participant_id.split("@", 1)[0]


def unique(items: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for item in items:
        if item in seen:
            continue
        seen.add(item)
        out.append(item)
    return out
