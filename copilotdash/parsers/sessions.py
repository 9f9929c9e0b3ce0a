"""Parse and structurally validate chat-session transcript files."""
from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from copilotdash.models import ChatSession, SessionScanResult

logger = logging.getLogger("copilotdash.parser")


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


# Epoch-ms bounds of datetime.min and datetime.max.
_MIN_EPOCH_MS = -62135596800000
_MAX_EPOCH_MS = 253402300799999


def _epoch_ms_problem(field: str, value: Any) -> str | None:
    if not _is_number(value):
        return f"{field} must be numeric"
    # Also rejects NaN and infinities, which json.loads accepts.
    if not _MIN_EPOCH_MS <= value <= _MAX_EPOCH_MS:
        return f"{field} is not a representable epoch-ms timestamp"
    return None


def _validate_request(index: int, request: Any) -> list[str]:
    prefix = f"requests[{index}]"
    if not isinstance(request, dict):
        return [f"{prefix} is not an object"]

    problems: list[str] = []
    if not isinstance(request.get("requestId"), str):
        problems.append(f"{prefix}.requestId must be a string")
    timestamp_problem = _epoch_ms_problem(f"{prefix}.timestamp", request.get("timestamp"))
    if timestamp_problem:
        problems.append(timestamp_problem)

    message = request.get("message")
    if not isinstance(message, dict) or not isinstance(message.get("text"), str):
        problems.append(f"{prefix}.message.text must be a string")

    # Slash commands have no agent; only validate it when present.
    agent = request.get("agent")
    if agent is not None and (not isinstance(agent, dict) or not isinstance(agent.get("id"), str)):
        problems.append(f"{prefix}.agent.id must be a string")

    return problems


def validate_session_payload(payload: Any) -> list[str]:
    """Return every structural problem found in a decoded transcript.

    An empty list means the payload is safe to load into ``ChatSession``.
    """
    if not isinstance(payload, dict):
        return ["transcript root is not an object"]

    problems: list[str] = []
    session_id = payload.get("sessionId")
    if not isinstance(session_id, str) or not session_id:
        problems.append("sessionId must be a non-empty string")
    creation_problem = _epoch_ms_problem("creationDate", payload.get("creationDate"))
    if creation_problem:
        problems.append(creation_problem)
    if not _is_number(payload.get("version")):
        problems.append("version must be numeric")

    requests = payload.get("requests")
    if not isinstance(requests, list):
        problems.append("requests must be an array")
        return problems

    for index, request in enumerate(requests):
        problems.extend(_validate_request(index, request))
    return problems


def parse_session_payload(payload: Any, source: str = "<memory>") -> ChatSession | None:
    problems = validate_session_payload(payload)
    if problems:
        logger.warning(f"Invalid transcript {source}: {'; '.join(problems[:3])}")
        return None
    try:
        return ChatSession.model_validate(payload)
    except ValidationError as e:
        logger.warning(f"Invalid transcript {source}: {e.error_count()} field errors")
        return None


def parse_session_file(path: Path) -> SessionScanResult | None:
    """Read one transcript from disk.

    Never raises for bad content: unreadable files, malformed JSON and
    structurally invalid transcripts all come back as ``None``.
    """
    try:
        stat = path.stat()
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        logger.warning(f"Cannot read transcript {path}: {e}")
        return None

    try:
        payload = json.loads(raw)
    except (json.JSONDecodeError, ValueError) as e:
        logger.warning(f"Malformed transcript {path}: {e}")
        return None

    session = parse_session_payload(payload, source=str(path))
    if session is None:
        return None

    return SessionScanResult(
        sessionFilePath=str(path),
        session=session,
        lastModified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
        fileSize=stat.st_size,
    )
