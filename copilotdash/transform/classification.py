"""Heuristic event-type classification as an ordered rule chain.

Rules are tried in order and the first match wins. Agent identifiers
outrank message keywords, and keyword groups are checked edit, then
explain, then completion, so a message mentioning both "explain" and
"fix" classifies as an edit.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable

from copilotdash.models import ChatRequest, EventType

_EDIT_KEYWORDS = (
    "fix", "edit", "refactor", "modify", "change", "update", "rewrite", "rename", "replace",
)
_EXPLAIN_KEYWORDS = (
    "explain", "what does", "what is", "why does", "how does", "describe", "understand",
)
_COMPLETION_KEYWORDS = (
    "complete", "generate", "implement", "write a", "create a", "add a", "scaffold",
)


def _keyword_pattern(keywords: tuple[str, ...]) -> re.Pattern[str]:
    alternatives = "|".join(re.escape(k).replace(r"\ ", r"\s+") for k in keywords)
    return re.compile(rf"\b(?:{alternatives})", re.IGNORECASE)


_EDIT_RE = _keyword_pattern(_EDIT_KEYWORDS)
_EXPLAIN_RE = _keyword_pattern(_EXPLAIN_KEYWORDS)
_COMPLETION_RE = _keyword_pattern(_COMPLETION_KEYWORDS)


@dataclass(frozen=True)
class ClassificationRule:
    name: str
    event_type: EventType
    matches: Callable[[ChatRequest], bool]


def _agent_id(request: ChatRequest) -> str:
    return (request.agent.id if request.agent else "").lower()


def _text(request: ChatRequest) -> str:
    return request.message.text or ""


CLASSIFICATION_RULES: tuple[ClassificationRule, ...] = (
    ClassificationRule("agent-edit", "edit", lambda r: "edit" in _agent_id(r)),
    ClassificationRule("agent-explain", "explain", lambda r: "explain" in _agent_id(r)),
    ClassificationRule("edit-keywords", "edit", lambda r: bool(_EDIT_RE.search(_text(r)))),
    ClassificationRule("explain-keywords", "explain", lambda r: bool(_EXPLAIN_RE.search(_text(r)))),
    ClassificationRule("completion-keywords", "completion", lambda r: bool(_COMPLETION_RE.search(_text(r)))),
)

DEFAULT_EVENT_TYPE: EventType = "chat"


def matching_rule(
    request: ChatRequest,
    rules: tuple[ClassificationRule, ...] = CLASSIFICATION_RULES,
) -> ClassificationRule | None:
    for rule in rules:
        if rule.matches(request):
            return rule
    return None


def classify_request(
    request: ChatRequest,
    rules: tuple[ClassificationRule, ...] = CLASSIFICATION_RULES,
) -> EventType:
    rule = matching_rule(request, rules)
    return rule.event_type if rule else DEFAULT_EVENT_TYPE
