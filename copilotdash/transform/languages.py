"""Language inference for chat requests.

Signals are consulted in priority order and the first hit wins:
content references, file variables, message parts, then text patterns.
Most requests carry no signal at all; ``None`` is the normal answer.
"""
from __future__ import annotations

import posixpath
import re
from typing import Any, Callable, Iterable, Optional
from urllib.parse import unquote, urlparse

from copilotdash.models import ChatRequest

EXTENSION_LANGUAGES: dict[str, str] = {
    ".ts": "typescript",
    ".js": "javascript",
    ".py": "python",
    ".java": "java",
    ".cs": "csharp",
    ".cpp": "cpp",
    ".c": "c",
    ".go": "go",
    ".rs": "rust",
    ".php": "php",
    ".rb": "ruby",
    ".swift": "swift",
    ".kt": "kotlin",
    ".scala": "scala",
    ".sql": "sql",
    ".html": "html",
    ".css": "css",
    ".scss": "scss",
    ".json": "json",
    ".xml": "xml",
    ".md": "markdown",
}

# Field names under which transcripts have been seen to store a file location.
_PATH_FIELDS = ("uri", "fsPath", "path", "external", "file", "filePath")

_QUOTED_PATH_RE = re.compile(r"[`'\"]([^`'\"\s]+\.[A-Za-z0-9]{1,6})[`'\"]")
_BARE_PATH_RE = re.compile(r"(?:^|\s)((?:[\w.-]+/)*[\w.-]+\.[A-Za-z0-9]{1,6})(?=$|[\s,;:)])")

# Rough text signals, checked only when no file signal exists.
_TEXT_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("typescript", re.compile(r"\btypescript\b|\binterface\s+\w+\s*\{", re.IGNORECASE)),
    ("python", re.compile(r"\bpython\b|\bdef\s+\w+\s*\(|\bimport\s+\w+\s*$|\bpip\s+install\b", re.IGNORECASE | re.MULTILINE)),
    ("javascript", re.compile(r"\bjavascript\b|\bnode\.?js\b|\bconst\s+\w+\s*=\s*require\(|\bconsole\.log\(", re.IGNORECASE)),
    ("java", re.compile(r"\bjava\b|\bpublic\s+static\s+void\s+main\b|\bSystem\.out\.println\b")),
    ("csharp", re.compile(r"\bc#|\bcsharp\b|\.net\b|\bnamespace\s+[\w.]+\s*;?\s*$|\busing\s+System\b", re.IGNORECASE | re.MULTILINE)),
    ("cpp", re.compile(r"\bc\+\+|\bcpp\b|#include\s*<\w+>|\bstd::", re.IGNORECASE)),
    ("go", re.compile(r"\bgolang\b|\bfunc\s+\w+\s*\(|\bpackage\s+main\b|\bgo\s+mod\b", re.IGNORECASE)),
    ("rust", re.compile(r"\brust\b|\bfn\s+\w+\s*\(|\blet\s+mut\b|\bcargo\b", re.IGNORECASE)),
    ("ruby", re.compile(r"\bruby\b|\brails\b|\bgem\s+install\b", re.IGNORECASE)),
    ("php", re.compile(r"\bphp\b|<\?php", re.IGNORECASE)),
    ("sql", re.compile(r"\bsql\b|\bselect\s+[\w*,\s]+\s+from\b|\binsert\s+into\b", re.IGNORECASE)),
)


def language_for_path(path: str) -> Optional[str]:
    if not path:
        return None
    parsed = urlparse(path)
    # Single-letter "schemes" are Windows drive letters.
    raw = unquote(parsed.path) if len(parsed.scheme) > 1 else path
    normalized = raw.replace("\\", "/")
    ext = posixpath.splitext(normalized)[1].lower()
    return EXTENSION_LANGUAGES.get(ext)


def _path_values(node: Any, depth: int = 0) -> Iterable[str]:
    """Yield path-like strings found under the known field names, recursively."""
    if depth > 4:
        return
    if isinstance(node, str):
        yield node
        return
    if isinstance(node, list):
        for item in node:
            yield from _path_values(item, depth + 1)
        return
    if not isinstance(node, dict):
        return
    for field in _PATH_FIELDS:
        value = node.get(field)
        if isinstance(value, str):
            yield value
        elif isinstance(value, (dict, list)):
            yield from _path_values(value, depth + 1)
    for nested in ("reference", "value", "location", "range"):
        value = node.get(nested)
        if isinstance(value, (dict, list)):
            yield from _path_values(value, depth + 1)


def _first_language(candidates: Iterable[str]) -> Optional[str]:
    for candidate in candidates:
        language = language_for_path(candidate)
        if language:
            return language
    return None


def from_content_references(request: ChatRequest) -> Optional[str]:
    return _first_language(_path_values(request.contentReferences))


def _file_variables(request: ChatRequest) -> list[Any]:
    variables = (request.variableData or {}).get("variables") or []
    if not isinstance(variables, list):
        return []
    return [v for v in variables if isinstance(v, dict) and v.get("kind") == "file"]


def from_file_variables(request: ChatRequest) -> Optional[str]:
    return _first_language(_path_values(_file_variables(request)))


def _part_strings(part: Any) -> Iterable[str]:
    if isinstance(part, str):
        yield from _QUOTED_PATH_RE.findall(part)
        yield from _BARE_PATH_RE.findall(part)
        return
    if not isinstance(part, dict):
        return
    yield from _path_values(part)
    text = part.get("text")
    if isinstance(text, str):
        yield from _QUOTED_PATH_RE.findall(text)
        yield from _BARE_PATH_RE.findall(text)


def from_message_parts(request: ChatRequest) -> Optional[str]:
    for part in request.message.parts:
        language = _first_language(_part_strings(part))
        if language:
            return language
    return None


def from_text_patterns(request: ChatRequest) -> Optional[str]:
    text = request.message.text or ""
    if not text:
        return None
    for language, pattern in _TEXT_PATTERNS:
        if pattern.search(text):
            return language
    return None


LANGUAGE_RULES: tuple[tuple[str, Callable[[ChatRequest], Optional[str]]], ...] = (
    ("content-references", from_content_references),
    ("file-variables", from_file_variables),
    ("message-parts", from_message_parts),
    ("text-patterns", from_text_patterns),
)


def infer_language(request: ChatRequest) -> Optional[str]:
    for _name, rule in LANGUAGE_RULES:
        language = rule(request)
        if language:
            return language
    return None


def main_file_name(request: ChatRequest) -> Optional[str]:
    """Base name of the first referenced file; directories are dropped for privacy."""
    if not request.contentReferences:
        return None
    first = request.contentReferences[0]
    for candidate in _path_values(first):
        if not candidate:
            continue
        parsed = urlparse(candidate)
        raw = unquote(parsed.path) if len(parsed.scheme) > 1 else candidate
        name = posixpath.basename(raw.replace("\\", "/"))
        if name:
            return name
    return None
