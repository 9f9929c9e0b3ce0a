"""Map parsed transcripts onto normalized usage events.

The session hierarchy on each event is an approximation: transcripts
carry no process-level identifiers, so the instance id comes from the
session creation hour, the window id from the workspace hash and the
extension-host id from the session id.
"""
from __future__ import annotations

import hashlib
import logging
import re
from pathlib import PurePath, PurePosixPath, PureWindowsPath
from typing import Iterable, Optional

from copilotdash import config
from copilotdash.date_utils import epoch_ms_to_iso, js_round
from copilotdash.models import (
    ChatRequest,
    ChatSession,
    SessionHierarchy,
    SessionMetadata,
    SessionScanResult,
    UsageEvent,
    WorkspaceContext,
)
from copilotdash.transform.classification import classify_request
from copilotdash.transform.languages import infer_language, main_file_name

logger = logging.getLogger("copilotdash.transform")

UNKNOWN_WORKSPACE = "unknown"
CHARS_PER_TOKEN = 4
_HOUR_STAMP_STRIP_RE = re.compile(r"[-:T]")


def deterministic_event_id(session_id: str, request_id: str) -> str:
    """Stable 16-hex-char id for one (session, request) pair."""
    combined = f"{session_id}-{request_id}"
    return hashlib.sha256(combined.encode("utf-8")).hexdigest()[:16]


def _path_parts(file_path: str) -> tuple[str, ...]:
    path: PurePath = PureWindowsPath(file_path) if "\\" in file_path else PurePosixPath(file_path)
    return path.parts


def extract_workspace_context(session_file_path: str | None) -> WorkspaceContext:
    """Workspace hash is the path segment right after the storage root segment."""
    if not session_file_path or not isinstance(session_file_path, str):
        logger.debug(f"Invalid session file path: {session_file_path!r}")
        return WorkspaceContext()

    parts = _path_parts(session_file_path)
    workspace_hash = UNKNOWN_WORKSPACE
    try:
        index = parts.index(config.STORAGE_ROOT_SEGMENT)
    except ValueError:
        index = -1
    # Needs at least one segment after the hash.
    if 0 <= index < len(parts) - 2:
        workspace_hash = parts[index + 1]

    return WorkspaceContext(workspaceHash=workspace_hash, storagePath=session_file_path)


def extract_session_hierarchy(session: ChatSession, context: WorkspaceContext) -> SessionHierarchy:
    hour_stamp = _HOUR_STAMP_STRIP_RE.sub("", epoch_ms_to_iso(session.creationDate)[:13])
    return SessionHierarchy(
        instanceSessionId=f"vscode-{hour_stamp}",
        windowId=f"window-{context.workspaceHash[:8]}",
        extensionHostSessionId=f"exthost-{session.sessionId[:8]}",
    )


def response_length(request: ChatRequest) -> int:
    return len(request.response_text())


def estimate_tokens(request: ChatRequest) -> int:
    """Characters of prompt plus response, four per token, rounded half up."""
    characters = len(request.message.text or "") + response_length(request)
    return js_round(characters / CHARS_PER_TOKEN)


def _elapsed(request: ChatRequest) -> float | None:
    if request.result is None or request.result.timings is None:
        return None
    return request.result.timings.totalElapsed


class SessionTransformer:
    """Stateless converter from transcripts to ``UsageEvent`` records."""

    def __init__(
        self,
        extension_version: str = config.EXTENSION_VERSION,
        include_prompts: bool = config.INCLUDE_PROMPTS,
    ):
        self.extension_version = extension_version
        self.include_prompts = include_prompts

    def to_event(
        self,
        session: ChatSession,
        request: ChatRequest,
        context: WorkspaceContext,
        include_prompts: Optional[bool] = None,
    ) -> UsageEvent:
        if include_prompts is None:
            include_prompts = self.include_prompts
        hierarchy = extract_session_hierarchy(session, context)
        return UsageEvent(
            id=deterministic_event_id(session.sessionId, request.requestId),
            timestamp=epoch_ms_to_iso(request.timestamp),
            type=classify_request(request),
            source=config.EVENT_SOURCE,
            instanceSessionId=hierarchy.instanceSessionId,
            windowId=hierarchy.windowId,
            extensionHostSessionId=hierarchy.extensionHostSessionId,
            sessionId=session.sessionId,
            workspaceId=context.workspaceHash,
            duration=_elapsed(request),
            tokensUsed=estimate_tokens(request),
            model=request.modelId or None,
            language=infer_language(request),
            filePath=main_file_name(request),
            userPrompt=request.message.text if include_prompts else None,
            extensionVersion=self.extension_version,
        )

    def transform_session(
        self,
        scan_result: SessionScanResult,
        include_prompts: Optional[bool] = None,
    ) -> list[UsageEvent]:
        """``include_prompts`` overrides the constructor default for this call."""
        session = scan_result.session
        context = extract_workspace_context(scan_result.sessionFilePath)
        events: list[UsageEvent] = []
        for request in session.requests:
            try:
                events.append(self.to_event(session, request, context, include_prompts))
            except Exception as e:
                logger.warning(f"Skipping request {request.requestId} in session {session.sessionId}: {e}")
        return events

    def transform_scan_results(
        self,
        scan_results: Iterable[SessionScanResult],
        include_prompts: Optional[bool] = None,
    ) -> list[UsageEvent]:
        events: list[UsageEvent] = []
        session_count = 0
        for scan_result in scan_results:
            session_count += 1
            try:
                events.extend(self.transform_session(scan_result, include_prompts))
            except Exception as e:
                logger.warning(f"Error transforming session {scan_result.session.sessionId}: {e}")
        logger.info(f"Transformed {session_count} sessions into {len(events)} events")
        return events

    def extract_metadata(self, session: ChatSession, context: WorkspaceContext) -> SessionMetadata:
        requests = session.requests
        total_response_length = sum(response_length(r) for r in requests)
        total_response_time = sum((_elapsed(r) or 0) for r in requests)

        languages: list[str] = []
        models: list[str] = []
        for request in requests:
            language = infer_language(request)
            if language and language not in languages:
                languages.append(language)
            if request.modelId and request.modelId not in models:
                models.append(request.modelId)

        timestamps = [r.timestamp for r in requests]
        return SessionMetadata(
            sessionId=session.sessionId,
            workspaceHash=context.workspaceHash,
            instanceId=context.workspaceHash,
            sessionStartTime=epoch_ms_to_iso(min(timestamps)) if timestamps else None,
            sessionEndTime=epoch_ms_to_iso(max(timestamps)) if len(timestamps) > 1 else None,
            requestCount=len(requests),
            totalResponseLength=total_response_length,
            averageResponseTime=total_response_time / len(requests) if requests else 0.0,
            languagesUsed=languages,
            modelsUsed=models,
            hasCodeCitations=any(r.codeCitations for r in requests),
            hasContentReferences=any(r.contentReferences for r in requests),
            hasFollowups=any(r.followups for r in requests),
        )

    def extract_scan_metadata(self, scan_result: SessionScanResult) -> SessionMetadata:
        return self.extract_metadata(
            scan_result.session,
            extract_workspace_context(scan_result.sessionFilePath),
        )
