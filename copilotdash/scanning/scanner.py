"""Chat-session scanner: discovery, batched parsing and incremental watching."""
from __future__ import annotations

import asyncio
import inspect
import logging
import re
import time
from pathlib import Path
from typing import Any, Callable, Optional

from copilotdash import config
from copilotdash import observability as otel
from copilotdash.date_utils import epoch_ms_to_iso
from copilotdash.models import ScanDiagnostic, SessionScanResult, SessionScanStats, WatcherStatus
from copilotdash.parsers.sessions import parse_session_file
from copilotdash.scanning.file_watcher import SessionFileWatcher
from copilotdash.scanning.storage_paths import resolve_storage_roots

logger = logging.getLogger("copilotdash.scanner")

_SESSION_FILE_RE = re.compile(config.SESSION_FILE_PATTERN)

ScanCallback = Callable[[SessionScanResult], Any]


class ChatSessionScanner:
    """Finds, parses and watches transcript files across storage roots."""

    def __init__(
        self,
        storage_roots: Optional[list[Path]] = None,
        *,
        batch_size: int = config.SCAN_BATCH_SIZE,
        max_file_size_mb: float = config.MAX_FILE_SIZE_MB,
        debounce_ms: int = config.DEBOUNCE_MS,
        enable_watching: bool = config.ENABLE_WATCHING,
    ):
        self._storage_roots = resolve_storage_roots(storage_roots)
        self._batch_size = max(1, batch_size)
        self._max_file_bytes = int(max_file_size_mb * 1024 * 1024)
        self._debounce_ms = debounce_ms
        self._enable_watching = enable_watching

        self._callbacks: list[ScanCallback] = []
        self._watcher: Optional[SessionFileWatcher] = None
        # Bumped on every stop; parses that started under an older
        # generation are dropped instead of being dispatched.
        self._watch_generation = 0
        self.diagnostics: list[ScanDiagnostic] = []

    @property
    def storage_roots(self) -> list[Path]:
        return list(self._storage_roots)

    @property
    def is_watching(self) -> bool:
        return self._watcher is not None

    # ── Discovery ──────────────────────────────────────────────────

    def _discover_sync(self) -> tuple[list[Path], list[ScanDiagnostic]]:
        files: list[Path] = []
        diagnostics: list[ScanDiagnostic] = []

        for root in self._storage_roots:
            if not root.exists():
                logger.debug(f"Storage root does not exist: {root}")
                continue
            try:
                workspaces = sorted(p for p in root.iterdir() if p.is_dir())
            except OSError as e:
                logger.warning(f"Cannot read storage root {root}: {e}")
                diagnostics.append(ScanDiagnostic(path=str(root), reason="root_unreachable", detail=str(e)))
                continue

            for workspace in workspaces:
                chat_dir = workspace / config.CHAT_SESSIONS_DIR
                if not chat_dir.is_dir():
                    continue
                try:
                    candidates = sorted(chat_dir.iterdir())
                except OSError as e:
                    logger.warning(f"Cannot list {chat_dir}: {e}")
                    diagnostics.append(ScanDiagnostic(path=str(chat_dir), reason="unreadable", detail=str(e)))
                    continue

                for candidate in candidates:
                    if not _SESSION_FILE_RE.match(candidate.name):
                        continue
                    try:
                        if not candidate.is_file():
                            continue
                        size = candidate.stat().st_size
                    except OSError as e:
                        diagnostics.append(ScanDiagnostic(path=str(candidate), reason="unreadable", detail=str(e)))
                        continue
                    if size > self._max_file_bytes:
                        logger.warning(f"Skipping oversized transcript {candidate} ({size} bytes)")
                        diagnostics.append(
                            ScanDiagnostic(path=str(candidate), reason="too_large", detail=f"{size} bytes")
                        )
                        continue
                    files.append(candidate)

        return files, diagnostics

    async def discover_session_files(self) -> list[Path]:
        """Enumerate transcript files under every storage root.

        Oversized and unreadable files are left out and recorded in
        ``diagnostics``; an unreachable root never aborts discovery.
        """
        files, diagnostics = await asyncio.to_thread(self._discover_sync)
        self.diagnostics = diagnostics
        logger.debug(f"Discovered {len(files)} transcript files ({len(diagnostics)} skipped)")
        return files

    # ── Parsing ────────────────────────────────────────────────────

    async def parse_file(self, path: Path) -> SessionScanResult | None:
        result = await asyncio.to_thread(parse_session_file, Path(path))
        if result is None:
            otel.record_parser_failure("chat_session")
        return result

    async def scan_all(self) -> tuple[list[SessionScanResult], SessionScanStats]:
        started = time.perf_counter()
        logger.info("Starting full session scan")

        with otel.start_span("copilotdash.scan_all", {"roots": len(self._storage_roots)}):
            files = await self.discover_session_files()
            results: list[SessionScanResult] = []
            error_files = 0

            for offset in range(0, len(files), self._batch_size):
                batch = files[offset:offset + self._batch_size]
                parsed = await asyncio.gather(*(self.parse_file(path) for path in batch))
                for result in parsed:
                    if result is None:
                        error_files += 1
                    else:
                        results.append(result)
                if len(files) > 100:
                    logger.info(f"Processed {min(offset + len(batch), len(files))}/{len(files)} files")

        total_requests = 0
        oldest: Optional[str] = None
        newest: Optional[str] = None
        for result in results:
            total_requests += len(result.session.requests)
            created = epoch_ms_to_iso(result.session.creationDate)
            if oldest is None or created < oldest:
                oldest = created
            if newest is None or created > newest:
                newest = created

        duration_ms = (time.perf_counter() - started) * 1000
        stats = SessionScanStats(
            totalSessions=len(results),
            totalRequests=total_requests,
            scannedFiles=len(files),
            errorFiles=error_files,
            skippedFiles=sum(1 for d in self.diagnostics if d.reason == "too_large"),
            scanDuration=round(duration_ms, 3),
            oldestSession=oldest,
            newestSession=newest,
        )
        otel.record_scan("success", duration_ms, len(files))
        logger.info(
            f"Scan complete: {stats.totalSessions} sessions, {stats.totalRequests} requests, "
            f"{stats.errorFiles} errors in {duration_ms:.0f}ms"
        )
        return results, stats

    # ── Watching ───────────────────────────────────────────────────

    def watch(self, callback: ScanCallback) -> None:
        """Register a subscriber for reparsed transcripts.

        The first subscriber starts the underlying file watch; later ones
        share it. Must be called with a running event loop.
        """
        if not self._enable_watching:
            logger.info("Session watching disabled; ignoring subscriber")
            return
        if callback not in self._callbacks:
            self._callbacks.append(callback)
        if self._watcher is None:
            self._watcher = SessionFileWatcher(
                self._storage_roots,
                self._handle_change,
                debounce_ms=self._debounce_ms,
            )
            self._watcher.start()
            logger.info("Started watching for session file changes")

    def remove_callback(self, callback: ScanCallback) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def stop_watching(self) -> None:
        """Tear down the watch and drop every subscriber.

        Synchronous: once this returns no pending notification will reach a
        subscriber, including reparses already in progress.
        """
        self._watch_generation += 1
        self._callbacks.clear()
        if self._watcher is not None:
            self._watcher.stop()
            self._watcher = None
            logger.info("Stopped watching for session file changes")

    async def _handle_change(self, path: Path) -> None:
        generation = self._watch_generation
        result = await self.parse_file(path)
        if result is None or generation != self._watch_generation:
            return
        logger.debug(f"Reparsed {path} ({len(result.session.requests)} requests)")
        for callback in list(self._callbacks):
            try:
                outcome = callback(result)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as e:
                logger.error(f"Session watch callback failed for {path}: {e}")

    def get_watcher_status(self) -> WatcherStatus:
        return WatcherStatus(isWatching=self.is_watching, callbackCount=len(self._callbacks))

    def dispose(self) -> None:
        self.stop_watching()
