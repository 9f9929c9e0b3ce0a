"""Pydantic models for chat transcripts, usage events and analytics views."""
from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


EventType = Literal["chat", "completion", "edit", "explain"]
EVENT_TYPES: tuple[str, ...] = ("chat", "completion", "edit", "explain")


# ── Raw transcript models ───────────────────────────────────────────
# Only fields the transform reads are declared; everything else rides
# along as extra data so unfamiliar shapes never reject a transcript.

class _RawModel(BaseModel):
    model_config = ConfigDict(extra="allow")


def _list_or_empty(value: Any) -> list[Any]:
    return value if isinstance(value, list) else []


def _dict_or_none(value: Any) -> Any:
    return value if isinstance(value, dict) else None


class ChatMessage(_RawModel):
    text: str = ""
    parts: list[Any] = Field(default_factory=list)

    @field_validator("parts", mode="before")
    @classmethod
    def _parts_list(cls, value: Any) -> list[Any]:
        return _list_or_empty(value)


class ChatAgent(_RawModel):
    id: str


class ResponseFragment(_RawModel):
    value: Any = None


class Timings(_RawModel):
    totalElapsed: Optional[float] = None

    @field_validator("totalElapsed", mode="before")
    @classmethod
    def _numeric_or_none(cls, value: Any) -> Any:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return None
        try:
            number = float(value)
        except OverflowError:
            return None
        return number if math.isfinite(number) else None


class RequestResult(_RawModel):
    timings: Optional[Timings] = None

    @field_validator("timings", mode="before")
    @classmethod
    def _timings_object(cls, value: Any) -> Any:
        return _dict_or_none(value)


class ChatRequest(_RawModel):
    requestId: str
    timestamp: float
    modelId: Optional[str] = None
    message: ChatMessage
    variableData: Optional[dict[str, Any]] = None
    agent: Optional[ChatAgent] = None
    response: list[ResponseFragment] = Field(default_factory=list)
    result: Optional[RequestResult] = None
    contentReferences: list[Any] = Field(default_factory=list)
    codeCitations: list[Any] = Field(default_factory=list)
    followups: list[Any] = Field(default_factory=list)

    @field_validator("contentReferences", "codeCitations", "followups", mode="before")
    @classmethod
    def _optional_list(cls, value: Any) -> list[Any]:
        return _list_or_empty(value)

    @field_validator("response", mode="before")
    @classmethod
    def _fragments(cls, value: Any) -> list[Any]:
        return [item for item in _list_or_empty(value) if isinstance(item, dict)]

    @field_validator("modelId", mode="before")
    @classmethod
    def _model_string(cls, value: Any) -> Any:
        return value if isinstance(value, str) else None

    @field_validator("variableData", "result", mode="before")
    @classmethod
    def _optional_object(cls, value: Any) -> Any:
        return _dict_or_none(value)

    def response_text(self) -> str:
        return "".join(
            fragment.value for fragment in self.response if isinstance(fragment.value, str)
        )


class ChatSession(_RawModel):
    version: float
    sessionId: str
    creationDate: float
    requests: list[ChatRequest] = Field(default_factory=list)


class SessionScanResult(BaseModel):
    sessionFilePath: str
    session: ChatSession
    lastModified: datetime
    fileSize: int = 0


class SessionScanStats(BaseModel):
    totalSessions: int = 0
    totalRequests: int = 0
    scannedFiles: int = 0
    errorFiles: int = 0
    skippedFiles: int = 0
    scanDuration: float = 0.0  # milliseconds
    oldestSession: Optional[str] = None
    newestSession: Optional[str] = None


class ScanDiagnostic(BaseModel):
    path: str
    reason: str  # "too_large" | "unreadable" | "root_unreachable"
    detail: str = ""


# ── Normalized events ───────────────────────────────────────────────

class UsageEvent(BaseModel):
    id: str
    timestamp: str
    type: EventType = "chat"
    source: str = "copilot-chat"

    # Approximated session hierarchy: instance -> window -> extension host
    instanceSessionId: str
    windowId: Optional[str] = None
    extensionHostSessionId: str
    sessionId: str
    workspaceId: str = "unknown"

    duration: Optional[float] = None
    tokensUsed: int = 0
    model: Optional[str] = None
    language: Optional[str] = None
    filePath: Optional[str] = None
    userPrompt: Optional[str] = None

    vsCodeVersion: str = "unknown"
    copilotVersion: str = "unknown"
    extensionVersion: str = ""


class WorkspaceContext(BaseModel):
    workspaceHash: str = "unknown"
    storagePath: str = "unknown"


class SessionHierarchy(BaseModel):
    instanceSessionId: str
    windowId: str
    extensionHostSessionId: str


class SessionMetadata(BaseModel):
    sessionId: str
    workspaceHash: str
    instanceId: str
    sessionStartTime: Optional[str] = None
    sessionEndTime: Optional[str] = None
    requestCount: int = 0
    totalResponseLength: int = 0
    averageResponseTime: float = 0.0
    languagesUsed: list[str] = Field(default_factory=list)
    modelsUsed: list[str] = Field(default_factory=list)
    hasCodeCitations: bool = False
    hasContentReferences: bool = False
    hasFollowups: bool = False


# ── Analytics ───────────────────────────────────────────────────────

class DateRange(BaseModel):
    start: datetime
    end: datetime

    @field_validator("start", "end")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class AnalyticsQuery(BaseModel):
    dateRange: DateRange
    eventTypes: Optional[list[str]] = None
    languages: Optional[list[str]] = None
    models: Optional[list[str]] = None
    sessionIds: Optional[list[str]] = None


class AggregatedMetrics(BaseModel):
    totalEvents: int = 0
    uniqueSessions: int = 0
    averageEventsPerSession: float = 0.0
    totalDuration: float = 0.0
    averageDuration: float = 0.0
    totalTokensUsed: int = 0
    averageTokensPerEvent: float = 0.0


class TimeSeriesDataPoint(BaseModel):
    timestamp: str  # YYYY-MM-DD
    value: int = 0
    metadata: dict[str, Any] = Field(default_factory=dict)


class LanguageUsageMetric(BaseModel):
    language: str
    eventCount: int = 0
    percentage: float = 0.0
    averageDuration: float = 0.0
    totalTokens: int = 0


class ModelUsageMetric(BaseModel):
    model: str
    eventCount: int = 0
    percentage: float = 0.0
    averageDuration: float = 0.0
    totalTokens: int = 0
    successRate: float = 100.0


class EventTypeDistribution(BaseModel):
    type: str
    count: int = 0
    percentage: float = 0.0


class HourlyDistribution(BaseModel):
    hour: int
    eventCount: int = 0
    percentage: float = 0.0


class DayOfWeekDistribution(BaseModel):
    dayOfWeek: int  # 0 = Sunday
    dayName: str
    eventCount: int = 0
    percentage: float = 0.0


class SessionAnalytics(BaseModel):
    sessionId: str
    instanceSessionId: Optional[str] = None
    windowId: Optional[str] = None
    extensionHostSessionId: Optional[str] = None
    startTime: str
    endTime: Optional[str] = None
    duration: float = 0.0  # milliseconds
    eventCount: int = 0
    uniqueLanguages: list[str] = Field(default_factory=list)
    uniqueModels: list[str] = Field(default_factory=list)
    workspaceId: Optional[str] = None


class InstanceSessionAnalytics(BaseModel):
    instanceSessionId: str
    startTime: str
    endTime: Optional[str] = None
    duration: float = 0.0
    eventCount: int = 0
    windowCount: int = 0
    extensionHostRestarts: int = 0
    workspaceIds: list[str] = Field(default_factory=list)
    uniqueLanguages: list[str] = Field(default_factory=list)
    uniqueModels: list[str] = Field(default_factory=list)


class WindowSessionAnalytics(BaseModel):
    windowId: str
    instanceSessionId: str
    startTime: str
    endTime: Optional[str] = None
    duration: float = 0.0
    eventCount: int = 0
    extensionHostSessions: int = 0
    workspaceId: Optional[str] = None
    uniqueLanguages: list[str] = Field(default_factory=list)
    uniqueModels: list[str] = Field(default_factory=list)


class AnalyticsResult(BaseModel):
    query: AnalyticsQuery
    aggregatedMetrics: AggregatedMetrics
    timeSeriesData: list[TimeSeriesDataPoint] = Field(default_factory=list)
    languageMetrics: list[LanguageUsageMetric] = Field(default_factory=list)
    modelMetrics: list[ModelUsageMetric] = Field(default_factory=list)
    eventTypeDistribution: list[EventTypeDistribution] = Field(default_factory=list)
    hourlyDistribution: list[HourlyDistribution] = Field(default_factory=list)
    dayOfWeekDistribution: list[DayOfWeekDistribution] = Field(default_factory=list)
    sessionAnalytics: list[SessionAnalytics] = Field(default_factory=list)
    instanceSessionAnalytics: list[InstanceSessionAnalytics] = Field(default_factory=list)
    windowSessionAnalytics: list[WindowSessionAnalytics] = Field(default_factory=list)
    generatedAt: str


class QuickStats(BaseModel):
    totalEvents: int = 0
    eventsToday: int = 0
    eventsThisWeek: int = 0
    eventsThisMonth: int = 0
    averageSessionDuration: str = "0ms"
    topLanguage: str = "None"
    topModel: str = "None"
    lastEventTime: Optional[str] = None


# ── Persistence and status ──────────────────────────────────────────

class UsageSettings(BaseModel):
    retentionDays: int = 90
    autoCleanup: bool = True
    includePrompts: bool = False


class UsageIndex(BaseModel):
    totalEvents: int = 0
    lastUpdate: Optional[str] = None
    settings: UsageSettings = Field(default_factory=UsageSettings)


class StorageStats(BaseModel):
    totalEvents: int = 0
    oldestEvent: Optional[str] = None
    newestEvent: Optional[str] = None
    storageSize: int = 0  # bytes, approximate


class WatcherStatus(BaseModel):
    isWatching: bool = False
    callbackCount: int = 0
    sessionCallbackCount: int = 0
