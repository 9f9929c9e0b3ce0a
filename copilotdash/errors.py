"""Exception types raised across CopilotDash components."""
from __future__ import annotations


class CopilotDashError(Exception):
    """Base class for CopilotDash errors."""


class ConfigurationError(CopilotDashError):
    """Raised at construction time when a required collaborator is missing."""


class SessionScanError(CopilotDashError):
    """Raised when a full transcript scan cannot complete."""
