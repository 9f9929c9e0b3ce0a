"""CopilotDash: chat-session transcript scanning and usage analytics."""

__version__ = "0.1.0"
