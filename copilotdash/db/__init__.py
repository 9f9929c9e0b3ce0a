"""Database access for persisted application state."""
