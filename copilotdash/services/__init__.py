"""Service layer composing scanner, transformer and state."""
