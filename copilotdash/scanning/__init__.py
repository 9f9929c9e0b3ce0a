"""Transcript discovery, scanning and file watching."""
