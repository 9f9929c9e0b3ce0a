"""Transcript file parsers."""
