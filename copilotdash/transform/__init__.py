"""Conversion of raw transcripts into normalized usage events."""
