"""Aggregate analytics over usage events."""
