"""
Exception types raised by the extraction pipeline.

Only structurally invalid input and invalid configuration are fatal. Field-level
misses and unresolved temporal references are represented in the output record.
"""
from __future__ import annotations


class NoteLineError(Exception):
    """Base class for pipeline errors."""


class InputError(NoteLineError):
    """Note text is missing, empty, or exceeds the configured size limit."""

    def __init__(self, message: str, note_id: str | None = None):
        super().__init__(message)
        self.note_id = note_id


class ConfigurationError(NoteLineError):
    """Invalid threshold, weight table, or field set. Raised at construction time."""
