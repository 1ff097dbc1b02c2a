"""
errors.py — Exceptions surfaced by the ranking engine.

Everyday absence of data (no marks, zero max scores, no subject roster) is
reported with sentinel values ("N/A", position 0), never with these.
"""


class EngineError(Exception):
    """Base class for errors raised by the engine."""


class InvalidConfigurationError(EngineError, ValueError):
    """A grade scale (or other caller-built configuration) is malformed."""


class ReadOnlyError(EngineError):
    """Marks or remarks were written after the exam was published."""


class PermissionDeniedError(EngineError):
    """The caller's role may not perform the requested change."""


class ExamNotFoundError(EngineError, KeyError):
    """An exam id did not match any exam in the supplied collection."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else "Exam not found"
