"""
Pipeline Exceptions
===================

Error kinds raised at the seams of the family-size pipeline.

Load and coercion failures abort the run before any model is fitted.
Convergence failures are raised per model family so callers can decide
whether to abort or report a partial comparison.
"""

from typing import Any, Optional


class FamsizeError(Exception):
    """Base class for all pipeline errors."""


class LoadError(FamsizeError):
    """Source table is missing, unreadable, or lacks a required column."""


class CoercionError(FamsizeError, ValueError):
    """A raw value could not be coerced to its expected type."""

    def __init__(self, row: Any, column: str, value: Any, reason: Optional[str] = None):
        self.row = row
        self.column = column
        self.value = value
        self.reason = reason
        message = f"Row {row!r}: cannot coerce {column}={value!r}"
        if reason:
            message += f" ({reason})"
        super().__init__(message)


class ConvergenceError(FamsizeError):
    """The optimizer for a model family did not converge."""

    def __init__(self, family: Any, detail: str):
        self.family = family
        self.detail = detail
        super().__init__(f"{family} model failed to converge: {detail}")


class PredictionError(FamsizeError):
    """A fitted model cannot predict on the given dataset."""
