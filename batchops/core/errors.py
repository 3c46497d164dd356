"""Shared error types.

The goal is to make errors explicit and easy to handle at the registry boundary:
executor failures end a task, persistence failures are logged and tolerated.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(eq=False)
class AppError(Exception):
    """Base error for orchestration failures."""

    message: str
    cause: Exception | None = None

    def __str__(self) -> str:  # pragma: no cover
        if self.cause is None:
            return self.message
        return f"{self.message} (cause: {self.cause})"


class ValidationError(AppError):
    """Invalid task descriptor or configuration."""


class IntegrationError(AppError):
    """External integration failed."""


class CancelledError(AppError):
    """User-initiated cancellation."""


class JobStoreError(IntegrationError):
    """A create/checkpoint/retire/list call against the job store failed."""


@dataclass(eq=False)
class ItemExecutionError(AppError):
    """The executor failed for one item; the batch stops here."""

    item_id: str = ""

    def __str__(self) -> str:  # pragma: no cover
        base = f"{self.message} [item={self.item_id}]" if self.item_id else self.message
        if self.cause is None:
            return base
        return f"{base} (cause: {self.cause})"
