"""Use cases (application services)."""

from .auto_generate import (
    AutoGenerateRequest,
    AutoGenerateResult,
    AutoGenerateSelectedUseCase,
)

__all__ = [
    "AutoGenerateRequest",
    "AutoGenerateResult",
    "AutoGenerateSelectedUseCase",
]
