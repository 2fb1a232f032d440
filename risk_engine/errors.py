"""Typed errors raised by the risk engine.

The calling layer maps these onto transport status codes: validation and
insufficient-data errors are caller-correctable (400), not-found errors map to
404, computation errors point at a data-quality problem in the supplied
snapshot rather than at the request shape.
"""

from __future__ import annotations


class RiskEngineError(Exception):
    """Base class for all risk engine errors."""


class ValidationError(RiskEngineError, ValueError):
    """Malformed or out-of-range input, detected before any computation."""

    def __init__(self, field: str, constraint: str, value: object = None) -> None:
        self.field = field
        self.constraint = constraint
        self.value = value
        message = f"Invalid {field}: {constraint}"
        if value is not None:
            message += f" (got {value!r})"
        super().__init__(message)


class InsufficientDataError(RiskEngineError, ValueError):
    """Return history too short for a stable statistical estimate."""

    def __init__(self, message: str, required: int | None = None, available: int | None = None) -> None:
        self.required = required
        self.available = available
        super().__init__(message)


class NotFoundError(RiskEngineError, LookupError):
    """A referenced portfolio or limit set was not supplied to the engine."""

    def __init__(self, entity: str, identifier: str) -> None:
        self.entity = entity
        self.identifier = identifier
        super().__init__(f"{entity} not found: {identifier}")


class ComputationError(RiskEngineError, ArithmeticError):
    """Numerical failure caused by degenerate input data."""
