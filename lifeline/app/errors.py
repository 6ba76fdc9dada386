"""Typed failures raised by the coverage engine."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Type, TypeVar, Union

from fastapi import HTTPException, status
from pydantic import BaseModel, ValidationError

ModelT = TypeVar("ModelT", bound=BaseModel)


@dataclass(eq=False)
class CoverageError(Exception):
    """Base class for failures surfaced to the controller layer."""

    message: str
    code: str = "coverage_error"
    status_code: int = status.HTTP_400_BAD_REQUEST
    detail: Optional[Mapping[str, Any]] = None

    def __post_init__(self) -> None:
        base_detail: Dict[str, Any] = {"error": self.code, "message": self.message}
        if self.detail:
            base_detail.update(self.detail)
        object.__setattr__(self, "_payload", base_detail)
        super().__init__(self.message)

    @property
    def payload(self) -> Mapping[str, Any]:
        """Serialized representation suitable for JSON responses."""

        return self._payload

    def to_http_exception(self) -> HTTPException:
        """Convert the domain error into a FastAPI HTTPException."""

        return HTTPException(status_code=self.status_code, detail=dict(self.payload))


@dataclass(eq=False)
class NotFoundError(CoverageError, LookupError):
    """A referenced patient, subscription, dependent, statement or price is missing."""

    code: str = "not_found"
    status_code: int = status.HTTP_404_NOT_FOUND


@dataclass(eq=False)
class ConflictError(CoverageError):
    """A uniqueness rule would be broken (active subscription, statement period)."""

    code: str = "conflict"
    status_code: int = status.HTTP_409_CONFLICT


@dataclass(eq=False)
class BusinessRuleViolation(CoverageError):
    """The request is well formed but breaks a coverage or billing rule."""

    code: str = "business_rule_violation"
    status_code: int = status.HTTP_400_BAD_REQUEST


@dataclass(eq=False)
class ValidationFailure(CoverageError, ValueError):
    """Malformed input that slipped past the boundary layer."""

    code: str = "validation_failure"
    status_code: int = 422


@dataclass(eq=False)
class PersistenceError(CoverageError):
    """Unexpected storage failure, wrapped so driver exceptions never leak."""

    code: str = "persistence_error"
    status_code: int = status.HTTP_503_SERVICE_UNAVAILABLE


def not_found(resource: str, **detail: Any) -> NotFoundError:
    return NotFoundError(f"{resource} not found", detail=detail or None)


def coerce_model(model: Type[ModelT], data: Union[ModelT, Mapping[str, Any]]) -> ModelT:
    """Validate ``data`` into ``model``, surfacing failures as :class:`ValidationFailure`."""

    if isinstance(data, model):
        return data
    try:
        return model.model_validate(dict(data))
    except ValidationError as exc:
        raise ValidationFailure(
            f"Invalid {model.__name__}",
            detail={"errors": exc.errors(include_url=False, include_context=False)},
        ) from exc


__all__ = [
    "BusinessRuleViolation",
    "ConflictError",
    "CoverageError",
    "NotFoundError",
    "PersistenceError",
    "ValidationFailure",
    "coerce_model",
    "not_found",
]
