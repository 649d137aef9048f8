from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Generic, TypeVar

from pydantic import BaseModel, ValidationError

from promptgate.services.context_builder import ContextLayer


ModelT = TypeVar("ModelT", bound=BaseModel)


@dataclass(frozen=True)
class ValidationResult(Generic[ModelT]):
    ok: bool
    value: ModelT | None = None
    # "path: message" entries; never include the offending input values.
    errors: list[str] = field(default_factory=list)


def _format_error(error: dict[str, Any]) -> str:
    path = ".".join(str(part) for part in error.get("loc", ())) or "<root>"
    return f"{path}: {error.get('msg', 'invalid value')}"


def validate_payload(model: type[ModelT], raw: Any) -> ValidationResult[ModelT]:
    # Keep validation transport-free so every schema is unit-testable on its own.
    try:
        value = model.model_validate(raw)
    except ValidationError as exc:
        errors = [_format_error(error) for error in exc.errors(include_input=False)]
        return ValidationResult(ok=False, errors=errors)
    return ValidationResult(ok=True, value=value)


@dataclass(frozen=True)
class PromptDefinition(Generic[ModelT]):
    # Describe one AI request type: what callers send, what the provider must return.
    id: str
    version: int
    feature: str
    variables_schema: type[BaseModel]
    output_schema: type[ModelT]
    build_layers: Callable[[Any], list[ContextLayer]]
    model: str | None = None
