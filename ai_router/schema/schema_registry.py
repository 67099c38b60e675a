"""
Name-keyed registry of JSON Schema documents used to validate provider
responses. The registry is seeded with the builtin schemas and callers may
register project-specific ones on top.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, MutableMapping

from ai_router.errors import ConfigurationError, SchemaValidationError
from ai_router.schema.builtin import builtin_schemas, normalize_schema_name
from ai_router.schema.jsonschema_adapter import check_schema, collect_errors
from ai_router.schema.models import JsonSchema


class SchemaNotFoundError(ConfigurationError, KeyError):
    """Raised when a schema name cannot be resolved."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else ""


@dataclass(frozen=True)
class ValidationOutcome:
    valid: bool
    errors: List[str] = field(default_factory=list)


class SchemaRegistry:
    """
    In-memory registry that maps schema names to JSON Schema documents.

    Names are matched case-insensitively, so ``text_response`` and
    ``TEXT_RESPONSE`` refer to the same schema.
    """

    def __init__(
        self,
        initial: MutableMapping[str, JsonSchema] | None = None,
        *,
        include_builtins: bool = True,
    ) -> None:
        self._schemas: Dict[str, JsonSchema] = {}
        if include_builtins:
            for name, schema in builtin_schemas().items():
                self._schemas[name] = schema
        for name, schema in (initial or {}).items():
            self.register(name, schema)

    def register(self, name: str, schema: JsonSchema) -> None:
        """
        Register (or override) a schema after checking it is valid JSON Schema.
        """
        check_schema(schema)
        key = normalize_schema_name(name)
        self._schemas[key] = schema

    def has_schema(self, name: str) -> bool:
        return normalize_schema_name(name) in self._schemas

    def names(self) -> List[str]:
        return sorted(self._schemas)

    def get_schema(self, name: str) -> JsonSchema:
        key = normalize_schema_name(name)
        try:
            return self._schemas[key]
        except KeyError as exc:
            raise SchemaNotFoundError(f"Schema '{name}' is not registered") from exc

    def validate(self, name: str, value: Any) -> ValidationOutcome:
        key = normalize_schema_name(name)
        schema = self.get_schema(key)
        errors = collect_errors(schema, value)
        return ValidationOutcome(valid=not errors, errors=errors)

    def validate_or_raise(self, name: str, value: Any) -> None:
        outcome = self.validate(name, value)
        if not outcome.valid:
            raise SchemaValidationError(normalize_schema_name(name), outcome.errors)


__all__ = [
    "SchemaNotFoundError",
    "SchemaRegistry",
    "ValidationOutcome",
]
