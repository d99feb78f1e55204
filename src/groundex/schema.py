"""Extraction schemas: which classes may be extracted and what attributes they carry."""

from __future__ import annotations

import json
import re
from collections import Counter
from typing import Any, Literal, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .errors import SchemaValidationError
from .types import Extraction


@runtime_checkable
class ExtractionSchema(Protocol):
    """Anything the pipeline can validate extractions against."""

    @property
    def name(self) -> str: ...

    def class_names(self) -> list[str]: ...

    def validate_extraction(self, extraction: Extraction) -> None:
        """Raise SchemaValidationError if the extraction does not conform."""
        ...

    def to_json_schema(self) -> dict[str, Any]: ...


class FieldDefinition(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    type: Literal["string", "number", "boolean", "array"] = "string"
    description: str = ""
    required: bool = False
    enum: list[str] = Field(default_factory=list)
    pattern: str | None = None
    min_length: int | None = Field(default=None, alias="minLength", ge=0)
    max_length: int | None = Field(default=None, alias="maxLength", ge=0)
    minimum: float | None = None
    maximum: float | None = None
    default: Any = None

    @field_validator("pattern")
    @classmethod
    def compile_pattern(cls, value: str | None) -> str | None:
        """Reject patterns that are not valid regular expressions."""
        if value is not None:
            try:
                re.compile(value)
            except re.error as exc:
                raise ValueError(f"invalid pattern {value!r}: {exc}") from exc
        return value

    def check(self, value: Any) -> None:
        if self.type == "string":
            if not isinstance(value, str):
                self._fail(value, "type", f"expected string, got {type(value).__name__}")
            if self.min_length is not None and len(value) < self.min_length:
                self._fail(value, "minLength", f"string too short: {len(value)} < {self.min_length}")
            if self.max_length is not None and len(value) > self.max_length:
                self._fail(value, "maxLength", f"string too long: {len(value)} > {self.max_length}")
            if self.enum and value not in self.enum:
                self._fail(value, "enum", f"value {value!r} not in allowed values: {self.enum}")
            if self.pattern and not re.search(self.pattern, value):
                self._fail(value, "pattern", f"value {value!r} does not match {self.pattern!r}")
        elif self.type == "number":
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                self._fail(value, "type", f"expected number, got {type(value).__name__}")
            if self.minimum is not None and value < self.minimum:
                self._fail(value, "minimum", f"number too small: {value} < {self.minimum}")
            if self.maximum is not None and value > self.maximum:
                self._fail(value, "maximum", f"number too large: {value} > {self.maximum}")
        elif self.type == "boolean":
            if not isinstance(value, bool):
                self._fail(value, "type", f"expected boolean, got {type(value).__name__}")
        elif self.type == "array":
            if not isinstance(value, (list, tuple)):
                self._fail(value, "type", f"expected array, got {type(value).__name__}")

    def _fail(self, value: Any, constraint: str, message: str) -> None:
        raise SchemaValidationError(f"field {self.name}: {message}", field=self.name, value=value, constraint=constraint)


class ClassDefinition(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    description: str = ""
    fields: list[FieldDefinition] = Field(default_factory=list)
    required: bool = False
    min_count: int | None = Field(default=None, alias="minCount", ge=0)
    max_count: int | None = Field(default=None, alias="maxCount", ge=0)


class BasicExtractionSchema(BaseModel):
    """Schema with named classes, per-class fields and fields shared by all classes."""

    model_config = ConfigDict(populate_by_name=True)

    name: str
    description: str = ""
    classes: list[ClassDefinition] = Field(default_factory=list)
    global_fields: list[FieldDefinition] = Field(default_factory=list, alias="globalFields")

    def class_names(self) -> list[str]:
        return [c.name for c in self.classes]

    def get_class(self, name: str) -> ClassDefinition | None:
        for c in self.classes:
            if c.name == name:
                return c
        return None

    def validate_extraction(self, extraction: Extraction) -> None:
        class_def = self.get_class(extraction.extraction_class)
        if class_def is None:
            raise SchemaValidationError(
                f"unknown extraction class: {extraction.extraction_class}",
                field="extraction_class",
                value=extraction.extraction_class,
                constraint="enum",
            )
        if not extraction.extraction_text.strip():
            raise SchemaValidationError(
                "extraction text cannot be empty",
                field="extraction_text",
                value=extraction.extraction_text,
                constraint="required",
            )

        fields = {f.name: f for f in [*self.global_fields, *class_def.fields]}
        attributes = extraction.attributes or {}
        for f in fields.values():
            if f.required and f.name not in attributes:
                raise SchemaValidationError(
                    f"required field {f.name} is missing", field=f.name, constraint="required"
                )
        for attr_name, value in attributes.items():
            if attr_name in fields:
                fields[attr_name].check(value)

    def validate_counts(self, extractions: list[Extraction]) -> list[SchemaValidationError]:
        """Per-class occurrence constraints over a whole result set."""
        counts = Counter(e.extraction_class for e in extractions)
        problems = []
        for c in self.classes:
            n = counts.get(c.name, 0)
            if c.required and n == 0:
                problems.append(SchemaValidationError(
                    f"required class {c.name} has no extractions", field=c.name, value=n, constraint="required"
                ))
            if c.min_count is not None and n < c.min_count:
                problems.append(SchemaValidationError(
                    f"class {c.name}: {n} < minCount {c.min_count}", field=c.name, value=n, constraint="minCount"
                ))
            if c.max_count is not None and n > c.max_count:
                problems.append(SchemaValidationError(
                    f"class {c.name}: {n} > maxCount {c.max_count}", field=c.name, value=n, constraint="maxCount"
                ))
        return problems

    def to_json_schema(self) -> dict[str, Any]:
        """JSON Schema describing the expected model output."""
        return {
            "$schema": "http://json-schema.org/draft-07/schema#",
            "type": "object",
            "title": self.name,
            "description": self.description,
            "properties": {
                "extractions": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "extraction_class": {"type": "string", "enum": self.class_names()},
                            "extraction_text": {"type": "string"},
                            "attributes": {"type": "object"},
                        },
                        "required": ["extraction_class", "extraction_text"],
                    },
                },
            },
            "required": ["extractions"],
        }

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True, indent=2)

    @classmethod
    def from_json(cls, data: str | bytes) -> BasicExtractionSchema:
        return cls.model_validate(json.loads(data))
