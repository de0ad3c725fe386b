"""
Primitive input schemas.

The editor stores a JSON-Schema-like shape for each primitive:

    {
        "properties": {
            "email": {"type": "string", "description": "Recipient"},
            "amount": {"type": "number", "default": 0},
        },
        "required": ["email"],
    }

``properties`` may also be a list of ``{"name": ..., "type": ...}`` entries.
Schemas are checked once at registration, converted to a Draft 7 JSON Schema
and validated with jsonschema at invocation time.
"""

from __future__ import annotations

import copy
from typing import Any, Dict, List, Optional

from jsonschema import Draft7Validator
from jsonschema.exceptions import ValidationError as JsonSchemaValidationError

from storeflow.errors import InvalidSchemaError, PrimitiveValidationError

TYPE_TAGS = ("string", "number", "integer", "boolean", "object", "array", "any")


def _check_property(path: str, prop: Any, problems: List[str]) -> None:
    if not isinstance(prop, dict):
        problems.append(f"{path}: property definition must be an object")
        return

    type_tag = prop.get("type", "any")
    if type_tag not in TYPE_TAGS:
        problems.append(f"{path}: unknown type '{type_tag}'")

    if "enum" in prop and not isinstance(prop["enum"], list):
        problems.append(f"{path}: enum must be a list")

    if "items" in prop:
        _check_property(f"{path}[]", prop["items"], problems)

    nested = prop.get("properties")
    if nested is not None:
        if not isinstance(nested, dict):
            problems.append(f"{path}: nested properties must be an object")
        else:
            for name, child in nested.items():
                _check_property(f"{path}.{name}", child, problems)


def _to_json_schema(prop: Dict[str, Any]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    type_tag = prop.get("type", "any")
    if type_tag != "any":
        out["type"] = type_tag
    if "enum" in prop:
        out["enum"] = list(prop["enum"])
    if "items" in prop:
        out["items"] = _to_json_schema(prop["items"])
    if isinstance(prop.get("properties"), dict):
        out["properties"] = {
            name: _to_json_schema(child) for name, child in prop["properties"].items()
        }
        nested_required = prop.get("required")
        if isinstance(nested_required, list):
            out["required"] = list(nested_required)
    return out


class InputSchema:
    """
    Compiled primitive input schema.

    Usage:
        schema = InputSchema.compile({"properties": {"x": {"type": "number"}}})
        args = schema.validate({"x": 5})
    """

    def __init__(self, properties: Dict[str, Dict[str, Any]], required: List[str]):
        self.properties = properties
        self.required = required
        self.json_schema: Dict[str, Any] = {
            "type": "object",
            "properties": {name: _to_json_schema(prop) for name, prop in properties.items()},
            "required": list(required),
        }
        self._validator = Draft7Validator(self.json_schema)

    @classmethod
    def compile(cls, raw: Optional[Dict[str, Any]]) -> "InputSchema":
        """
        Check and compile a raw schema.

        Raises:
            InvalidSchemaError: Listing every problem found.
        """
        raw = raw or {}
        if not isinstance(raw, dict):
            raise InvalidSchemaError("Input schema must be an object")

        problems: List[str] = []
        properties: Dict[str, Dict[str, Any]] = {}
        required: List[str] = []

        declared = raw.get("properties") or {}
        if isinstance(declared, list):
            for index, entry in enumerate(declared):
                if not isinstance(entry, dict) or not entry.get("name"):
                    problems.append(f"properties[{index}]: missing name")
                    continue
                name = entry["name"]
                if name in properties:
                    problems.append(f"{name}: duplicate property name")
                    continue
                properties[name] = {k: v for k, v in entry.items() if k != "name"}
        elif isinstance(declared, dict):
            properties = dict(declared)
        else:
            problems.append("properties must be an object or a list")

        for name, prop in properties.items():
            _check_property(name, prop, problems)
            if isinstance(prop, dict) and prop.get("required") is True:
                required.append(name)

        listed = raw.get("required") or []
        if not isinstance(listed, list):
            problems.append("required must be a list")
            listed = []
        for name in listed:
            if name not in properties:
                problems.append(f"required names undeclared property '{name}'")
            elif name not in required:
                required.append(name)

        if problems:
            raise InvalidSchemaError(f"Invalid input schema: {problems[0]}", problems)

        # Inline ``required: true`` flags are not valid JSON Schema
        clean = {
            name: {k: v for k, v in prop.items() if k != "required" or not isinstance(v, bool)}
            for name, prop in properties.items()
        }
        return cls(clean, required)

    def apply_defaults(self, args: Dict[str, Any]) -> Dict[str, Any]:
        result = dict(args)
        for name, prop in self.properties.items():
            if name not in result and "default" in prop:
                result[name] = copy.deepcopy(prop["default"])
        return result

    def validate(self, args: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        """
        Apply defaults and validate arguments.

        Returns:
            Arguments with defaults filled in

        Raises:
            PrimitiveValidationError: For the first violation found.
        """
        if args is None:
            args = {}
        if not isinstance(args, dict):
            raise PrimitiveValidationError("$", "arguments must be an object")

        values = self.apply_defaults(args)
        errors = sorted(self._validator.iter_errors(values), key=lambda e: list(e.absolute_path))
        if errors:
            raise self._to_validation_error(errors[0], values)
        return values

    def _to_validation_error(
        self,
        error: JsonSchemaValidationError,
        values: Dict[str, Any],
    ) -> PrimitiveValidationError:
        path = [str(part) for part in error.absolute_path]

        if error.validator == "required":
            container = values
            for part in error.absolute_path:
                container = container[part]
            missing = [name for name in error.validator_value if name not in container]
            field = ".".join(path + missing[:1]) or "$"
            return PrimitiveValidationError(field, "missing required field")

        field = ".".join(path) or "$"
        if error.validator == "type":
            return PrimitiveValidationError(field, f"expected {error.validator_value}")
        if error.validator == "enum":
            return PrimitiveValidationError(field, f"must be one of {error.validator_value}")
        return PrimitiveValidationError(field, error.message)

    def to_dict(self) -> Dict[str, Any]:
        """Editor-facing form of the schema."""
        return {"properties": copy.deepcopy(self.properties), "required": list(self.required)}


__all__ = ["TYPE_TAGS", "InputSchema"]
