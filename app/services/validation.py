"""
JSON Schema validation service.

Collects every error rather than failing on the first one, and reports each
against the form field it concerns.
"""

from typing import Any

import jsonschema

from app.schemas.fhir import FIELD_MESSAGES


def validate_against_schema(data: dict[str, Any], schema: dict[str, Any]) -> list[str]:
    """
    Validate a dict against a JSON schema.
    Returns a list of error messages (empty list = valid).
    """
    validator = jsonschema.Draft7Validator(schema)
    return [error.message for error in validator.iter_errors(data)]


def _error_field(error: jsonschema.ValidationError) -> str:
    if error.validator == "required":
        # "'family' is a required property"
        return error.message.split("'")[1]
    if error.validator == "additionalProperties":
        return "_unknown"
    if error.path:
        return str(error.path[0])
    return "_root"


def field_issues(data: dict[str, Any], schema: dict[str, Any]) -> list[dict[str, str]]:
    """
    Validate a flat form and return per-field issues: [{"field", "message"}].
    Issues are ordered by field name for stable output.
    """
    validator = jsonschema.Draft7Validator(schema)
    issues = []
    for error in validator.iter_errors(data):
        field = _error_field(error)
        message = FIELD_MESSAGES.get(field, {}).get(error.validator, error.message)
        issues.append({"field": field, "message": message})
    return sorted(issues, key=lambda issue: issue["field"])
