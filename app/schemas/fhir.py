"""
JSON schemas guarding the two data shapes the cache accepts.

- The flat Patient form submitted by the presentation layer (validated
  before any remote call)
- The minimal structure a remote Patient resource must have before it is
  projected into the cache
"""

import copy

GENDER_VALUES = ["male", "female", "other", "unknown"]

PATIENT_FORM_SCHEMA: dict = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "title": "Patient form",
    "description": "Flat Patient record edited by the UI, converted to FHIR on write.",
    "type": "object",
    "required": ["family", "given", "gender", "birthDate", "phone"],
    "properties": {
        "family": {
            "type": "string",
            "minLength": 1,
            "description": "Family name (HumanName.family).",
        },
        "given": {
            "type": "string",
            "minLength": 1,
            "description": "Space separated given names (HumanName.given).",
        },
        "gender": {
            "type": "string",
            "enum": GENDER_VALUES,
            "description": "Administrative gender per FHIR value set.",
        },
        "birthDate": {
            "type": "string",
            "pattern": "^[0-9]{4}-[0-9]{2}-[0-9]{2}\\Z",
            "description": "ISO 8601 date (YYYY-MM-DD).",
        },
        "phone": {
            "type": "string",
            "pattern": "^[0-9\\s\\-+()]+\\Z",
            "description": "Phone number, digits and separators only.",
        },
    },
    "additionalProperties": False,
}

# Same constraints, any subset of fields (edit form).
PATIENT_UPDATE_SCHEMA: dict = copy.deepcopy(PATIENT_FORM_SCHEMA)
PATIENT_UPDATE_SCHEMA["title"] = "Patient form (partial update)"
PATIENT_UPDATE_SCHEMA["required"] = []

FIELD_MESSAGES: dict[str, dict[str, str]] = {
    "family": {"required": "Family name is required", "minLength": "Family name is required"},
    "given": {"required": "Given name is required", "minLength": "Given name is required"},
    "gender": {
        "required": "Gender is required",
        "enum": 'Gender must be "male", "female", "other" or "unknown"',
    },
    "birthDate": {
        "required": "Birth date is required",
        "pattern": "Birth date must be in YYYY-MM-DD format",
    },
    "phone": {
        "required": "Phone number is required",
        "pattern": "Phone number contains invalid characters",
    },
}


FHIR_PATIENT_RESOURCE_SCHEMA: dict = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "title": "FHIR Patient (cacheable subset)",
    "description": "Structural checks on an HL7 FHIR R4 Patient before caching.",
    "type": "object",
    "required": ["resourceType", "id"],
    "properties": {
        "resourceType": {"type": "string", "const": "Patient"},
        "id": {"type": "string", "minLength": 1, "maxLength": 64},
        "meta": {
            "type": "object",
            "properties": {"lastUpdated": {"type": "string"}},
        },
        "name": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "use": {"type": "string"},
                    "text": {"type": "string"},
                    "family": {"type": "string"},
                    "given": {"type": "array", "items": {"type": "string"}},
                },
            },
        },
        "gender": {"type": "string"},
        "birthDate": {"type": "string"},
        "telecom": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "system": {"type": "string"},
                    "value": {"type": "string"},
                    "use": {"type": "string"},
                },
            },
        },
    },
}
