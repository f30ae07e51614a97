# Purpose: Validate tool and server JSON bodies against schema/openapi.yaml.

import os

import referencing
import yaml
from jsonschema import Draft7Validator
from jsonschema.exceptions import best_match
from referencing.jsonschema import DRAFT7

# --- CONFIGURATION ---
SCHEMA_PATH = os.path.join(os.path.dirname(os.path.abspath(__file__)), "schema", "openapi.yaml")
SCHEMA_URI = "http://zatca-qr/openapi.yaml"

_registry = None


def load_registry(path=SCHEMA_PATH):
    """Loads the OpenAPI document into a referencing registry, or None if it is absent."""
    global _registry
    if _registry is not None and path == SCHEMA_PATH:
        return _registry
    if not os.path.exists(path):
        return None
    with open(path, "r", encoding="utf-8") as f:
        document = yaml.safe_load(f)

    # A base URI for the document lets internal $refs resolve through the registry
    resource = referencing.Resource.from_contents(document, default_specification=DRAFT7)
    registry = referencing.Registry().with_resource(uri=SCHEMA_URI, resource=resource)
    if path == SCHEMA_PATH:
        _registry = registry
    return registry


def validate_against_schema(data, schema_name, path=SCHEMA_PATH):
    """Validates data against components/schemas/<schema_name>. Returns (is_valid, error_msg)."""
    registry = load_registry(path)
    if registry is None:
        return True, None

    target_schema = {"$ref": f"{SCHEMA_URI}#/components/schemas/{schema_name}"}
    validator = Draft7Validator(target_schema, registry=registry)
    error = best_match(validator.iter_errors(data))
    if error is not None:
        location = ".".join(str(p) for p in error.path) or "$"
        return False, f"{location}: {error.message}"
    return True, None
