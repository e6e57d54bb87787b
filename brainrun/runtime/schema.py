# Copyright 2025 Ralph Lemke
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""JSON Schema helpers.

Tool input schemas, agent output schemas and webhook validation schemas
are plain JSON Schema documents. Validators are compiled once per
distinct schema and cached.
"""

import json
from functools import lru_cache
from typing import Any

from jsonschema import ValidationError
from jsonschema.exceptions import SchemaError
from jsonschema.validators import Draft202012Validator, validator_for

from .errors import InvalidSchemaError

JsonSchema = dict[str, Any]

VALIDATOR_CACHE_SIZE = 256


@lru_cache(maxsize=VALIDATOR_CACHE_SIZE)
def _compile(key: str) -> Any:
    schema = json.loads(key)
    validator_cls = validator_for(schema, default=Draft202012Validator)
    return validator_cls(schema)


def get_validator(schema: JsonSchema) -> Any:
    """Compile (and cache) a validator for *schema*.

    The cache is keyed by the canonical JSON text of the schema and keeps
    the most recently used validators.
    """
    return _compile(json.dumps(schema, sort_keys=True, separators=(",", ":")))


def check_schema(schema: JsonSchema) -> None:
    """Ensure *schema* is itself valid JSON Schema.

    Raises:
        InvalidSchemaError: If the schema is malformed
    """
    if not isinstance(schema, dict):
        raise InvalidSchemaError(f"expected an object, got {type(schema).__name__}")
    validator_cls = validator_for(schema, default=Draft202012Validator)
    try:
        validator_cls.check_schema(schema)
    except SchemaError as e:
        raise InvalidSchemaError(e.message) from e


def format_validation_error(error: ValidationError, *, prefix: str = "$") -> str:
    """Render a validation error as ``$.path[0]: message``."""
    path = prefix
    for token in error.absolute_path:
        if isinstance(token, int):
            path += f"[{token}]"
        else:
            path += f".{token}"
    return f"{path}: {error.message}"


def validation_errors(schema: JsonSchema, instance: Any) -> list[str]:
    """Collect every validation failure of *instance* against *schema*.

    Returns:
        Formatted messages, empty when the instance is valid
    """
    validator = get_validator(schema)
    errors = sorted(
        validator.iter_errors(instance), key=lambda e: [str(t) for t in e.absolute_path]
    )
    return [format_validation_error(e) for e in errors]
