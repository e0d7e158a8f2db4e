"""
tierstack/models/validator.py

Typed reads of untyped data: module output records and the records of a local
provider state file are plain JSON-shaped values until checked here.
"""

from typing import Any, Type, TypeVar
from pydantic import ValidationError, TypeAdapter

T = TypeVar("T")


def validate_type(obj: Any, expected_type: Type[T], source: str = "value") -> T:
    """
    Coerce `obj` to `expected_type`.

    Args:
        source: What `obj` is, for the error message (e.g. "output networking.vpc_id").

    Raises:
        ValueError: If `obj` does not fit `expected_type`.
    """
    try:
        return TypeAdapter(expected_type).validate_python(obj)
    except ValidationError as e:
        raise ValueError(f"Invalid {source}, expected {expected_type}: {e}") from e
