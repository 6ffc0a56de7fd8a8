# capacity_engine/core/validation.py
from typing import Any, Iterable, List

from capacity_engine.core.errors import CapacityValidationError


def validate_id(value: Any, name: str) -> None:
    # bool is an int subclass; True is not a node id
    if isinstance(value, bool) or not isinstance(value, int):
        raise CapacityValidationError(f"{name} must be an integer, got {value!r}")

    if value < 1:
        raise CapacityValidationError(f"{name} must be positive, got {value}")


def validate_ids(values: Iterable[Any], name: str) -> List[int]:
    if values is None or isinstance(values, (str, bytes)):
        raise CapacityValidationError(f"{name} must be a list of integers")

    ids = list(values)
    for value in ids:
        validate_id(value, name)
    return ids
