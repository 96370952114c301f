from decimal import Decimal
from enum import Enum
from typing import Any


def sanitize_for_mongo(value: Any) -> Any:
    """
    Recursively coerce values into something BSON can store.

    - ints outside int64 become strings (raw token amounts can exceed it)
    - Decimal becomes its plain string form
    - enums become their value
    """
    if isinstance(value, bool):
        return value

    if isinstance(value, int):
        if -(2**63) <= value <= 2**63 - 1:
            return value
        return str(value)

    if isinstance(value, Decimal):
        return format(value, "f")

    if isinstance(value, Enum):
        return value.value

    if isinstance(value, dict):
        return {k: sanitize_for_mongo(v) for k, v in value.items()}

    if isinstance(value, (list, tuple)):
        return [sanitize_for_mongo(v) for v in value]

    return value
