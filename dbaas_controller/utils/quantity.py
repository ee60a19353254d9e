"""
Conversion of Kubernetes resource quantities into canonical integers.

Memory and storage are expressed in bytes, CPU in millicores. All arithmetic
goes through Decimal so that "0.1" or "1.5Gi" never pick up float error.
"""
import math
import re
from decimal import Decimal, InvalidOperation
from typing import Dict

from dbaas_controller.exceptions import ValidationError

# Binary suffixes must be matched before the decimal ones sharing their first letter.
SUFFIX_MULTIPLIERS: Dict[str, Decimal] = {
    "Ki": Decimal(1024),
    "Mi": Decimal(1024) ** 2,
    "Gi": Decimal(1024) ** 3,
    "Ti": Decimal(1024) ** 4,
    "Pi": Decimal(1024) ** 5,
    "Ei": Decimal(1024) ** 6,
    "m": Decimal("0.001"),
    "": Decimal(1),
    "k": Decimal(1000),
    "K": Decimal(1000),
    "M": Decimal(1000) ** 2,
    "G": Decimal(1000) ** 3,
    "T": Decimal(1000) ** 4,
    "P": Decimal(1000) ** 5,
    "E": Decimal(1000) ** 6,
}

_QUANTITY_RE = re.compile(r"^([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)([a-zA-Z]*)$")


def _split(value: str) -> tuple[Decimal, str]:
    if value is None or not str(value).strip():
        raise ValidationError("Quantity must not be empty")

    text = str(value).strip()
    match = _QUANTITY_RE.match(text)
    if not match:
        raise ValidationError(f"Cannot parse quantity '{text}'", details={"quantity": text})

    number, suffix = match.groups()
    try:
        amount = Decimal(number)
    except InvalidOperation:
        raise ValidationError(f"Cannot parse quantity '{text}'", details={"quantity": text})

    if amount < 0:
        raise ValidationError(f"Quantity '{text}' must not be negative", details={"quantity": text})
    return amount, suffix


def str_to_bytes(value: str) -> int:
    """
    Convert a memory or storage quantity to bytes.

    Examples:
        "1Gi" -> 1073741824
        "500M" -> 500000000
        "192928615" -> 192928615
        "1500m" -> 2  (fractions of a byte round up)

    Raises:
        ValidationError: If the value is empty or carries an unknown suffix
    """
    amount, suffix = _split(value)
    multiplier = SUFFIX_MULTIPLIERS.get(suffix)
    if multiplier is None:
        raise ValidationError(
            f"Unknown quantity suffix '{suffix}' in '{value}'",
            details={"quantity": value, "suffix": suffix},
        )
    return int(math.ceil(amount * multiplier))


def str_to_milli_cpu(value: str) -> int:
    """
    Convert a CPU quantity to millicores.

    "250m" -> 250, "0.5" -> 500, "2" -> 2000.
    """
    amount, suffix = _split(value)
    if suffix == "m":
        if amount != amount.to_integral_value():
            raise ValidationError(f"Millicore quantity '{value}' must be an integer")
        return int(amount)
    if suffix == "":
        return int(math.ceil(amount * 1000))
    multiplier = SUFFIX_MULTIPLIERS.get(suffix)
    if multiplier is None:
        raise ValidationError(
            f"Unknown quantity suffix '{suffix}' in '{value}'",
            details={"quantity": value, "suffix": suffix},
        )
    return int(math.ceil(amount * multiplier * 1000))
