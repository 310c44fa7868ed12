"""UnitConverter: Feet <-> fixed-point integer conversion for ledger storage.

Ledgers store gauge heights as signed integers scaled by a fixed factor.
The default factor is ``10**11``, shared by the contract and canister
backends.

The float is multiplied through its shortest decimal representation, so
a reading published as ``3.81`` becomes exactly ``381000000000`` instead
of ``380999999999`` as naive float multiplication would give.

.. code-block:: python

    >>> to_scaled(3.81)
    381000000000
    >>> to_feet(1200000000000)
    12.0
"""

import math
from decimal import Decimal

# Fixed-point factor used by the flood oracle contract and canister.
SCALE = 10**11


class InvalidMeasurement(ValueError):
    """Raised when a reading cannot be represented on the ledger."""

    pass


def _check_scale(scale: int) -> None:
    if isinstance(scale, bool) or not isinstance(scale, int) or scale <= 0:
        raise ValueError(f"scale must be a positive integer, got {scale!r}")


def to_scaled(value_feet: float, scale: int = SCALE) -> int:
    """Convert a reading in feet to its fixed-point integer encoding.

    The result is truncated toward zero.

    :param value_feet: Gauge height in feet.
    :param scale: Fixed-point factor (default: 10**11).
    :returns: Scaled integer value.
    :raises InvalidMeasurement: If the value is NaN, infinite, negative
        or not a number.
    """
    _check_scale(scale)
    if isinstance(value_feet, bool) or not isinstance(value_feet, (int, float)):
        raise InvalidMeasurement(f"Reading is not numeric: {value_feet!r}")
    if math.isnan(value_feet) or math.isinf(value_feet):
        raise InvalidMeasurement(f"Reading is not finite: {value_feet}")
    if value_feet < 0:
        raise InvalidMeasurement(f"Reading is negative: {value_feet}")

    return int(Decimal(repr(float(value_feet))) * scale)


def to_feet(scaled: int, scale: int = SCALE) -> float:
    """Convert a fixed-point integer back to feet.

    :param scaled: Scaled integer value.
    :param scale: Fixed-point factor (default: 10**11).
    :returns: Gauge height in feet.
    """
    _check_scale(scale)
    return scaled / scale
