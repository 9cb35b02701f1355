"""
Reduced-precision packing for amounts and fees.

Transfer amounts and all fees travel as base-10 floats: a mantissa in the
high bits and an exponent in the low bits, big-endian. Values that do not
fit exactly cannot be serialized.
"""

AMOUNT_EXPONENT_BITS = 5
AMOUNT_MANTISSA_BITS = 35
FEE_EXPONENT_BITS = 5
FEE_MANTISSA_BITS = 11


class PackingError(ValueError):
    """Raised when a value cannot be represented in packed form."""
    pass


def _closest_float(value: int, exp_bits: int, mantissa_bits: int) -> tuple:
    """Return (mantissa, exponent) of the largest packable value <= value."""
    if value < 0:
        raise PackingError(f"Cannot pack negative value: {value}")

    max_mantissa = (1 << mantissa_bits) - 1
    max_exponent = (1 << exp_bits) - 1

    mantissa, exponent = value, 0
    while mantissa > max_mantissa:
        mantissa //= 10
        exponent += 1

    if exponent > max_exponent:
        raise PackingError(f"Value is too large to pack: {value}")

    return mantissa, exponent


def _pack(value: int, exp_bits: int, mantissa_bits: int) -> bytes:
    mantissa, exponent = _closest_float(value, exp_bits, mantissa_bits)
    if mantissa * 10 ** exponent != value:
        raise PackingError(f"Value is not packable: {value}")
    packed = (mantissa << exp_bits) | exponent
    return packed.to_bytes((exp_bits + mantissa_bits) // 8, "big")


def _unpack(data: bytes, exp_bits: int) -> int:
    packed = int.from_bytes(data, "big")
    exponent = packed & ((1 << exp_bits) - 1)
    mantissa = packed >> exp_bits
    return mantissa * 10 ** exponent


def pack_amount(amount: int) -> bytes:
    """Pack a transfer amount into 5 bytes."""
    return _pack(amount, AMOUNT_EXPONENT_BITS, AMOUNT_MANTISSA_BITS)


def pack_fee(fee: int) -> bytes:
    """Pack a fee into 2 bytes."""
    return _pack(fee, FEE_EXPONENT_BITS, FEE_MANTISSA_BITS)


def unpack_amount(data: bytes) -> int:
    return _unpack(data, AMOUNT_EXPONENT_BITS)


def unpack_fee(data: bytes) -> int:
    return _unpack(data, FEE_EXPONENT_BITS)


def is_amount_packable(amount: int) -> bool:
    try:
        pack_amount(amount)
    except PackingError:
        return False
    return True


def is_fee_packable(fee: int) -> bool:
    try:
        pack_fee(fee)
    except PackingError:
        return False
    return True


def closest_packable_amount(amount: int) -> int:
    """Largest packable transfer amount not exceeding `amount`."""
    mantissa, exponent = _closest_float(amount, AMOUNT_EXPONENT_BITS, AMOUNT_MANTISSA_BITS)
    return mantissa * 10 ** exponent


def closest_packable_fee(fee: int) -> int:
    """Largest packable fee not exceeding `fee`."""
    mantissa, exponent = _closest_float(fee, FEE_EXPONENT_BITS, FEE_MANTISSA_BITS)
    return mantissa * 10 ** exponent
