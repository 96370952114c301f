from __future__ import annotations

from decimal import Decimal, localcontext

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
NATIVE_SYMBOL = "ETH"
NATIVE_DECIMALS = 18

# uint256 has 78 decimal digits
_UINT256_PREC = 80


def _norm(a: str | None) -> str:
    return (a or "").strip()


def _norm_lower(a: str | None) -> str:
    return _norm(a).lower()


def is_native_token(token: str | None) -> bool:
    return _norm_lower(token) == ZERO_ADDRESS


def decimal_str(value: Decimal) -> str:
    """
    Plain (non-scientific) string without trailing zeros: Decimal("1.500") -> "1.5".
    """
    if value == 0:
        return "0"
    with localcontext() as ctx:
        ctx.prec = _UINT256_PREC
        return format(value.normalize(), "f")


def format_units(raw: int | str, decimals: int) -> str:
    """
    Scale a raw integer token amount to display units, exactly.

    format_units(1500000000000000000, 18) -> "1.5"
    """
    with localcontext() as ctx:
        ctx.prec = _UINT256_PREC
        amount = Decimal(int(raw))
        if decimals:
            amount = amount.scaleb(-int(decimals))
        return decimal_str(amount)
