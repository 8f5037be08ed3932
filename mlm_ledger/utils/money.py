# mlm_ledger/utils/money.py
from decimal import Decimal, InvalidOperation, ROUND_DOWN

from mlm_ledger.config.plan import MONEY_QUANT
from mlm_ledger.errors import ValidationError


def toDecimal(value) -> Decimal:
    """Coerce an amount to Decimal; floats go through str() to avoid binary noise."""
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, bool) or value is None:
        raise ValidationError(f"Amount must be a number, got {value!r}")
    else:
        try:
            result = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            raise ValidationError(f"Amount must be a number, got {value!r}")

    if not result.is_finite():
        raise ValidationError(f"Amount must be finite, got {value!r}")
    return result


def quantize(value) -> Decimal:
    """Round down to ledger precision so payouts never exceed the computed amount."""
    return toDecimal(value).quantize(MONEY_QUANT, rounding=ROUND_DOWN)


def percentOf(amount, percent) -> Decimal:
    return quantize(toDecimal(amount) * toDecimal(percent) / Decimal("100"))
