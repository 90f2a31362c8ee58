"""
Fee Calculator — USD → INR conversion with TDS, platform fee and GST.

Pure arithmetic over `Decimal`. Nothing is rounded here; callers quantize
at the storage or presentation boundary.
"""
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from offramp.errors import ValidationError

TDS_RATE = Decimal("0.01")            # 1% withheld on gross
PLATFORM_FEE_RATE = Decimal("0.007")  # 0.7% commission on gross
GST_RATE = Decimal("0.18")            # 18% GST on the platform fee

STORAGE_PLACES = Decimal("0.00000001")


def to_decimal(value, field: str = "amount") -> Decimal:
    """Coerce user or provider input to a finite Decimal."""
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            # str() first so floats keep their shortest repr (83.65, not 83.6499999...)
            result = Decimal(str(value))
        except (InvalidOperation, ValueError, TypeError):
            raise ValidationError(f"{field} must be a number", details={"field": field})
    if not result.is_finite():
        raise ValidationError(f"{field} must be a finite number", details={"field": field})
    return result


@dataclass(frozen=True)
class FeeBreakdown:
    amount_usd: Decimal
    fx_rate: Decimal
    gross_inr: Decimal
    tds: Decimal
    platform_fee: Decimal
    gst: Decimal
    net_inr: Decimal

    @property
    def markup_pct(self) -> Decimal:
        """Total deductions as a percentage of gross."""
        return (TDS_RATE + PLATFORM_FEE_RATE + PLATFORM_FEE_RATE * GST_RATE) * 100

    def quantized(self) -> "FeeBreakdown":
        """Storage form: each component at 8 places, net re-derived so the
        deduction identity still holds exactly on the stored values."""
        gross = self.gross_inr.quantize(STORAGE_PLACES, rounding=ROUND_HALF_UP)
        tds = self.tds.quantize(STORAGE_PLACES, rounding=ROUND_HALF_UP)
        fee = self.platform_fee.quantize(STORAGE_PLACES, rounding=ROUND_HALF_UP)
        gst = self.gst.quantize(STORAGE_PLACES, rounding=ROUND_HALF_UP)
        return FeeBreakdown(
            amount_usd=self.amount_usd,
            fx_rate=self.fx_rate,
            gross_inr=gross,
            tds=tds,
            platform_fee=fee,
            gst=gst,
            net_inr=gross - tds - fee - gst,
        )


def calculate_fees(amount_usd, fx_rate) -> FeeBreakdown:
    """Compute the full breakdown for `amount_usd` converted at `fx_rate`.

    Raises:
        ValidationError: amount or rate is missing, non-numeric, non-finite
            or not strictly positive.
    """
    amount = to_decimal(amount_usd, "amountUsd")
    rate = to_decimal(fx_rate, "fxRate")
    if amount <= 0:
        raise ValidationError("amountUsd must be greater than zero", details={"field": "amountUsd"})
    if rate <= 0:
        raise ValidationError("fxRate must be greater than zero", details={"field": "fxRate"})

    gross = amount * rate
    tds = gross * TDS_RATE
    platform_fee = gross * PLATFORM_FEE_RATE
    gst = platform_fee * GST_RATE
    net = gross - tds - platform_fee - gst

    return FeeBreakdown(
        amount_usd=amount,
        fx_rate=rate,
        gross_inr=gross,
        tds=tds,
        platform_fee=platform_fee,
        gst=gst,
        net_inr=net,
    )


def format_money(value: Decimal | None) -> str | None:
    """Presentation form: trailing zeros dropped, but never fewer than 2 places."""
    if value is None:
        return None
    value = Decimal(value)
    normalized = value.normalize()
    exponent = normalized.as_tuple().exponent
    if isinstance(exponent, int) and exponent > -2:
        return str(value.quantize(Decimal("0.01")))
    return format(normalized, "f")
