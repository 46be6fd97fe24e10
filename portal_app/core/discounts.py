import datetime
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from django.utils import timezone

from core.exceptions import CodeExpired, CodeNotFound, UsageLimitReached, ValidationError
from core.models import DiscountCode

_CENT = Decimal("0.01")


@dataclass(frozen=True, slots=True)
class DiscountResult:
    code: str
    discount_type: str
    discount_amount: Decimal
    final_amount: Decimal

    def as_dict(self) -> dict[str, object]:
        return {
            "code": self.code,
            "discountType": self.discount_type,
            "discountAmount": str(self.discount_amount),
            "finalAmount": str(self.final_amount),
        }


def _parse_amount(amount: object) -> Decimal:
    if isinstance(amount, bool):
        raise ValidationError("Amount must be a non-negative number.")
    try:
        value = Decimal(str(amount).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError("Amount must be a non-negative number.") from None
    if not value.is_finite() or value < 0:
        raise ValidationError("Amount must be a non-negative number.")
    return value


def _cents(value: Decimal) -> Decimal:
    return value.quantize(_CENT, rounding=ROUND_HALF_UP)


def apply_discount(*, code: object, amount: object, now: datetime.datetime | None = None) -> DiscountResult:
    """Price ``amount`` with a discount code. Read-only: usage is not counted here."""
    normalized_code = str(code or "").strip()
    if not normalized_code:
        raise ValidationError("Discount code is required.")
    base = _parse_amount(amount)

    discount = DiscountCode.objects.filter(code__iexact=normalized_code, is_active=True).first()
    if discount is None:
        raise CodeNotFound()

    if discount.expiry_date is not None and discount.expiry_date < (now or timezone.now()):
        raise CodeExpired()
    if discount.max_uses is not None and discount.times_used >= discount.max_uses:
        raise UsageLimitReached()

    value = Decimal(discount.discount_value)
    if discount.discount_type == DiscountCode.DiscountType.percentage:
        raw = base * value / Decimal(100)
    else:
        raw = value

    return DiscountResult(
        code=discount.code,
        discount_type=discount.discount_type,
        discount_amount=_cents(min(raw, base)),
        final_amount=_cents(max(Decimal(0), base - raw)),
    )


__all__ = ["DiscountResult", "apply_discount"]
