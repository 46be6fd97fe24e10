import datetime
from decimal import Decimal

from django.test import TestCase
from django.utils import timezone

from core.discounts import apply_discount
from core.exceptions import CodeExpired, CodeNotFound, UsageLimitReached, ValidationError
from core.models import DiscountCode


class ApplyDiscountTests(TestCase):
    def setUp(self) -> None:
        self.half_off = DiscountCode.objects.create(
            code="half50",
            discount_type=DiscountCode.DiscountType.percentage,
            discount_value=Decimal("50"),
        )
        self.twenty_off = DiscountCode.objects.create(
            code="TWENTY",
            discount_type=DiscountCode.DiscountType.fixed,
            discount_value=Decimal("20"),
        )

    def test_percentage_discount(self) -> None:
        result = apply_discount(code="HALF50", amount=10)
        self.assertEqual(result.discount_amount, Decimal("5.00"))
        self.assertEqual(result.final_amount, Decimal("5.00"))

    def test_fixed_discount_is_clamped(self) -> None:
        result = apply_discount(code="twenty", amount="10")
        self.assertEqual(result.discount_amount, Decimal("10.00"))
        self.assertEqual(result.final_amount, Decimal("0.00"))
        self.assertEqual(result.as_dict()["finalAmount"], "0.00")

    def test_rounds_half_up_to_cents(self) -> None:
        DiscountCode.objects.create(
            code="THIRD",
            discount_type=DiscountCode.DiscountType.percentage,
            discount_value=Decimal("12.5"),
        )
        result = apply_discount(code="third", amount="0.99")
        # 0.99 * 12.5% = 0.12375
        self.assertEqual(result.discount_amount, Decimal("0.12"))
        self.assertEqual(result.final_amount, Decimal("0.87"))

    def test_unknown_and_inactive_codes(self) -> None:
        with self.assertRaises(CodeNotFound):
            apply_discount(code="NOPE", amount=10)

        self.half_off.is_active = False
        self.half_off.save()
        with self.assertRaises(CodeNotFound):
            apply_discount(code="HALF50", amount=10)

    def test_expired_code(self) -> None:
        self.half_off.expiry_date = timezone.now() - datetime.timedelta(days=1)
        self.half_off.save()
        with self.assertRaises(CodeExpired):
            apply_discount(code="HALF50", amount=10)

    def test_future_expiry_is_accepted(self) -> None:
        now = timezone.now()
        self.half_off.expiry_date = now + datetime.timedelta(hours=1)
        self.half_off.save()
        self.assertEqual(apply_discount(code="HALF50", amount=4, now=now).final_amount, Decimal("2.00"))

    def test_usage_limit(self) -> None:
        self.twenty_off.max_uses = 3
        self.twenty_off.times_used = 3
        self.twenty_off.save()
        with self.assertRaises(UsageLimitReached):
            apply_discount(code="TWENTY", amount=50)

    def test_does_not_count_usage(self) -> None:
        apply_discount(code="TWENTY", amount=50)
        self.twenty_off.refresh_from_db()
        self.assertEqual(self.twenty_off.times_used, 0)

    def test_invalid_input(self) -> None:
        for amount in ("abc", -1, "NaN", True):
            with self.subTest(amount=amount), self.assertRaises(ValidationError):
                apply_discount(code="TWENTY", amount=amount)
        with self.assertRaises(ValidationError):
            apply_discount(code=" ", amount=10)
