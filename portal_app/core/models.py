from __future__ import annotations

from typing import override

from django.db import models

from core.org_refs import OrgRef


def _normalize_email(value: object) -> str:
    return str(value or "").strip().lower()


class Role(models.Model):
    name = models.CharField(max_length=128, unique=True)
    is_default = models.BooleanField(
        default=False,
        help_text="Role assigned to members created by CRM reconciliation.",
    )

    class Meta:
        ordering = ("name", "id")

    def __str__(self) -> str:
        return self.name


class TeamMember(models.Model):
    """Administrative staff. Checked before regular members when resolving an email."""

    email = models.EmailField(unique=True)
    first_name = models.CharField(max_length=255, blank=True, default="")
    last_name = models.CharField(max_length=255, blank=True, default="")
    role = models.ForeignKey(Role, on_delete=models.SET_NULL, blank=True, null=True, related_name="+")
    is_active = models.BooleanField(default=True)

    class Meta:
        ordering = ("email",)

    def __str__(self) -> str:
        return self.email

    @override
    def save(self, *args, **kwargs) -> None:
        self.email = _normalize_email(self.email)
        super().save(*args, **kwargs)


class Organization(models.Model):
    name = models.CharField(max_length=255)
    external_account_id = models.CharField(max_length=64, unique=True, blank=True, null=True)
    email_domains = models.JSONField(default=list, blank=True)
    # Ledger state: program tag -> non-negative ticket count. Only core.ledger writes it.
    program_ticket_balances = models.JSONField(default=dict, blank=True)
    training_fund_balance = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    purchase_order_enabled = models.BooleanField(default=False)
    last_synced = models.DateTimeField(blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ("name", "id")

    def __str__(self) -> str:
        return f"{self.name}"

    @override
    def save(self, *args, **kwargs) -> None:
        self.external_account_id = str(self.external_account_id or "").strip() or None
        self.email_domains = sorted(
            {str(d or "").strip().lower().lstrip("@") for d in (self.email_domains or []) if str(d or "").strip()}
        )
        super().save(*args, **kwargs)

    def ticket_balance(self, program: str) -> int:
        balances = self.program_ticket_balances or {}
        return int(balances.get(program, 0) or 0)

    def has_email_domain(self, domain: str) -> bool:
        normalized = str(domain or "").strip().lower()
        if not normalized:
            return False
        return normalized in {str(d).lower() for d in (self.email_domains or [])}


class Member(models.Model):
    email = models.EmailField(unique=True)
    first_name = models.CharField(max_length=255, blank=True, default="")
    last_name = models.CharField(max_length=255, blank=True, default="")
    organization = models.ForeignKey(
        Organization,
        on_delete=models.SET_NULL,
        blank=True,
        null=True,
        related_name="members",
    )
    # Legacy identifier from before the FK existed: either a local id or a CRM
    # account id. Resolved once and copied onto the FK (see core.org_refs).
    organization_code = models.CharField(max_length=64, blank=True, default="")
    external_contact_id = models.CharField(max_length=64, unique=True, blank=True, null=True)
    role = models.ForeignKey(Role, on_delete=models.SET_NULL, blank=True, null=True, related_name="+")
    member_excluded_features = models.JSONField(default=list, blank=True)
    has_seen_onboarding_tour = models.BooleanField(default=False)
    last_synced = models.DateTimeField(blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ("email",)
        indexes = [
            models.Index(fields=["organization_code"], name="member_org_code"),
        ]

    def __str__(self) -> str:
        return self.email

    @override
    def save(self, *args, **kwargs) -> None:
        self.email = _normalize_email(self.email)
        self.organization_code = str(self.organization_code or "").strip()
        self.external_contact_id = str(self.external_contact_id or "").strip() or None
        super().save(*args, **kwargs)

    @property
    def org_ref(self) -> OrgRef:
        return OrgRef.from_member_fields(
            organization_id=self.organization_id,
            organization_code=self.organization_code,
        )


class ProgramTicketTransaction(models.Model):
    class TransactionType(models.TextChoices):
        purchase = "purchase", "Purchase"
        usage = "usage", "Usage"
        refund = "refund", "Refund"

    organization = models.ForeignKey(
        Organization,
        on_delete=models.PROTECT,
        related_name="program_ticket_transactions",
    )
    program_name = models.CharField(max_length=128, db_index=True)
    transaction_type = models.CharField(max_length=16, choices=TransactionType.choices)
    quantity = models.PositiveIntegerField()
    booking_reference = models.CharField(max_length=64, blank=True, default="", db_index=True)
    payment_reference = models.CharField(max_length=255, blank=True, default="")
    refunded_transaction = models.ForeignKey(
        "self",
        on_delete=models.PROTECT,
        blank=True,
        null=True,
        related_name="refunds",
    )
    cancelled_at = models.DateTimeField(blank=True, null=True)
    cancellation_reason = models.TextField(blank=True, null=True)
    cancelled_by = models.CharField(max_length=255, blank=True, default="")
    notes = models.TextField(blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ("created_at", "id")
        constraints = [
            models.CheckConstraint(
                condition=models.Q(quantity__gt=0),
                name="ptt_quantity_positive",
            ),
            models.CheckConstraint(
                condition=models.Q(cancelled_at__isnull=True) | models.Q(transaction_type="usage"),
                name="ptt_only_usage_cancellable",
            ),
        ]
        indexes = [
            models.Index(fields=["organization", "program_name"], name="ptt_org_program"),
        ]

    def __str__(self) -> str:
        return f"{self.transaction_type} {self.quantity} {self.program_name} (org {self.organization_id})"

    @property
    def is_cancelled(self) -> bool:
        return self.cancelled_at is not None

    def append_note(self, line: str) -> None:
        text = str(line or "").strip()
        if not text:
            return
        self.notes = f"{self.notes}\n{text}" if self.notes else text


class Event(models.Model):
    title = models.CharField(max_length=255)
    # Blank for one-off events that are not paid for with program tickets.
    program_tag = models.CharField(max_length=128, blank=True, default="")
    starts_at = models.DateTimeField(blank=True, null=True)
    ticket_price = models.DecimalField(max_digits=10, decimal_places=2, default=0)

    class Meta:
        ordering = ("starts_at", "id")

    def __str__(self) -> str:
        return self.title


class Booking(models.Model):
    class Status(models.TextChoices):
        pending = "pending", "Pending"
        pending_backstage_sync = "pending_backstage_sync", "Pending backstage sync"
        confirmed = "confirmed", "Confirmed"
        cancelled = "cancelled", "Cancelled"

    event = models.ForeignKey(Event, on_delete=models.PROTECT, related_name="bookings")
    member = models.ForeignKey(Member, on_delete=models.PROTECT, related_name="bookings")
    attendee_email = models.EmailField(blank=True, default="")
    attendee_first_name = models.CharField(max_length=255, blank=True, default="")
    attendee_last_name = models.CharField(max_length=255, blank=True, default="")
    booking_reference = models.CharField(max_length=64, db_index=True)
    confirmation_token = models.CharField(max_length=128, unique=True, blank=True, null=True)
    status = models.CharField(max_length=32, choices=Status.choices, default=Status.pending, db_index=True)
    payment_method = models.CharField(max_length=32, default="program_ticket")
    ticket_price = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ("created_at", "id")

    def __str__(self) -> str:
        return f"{self.booking_reference} ({self.attendee_email or 'link'})"


class ExternalCredential(models.Model):
    """Stored OAuth credential for one external integration."""

    integration = models.CharField(max_length=64, unique=True)
    access_token = models.TextField(blank=True, default="")
    refresh_token = models.TextField()
    token_type = models.CharField(max_length=32, blank=True, default="Bearer")
    expires_at = models.DateTimeField()
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self) -> str:
        return f"{self.integration} (expires {self.expires_at.isoformat()})"


class DiscountCode(models.Model):
    class DiscountType(models.TextChoices):
        percentage = "percentage", "Percentage"
        fixed = "fixed", "Fixed amount"

    code = models.CharField(max_length=64, unique=True)
    discount_type = models.CharField(max_length=16, choices=DiscountType.choices)
    discount_value = models.DecimalField(max_digits=10, decimal_places=2)
    expiry_date = models.DateTimeField(blank=True, null=True)
    max_uses = models.PositiveIntegerField(blank=True, null=True)
    times_used = models.PositiveIntegerField(default=0)
    is_active = models.BooleanField(default=True)

    class Meta:
        ordering = ("code",)

    def __str__(self) -> str:
        return self.code

    @override
    def save(self, *args, **kwargs) -> None:
        # Codes are matched case-insensitively; store one canonical spelling.
        self.code = str(self.code or "").strip().upper()
        super().save(*args, **kwargs)
