"""Program ticket ledger.

``Organization.program_ticket_balances`` is the authoritative balance per
program tag; ``ProgramTicketTransaction`` is its append-only log. Every
mutation locks the organization row, updates the balance and appends to the
log inside one database transaction, so the two never disagree and
concurrent mutations on the same organization serialize.

Invariant kept by this module, per (organization, program):

    balance == sum(purchase) - sum(usage that is not cancelled) >= 0
"""

import datetime
import logging
from collections import defaultdict
from dataclasses import dataclass

from django.db import transaction
from django.utils import timezone

from core.exceptions import (
    AlreadyCancelled,
    InsufficientBalance,
    NotAUsageTransaction,
    NotCancelled,
    OrganizationNotFound,
    TransactionNotFound,
    ValidationError,
)
from core.models import Organization, ProgramTicketTransaction

logger = logging.getLogger(__name__)

TransactionType = ProgramTicketTransaction.TransactionType


@dataclass(frozen=True, slots=True)
class LedgerResult:
    organization_id: int
    program: str
    quantity: int
    balance: int
    # The row this call appended (purchase/usage/refund); None for reinstate.
    transaction: ProgramTicketTransaction | None = None
    # The usage row that a cancel/reinstate acted on.
    target_transaction_id: int | None = None


def normalize_program(program: object) -> str:
    normalized = str(program or "").strip()
    if not normalized:
        raise ValidationError("Program tag is required.")
    return normalized


def normalize_quantity(quantity: object) -> int:
    if isinstance(quantity, bool):
        raise ValidationError("Quantity must be a positive integer.")
    try:
        value = int(str(quantity).strip())
    except (TypeError, ValueError):
        raise ValidationError("Quantity must be a positive integer.") from None
    if value <= 0:
        raise ValidationError("Quantity must be a positive integer.")
    return value


def _lock_organization(organization_id: object) -> Organization:
    try:
        pk = int(str(organization_id).strip())
    except (TypeError, ValueError):
        raise OrganizationNotFound() from None

    organization = Organization.objects.select_for_update().filter(pk=pk).first()
    if organization is None:
        raise OrganizationNotFound()
    return organization


def _lock_transaction(transaction_id: object) -> ProgramTicketTransaction:
    try:
        pk = int(str(transaction_id).strip())
    except (TypeError, ValueError):
        raise TransactionNotFound() from None

    row = ProgramTicketTransaction.objects.select_for_update().filter(pk=pk).first()
    if row is None:
        raise TransactionNotFound()
    return row


def _write_balance(organization: Organization, program: str, balance: int) -> None:
    if balance < 0:
        # Guarded by every caller; reaching this is a bug, not a business error.
        raise RuntimeError(f"Refusing to write negative balance {balance} for {program}")
    balances = dict(organization.program_ticket_balances or {})
    balances[program] = balance
    organization.program_ticket_balances = balances
    organization.save(update_fields=["program_ticket_balances", "updated_at"])


def _log_mutation(action: str, *, organization_id: int, program: str, quantity: int, balance: int, **fields: object) -> None:
    logger.info(
        "portal.ledger.%s organization_id=%s program=%s quantity=%d balance=%d",
        action,
        organization_id,
        program,
        quantity,
        balance,
        extra={
            "event": f"portal.ledger.{action}",
            "component": "ledger",
            "organization_id": organization_id,
            "program": program,
            "quantity": quantity,
            "balance": balance,
            **fields,
        },
    )


def purchase(
    *,
    organization_id: object,
    program: object,
    quantity: object,
    payment_reference: str = "",
    notes: str = "",
) -> LedgerResult:
    program_name = normalize_program(program)
    qty = normalize_quantity(quantity)

    with transaction.atomic():
        organization = _lock_organization(organization_id)
        new_balance = organization.ticket_balance(program_name) + qty
        _write_balance(organization, program_name, new_balance)
        row = ProgramTicketTransaction.objects.create(
            organization=organization,
            program_name=program_name,
            transaction_type=TransactionType.purchase,
            quantity=qty,
            payment_reference=str(payment_reference or "").strip(),
            notes=str(notes or "").strip(),
        )

    _log_mutation(
        "purchase",
        organization_id=organization.pk,
        program=program_name,
        quantity=qty,
        balance=new_balance,
        transaction_id=row.pk,
    )
    return LedgerResult(
        organization_id=organization.pk,
        program=program_name,
        quantity=qty,
        balance=new_balance,
        transaction=row,
    )


def consume(
    *,
    organization_id: object,
    program: object,
    quantity: object,
    booking_reference: str = "",
    notes: str = "",
) -> LedgerResult:
    program_name = normalize_program(program)
    qty = normalize_quantity(quantity)

    with transaction.atomic():
        organization = _lock_organization(organization_id)
        available = organization.ticket_balance(program_name)
        if available < qty:
            raise InsufficientBalance(program=program_name, requested=qty, available=available)

        new_balance = available - qty
        _write_balance(organization, program_name, new_balance)
        row = ProgramTicketTransaction.objects.create(
            organization=organization,
            program_name=program_name,
            transaction_type=TransactionType.usage,
            quantity=qty,
            booking_reference=str(booking_reference or "").strip(),
            notes=str(notes or "").strip(),
        )

    _log_mutation(
        "usage",
        organization_id=organization.pk,
        program=program_name,
        quantity=qty,
        balance=new_balance,
        transaction_id=row.pk,
        booking_reference=row.booking_reference,
    )
    return LedgerResult(
        organization_id=organization.pk,
        program=program_name,
        quantity=qty,
        balance=new_balance,
        transaction=row,
    )


def cancel(
    *,
    transaction_id: object,
    reason: str = "",
    actor_email: str = "",
    now: datetime.datetime | None = None,
) -> LedgerResult:
    stamp = now or timezone.now()
    actor = str(actor_email or "").strip().lower()
    cancellation_reason = str(reason or "").strip()

    with transaction.atomic():
        usage = _lock_transaction(transaction_id)
        if usage.transaction_type != TransactionType.usage:
            raise NotAUsageTransaction()
        if usage.cancelled_at is not None:
            raise AlreadyCancelled()

        organization = _lock_organization(usage.organization_id)
        new_balance = organization.ticket_balance(usage.program_name) + usage.quantity

        usage.cancelled_at = stamp
        usage.cancellation_reason = cancellation_reason
        usage.cancelled_by = actor
        usage.save(update_fields=["cancelled_at", "cancellation_reason", "cancelled_by"])

        _write_balance(organization, usage.program_name, new_balance)
        refund = ProgramTicketTransaction.objects.create(
            organization=organization,
            program_name=usage.program_name,
            transaction_type=TransactionType.refund,
            quantity=usage.quantity,
            booking_reference=usage.booking_reference,
            refunded_transaction=usage,
            notes=f"Refund for cancelled transaction {usage.pk}"
            + (f" by {actor}" if actor else "")
            + (f": {cancellation_reason}" if cancellation_reason else ""),
        )

    _log_mutation(
        "refund",
        organization_id=organization.pk,
        program=usage.program_name,
        quantity=usage.quantity,
        balance=new_balance,
        transaction_id=refund.pk,
        cancelled_transaction_id=usage.pk,
        actor=actor,
    )
    return LedgerResult(
        organization_id=organization.pk,
        program=usage.program_name,
        quantity=usage.quantity,
        balance=new_balance,
        transaction=refund,
        target_transaction_id=usage.pk,
    )


def reinstate(
    *,
    transaction_id: object,
    actor_email: str = "",
    now: datetime.datetime | None = None,
) -> LedgerResult:
    stamp = now or timezone.now()
    actor = str(actor_email or "").strip().lower()

    with transaction.atomic():
        usage = _lock_transaction(transaction_id)
        if usage.cancelled_at is None:
            raise NotCancelled()

        organization = _lock_organization(usage.organization_id)
        available = organization.ticket_balance(usage.program_name)
        if available < usage.quantity:
            raise InsufficientBalance(program=usage.program_name, requested=usage.quantity, available=available)

        new_balance = available - usage.quantity
        previous_reason = usage.cancellation_reason or ""
        usage.append_note(
            f"Reinstated at {stamp.isoformat()}"
            + (f" by {actor}" if actor else "")
            + (f" (cancellation reason was: {previous_reason})" if previous_reason else "")
        )
        usage.cancelled_at = None
        usage.cancellation_reason = None
        usage.cancelled_by = ""
        usage.save(update_fields=["cancelled_at", "cancellation_reason", "cancelled_by", "notes"])

        _write_balance(organization, usage.program_name, new_balance)

    _log_mutation(
        "reinstate",
        organization_id=organization.pk,
        program=usage.program_name,
        quantity=usage.quantity,
        balance=new_balance,
        reinstated_transaction_id=usage.pk,
        actor=actor,
    )
    return LedgerResult(
        organization_id=organization.pk,
        program=usage.program_name,
        quantity=usage.quantity,
        balance=new_balance,
        transaction=None,
        target_transaction_id=usage.pk,
    )


def balances_from_transaction_log(organization_id: int) -> dict[str, int]:
    """Recompute per-program balances for an organization from its log."""
    expected: dict[str, int] = defaultdict(int)
    rows = ProgramTicketTransaction.objects.filter(organization_id=organization_id).values_list(
        "program_name",
        "transaction_type",
        "quantity",
        "cancelled_at",
    )
    for program_name, transaction_type, quantity, cancelled_at in rows:
        if transaction_type == TransactionType.purchase:
            expected[program_name] += quantity
        elif transaction_type == TransactionType.usage:
            # Cancelled usage is already offset: its refund row is informational.
            expected[program_name] += 0 if cancelled_at is not None else -quantity
        else:
            expected.setdefault(program_name, 0)
    return dict(expected)


__all__ = [
    "LedgerResult",
    "normalize_program",
    "normalize_quantity",
    "purchase",
    "consume",
    "cancel",
    "reinstate",
    "balances_from_transaction_log",
]
