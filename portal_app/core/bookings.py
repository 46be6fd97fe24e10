"""Allocate event bookings against an organization's program tickets.

The ledger debit and the booking rows are written in one database
transaction: either the whole group exists and its tickets are consumed, or
nothing changed.
"""

from __future__ import annotations

import logging
import secrets
import string
import time
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import StrEnum

from django.db import transaction

from core import ledger
from core.exceptions import (
    EventNotFound,
    MemberNotFound,
    NoOrganization,
    NoProgramAssociation,
    OrganizationNotFound,
    ValidationError,
)
from core.identity import find_local_member
from core.models import Booking, Event
from core.org_refs import resolve_member_organization

logger = logging.getLogger(__name__)

_REFERENCE_ALPHABET = string.ascii_uppercase + string.digits
_BASE36_DIGITS = string.digits + string.ascii_uppercase


class RegistrationMode(StrEnum):
    self = "self"
    colleagues = "colleagues"
    # Anonymous seats: each row carries a token the organizer hands out.
    links = "links"


@dataclass(frozen=True, slots=True)
class Attendee:
    email: str
    first_name: str = ""
    last_name: str = ""

    @classmethod
    def from_mapping(cls, data: Mapping[str, object]) -> Attendee:
        email = str(data.get("email") or "").strip().lower()
        if not email or "@" not in email:
            raise ValidationError("Every attendee needs a valid email address.")
        return cls(
            email=email,
            first_name=str(data.get("first_name") or data.get("firstName") or "").strip(),
            last_name=str(data.get("last_name") or data.get("lastName") or "").strip(),
        )


@dataclass(frozen=True, slots=True)
class BookingGroup:
    booking_reference: str
    bookings: tuple[Booking, ...]
    tickets_used: int
    remaining_balance: int

    def as_dict(self) -> dict[str, object]:
        return {
            "booking_reference": self.booking_reference,
            "bookings": [
                {
                    "id": booking.pk,
                    "attendee_email": booking.attendee_email,
                    "attendee_first_name": booking.attendee_first_name,
                    "attendee_last_name": booking.attendee_last_name,
                    "status": booking.status,
                    "confirmation_token": booking.confirmation_token,
                }
                for booking in self.bookings
            ],
            "tickets_used": self.tickets_used,
            "remaining_balance": self.remaining_balance,
        }


def _base36(value: int) -> str:
    if value == 0:
        return "0"
    digits: list[str] = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36_DIGITS[remainder])
    return "".join(reversed(digits))


def generate_booking_reference(*, now_ms: int | None = None) -> str:
    """Return ``BK`` + base-36 millisecond timestamp + 6 random characters."""
    timestamp = now_ms if now_ms is not None else int(time.time() * 1000)
    suffix = "".join(secrets.choice(_REFERENCE_ALPHABET) for _ in range(6))
    return f"BK{_base36(timestamp)}{suffix}"


def _parse_mode(value: object) -> RegistrationMode:
    try:
        return RegistrationMode(str(value or "").strip().lower())
    except ValueError:
        raise ValidationError(
            f"Registration mode must be one of: {', '.join(m.value for m in RegistrationMode)}."
        ) from None


def _parse_count(value: object, *, name: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be a non-negative integer.")
    try:
        count = int(str(value if value is not None else 0).strip())
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be a non-negative integer.") from None
    if count < 0:
        raise ValidationError(f"{name} must be a non-negative integer.")
    return count


def _booking_rows(
    *,
    event: Event,
    member,
    mode: RegistrationMode,
    attendees: list[Attendee],
    number_of_links: int,
    reference: str,
) -> list[Booking]:
    common = {
        "event": event,
        "member": member,
        "booking_reference": reference,
        "ticket_price": event.ticket_price,
    }
    if mode == RegistrationMode.links:
        return [
            Booking(
                status=Booking.Status.pending,
                confirmation_token=secrets.token_urlsafe(32),
                **common,
            )
            for _ in range(number_of_links)
        ]
    return [
        Booking(
            attendee_email=attendee.email,
            attendee_first_name=attendee.first_name,
            attendee_last_name=attendee.last_name,
            status=Booking.Status.pending_backstage_sync,
            **common,
        )
        for attendee in attendees
    ]


def create_booking(
    *,
    event_id: object,
    member_email: object,
    attendees: Iterable[Mapping[str, object]] = (),
    registration_mode: object = RegistrationMode.self,
    number_of_links: object = 0,
    tickets_required: object,
    program_tag: object = "",
) -> BookingGroup:
    mode = _parse_mode(registration_mode)
    links = _parse_count(number_of_links, name="numberOfLinks")
    required = _parse_count(tickets_required, name="ticketsRequired")
    parsed_attendees = [] if mode == RegistrationMode.links else [Attendee.from_mapping(a) for a in attendees]

    member = find_local_member(member_email)
    if member is None:
        raise MemberNotFound()

    event = Event.objects.filter(pk=_parse_count(event_id, name="eventId")).first()
    if event is None:
        raise EventNotFound()

    tag = str(program_tag or "").strip()
    if not event.program_tag or tag != event.program_tag:
        raise NoProgramAssociation()

    if member.org_ref.is_empty:
        raise NoOrganization()
    organization = resolve_member_organization(member)
    if organization is None:
        raise OrganizationNotFound()

    row_count = links if mode == RegistrationMode.links else len(parsed_attendees)
    if row_count == 0 or required != row_count:
        raise ValidationError(
            f"ticketsRequired ({required}) must equal the number of bookings to create ({row_count})."
        )

    reference = generate_booking_reference()
    with transaction.atomic():
        debit = ledger.consume(
            organization_id=organization.pk,
            program=event.program_tag,
            quantity=required,
            booking_reference=reference,
            notes=f"Booking {reference} for event {event.pk}",
        )
        rows = _booking_rows(
            event=event,
            member=member,
            mode=mode,
            attendees=parsed_attendees,
            number_of_links=links,
            reference=reference,
        )
        for row in rows:
            row.save()

    # Hand-off point for the confirmation email.
    logger.info(
        "portal.bookings.notification booking_reference=%s event_id=%s member_email=%s mode=%s count=%d",
        reference,
        event.pk,
        member.email,
        mode,
        len(rows),
        extra={
            "event": "portal.bookings.notification",
            "component": "bookings",
            "booking_reference": reference,
            "organization_id": organization.pk,
            "tickets_used": required,
        },
    )
    return BookingGroup(
        booking_reference=reference,
        bookings=tuple(rows),
        tickets_used=required,
        remaining_balance=debit.balance,
    )


__all__ = [
    "RegistrationMode",
    "Attendee",
    "BookingGroup",
    "generate_booking_reference",
    "create_booking",
]
