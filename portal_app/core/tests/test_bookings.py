import re
from unittest.mock import patch

from django.db import IntegrityError
from django.test import SimpleTestCase, TestCase

from core.bookings import RegistrationMode, create_booking, generate_booking_reference
from core.exceptions import (
    EventNotFound,
    InsufficientBalance,
    MemberNotFound,
    NoOrganization,
    NoProgramAssociation,
    OrganizationNotFound,
    ValidationError,
)
from core.models import Booking, Event, Member, Organization, ProgramTicketTransaction


class BookingReferenceTests(SimpleTestCase):
    def test_reference_shape(self) -> None:
        reference = generate_booking_reference(now_ms=36 * 36)
        self.assertRegex(reference, r"^BK100[0-9A-Z]{6}$")

        # 2023-11-14T22:13:20Z in milliseconds.
        self.assertTrue(generate_booking_reference(now_ms=1_700_000_000_000).startswith("BKLOYW3V28"))

    def test_references_differ(self) -> None:
        references = {generate_booking_reference(now_ms=0) for _ in range(20)}
        self.assertGreater(len(references), 1)
        for reference in references:
            self.assertTrue(reference.startswith("BK0"))


class CreateBookingTests(TestCase):
    def setUp(self) -> None:
        self.org = Organization.objects.create(name="Acme", program_ticket_balances={"LEAD": 5})
        self.member = Member.objects.create(email="a@acme.org", organization=self.org)
        self.event = Event.objects.create(title="Leadership Day", program_tag="LEAD")

    def _book(self, **overrides):
        params = {
            "event_id": self.event.pk,
            "member_email": "a@acme.org",
            "attendees": [{"email": "b@acme.org", "first_name": "Bea", "last_name": "Li"}],
            "registration_mode": RegistrationMode.self,
            "tickets_required": 1,
            "program_tag": "LEAD",
        }
        params.update(overrides)
        return create_booking(**params)

    def test_self_booking_end_to_end(self) -> None:
        with self.assertLogs("core.bookings", level="INFO") as captured:
            group = self._book()

        self.assertEqual(group.tickets_used, 1)
        self.assertEqual(group.remaining_balance, 4)
        self.assertEqual(len(group.bookings), 1)

        booking = Booking.objects.get()
        self.assertEqual(booking.status, Booking.Status.pending_backstage_sync)
        self.assertEqual(booking.attendee_email, "b@acme.org")
        self.assertIsNone(booking.confirmation_token)
        self.assertEqual(booking.booking_reference, group.booking_reference)

        usage = ProgramTicketTransaction.objects.get(transaction_type="usage")
        self.assertEqual(usage.quantity, 1)
        self.assertEqual(usage.program_name, "LEAD")
        self.assertEqual(usage.booking_reference, group.booking_reference)
        self.assertTrue(any("portal.bookings.notification" in line for line in captured.output))

    def test_colleagues_share_one_reference(self) -> None:
        group = self._book(
            registration_mode="colleagues",
            attendees=[{"email": "b@acme.org"}, {"email": "C@acme.org", "firstName": "Cy"}],
            tickets_required=2,
        )

        references = set(Booking.objects.values_list("booking_reference", flat=True))
        self.assertEqual(references, {group.booking_reference})
        self.assertEqual(group.remaining_balance, 3)
        self.assertEqual(group.as_dict()["bookings"][1]["attendee_email"], "c@acme.org")

    def test_links_mode_creates_tokenised_pending_rows(self) -> None:
        group = self._book(registration_mode="links", attendees=[], number_of_links=3, tickets_required=3)

        rows = list(Booking.objects.all())
        self.assertEqual(len(rows), 3)
        self.assertTrue(all(row.status == Booking.Status.pending for row in rows))
        self.assertTrue(all(row.attendee_email == "" for row in rows))
        tokens = {row.confirmation_token for row in rows}
        self.assertEqual(len(tokens), 3)
        self.assertTrue(all(token and re.fullmatch(r"[A-Za-z0-9_-]+", token) for token in tokens))
        self.assertEqual(group.remaining_balance, 2)

    def test_tickets_required_must_match_rows(self) -> None:
        with self.assertRaises(ValidationError):
            self._book(tickets_required=2)
        with self.assertRaises(ValidationError):
            self._book(registration_mode="links", attendees=[], number_of_links=2, tickets_required=3)
        with self.assertRaises(ValidationError):
            self._book(attendees=[], tickets_required=0)

        self.assertFalse(Booking.objects.exists())
        self.org.refresh_from_db()
        self.assertEqual(self.org.program_ticket_balances, {"LEAD": 5})

    def test_insufficient_balance_creates_nothing(self) -> None:
        attendees = [{"email": f"p{i}@acme.org"} for i in range(6)]

        with self.assertRaises(InsufficientBalance) as ctx:
            self._book(registration_mode="colleagues", attendees=attendees, tickets_required=6)

        self.assertEqual(ctx.exception.requested, 6)
        self.assertEqual(ctx.exception.available, 5)
        self.assertFalse(Booking.objects.exists())
        self.assertFalse(ProgramTicketTransaction.objects.exists())

    def test_row_insert_failure_rolls_back_debit(self) -> None:
        with (
            patch("core.bookings.Booking.save", side_effect=IntegrityError("boom")),
            self.assertRaises(IntegrityError),
        ):
            self._book()

        self.org.refresh_from_db()
        self.assertEqual(self.org.program_ticket_balances, {"LEAD": 5})
        self.assertFalse(ProgramTicketTransaction.objects.exists())

    def test_lookup_failures(self) -> None:
        with self.assertRaises(MemberNotFound):
            self._book(member_email="ghost@acme.org")
        with self.assertRaises(EventNotFound):
            self._book(event_id=self.event.pk + 100)

    def test_program_association_is_required(self) -> None:
        one_off = Event.objects.create(title="Gala", program_tag="")
        with self.assertRaises(NoProgramAssociation):
            self._book(event_id=one_off.pk, program_tag="")
        with self.assertRaises(NoProgramAssociation):
            self._book(program_tag="COACH")
        with self.assertRaises(NoProgramAssociation):
            self._book(program_tag="")
        with self.assertRaises(NoProgramAssociation):
            self._book(program_tag=None)

        self.org.refresh_from_db()
        self.assertEqual(self.org.program_ticket_balances, {"LEAD": 5})
        self.assertFalse(ProgramTicketTransaction.objects.exists())

    def test_member_without_organization(self) -> None:
        Member.objects.create(email="solo@acme.org")
        with self.assertRaises(NoOrganization):
            self._book(member_email="solo@acme.org")

    def test_member_with_dangling_legacy_reference(self) -> None:
        Member.objects.create(email="lost@acme.org", organization_code="acct-missing")
        with self.assertRaises(OrganizationNotFound):
            self._book(member_email="lost@acme.org")

    def test_legacy_reference_resolves_and_books(self) -> None:
        self.org.external_account_id = "acct-1"
        self.org.save()
        Member.objects.create(email="legacy@acme.org", organization_code="acct-1")

        group = self._book(member_email="legacy@acme.org")

        self.assertEqual(group.remaining_balance, 4)
        self.assertEqual(Member.objects.get(email="legacy@acme.org").organization_id, self.org.pk)

    def test_unknown_registration_mode(self) -> None:
        with self.assertRaises(ValidationError):
            self._book(registration_mode="walk-in")
