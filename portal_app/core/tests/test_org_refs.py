from django.test import SimpleTestCase, TestCase

from core.models import Member, Organization
from core.org_refs import OrgRef, OrgRefKind, organization_for_identifier, resolve_member_organization


class OrgRefConstructionTests(SimpleTestCase):
    def test_member_fields_prefer_foreign_key(self) -> None:
        self.assertEqual(
            OrgRef.from_member_fields(organization_id=7, organization_code="acct-1"),
            OrgRef(kind=OrgRefKind.local, identifier="7"),
        )
        self.assertEqual(
            OrgRef.from_member_fields(organization_id=None, organization_code=" acct-1 "),
            OrgRef(kind=OrgRefKind.legacy, identifier="acct-1"),
        )

    def test_blank_identifiers_are_empty(self) -> None:
        self.assertTrue(OrgRef.from_member_fields(organization_id=None, organization_code="").is_empty)
        self.assertTrue(OrgRef.external("  ").is_empty)
        self.assertTrue(OrgRef.legacy("").is_empty)
        self.assertFalse(OrgRef.local(1).is_empty)


class OrgRefResolutionTests(TestCase):
    def setUp(self) -> None:
        self.org = Organization.objects.create(name="Acme", external_account_id="3652397000000624001")

    def test_resolve_each_kind(self) -> None:
        self.assertIsNone(OrgRef.empty().resolve())
        self.assertEqual(OrgRef.local(self.org.pk).resolve(), self.org)
        self.assertEqual(OrgRef.external("3652397000000624001").resolve(), self.org)
        self.assertIsNone(OrgRef.external("nope").resolve())

    def test_legacy_code_tries_local_id_then_external_id(self) -> None:
        self.assertEqual(OrgRef.legacy(str(self.org.pk)).resolve(), self.org)
        # Numeric CRM ids that are not a local pk fall through to the external lookup.
        self.assertEqual(OrgRef.legacy("3652397000000624001").resolve(), self.org)
        self.assertEqual(organization_for_identifier(self.org.pk), self.org)
        self.assertIsNone(organization_for_identifier("missing"))

    def test_member_legacy_reference_is_pinned_once(self) -> None:
        member = Member.objects.create(email="jane@acme.org", organization_code="3652397000000624001")

        self.assertEqual(resolve_member_organization(member), self.org)
        member.refresh_from_db()
        self.assertEqual(member.org_ref, OrgRef.local(self.org.pk))

        # Already local: no further writes.
        with self.assertNumQueries(1):
            self.assertEqual(resolve_member_organization(member), self.org)
