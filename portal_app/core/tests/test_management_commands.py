from io import StringIO
from unittest.mock import patch

from django.core.management import call_command
from django.core.management.base import CommandError
from django.test import TestCase, override_settings

from core import ledger
from core.crm.client import TokenGrant
from core.exceptions import RefreshFailed
from core.models import ExternalCredential, Organization


class ProgramTicketAuditCommandTests(TestCase):
    def setUp(self) -> None:
        self.org = Organization.objects.create(name="Acme")
        ledger.purchase(organization_id=self.org.pk, program="LEAD", quantity=5)
        ledger.consume(organization_id=self.org.pk, program="LEAD", quantity=2)
        self.clean = Organization.objects.create(name="Clean")
        ledger.purchase(organization_id=self.clean.pk, program="LEAD", quantity=1)

    def _drift(self, balances: dict[str, int]) -> None:
        Organization.objects.filter(pk=self.org.pk).update(program_ticket_balances=balances)

    def test_report_is_default_and_read_only(self) -> None:
        self._drift({"LEAD": 10, "GHOST": 1})
        out = StringIO()

        call_command("program_ticket_audit", stdout=out)

        output = out.getvalue()
        self.assertIn(f"organization={self.org.pk}", output)
        self.assertIn("program=LEAD stored=10 expected=3", output)
        self.assertIn("program=GHOST stored=1 expected=0", output)
        self.assertIn("drifted=1 fixed=0", output)
        self.org.refresh_from_db()
        self.assertEqual(self.org.program_ticket_balances, {"LEAD": 10, "GHOST": 1})

    def test_fix_rewrites_balances_from_log(self) -> None:
        self._drift({"LEAD": 10})
        out = StringIO()

        call_command("program_ticket_audit", "--fix", stdout=out)

        self.assertIn("fixed=1", out.getvalue())
        self.org.refresh_from_db()
        self.assertEqual(self.org.program_ticket_balances, {"LEAD": 3})

    def test_no_drift(self) -> None:
        out = StringIO()
        call_command("program_ticket_audit", stdout=out)
        self.assertIn("organizations=2 drifted=0 fixed=0", out.getvalue())

    def test_single_organization_and_argument_errors(self) -> None:
        self._drift({"LEAD": 10})
        out = StringIO()
        call_command("program_ticket_audit", "--organization-id", str(self.clean.pk), stdout=out)
        self.assertIn("organizations=1 drifted=0", out.getvalue())

        with self.assertRaises(CommandError):
            call_command("program_ticket_audit", "--report", "--fix")
        with self.assertRaises(CommandError):
            call_command("program_ticket_audit", "--organization-id", "999999")


@override_settings(CRM_CLIENT_ID="client-id", CRM_CLIENT_SECRET="secret", CRM_REDIRECT_URI="https://portal.test/cb")
class CRMAuthorizeCommandTests(TestCase):
    def test_print_url(self) -> None:
        out = StringIO()
        call_command("crm_authorize", "--print-url", stdout=out)

        url = out.getvalue().strip()
        self.assertIn("/oauth/v2/auth?", url)
        self.assertIn("client_id=client-id", url)
        self.assertIn("access_type=offline", url)
        self.assertIn("redirect_uri=https%3A%2F%2Fportal.test%2Fcb", url)

    def test_code_exchange_stores_credential(self) -> None:
        grant = TokenGrant(access_token="tok", expires_in=3600, refresh_token="refresh")
        out = StringIO()

        with patch(
            "core.management.commands.crm_authorize.exchange_authorization_code",
            return_value=grant,
        ) as exchange_mock:
            call_command("crm_authorize", "--code", "abc", stdout=out)

        exchange_mock.assert_called_once_with("abc", redirect_uri="https://portal.test/cb")
        credential = ExternalCredential.objects.get(integration="crm")
        self.assertEqual(credential.access_token, "tok")
        self.assertEqual(credential.refresh_token, "refresh")
        self.assertIn("Stored credential for crm", out.getvalue())

    def test_grant_without_refresh_token_is_rejected(self) -> None:
        with (
            patch(
                "core.management.commands.crm_authorize.exchange_authorization_code",
                return_value=TokenGrant(access_token="tok", expires_in=3600),
            ),
            self.assertRaises(CommandError),
        ):
            call_command("crm_authorize", "--code", "abc")
        self.assertFalse(ExternalCredential.objects.exists())

    def test_rejected_code_is_command_error(self) -> None:
        with (
            patch(
                "core.management.commands.crm_authorize.exchange_authorization_code",
                side_effect=RefreshFailed("Failed to refresh token: invalid_code"),
            ),
            self.assertRaisesMessage(CommandError, "invalid_code"),
        ):
            call_command("crm_authorize", "--code", "abc")

    def test_mode_is_required(self) -> None:
        with self.assertRaises(CommandError):
            call_command("crm_authorize")
        with self.assertRaises(CommandError):
            call_command("crm_authorize", "--print-url", "--code", "abc")

    @override_settings(CRM_REDIRECT_URI="")
    def test_redirect_uri_is_required(self) -> None:
        with self.assertRaises(CommandError):
            call_command("crm_authorize", "--print-url")
