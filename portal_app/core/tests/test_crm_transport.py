import json
from decimal import Decimal
from unittest.mock import Mock, patch

import requests
from django.conf import settings
from django.core.cache import cache
from django.test import SimpleTestCase, override_settings

from core.crm.circuit_breaker import crm_circuit_open
from core.crm.client import crm_get, with_crm_circuit_breaker
from core.crm.contacts import CRMAccount, find_contact_by_email, get_account, get_contact, search_contacts_by_email
from core.crm.exceptions import CRMRequestFailed, CRMUnavailableError


def _response(status_code: int, body: object | None = None, *, raw: bytes | None = None) -> requests.Response:
    response = requests.Response()
    response.status_code = status_code
    if raw is not None:
        response._content = raw
    else:
        response._content = b"" if body is None else json.dumps(body).encode()
    response.url = "https://www.zohoapis.eu/crm/v3/Contacts/search"
    return response


class CRMCircuitBreakerTests(SimpleTestCase):
    def setUp(self) -> None:
        cache.clear()

    def tearDown(self) -> None:
        cache.clear()

    def test_circuit_opens_after_consecutive_availability_failures(self) -> None:
        threshold = settings.CRM_CIRCUIT_BREAKER_CONSECUTIVE_FAILURES

        def fail(_session: object) -> None:
            raise requests.exceptions.ConnectionError()

        with self.assertLogs("core.crm", level="WARNING") as logs:
            for _ in range(threshold):
                with self.assertRaises(requests.exceptions.ConnectionError):
                    with_crm_circuit_breaker(fail)

        self.assertTrue(crm_circuit_open())
        self.assertTrue(any("portal.crm.circuit_breaker.transition from_state=closed" in line for line in logs.output))

        called = Mock()
        with self.assertRaises(CRMUnavailableError):
            with_crm_circuit_breaker(called)
        called.assert_not_called()

    def test_success_resets_failure_count(self) -> None:
        threshold = settings.CRM_CIRCUIT_BREAKER_CONSECUTIVE_FAILURES

        def fail(_session: object) -> None:
            raise requests.exceptions.Timeout()

        for _ in range(threshold - 1):
            with self.assertRaises(requests.exceptions.Timeout):
                with_crm_circuit_breaker(fail)

        self.assertEqual(with_crm_circuit_breaker(lambda _session: "ok"), "ok")

        for _ in range(threshold - 1):
            with self.assertRaises(requests.exceptions.Timeout):
                with_crm_circuit_breaker(fail)
        self.assertFalse(crm_circuit_open())

    def test_non_availability_errors_do_not_count(self) -> None:
        def broken(_session: object) -> None:
            raise ValueError("bad payload")

        for _ in range(settings.CRM_CIRCUIT_BREAKER_CONSECUTIVE_FAILURES + 1):
            with self.assertRaises(ValueError):
                with_crm_circuit_breaker(broken)

        self.assertFalse(crm_circuit_open())


@override_settings(CRM_API_DOMAIN="https://www.zohoapis.eu")
class CRMContactLookupTests(SimpleTestCase):
    def setUp(self) -> None:
        cache.clear()
        self.session = Mock()
        patcher = patch("core.crm.client.get_crm_session", return_value=self.session)
        patcher.start()
        self.addCleanup(patcher.stop)

    def tearDown(self) -> None:
        cache.clear()

    def test_search_sends_token_and_filters_exact_email(self) -> None:
        self.session.get.return_value = _response(
            200,
            {
                "data": [
                    {"id": "c1", "Email": "Jane@Acme.org", "First_Name": "Jane", "Account_Name": {"id": "a1"}},
                    {"id": "c2", "Email": "jane.other@acme.org"},
                ]
            },
        )

        contacts = search_contacts_by_email("tok", " jane@acme.org ")

        self.assertEqual([c.id for c in contacts], ["c1"])
        self.assertEqual(contacts[0].account_id, "a1")
        args, kwargs = self.session.get.call_args
        self.assertEqual(args[0], "https://www.zohoapis.eu/crm/v3/Contacts/search")
        self.assertEqual(kwargs["headers"], {"Authorization": "Zoho-oauthtoken tok"})
        self.assertEqual(kwargs["params"], {"email": "jane@acme.org"})

    def test_no_content_and_non_json_bodies_mean_no_match(self) -> None:
        self.session.get.return_value = _response(204)
        self.assertIsNone(find_contact_by_email("tok", "jane@acme.org"))

        self.session.get.return_value = _response(200, raw=b"<html>maintenance</html>")
        with self.assertLogs("core.crm", level="WARNING"):
            self.assertIsNone(find_contact_by_email("tok", "jane@acme.org"))

    def test_search_http_error_raises(self) -> None:
        self.session.get.return_value = _response(500, {"code": "INTERNAL_ERROR"})

        with self.assertRaises(CRMRequestFailed) as ctx:
            search_contacts_by_email("tok", "jane@acme.org")
        self.assertEqual(ctx.exception.status_code, 500)

    def test_get_contact_missing_is_none(self) -> None:
        self.session.get.return_value = _response(404, {"code": "INVALID_DATA"})
        self.assertIsNone(get_contact("tok", "c404"))

    def test_get_account_parses_counters_and_domains(self) -> None:
        self.session.get.return_value = _response(
            200,
            {
                "data": [
                    {
                        "id": "a1",
                        "Account_Name": "Acme Ltd",
                        "Training_fund_balance": "1250.50",
                        "Purchase_Order_Enabled": True,
                        "Domain": "acme.org",
                        "Additional_verified_domains": "acme.co.uk; acme.com",
                    }
                ]
            },
        )

        account = get_account("tok", "a1")

        self.assertEqual(
            account,
            CRMAccount(
                id="a1",
                name="Acme Ltd",
                training_fund_balance=Decimal("1250.50"),
                purchase_order_enabled=True,
                email_domains=["acme.org", "acme.co.uk", "acme.com"],
            ),
        )
        self.assertEqual(self.session.get.call_args.args[0], "https://www.zohoapis.eu/crm/v3/Accounts/a1")

    def test_crm_get_strips_leading_slash(self) -> None:
        self.session.get.return_value = _response(200, {"data": []})
        crm_get("/crm/v3/Accounts/a1", access_token="tok")
        self.assertEqual(self.session.get.call_args.args[0], "https://www.zohoapis.eu/crm/v3/Accounts/a1")
