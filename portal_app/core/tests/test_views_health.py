import datetime
from unittest.mock import patch

from django.core.cache import cache
from django.db import OperationalError
from django.test import TestCase
from django.utils import timezone

from core.models import ExternalCredential


class HealthViewsTests(TestCase):
    def setUp(self) -> None:
        cache.clear()

    def tearDown(self) -> None:
        cache.clear()

    def test_healthz_returns_ok(self) -> None:
        resp = self.client.get("/healthz")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp["Content-Type"], "application/json")
        self.assertEqual(resp.json(), {"status": "ok"})

    def test_healthz_rejects_post(self) -> None:
        self.assertEqual(self.client.post("/healthz").status_code, 405)

    def test_readyz_reports_crm_state(self) -> None:
        resp = self.client.get("/readyz")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(
            resp.json(),
            {"status": "ready", "database": "ok", "crm": {"credential_stored": False, "circuit_open": False}},
        )

        ExternalCredential.objects.create(
            integration="crm",
            access_token="tok",
            refresh_token="r",
            expires_at=timezone.now() + datetime.timedelta(hours=1),
        )
        cache.set("crm_circuit_open", True)
        self.assertEqual(
            self.client.get("/readyz").json()["crm"],
            {"credential_stored": True, "circuit_open": True},
        )

    def test_readyz_returns_503_when_db_unavailable(self) -> None:
        with (
            patch("django.db.connection.ensure_connection", side_effect=OperationalError("db down")),
            self.assertLogs("core.views_health", level="ERROR"),
        ):
            resp = self.client.get("/readyz")

        self.assertEqual(resp.status_code, 503)
        self.assertEqual(resp["Content-Type"], "application/json")
        self.assertEqual(resp.json(), {"status": "not ready", "database": "unavailable"})
