from __future__ import annotations

import logging

from django.db import DatabaseError, connection
from django.http import HttpRequest, JsonResponse
from django.views.decorators.http import require_GET

from core.credentials import CredentialStore
from core.crm.circuit_breaker import crm_circuit_open

logger = logging.getLogger(__name__)


@require_GET
def healthz(_request: HttpRequest) -> JsonResponse:
    return JsonResponse({"status": "ok"})


@require_GET
def readyz(_request: HttpRequest) -> JsonResponse:
    """Ready when the database answers. CRM state is reported, not required."""
    try:
        connection.ensure_connection()
        has_credential = CredentialStore().get() is not None
    except DatabaseError as exc:
        logger.exception(
            "portal.health.readyz.failed error=%s",
            exc,
            extra={"event": "portal.health.readyz.failed", "component": "health", "outcome": "error"},
        )
        return JsonResponse({"status": "not ready", "database": "unavailable"}, status=503)

    return JsonResponse(
        {
            "status": "ready",
            "database": "ok",
            "crm": {
                "credential_stored": has_credential,
                "circuit_open": crm_circuit_open(),
            },
        }
    )
