"""Stored CRM credential and its refresh lifecycle.

Refreshing is single-flight per integration: the expiry re-check and the
refresh-and-persist step run while holding a row lock on the credential, so
concurrent callers that all saw an expired token wait for the first refresh
and then reuse its result instead of rotating the refresh token again.
"""

import datetime
import logging
from collections.abc import Callable

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from core.crm.client import TokenGrant, refresh_access_token
from core.exceptions import CredentialUnavailable
from core.models import ExternalCredential

logger = logging.getLogger(__name__)


class CredentialStore:
    """Persistence for one integration's credential row."""

    def __init__(self, integration: str | None = None) -> None:
        self.integration = str(integration or settings.CRM_INTEGRATION_NAME)

    def get(self) -> ExternalCredential | None:
        return ExternalCredential.objects.filter(integration=self.integration).first()

    def get_for_update(self) -> ExternalCredential | None:
        # Caller must hold transaction.atomic().
        return ExternalCredential.objects.select_for_update().filter(integration=self.integration).first()

    def save_grant(self, credential: ExternalCredential, grant: TokenGrant, *, now: datetime.datetime) -> None:
        credential.access_token = grant.access_token
        credential.expires_at = now + datetime.timedelta(seconds=grant.expires_in)
        if grant.refresh_token:
            # Some providers rotate the refresh token on every use.
            credential.refresh_token = grant.refresh_token
        if grant.token_type:
            credential.token_type = grant.token_type
        credential.save(update_fields=["access_token", "expires_at", "refresh_token", "token_type", "updated_at"])

    def store_initial_grant(self, grant: TokenGrant, *, now: datetime.datetime) -> ExternalCredential:
        """Create or replace the credential from an authorization-code exchange."""
        with transaction.atomic():
            credential, _created = ExternalCredential.objects.update_or_create(
                integration=self.integration,
                defaults={
                    "access_token": grant.access_token,
                    "refresh_token": grant.refresh_token,
                    "token_type": grant.token_type or "Bearer",
                    "expires_at": now + datetime.timedelta(seconds=grant.expires_in),
                },
            )
        return credential


class CredentialLifecycleManager:
    def __init__(
        self,
        store: CredentialStore,
        *,
        refresh: Callable[[str], TokenGrant] | None = None,
        now: Callable[[], datetime.datetime] = timezone.now,
    ) -> None:
        self.store = store
        self._refresh = refresh or refresh_access_token
        self._now = now

    def _is_fresh(self, credential: ExternalCredential, now: datetime.datetime) -> bool:
        skew = datetime.timedelta(seconds=settings.CRM_TOKEN_EXPIRY_SKEW_SECONDS)
        return bool(credential.access_token) and credential.expires_at > now + skew

    def get_valid_access_token(self) -> str:
        credential = self.store.get()
        if credential is None:
            raise CredentialUnavailable()

        if self._is_fresh(credential, self._now()):
            return credential.access_token

        with transaction.atomic():
            credential = self.store.get_for_update()
            if credential is None:
                raise CredentialUnavailable()

            # Another request may have refreshed while we waited for the lock.
            now = self._now()
            if self._is_fresh(credential, now):
                return credential.access_token

            grant = self._refresh(credential.refresh_token)
            self.store.save_grant(credential, grant, now=now)

        logger.info(
            "portal.credentials.refreshed integration=%s expires_at=%s",
            self.store.integration,
            credential.expires_at.isoformat(),
            extra={
                "event": "portal.credentials.refreshed",
                "component": "credentials",
                "integration": self.store.integration,
                "outcome": "refreshed",
            },
        )
        return credential.access_token


def get_valid_access_token(integration: str | None = None) -> str:
    return CredentialLifecycleManager(CredentialStore(integration)).get_valid_access_token()


__all__ = [
    "CredentialStore",
    "CredentialLifecycleManager",
    "get_valid_access_token",
]
