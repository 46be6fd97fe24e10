import logging
from typing import override

from django.conf import settings
from django.core.management.base import BaseCommand, CommandError
from django.utils import timezone

from core.credentials import CredentialStore
from core.crm.client import build_authorization_url, exchange_authorization_code
from core.exceptions import PortalError

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    help = "Authorize the CRM integration: print the consent URL or store a grant from an authorization code."

    @override
    def add_arguments(self, parser) -> None:
        parser.add_argument(
            "--print-url",
            action="store_true",
            help="Print the URL an administrator opens to grant offline access.",
        )
        parser.add_argument(
            "--code",
            default="",
            help="Authorization code returned to the redirect URI.",
        )
        parser.add_argument(
            "--redirect-uri",
            dest="redirect_uri",
            default="",
            help="Override CRM_REDIRECT_URI; must match the one used for --print-url.",
        )

    @override
    def handle(self, *args, **options) -> None:
        print_url: bool = bool(options.get("print_url"))
        code = str(options.get("code") or "").strip()
        redirect_uri = str(options.get("redirect_uri") or settings.CRM_REDIRECT_URI or "").strip()

        if print_url == bool(code):
            raise CommandError("Choose exactly one of --print-url or --code.")
        if not redirect_uri:
            raise CommandError("A redirect URI is required: set CRM_REDIRECT_URI or pass --redirect-uri.")

        try:
            if print_url:
                self.stdout.write(build_authorization_url(redirect_uri=redirect_uri))
                return

            grant = exchange_authorization_code(code, redirect_uri=redirect_uri)
            if not grant.refresh_token:
                raise CommandError(
                    "The CRM did not return a refresh token. Re-run --print-url and grant consent again."
                )
            store = CredentialStore()
            credential = store.store_initial_grant(grant, now=timezone.now())
        except PortalError as exc:
            raise CommandError(exc.message) from exc

        logger.info(
            "crm_authorize: stored integration=%s expires_at=%s",
            credential.integration,
            credential.expires_at.isoformat(),
        )
        self.stdout.write(
            f"Stored credential for {credential.integration}; access token expires {credential.expires_at.isoformat()}."
        )
