import logging
from typing import override

from django.core.management.base import BaseCommand, CommandError
from django.db import transaction

from core.ledger import balances_from_transaction_log
from core.models import Organization

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    help = "Compare program ticket balances with the transaction log, and optionally fix drift."

    @override
    def add_arguments(self, parser) -> None:
        parser.add_argument(
            "--report",
            action="store_true",
            help="Report drift (default if no mode is specified).",
        )
        parser.add_argument(
            "--fix",
            action="store_true",
            help="Rewrite drifted balances to the value the transaction log implies.",
        )
        parser.add_argument(
            "--organization-id",
            dest="organization_id",
            type=int,
            default=None,
            help="Limit the audit to a single organization.",
        )

    @override
    def handle(self, *args, **options) -> None:
        report: bool = bool(options.get("report"))
        fix: bool = bool(options.get("fix"))
        organization_id: int | None = options.get("organization_id")

        if report and fix:
            raise CommandError("Choose only one of --report or --fix.")
        mode = "fix" if fix else "report"

        organizations = Organization.objects.order_by("pk")
        if organization_id is not None:
            organizations = organizations.filter(pk=organization_id)
            if not organizations.exists():
                raise CommandError(f"Organization {organization_id} does not exist.")

        logger.info(
            "program_ticket_audit: start mode=%s organization_id=%s",
            mode,
            organization_id if organization_id is not None else "<all>",
        )

        drifted = 0
        fixed = 0
        audited = 0
        for organization_pk in organizations.values_list("pk", flat=True):
            audited += 1
            if fix:
                with transaction.atomic():
                    organization = Organization.objects.select_for_update().get(pk=organization_pk)
                    drift = self._drift(organization)
                    if drift:
                        balances = dict(organization.program_ticket_balances or {})
                        for program, (_stored, expected) in drift.items():
                            balances[program] = expected
                        organization.program_ticket_balances = balances
                        organization.save(update_fields=["program_ticket_balances", "updated_at"])
                        fixed += 1
            else:
                organization = Organization.objects.get(pk=organization_pk)
                drift = self._drift(organization)

            if not drift:
                continue

            drifted += 1
            for program, (stored, expected) in sorted(drift.items()):
                self.stdout.write(
                    f"organization={organization.pk} name={organization.name!r} program={program} "
                    f"stored={stored} expected={expected}"
                )
                logger.warning(
                    "program_ticket_audit: drift organization_id=%s program=%s stored=%s expected=%s",
                    organization.pk,
                    program,
                    stored,
                    expected,
                )

        self.stdout.write(
            f"Audit complete: mode={mode} organizations={audited} drifted={drifted} fixed={fixed}."
        )
        if drifted == 0:
            logger.info("program_ticket_audit: no_drift")

    def _drift(self, organization: Organization) -> dict[str, tuple[int, int]]:
        expected = balances_from_transaction_log(organization.pk)
        stored = {str(k): int(v or 0) for k, v in (organization.program_ticket_balances or {}).items()}

        drift: dict[str, tuple[int, int]] = {}
        for program in sorted(set(expected) | set(stored)):
            want = max(expected.get(program, 0), 0)
            have = stored.get(program, 0)
            if want != have:
                drift[program] = (have, want)
        return drift
