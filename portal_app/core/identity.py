"""Resolve an email to a portal identity, reconciling with the CRM when needed.

Local records win. The CRM is only asked when no local TeamMember or Member
exists for the email, and what it returns is written locally so the next
lookup never leaves the database.
"""

import datetime
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from enum import StrEnum

from django.db import DatabaseError, transaction
from django.utils import timezone

from core.credentials import get_valid_access_token
from core.crm.contacts import CRMAccount, CRMContact, find_contact_by_email, get_account, get_contact
from core.exceptions import IdentityNotFound, MemberCreateFailed, MemberNotFound, ValidationError
from core.models import Member, Organization, Role, TeamMember
from core.org_refs import organization_for_identifier, resolve_member_organization

logger = logging.getLogger(__name__)


class ColleagueStatus(StrEnum):
    verified = "verified"
    wrong_organization = "wrong_organization"
    domain_match = "domain_match"
    # Unknown to the CRM and outside the organization's domains; needs manual review.
    external = "external"


@dataclass(frozen=True, slots=True)
class MemberView:
    email: str
    first_name: str
    last_name: str
    is_team_member: bool = False
    organization_id: int | None = None
    organization_name: str | None = None
    program_ticket_balances: dict[str, int] = field(default_factory=dict)
    training_fund_balance: Decimal = Decimal("0")
    purchase_order_enabled: bool = False
    role_id: int | None = None
    member_excluded_features: list[str] = field(default_factory=list)
    has_seen_onboarding_tour: bool = False

    def as_dict(self) -> dict[str, object]:
        return {
            "email": self.email,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "organization_id": self.organization_id,
            "organization_name": self.organization_name,
            "training_fund_balance": str(self.training_fund_balance),
            "purchase_order_enabled": self.purchase_order_enabled,
            "program_ticket_balances": dict(self.program_ticket_balances),
            "role_id": self.role_id,
            "member_excluded_features": list(self.member_excluded_features),
            "has_seen_onboarding_tour": self.has_seen_onboarding_tour,
            "is_team_member": self.is_team_member,
        }


@dataclass(frozen=True, slots=True)
class BalanceRefresh:
    organization_id: int | None
    training_fund_balance: Decimal
    purchase_order_enabled: bool


def normalize_email(value: object) -> str:
    email = str(value or "").strip().lower()
    if not email:
        raise ValidationError("Email is required.")
    if "@" not in email or email.startswith("@") or email.endswith("@"):
        raise ValidationError("Email address is not valid.")
    return email


def email_domain(email: str) -> str:
    return email.rsplit("@", 1)[-1].strip().lower()


def find_local_member(email: object) -> Member | None:
    return Member.objects.filter(email__iexact=normalize_email(email)).first()


def _team_member_view(team_member: TeamMember) -> MemberView:
    return MemberView(
        email=team_member.email,
        first_name=team_member.first_name,
        last_name=team_member.last_name,
        is_team_member=True,
        role_id=team_member.role_id,
        # Staff never see the onboarding tour.
        has_seen_onboarding_tour=True,
    )


def _member_view(member: Member) -> MemberView:
    organization = resolve_member_organization(member)

    view = MemberView(
        email=member.email,
        first_name=member.first_name,
        last_name=member.last_name,
        role_id=member.role_id,
        member_excluded_features=list(member.member_excluded_features or []),
        has_seen_onboarding_tour=member.has_seen_onboarding_tour,
    )
    if organization is None:
        return view

    return MemberView(
        email=view.email,
        first_name=view.first_name,
        last_name=view.last_name,
        organization_id=organization.pk,
        organization_name=organization.name,
        program_ticket_balances={k: int(v) for k, v in (organization.program_ticket_balances or {}).items()},
        training_fund_balance=Decimal(organization.training_fund_balance),
        purchase_order_enabled=organization.purchase_order_enabled,
        role_id=view.role_id,
        member_excluded_features=view.member_excluded_features,
        has_seen_onboarding_tour=view.has_seen_onboarding_tour,
    )


def sync_organization_from_account(account: CRMAccount, *, now: datetime.datetime) -> Organization:
    """Create or refresh the local Organization mirroring a CRM account.

    This is a cache refresh: the CRM's counters replace the local ones. The
    ticket balances are local-only and are never touched here.
    """
    organization = Organization.objects.filter(external_account_id=account.id).first()
    if organization is None:
        organization = Organization(external_account_id=account.id)

    organization.name = account.name or organization.name or account.id
    organization.training_fund_balance = account.training_fund_balance
    organization.purchase_order_enabled = account.purchase_order_enabled
    if account.email_domains:
        organization.email_domains = list(account.email_domains)
    organization.last_synced = now
    organization.save()
    return organization


def _link_existing_contact(member: Member, contact: CRMContact, *, now: datetime.datetime) -> Member:
    # The person changed email address in the CRM; keep the local identity.
    previous_email = member.email
    member.email = contact.email
    if contact.first_name:
        member.first_name = contact.first_name
    if contact.last_name:
        member.last_name = contact.last_name
    member.last_synced = now
    member.save(update_fields=["email", "first_name", "last_name", "last_synced", "updated_at"])

    logger.info(
        "portal.identity.member.email_changed member_id=%s previous_email=%s email=%s",
        member.pk,
        previous_email,
        member.email,
        extra={
            "event": "portal.identity.member.email_changed",
            "component": "identity",
            "member_id": member.pk,
        },
    )
    return member


def _create_member_from_crm(contact: CRMContact, *, access_token: str, now: datetime.datetime) -> Member:
    account = get_account(access_token, contact.account_id) if contact.account_id else None

    try:
        with transaction.atomic():
            organization = sync_organization_from_account(account, now=now) if account is not None else None
            member = Member.objects.create(
                email=contact.email,
                first_name=contact.first_name,
                last_name=contact.last_name,
                organization=organization,
                # An account we could not fetch stays a legacy reference until it exists locally.
                organization_code="" if organization is not None else contact.account_id,
                external_contact_id=contact.id,
                role=Role.objects.filter(is_default=True).order_by("id").first(),
                last_synced=now,
            )
    except DatabaseError as exc:
        logger.exception(
            "portal.identity.member.create_failed email=%s contact_id=%s",
            contact.email,
            contact.id,
            extra={
                "event": "portal.identity.member.create_failed",
                "component": "identity",
                "outcome": "error",
            },
        )
        raise MemberCreateFailed() from exc

    logger.info(
        "portal.identity.member.created member_id=%s contact_id=%s organization_id=%s",
        member.pk,
        contact.id,
        member.organization_id,
        extra={
            "event": "portal.identity.member.created",
            "component": "identity",
            "member_id": member.pk,
            "outcome": "created",
        },
    )
    return member


def _reconcile_from_crm(email: str) -> Member:
    access_token = get_valid_access_token()
    contact = find_contact_by_email(access_token, email)
    if contact is None:
        raise IdentityNotFound()

    now = timezone.now()
    linked = Member.objects.filter(external_contact_id=contact.id).first()
    if linked is not None:
        return _link_existing_contact(linked, contact, now=now)
    return _create_member_from_crm(contact, access_token=access_token, now=now)


def resolve_member(email: object) -> MemberView:
    normalized = normalize_email(email)

    team_member = TeamMember.objects.filter(email__iexact=normalized, is_active=True).first()
    if team_member is not None:
        return _team_member_view(team_member)

    member = Member.objects.filter(email__iexact=normalized).first()
    if member is None:
        member = _reconcile_from_crm(normalized)

    return _member_view(member)


def check_member_status(email: object) -> MemberView | None:
    """Local-only probe: never calls the CRM."""
    member = find_local_member(email)
    if member is None:
        return None
    return _member_view(member)


def validate_colleague(email: object, organization_id: object) -> ColleagueStatus:
    normalized = normalize_email(email)
    supplied_id = str(organization_id or "").strip()
    if not supplied_id:
        raise ValidationError("Organization is required.")

    organization = organization_for_identifier(supplied_id)
    expected_accounts = {supplied_id}
    if organization is not None and organization.external_account_id:
        expected_accounts.add(organization.external_account_id)

    contact = find_contact_by_email(get_valid_access_token(), normalized)
    if contact is not None and contact.account_id:
        if contact.account_id in expected_accounts:
            return ColleagueStatus.verified
        return ColleagueStatus.wrong_organization

    if organization is not None and organization.has_email_domain(email_domain(normalized)):
        return ColleagueStatus.domain_match
    return ColleagueStatus.external


def refresh_member_balance(email: object) -> BalanceRefresh:
    member = find_local_member(email)
    if member is None:
        raise MemberNotFound()

    access_token = get_valid_access_token()
    if member.external_contact_id:
        contact = get_contact(access_token, member.external_contact_id)
    else:
        contact = find_contact_by_email(access_token, member.email)
    if contact is None:
        raise IdentityNotFound()

    now = timezone.now()
    update_fields = ["last_synced", "updated_at"]
    if not member.external_contact_id:
        member.external_contact_id = contact.id
        update_fields.append("external_contact_id")
    member.last_synced = now
    member.save(update_fields=update_fields)

    account = get_account(access_token, contact.account_id) if contact.account_id else None
    if account is None:
        return BalanceRefresh(organization_id=None, training_fund_balance=Decimal("0"), purchase_order_enabled=False)

    organization = sync_organization_from_account(account, now=now)
    # Only adopt the CRM account when the member has no organization that resolves locally.
    if resolve_member_organization(member) is None:
        member.organization = organization
        member.save(update_fields=["organization", "updated_at"])

    return BalanceRefresh(
        organization_id=organization.pk,
        training_fund_balance=account.training_fund_balance,
        purchase_order_enabled=account.purchase_order_enabled,
    )


__all__ = [
    "ColleagueStatus",
    "MemberView",
    "BalanceRefresh",
    "normalize_email",
    "find_local_member",
    "sync_organization_from_account",
    "resolve_member",
    "check_member_status",
    "validate_colleague",
    "refresh_member_balance",
]
