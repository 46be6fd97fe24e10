from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from core.models import Member, Organization


class OrgRefKind(StrEnum):
    none = "none"
    local = "local"
    external = "external"
    # Pre-FK identifier that may hold either a local id or a CRM account id.
    legacy = "legacy"


@dataclass(frozen=True, slots=True)
class OrgRef:
    kind: OrgRefKind
    identifier: str = ""

    @classmethod
    def empty(cls) -> OrgRef:
        return cls(kind=OrgRefKind.none)

    @classmethod
    def local(cls, organization_id: int) -> OrgRef:
        return cls(kind=OrgRefKind.local, identifier=str(int(organization_id)))

    @classmethod
    def external(cls, account_id: str) -> OrgRef:
        normalized = str(account_id or "").strip()
        if not normalized:
            return cls.empty()
        return cls(kind=OrgRefKind.external, identifier=normalized)

    @classmethod
    def legacy(cls, code: str) -> OrgRef:
        normalized = str(code or "").strip()
        if not normalized:
            return cls.empty()
        return cls(kind=OrgRefKind.legacy, identifier=normalized)

    @classmethod
    def from_member_fields(cls, *, organization_id: int | None, organization_code: str) -> OrgRef:
        if organization_id is not None:
            return cls.local(organization_id)
        return cls.legacy(organization_code)

    @property
    def is_empty(self) -> bool:
        return self.kind == OrgRefKind.none

    def resolve(self) -> Organization | None:
        """Return the Organization this reference points at, or None.

        Legacy identifiers are tried as a local primary key first and then as
        an external account id.
        """
        from core.models import Organization

        match self.kind:
            case OrgRefKind.none:
                return None
            case OrgRefKind.local:
                return Organization.objects.filter(pk=int(self.identifier)).first()
            case OrgRefKind.external:
                return Organization.objects.filter(external_account_id=self.identifier).first()
            case OrgRefKind.legacy:
                if self.identifier.isdigit():
                    organization = Organization.objects.filter(pk=int(self.identifier)).first()
                    if organization is not None:
                        return organization
                return Organization.objects.filter(external_account_id=self.identifier).first()


def resolve_member_organization(member: Member) -> Organization | None:
    """Resolve a member's organization, pinning legacy references onto the FK.

    Once a legacy code resolves, the FK is written so later reads take the
    local path and never need to disambiguate the code again.
    """
    ref = member.org_ref
    organization = ref.resolve()
    if organization is not None and ref.kind == OrgRefKind.legacy:
        member.organization = organization
        member.save(update_fields=["organization", "updated_at"])
    return organization


def organization_for_identifier(identifier: object) -> Organization | None:
    """Resolve a caller-supplied organization identifier (local id or CRM account id)."""
    return OrgRef.legacy(str(identifier or "")).resolve()
