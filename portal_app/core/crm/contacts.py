"""CRM contact and account lookups.

The CRM wraps records as ``{"data": [...]}``; an empty search answers 204
with no body. Anything that is not a JSON object is treated as "no record".
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any

import requests

from core.crm.client import crm_get
from core.crm.exceptions import CRMRequestFailed

logger = logging.getLogger("core.crm")


@dataclass(frozen=True, slots=True)
class CRMContact:
    id: str
    email: str
    first_name: str = ""
    last_name: str = ""
    account_id: str = ""

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> CRMContact:
        account = payload.get("Account_Name")
        account_id = ""
        if isinstance(account, dict):
            account_id = str(account.get("id") or "").strip()
        return cls(
            id=str(payload.get("id") or "").strip(),
            email=str(payload.get("Email") or "").strip().lower(),
            first_name=str(payload.get("First_Name") or "").strip(),
            last_name=str(payload.get("Last_Name") or "").strip(),
            account_id=account_id,
        )


@dataclass(frozen=True, slots=True)
class CRMAccount:
    id: str
    name: str
    training_fund_balance: Decimal = Decimal("0")
    purchase_order_enabled: bool = False
    email_domains: list[str] = field(default_factory=list)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> CRMAccount:
        # Both spellings exist on real tenants.
        raw_balance = payload.get("Training_Fund_Balance")
        if raw_balance is None:
            raw_balance = payload.get("Training_fund_balance")
        try:
            balance = Decimal(str(raw_balance if raw_balance is not None else 0))
        except InvalidOperation:
            balance = Decimal("0")

        domains: list[str] = []
        primary = str(payload.get("Domain") or "").strip()
        if primary:
            domains.append(primary)
        extra = payload.get("Additional_verified_domains") or []
        if isinstance(extra, str):
            extra = extra.replace(";", ",").split(",")
        for domain in extra:
            normalized = str(domain or "").strip()
            if normalized:
                domains.append(normalized)

        return cls(
            id=str(payload.get("id") or "").strip(),
            name=str(payload.get("Account_Name") or "").strip(),
            training_fund_balance=balance,
            purchase_order_enabled=bool(payload.get("Purchase_Order_Enabled") or False),
            email_domains=domains,
        )


def _records(response: requests.Response) -> list[dict[str, Any]]:
    if response.status_code == 204 or not response.content:
        return []
    try:
        payload = response.json()
    except ValueError:
        logger.warning(
            "portal.crm.response.non_json status_code=%s url=%s",
            response.status_code,
            response.url,
        )
        return []
    if not isinstance(payload, dict):
        return []
    data = payload.get("data")
    if not isinstance(data, list):
        return []
    return [row for row in data if isinstance(row, dict)]


def search_contacts_by_email(access_token: str, email: str) -> list[CRMContact]:
    normalized_email = str(email or "").strip().lower()
    if not normalized_email:
        return []

    response = crm_get("crm/v3/Contacts/search", access_token=access_token, params={"email": normalized_email})
    if response.status_code != 204 and not response.ok:
        raise CRMRequestFailed(
            f"CRM contact search failed with HTTP {response.status_code}",
            status_code=response.status_code,
        )

    contacts = [CRMContact.from_payload(row) for row in _records(response)]
    return [c for c in contacts if c.id and c.email == normalized_email]


def find_contact_by_email(access_token: str, email: str) -> CRMContact | None:
    contacts = search_contacts_by_email(access_token, email)
    return contacts[0] if contacts else None


def get_contact(access_token: str, contact_id: str) -> CRMContact | None:
    normalized_id = str(contact_id or "").strip()
    if not normalized_id:
        return None

    response = crm_get(f"crm/v3/Contacts/{normalized_id}", access_token=access_token)
    if response.status_code in (204, 404):
        return None
    if not response.ok:
        raise CRMRequestFailed(
            f"CRM contact fetch failed with HTTP {response.status_code}",
            status_code=response.status_code,
        )

    records = _records(response)
    return CRMContact.from_payload(records[0]) if records else None


def get_account(access_token: str, account_id: str) -> CRMAccount | None:
    normalized_id = str(account_id or "").strip()
    if not normalized_id:
        return None

    response = crm_get(f"crm/v3/Accounts/{normalized_id}", access_token=access_token)
    if response.status_code in (204, 404):
        return None
    if not response.ok:
        raise CRMRequestFailed(
            f"CRM account fetch failed with HTTP {response.status_code}",
            status_code=response.status_code,
        )

    records = _records(response)
    return CRMAccount.from_payload(records[0]) if records else None


__all__ = [
    "CRMContact",
    "CRMAccount",
    "search_contacts_by_email",
    "find_contact_by_email",
    "get_contact",
    "get_account",
]
