"""The closed set of operations exposed at ``/api/functions/<name>``.

Each operation name maps to one frozen command dataclass. ``parse_command``
builds the command from a JSON body and ``execute`` runs it; the dispatch
``match`` is exhaustive, so adding a command without handling it is a type
error.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, assert_never

from core import bookings, discounts, identity, ledger
from core.exceptions import ValidationError


class OperationName(StrEnum):
    validate_member = "validateMember"
    check_member_status_by_email = "checkMemberStatusByEmail"
    validate_colleague = "validateColleague"
    refresh_member_balance = "refreshMemberBalance"
    create_booking = "createBooking"
    process_program_ticket_purchase = "processProgramTicketPurchase"
    cancel_program_ticket_transaction = "cancelProgramTicketTransaction"
    reinstate_program_ticket_transaction = "reinstateProgramTicketTransaction"
    apply_discount_code = "applyDiscountCode"


def _required(params: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = params.get(key)
        if value is not None and str(value).strip() != "":
            return value
    raise ValidationError(f"Missing required parameter: {keys[0]}")


def _optional_str(params: Mapping[str, Any], *keys: str) -> str:
    for key in keys:
        value = params.get(key)
        if value is not None:
            return str(value).strip()
    return ""


@dataclass(frozen=True, slots=True)
class ValidateMember:
    email: str

    @classmethod
    def from_params(cls, params: Mapping[str, Any]) -> ValidateMember:
        return cls(email=str(_required(params, "email")))


@dataclass(frozen=True, slots=True)
class CheckMemberStatus:
    email: str

    @classmethod
    def from_params(cls, params: Mapping[str, Any]) -> CheckMemberStatus:
        return cls(email=str(_required(params, "email")))


@dataclass(frozen=True, slots=True)
class ValidateColleague:
    email: str
    organization_id: str

    @classmethod
    def from_params(cls, params: Mapping[str, Any]) -> ValidateColleague:
        return cls(
            email=str(_required(params, "email")),
            organization_id=str(_required(params, "organizationId", "organization_id")),
        )


@dataclass(frozen=True, slots=True)
class RefreshMemberBalance:
    email: str

    @classmethod
    def from_params(cls, params: Mapping[str, Any]) -> RefreshMemberBalance:
        return cls(email=str(_required(params, "email")))


@dataclass(frozen=True, slots=True)
class CreateBooking:
    event_id: Any
    member_email: str
    tickets_required: Any
    registration_mode: str = bookings.RegistrationMode.self
    attendees: tuple[Mapping[str, Any], ...] = ()
    number_of_links: Any = 0
    program_tag: str = ""

    @classmethod
    def from_params(cls, params: Mapping[str, Any]) -> CreateBooking:
        attendees = params.get("attendees") or []
        if not isinstance(attendees, list) or not all(isinstance(a, dict) for a in attendees):
            raise ValidationError("attendees must be a list of objects.")
        return cls(
            event_id=_required(params, "eventId"),
            member_email=str(_required(params, "memberEmail")),
            tickets_required=_required(params, "ticketsRequired"),
            registration_mode=_optional_str(params, "registrationMode") or bookings.RegistrationMode.self,
            attendees=tuple(attendees),
            number_of_links=params.get("numberOfLinks") or 0,
            program_tag=_optional_str(params, "programTag"),
        )


@dataclass(frozen=True, slots=True)
class ProcessProgramTicketPurchase:
    organization_id: Any
    program: str
    quantity: Any
    payment_reference: str = ""

    @classmethod
    def from_params(cls, params: Mapping[str, Any]) -> ProcessProgramTicketPurchase:
        return cls(
            organization_id=_required(params, "organizationId"),
            program=str(_required(params, "programName", "programTag")),
            quantity=_required(params, "quantity"),
            payment_reference=_optional_str(params, "paymentReference", "paymentIntentId"),
        )


@dataclass(frozen=True, slots=True)
class CancelProgramTicketTransaction:
    transaction_id: Any
    reason: str = ""
    actor_email: str = ""

    @classmethod
    def from_params(cls, params: Mapping[str, Any]) -> CancelProgramTicketTransaction:
        return cls(
            transaction_id=_required(params, "transactionId"),
            reason=_optional_str(params, "reason", "cancellationReason"),
            actor_email=_optional_str(params, "actorEmail", "cancelledBy"),
        )


@dataclass(frozen=True, slots=True)
class ReinstateProgramTicketTransaction:
    transaction_id: Any
    actor_email: str = ""

    @classmethod
    def from_params(cls, params: Mapping[str, Any]) -> ReinstateProgramTicketTransaction:
        return cls(
            transaction_id=_required(params, "transactionId"),
            actor_email=_optional_str(params, "actorEmail", "reinstatedBy"),
        )


@dataclass(frozen=True, slots=True)
class ApplyDiscountCode:
    code: str
    amount: Any

    @classmethod
    def from_params(cls, params: Mapping[str, Any]) -> ApplyDiscountCode:
        return cls(code=str(_required(params, "code")), amount=_required(params, "amount"))


type Command = (
    ValidateMember
    | CheckMemberStatus
    | ValidateColleague
    | RefreshMemberBalance
    | CreateBooking
    | ProcessProgramTicketPurchase
    | CancelProgramTicketTransaction
    | ReinstateProgramTicketTransaction
    | ApplyDiscountCode
)

_COMMANDS: dict[OperationName, type[Command]] = {
    OperationName.validate_member: ValidateMember,
    OperationName.check_member_status_by_email: CheckMemberStatus,
    OperationName.validate_colleague: ValidateColleague,
    OperationName.refresh_member_balance: RefreshMemberBalance,
    OperationName.create_booking: CreateBooking,
    OperationName.process_program_ticket_purchase: ProcessProgramTicketPurchase,
    OperationName.cancel_program_ticket_transaction: CancelProgramTicketTransaction,
    OperationName.reinstate_program_ticket_transaction: ReinstateProgramTicketTransaction,
    OperationName.apply_discount_code: ApplyDiscountCode,
}


def operation_for_name(name: str) -> OperationName | None:
    try:
        return OperationName(name)
    except ValueError:
        return None


def parse_command(operation: OperationName, params: Mapping[str, Any]) -> Command:
    return _COMMANDS[operation].from_params(params)


def execute(command: Command) -> dict[str, Any]:
    """Run a command and return the JSON-serializable success payload.

    Business failures propagate as ``PortalError`` subclasses.
    """
    match command:
        case ValidateMember(email=email):
            return {"success": True, "member": identity.resolve_member(email).as_dict()}
        case CheckMemberStatus(email=email):
            view = identity.check_member_status(email)
            return {
                "success": True,
                "exists": view is not None,
                "member": view.as_dict() if view is not None else None,
            }
        case ValidateColleague(email=email, organization_id=organization_id):
            status = identity.validate_colleague(email, organization_id)
            return {"success": True, "status": str(status)}
        case RefreshMemberBalance(email=email):
            refreshed = identity.refresh_member_balance(email)
            return {
                "success": True,
                "organization_id": refreshed.organization_id,
                "training_fund_balance": str(refreshed.training_fund_balance),
                "purchase_order_enabled": refreshed.purchase_order_enabled,
            }
        case CreateBooking():
            group = bookings.create_booking(
                event_id=command.event_id,
                member_email=command.member_email,
                attendees=command.attendees,
                registration_mode=command.registration_mode,
                number_of_links=command.number_of_links,
                tickets_required=command.tickets_required,
                program_tag=command.program_tag,
            )
            return {"success": True, **group.as_dict()}
        case ProcessProgramTicketPurchase():
            result = ledger.purchase(
                organization_id=command.organization_id,
                program=command.program,
                quantity=command.quantity,
                payment_reference=command.payment_reference,
            )
            return {
                "success": True,
                "transactionId": result.transaction.pk if result.transaction is not None else None,
                "programName": result.program,
                "quantity": result.quantity,
                "newBalance": result.balance,
            }
        case CancelProgramTicketTransaction():
            result = ledger.cancel(
                transaction_id=command.transaction_id,
                reason=command.reason,
                actor_email=command.actor_email,
            )
            return {
                "success": True,
                "refundTransactionId": result.transaction.pk if result.transaction is not None else None,
                "refundedQuantity": result.quantity,
                "newBalance": result.balance,
            }
        case ReinstateProgramTicketTransaction():
            result = ledger.reinstate(
                transaction_id=command.transaction_id,
                actor_email=command.actor_email,
            )
            return {
                "success": True,
                "reinstatedQuantity": result.quantity,
                "newBalance": result.balance,
            }
        case ApplyDiscountCode(code=code, amount=amount):
            return {"success": True, **discounts.apply_discount(code=code, amount=amount).as_dict()}
        case _:
            assert_never(command)


__all__ = [
    "OperationName",
    "Command",
    "operation_for_name",
    "parse_command",
    "execute",
]
