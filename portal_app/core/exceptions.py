"""Business-level error kinds for the portal core.

Each subclass carries a stable ``code``. Operations raise these; the
operation boundary turns them into ``{"success": False, ...}`` results.
Anything that is not a PortalError is an unexpected fault.
"""


class PortalError(Exception):
    code: str = "error"
    default_message: str = "The request could not be completed."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)

    @property
    def message(self) -> str:
        return str(self.args[0]) if self.args else self.default_message


class ValidationError(PortalError):
    code = "validation_error"
    default_message = "Invalid request."


class ConfigurationMissing(PortalError):
    code = "configuration_missing"
    default_message = "The integration is not configured."


class CredentialUnavailable(PortalError):
    code = "credential_unavailable"
    default_message = "No stored credential found. An administrator needs to authorize the integration first."


class RefreshFailed(PortalError):
    code = "refresh_failed"
    default_message = "Failed to refresh the access token."


class IdentityNotFound(PortalError):
    code = "identity_not_found"
    default_message = "Email not found. Please check your email address or contact support."


class MemberNotFound(PortalError):
    code = "member_not_found"
    default_message = "Member not found."


class MemberCreateFailed(PortalError):
    code = "member_create_failed"
    default_message = "Failed to create the member record."


class EventNotFound(PortalError):
    code = "event_not_found"
    default_message = "Event not found."


class NoProgramAssociation(PortalError):
    code = "no_program_association"
    default_message = "This event is not associated with a program."


class NoOrganization(PortalError):
    code = "no_organization"
    default_message = "Member is not linked to an organization."


class OrganizationNotFound(PortalError):
    code = "organization_not_found"
    default_message = "Organization not found."


class InsufficientBalance(PortalError):
    code = "insufficient_balance"
    default_message = "Insufficient program tickets."

    def __init__(self, *, program: str, requested: int, available: int) -> None:
        self.program = program
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient {program} tickets: requested {requested}, available {available}."
        )


class TransactionNotFound(PortalError):
    code = "transaction_not_found"
    default_message = "Transaction not found."


class NotAUsageTransaction(PortalError):
    code = "not_a_usage_transaction"
    default_message = "Only usage transactions can be cancelled."


class AlreadyCancelled(PortalError):
    code = "already_cancelled"
    default_message = "Transaction is already cancelled."


class NotCancelled(PortalError):
    code = "not_cancelled"
    default_message = "Transaction is not cancelled."


class CodeNotFound(PortalError):
    code = "code_not_found"
    default_message = "Invalid discount code."


class CodeExpired(PortalError):
    code = "code_expired"
    default_message = "This discount code has expired."


class UsageLimitReached(PortalError):
    code = "usage_limit_reached"
    default_message = "This discount code has reached its usage limit."


__all__ = [
    "PortalError",
    "ValidationError",
    "ConfigurationMissing",
    "CredentialUnavailable",
    "RefreshFailed",
    "IdentityNotFound",
    "MemberNotFound",
    "MemberCreateFailed",
    "EventNotFound",
    "NoProgramAssociation",
    "NoOrganization",
    "OrganizationNotFound",
    "InsufficientBalance",
    "TransactionNotFound",
    "NotAUsageTransaction",
    "AlreadyCancelled",
    "NotCancelled",
    "CodeNotFound",
    "CodeExpired",
    "UsageLimitReached",
]
