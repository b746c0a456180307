"""
Tagged outcomes for resolution and guard checks.

Failures and denials are plain values returned up the stack; none of them
is an exception, so an unrelated `except` can never turn one into a pass.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Union

from lawfirm_authz.auth.models import Principal


class FailureKind(str, Enum):
    MISSING_CREDENTIAL = "MissingCredential"
    INVALID_CREDENTIAL = "InvalidCredential"
    INACTIVE_ACCOUNT = "InactiveAccount"
    STALE_CREDENTIAL_VERSION = "StaleCredentialVersion"


@dataclass(frozen=True)
class ResolutionFailure:
    kind: FailureKind
    # Internal detail for logs only.
    detail: str = ""

    @property
    def requires_reauthentication(self) -> bool:
        return self.kind is not FailureKind.INACTIVE_ACCOUNT


Resolution = Union[Principal, ResolutionFailure]


class DenialReason(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    ACCOUNT_INACTIVE = "account_inactive"
    ROLE_DENIED = "role_denied"
    PERMISSION_DENIED = "permission_denied"
    RESOURCE_DENIED = "resource_denied"
    RESOURCE_NOT_FOUND = "resource_not_found"


_STATUS = {
    DenialReason.UNAUTHENTICATED: 401,
    DenialReason.ACCOUNT_INACTIVE: 403,
    DenialReason.ROLE_DENIED: 403,
    DenialReason.PERMISSION_DENIED: 403,
    DenialReason.RESOURCE_DENIED: 403,
    DenialReason.RESOURCE_NOT_FOUND: 404,
}

_MESSAGES = {
    DenialReason.UNAUTHENTICATED: "authentication required",
    DenialReason.ACCOUNT_INACTIVE: "account is inactive",
    DenialReason.ROLE_DENIED: "access denied, required role: {required} or higher",
    DenialReason.PERMISSION_DENIED: "access denied, required permission: {required}",
    DenialReason.RESOURCE_DENIED: "access denied to this resource",
    DenialReason.RESOURCE_NOT_FOUND: "resource not found",
}


@dataclass(frozen=True)
class Denial:
    reason: DenialReason
    # Missing role or permission name(s); never resource data.
    required: str | None = None

    @property
    def http_status(self) -> int:
        return _STATUS[self.reason]

    @property
    def message(self) -> str:
        return _MESSAGES[self.reason].format(required=self.required)

    @classmethod
    def from_failure(cls, failure: ResolutionFailure) -> "Denial":
        if failure.kind is FailureKind.INACTIVE_ACCOUNT:
            return cls(DenialReason.ACCOUNT_INACTIVE)
        return cls(DenialReason.UNAUTHENTICATED)
