"""
Data Models Package.

Re-exports the Pydantic models for convenient imports:
    from thaicraft.models import UserRecord, Session, PolicyVersionSet
    from thaicraft.models import ErrorCategory, PolicyName

The sign-in state machine lives in ``thaicraft.models.auth_state`` and is
imported from there directly.
"""

from __future__ import annotations

from thaicraft.models.enums import (
    AuthStage,
    ErrorCategory,
    ErrorContext,
    PolicyName,
    StoreKey,
    VerificationStep,
)
from thaicraft.models.policy_models import (
    AcceptedPolicy,
    AcceptedPolicySet,
    PolicyDocument,
    PolicyMeta,
    PolicyVersionSet,
)
from thaicraft.models.wallet_models import (
    AppIdentity,
    AuthorizationRequest,
    AuthorizationResult,
    SignInPayload,
    WalletAccount,
)
from thaicraft.models.auth_models import (
    CachedWalletCredential,
    PendingRegistration,
    Session,
    SessionStatus,
    UserRecord,
)
from thaicraft.models.error_models import ClassifiedError, ErrorRecord

__all__ = [
    "AuthStage",
    "ErrorCategory",
    "ErrorContext",
    "PolicyName",
    "StoreKey",
    "VerificationStep",
    "AcceptedPolicy",
    "AcceptedPolicySet",
    "PolicyDocument",
    "PolicyMeta",
    "PolicyVersionSet",
    "AppIdentity",
    "AuthorizationRequest",
    "AuthorizationResult",
    "SignInPayload",
    "WalletAccount",
    "CachedWalletCredential",
    "PendingRegistration",
    "Session",
    "SessionStatus",
    "UserRecord",
    "ClassifiedError",
    "ErrorRecord",
]
