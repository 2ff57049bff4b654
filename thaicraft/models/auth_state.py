"""
Wallet sign-in state machine.

The controller's state is a tagged union of frozen models, discriminated
by ``stage``.  Every change goes through :func:`transition`, a pure
reducer, so each edge of the sign-in flow can be exercised without any
wallet, server, or UI::

    state = Idle()
    state = transition(state, ConnectRequested())        # Connecting
    state = transition(state, ConsentSatisfied())        # AwaitingWalletApproval

Two events are accepted from every state: ``Disconnected`` always lands
in ``Idle`` and ``ConnectRequested`` is a no-op (returns the state
unchanged) unless the machine is ``Idle``.  Any other event that the
current state has no edge for raises :class:`IllegalTransitionError`.

A ``PendingRegistration`` only ever lives inside ``AwaitingUsername`` or
a ``VerifyingWithServer`` register step, and ``Authenticated`` carries
none, so a session and a pending registration can never coexist.
"""

from __future__ import annotations

from typing import Annotated, Callable, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from thaicraft.errors import IllegalTransitionError
from thaicraft.models.auth_models import PendingRegistration, UserRecord
from thaicraft.models.enums import AuthStage, VerificationStep
from thaicraft.models.policy_models import PolicyVersionSet

__all__ = [
    "AuthState",
    "AuthEvent",
    "Idle",
    "Connecting",
    "AwaitingPolicyConsent",
    "AwaitingWalletApproval",
    "VerifyingWithServer",
    "AwaitingUsername",
    "Authenticated",
    "ConnectRequested",
    "ConsentRequired",
    "ConsentPrompted",
    "ConsentSatisfied",
    "WalletApproved",
    "ConnectFailed",
    "NewUserVerified",
    "SessionEstablished",
    "SessionRestored",
    "UsernameSubmitted",
    "RegistrationFailed",
    "RegistrationCancelled",
    "UserUpdated",
    "Disconnected",
    "transition",
]


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


# ---------------------------------------------------------------------------
# States
# ---------------------------------------------------------------------------

class Idle(_Frozen):
    stage: Literal[AuthStage.IDLE] = AuthStage.IDLE


class Connecting(_Frozen):
    stage: Literal[AuthStage.CONNECTING] = AuthStage.CONNECTING


class AwaitingPolicyConsent(_Frozen):
    stage: Literal[AuthStage.AWAITING_POLICY_CONSENT] = AuthStage.AWAITING_POLICY_CONSENT
    versions: PolicyVersionSet


class AwaitingWalletApproval(_Frozen):
    stage: Literal[AuthStage.AWAITING_WALLET_APPROVAL] = AuthStage.AWAITING_WALLET_APPROVAL


class VerifyingWithServer(_Frozen):
    stage: Literal[AuthStage.VERIFYING_WITH_SERVER] = AuthStage.VERIFYING_WITH_SERVER
    step: VerificationStep = VerificationStep.VERIFY
    wallet_address: Optional[str] = None
    pending: Optional[PendingRegistration] = None


class AwaitingUsername(_Frozen):
    stage: Literal[AuthStage.AWAITING_USERNAME] = AuthStage.AWAITING_USERNAME
    pending: PendingRegistration


class Authenticated(_Frozen):
    stage: Literal[AuthStage.AUTHENTICATED] = AuthStage.AUTHENTICATED
    session_id: str
    user: UserRecord


AuthState = Annotated[
    Union[
        Idle,
        Connecting,
        AwaitingPolicyConsent,
        AwaitingWalletApproval,
        VerifyingWithServer,
        AwaitingUsername,
        Authenticated,
    ],
    Field(discriminator="stage"),
]


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------

class ConnectRequested(_Frozen):
    pass


class ConsentRequired(_Frozen):
    versions: PolicyVersionSet


class ConsentPrompted(_Frozen):
    pass


class ConsentSatisfied(_Frozen):
    pass


class WalletApproved(_Frozen):
    wallet_address: str


class ConnectFailed(_Frozen):
    reason: str = ""


class NewUserVerified(_Frozen):
    pending: PendingRegistration


class SessionEstablished(_Frozen):
    session_id: str
    user: UserRecord


class SessionRestored(_Frozen):
    session_id: str
    user: UserRecord


class UsernameSubmitted(_Frozen):
    username: str


class RegistrationFailed(_Frozen):
    reason: str = ""


class RegistrationCancelled(_Frozen):
    pass


class UserUpdated(_Frozen):
    user: UserRecord


class Disconnected(_Frozen):
    pass


AuthEvent = Union[
    ConnectRequested,
    ConsentRequired,
    ConsentPrompted,
    ConsentSatisfied,
    WalletApproved,
    ConnectFailed,
    NewUserVerified,
    SessionEstablished,
    SessionRestored,
    UsernameSubmitted,
    RegistrationFailed,
    RegistrationCancelled,
    UserUpdated,
    Disconnected,
]


# ---------------------------------------------------------------------------
# Edges
# ---------------------------------------------------------------------------

def _expect_step(state: VerifyingWithServer, step: VerificationStep, event: AuthEvent) -> None:
    if state.step != step:
        raise IllegalTransitionError(
            f"{type(event).__name__} is only valid while verifying step "
            f"'{step}', not '{state.step}'."
        )


def _on_wallet_approved(state: AwaitingWalletApproval, event: WalletApproved) -> AuthState:
    return VerifyingWithServer(step=VerificationStep.VERIFY, wallet_address=event.wallet_address)


def _on_verify_failed(state: VerifyingWithServer, event: ConnectFailed) -> AuthState:
    _expect_step(state, VerificationStep.VERIFY, event)
    return Idle()


def _on_new_user(state: VerifyingWithServer, event: NewUserVerified) -> AuthState:
    _expect_step(state, VerificationStep.VERIFY, event)
    return AwaitingUsername(pending=event.pending)


def _on_session_established(state: VerifyingWithServer, event: SessionEstablished) -> AuthState:
    return Authenticated(session_id=event.session_id, user=event.user)


def _on_username_submitted(state: AwaitingUsername, event: UsernameSubmitted) -> AuthState:
    return VerifyingWithServer(
        step=VerificationStep.REGISTER,
        wallet_address=state.pending.wallet_address,
        pending=state.pending,
    )


def _on_registration_failed(state: VerifyingWithServer, event: RegistrationFailed) -> AuthState:
    _expect_step(state, VerificationStep.REGISTER, event)
    if state.pending is None:
        raise IllegalTransitionError("Register step lost its pending registration.")
    return AwaitingUsername(pending=state.pending)


_Edge = Callable[[BaseModel, BaseModel], BaseModel]

_TRANSITIONS: dict[tuple[type, type], _Edge] = {
    (Idle, SessionRestored): lambda s, e: Authenticated(session_id=e.session_id, user=e.user),
    (Connecting, ConsentRequired): lambda s, e: AwaitingPolicyConsent(versions=e.versions),
    (Connecting, ConsentSatisfied): lambda s, e: AwaitingWalletApproval(),
    (Connecting, ConnectFailed): lambda s, e: Idle(),
    (AwaitingPolicyConsent, ConsentPrompted): lambda s, e: Idle(),
    (AwaitingWalletApproval, WalletApproved): _on_wallet_approved,
    (AwaitingWalletApproval, ConnectFailed): lambda s, e: Idle(),
    (VerifyingWithServer, ConnectFailed): _on_verify_failed,
    (VerifyingWithServer, NewUserVerified): _on_new_user,
    (VerifyingWithServer, SessionEstablished): _on_session_established,
    (VerifyingWithServer, RegistrationFailed): _on_registration_failed,
    (AwaitingUsername, UsernameSubmitted): _on_username_submitted,
    (AwaitingUsername, RegistrationCancelled): lambda s, e: Idle(),
    (Authenticated, UserUpdated): lambda s, e: Authenticated(session_id=s.session_id, user=e.user),
}


def transition(state: AuthState, event: AuthEvent) -> AuthState:
    """Return the state that *event* moves *state* to.

    Raises
    ------
    IllegalTransitionError
        If *state* has no edge for *event*.
    """
    if isinstance(event, Disconnected):
        return Idle()
    if isinstance(event, ConnectRequested):
        return Connecting() if isinstance(state, Idle) else state

    edge = _TRANSITIONS.get((type(state), type(event)))
    if edge is None:
        raise IllegalTransitionError(
            f"Cannot apply {type(event).__name__} while in stage '{state.stage}'."
        )
    return edge(state, event)
