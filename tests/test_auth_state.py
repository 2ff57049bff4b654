"""Tests for the sign-in state reducer."""

from __future__ import annotations

import pytest
from pydantic import TypeAdapter

from thaicraft.errors import IllegalTransitionError
from thaicraft.models.auth_models import PendingRegistration, UserRecord
from thaicraft.models.auth_state import (
    AuthState,
    Authenticated,
    AwaitingPolicyConsent,
    AwaitingUsername,
    AwaitingWalletApproval,
    ConnectFailed,
    Connecting,
    ConnectRequested,
    ConsentPrompted,
    ConsentRequired,
    ConsentSatisfied,
    Disconnected,
    Idle,
    NewUserVerified,
    RegistrationCancelled,
    RegistrationFailed,
    SessionEstablished,
    SessionRestored,
    UsernameSubmitted,
    UserUpdated,
    VerifyingWithServer,
    WalletApproved,
    transition,
)
from thaicraft.models.enums import AuthStage, PolicyName, VerificationStep
from thaicraft.models.policy_models import PolicyMeta, PolicyVersionSet

USER = UserRecord(id="u1", username="nok", wallet_address="addr1")
PENDING = PendingRegistration(temp_token="abc", wallet_address="addr1")
VERSIONS = PolicyVersionSet(
    terms=PolicyMeta(name=PolicyName.TERMS, version="1"),
    privacy=PolicyMeta(name=PolicyName.PRIVACY, version="1"),
    content=PolicyMeta(name=PolicyName.CONTENT, version="1"),
)


class TestHappyPaths:
    """Tests for the edges a successful sign-in walks."""

    def test_existing_user_path(self) -> None:
        state: AuthState = Idle()
        state = transition(state, ConnectRequested())
        assert isinstance(state, Connecting)
        state = transition(state, ConsentSatisfied())
        assert isinstance(state, AwaitingWalletApproval)
        state = transition(state, WalletApproved(wallet_address="addr1"))
        assert state == VerifyingWithServer(step=VerificationStep.VERIFY, wallet_address="addr1")
        state = transition(state, SessionEstablished(session_id="s1", user=USER))
        assert state == Authenticated(session_id="s1", user=USER)

    def test_new_user_path(self) -> None:
        state: AuthState = VerifyingWithServer(step=VerificationStep.VERIFY, wallet_address="addr1")
        state = transition(state, NewUserVerified(pending=PENDING))
        assert state == AwaitingUsername(pending=PENDING)

        state = transition(state, UsernameSubmitted(username="nok"))
        assert isinstance(state, VerifyingWithServer)
        assert state.step == VerificationStep.REGISTER
        assert state.pending == PENDING

        state = transition(state, SessionEstablished(session_id="s1", user=USER))
        assert isinstance(state, Authenticated)
        assert not hasattr(state, "pending")

    def test_restore_from_idle(self) -> None:
        state = transition(Idle(), SessionRestored(session_id="s1", user=USER))
        assert state == Authenticated(session_id="s1", user=USER)


class TestConsentAndFailures:
    """Tests for consent gating and failure edges."""

    def test_consent_round_trip_lands_in_idle(self) -> None:
        state = transition(Connecting(), ConsentRequired(versions=VERSIONS))
        assert state == AwaitingPolicyConsent(versions=VERSIONS)
        assert isinstance(transition(state, ConsentPrompted()), Idle)

    @pytest.mark.parametrize(
        "state",
        [
            Connecting(),
            AwaitingWalletApproval(),
            VerifyingWithServer(step=VerificationStep.VERIFY),
        ],
    )
    def test_connect_failure_returns_to_idle(self, state: AuthState) -> None:
        assert isinstance(transition(state, ConnectFailed(reason="x")), Idle)

    def test_registration_failure_keeps_pending(self) -> None:
        state = VerifyingWithServer(step=VerificationStep.REGISTER, pending=PENDING)
        assert transition(state, RegistrationFailed(reason="taken")) == AwaitingUsername(pending=PENDING)

    def test_registration_failure_is_illegal_during_verify(self) -> None:
        with pytest.raises(IllegalTransitionError):
            transition(VerifyingWithServer(step=VerificationStep.VERIFY), RegistrationFailed())

    def test_connect_failure_is_illegal_during_register(self) -> None:
        state = VerifyingWithServer(step=VerificationStep.REGISTER, pending=PENDING)
        with pytest.raises(IllegalTransitionError):
            transition(state, ConnectFailed())

    def test_cancel_only_from_awaiting_username(self) -> None:
        assert isinstance(transition(AwaitingUsername(pending=PENDING), RegistrationCancelled()), Idle)
        with pytest.raises(IllegalTransitionError):
            transition(VerifyingWithServer(step=VerificationStep.REGISTER, pending=PENDING), RegistrationCancelled())


class TestGlobalEvents:
    """Tests for events accepted in every state."""

    @pytest.mark.parametrize(
        "state",
        [
            Idle(),
            Connecting(),
            AwaitingPolicyConsent(versions=VERSIONS),
            AwaitingWalletApproval(),
            VerifyingWithServer(),
            AwaitingUsername(pending=PENDING),
            Authenticated(session_id="s1", user=USER),
        ],
    )
    def test_disconnect_always_lands_in_idle(self, state: AuthState) -> None:
        assert isinstance(transition(state, Disconnected()), Idle)

    @pytest.mark.parametrize(
        "state",
        [
            Connecting(),
            AwaitingWalletApproval(),
            AwaitingUsername(pending=PENDING),
            Authenticated(session_id="s1", user=USER),
        ],
    )
    def test_connect_request_outside_idle_is_a_no_op(self, state: AuthState) -> None:
        assert transition(state, ConnectRequested()) is state

    def test_unknown_edge_raises(self) -> None:
        with pytest.raises(IllegalTransitionError, match="stage 'idle'"):
            transition(Idle(), WalletApproved(wallet_address="addr1"))

    def test_user_update_only_when_authenticated(self) -> None:
        renamed = USER.model_copy(update={"username": "nok2"})
        state = transition(Authenticated(session_id="s1", user=USER), UserUpdated(user=renamed))
        assert state == Authenticated(session_id="s1", user=renamed)
        with pytest.raises(IllegalTransitionError):
            transition(Idle(), UserUpdated(user=renamed))


def test_states_are_a_discriminated_union() -> None:
    adapter = TypeAdapter(AuthState)
    state = adapter.validate_python({"stage": "awaiting_username", "pending": {"temp_token": "abc"}})
    assert isinstance(state, AwaitingUsername)
    assert state.stage == AuthStage.AWAITING_USERNAME
