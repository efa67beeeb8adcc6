"""
Tests for the sweep session: token lifecycle, phases and observers.
"""

import pytest

from sweeper.core.recovery.errors import ErrorKind
from sweeper.core.sweep.models import SwapStatus, TokenBalance
from sweeper.core.sweep.session import (
    CancelToken,
    OUTPUT_ASSET_REASON,
    InvalidTransitionError,
    PhaseChange,
    SessionPhase,
    SweepSession,
    TokenState,
    TokenTransition,
)


@pytest.fixture
def session(make_token, output_asset):
    return SweepSession([make_token(1), make_token(2)], output_asset, 8453, owner="0xowner")


def advance(session, key, *states):
    for state in states:
        session.transition(key, state)


# =============================================================================
# Construction
# =============================================================================

class TestConstruction:
    def test_tokens_start_discovered(self, session):
        assert set(session.states.values()) == {TokenState.DISCOVERED}
        assert session.phase == SessionPhase.CREATED
        assert session.session_id.startswith("sweep_")

    def test_output_asset_is_skipped(self, make_token, output_asset):
        usdc = TokenBalance(address=output_asset.address.upper().replace("0X", "0x"), symbol="USDC", decimals=6, balance=5)

        session = SweepSession([make_token(1), usdc], output_asset, 8453)

        assert session.state_of(make_token(1).key) == TokenState.DISCOVERED
        assert session.state_of(output_asset.key) == TokenState.SKIPPED
        result = session.results[output_asset.key]
        assert result.status == SwapStatus.SKIPPED
        assert result.reason == OUTPUT_ASSET_REASON
        assert session.pending == [make_token(1).key]

    def test_duplicates_collapse(self, make_token, output_asset):
        session = SweepSession([make_token(1), make_token(1, whole_tokens=3)], output_asset, 8453)

        assert len(session.tokens) == 1
        assert session.tokens[make_token(1).key].balance == make_token(1).balance

    def test_overrides_normalized(self, make_token, output_asset):
        token = make_token(10)
        session = SweepSession([token], output_asset, 8453, overrides={token.address.upper().replace("0X", "0x"): True})

        assert session.overrides == {token.key: True}


# =============================================================================
# Transitions
# =============================================================================

class TestTransitions:
    def test_happy_path(self, session, make_token):
        key = make_token(1).key

        advance(
            session,
            key,
            TokenState.QUOTED,
            TokenState.SELECTED,
            TokenState.BATCHED,
            TokenState.VALIDATED,
            TokenState.EXECUTING,
        )
        result = session.succeed(key, receipt_id="0xabc")

        assert session.state_of(key) == TokenState.SUCCESS
        assert result.status == SwapStatus.SUCCESS
        assert result.receipt_id == "0xabc"
        assert len(session.transitions) == 6

    def test_invalid_transition(self, session, make_token):
        key = make_token(1).key

        with pytest.raises(InvalidTransitionError) as exc:
            session.transition(key, TokenState.EXECUTING)

        assert exc.value.from_state == TokenState.DISCOVERED
        assert exc.value.to_state == TokenState.EXECUTING

    def test_terminal_states_are_final(self, session, make_token):
        key = make_token(1).key
        session.fail(key, "No quote available: No route found", ErrorKind.QUOTE_UNAVAILABLE)

        with pytest.raises(InvalidTransitionError):
            session.transition(key, TokenState.QUOTED)

    def test_result_recorded_once(self, session, make_token):
        key = make_token(1).key
        advance(session, key, TokenState.QUOTED)
        session.skip(key, "too small")

        with pytest.raises(ValueError):
            session.fail(key, "again", ErrorKind.VALIDATION_FAILURE)

    def test_impact_skip_goes_through_rejected(self, session, make_token):
        key = make_token(1).key
        advance(session, key, TokenState.QUOTED)

        result = session.skip(key, "12.0% impact exceeds threshold, requires force", ErrorKind.IMPACT_TOO_HIGH)

        assert [t.to_state for t in session.transitions] == [
            TokenState.QUOTED,
            TokenState.REJECTED,
            TokenState.SKIPPED,
        ]
        assert result.status == SwapStatus.SKIPPED
        assert result.error_kind == ErrorKind.IMPACT_TOO_HIGH

    def test_quarantine_and_retry(self, session, make_token):
        key = make_token(1).key
        advance(
            session,
            key,
            TokenState.QUOTED,
            TokenState.SELECTED,
            TokenState.BATCHED,
            TokenState.QUARANTINED,
            TokenState.RETRY_INDIVIDUALLY,
        )

        result = session.fail(key, "Swap failed", ErrorKind.VALIDATION_FAILURE)

        assert result.status == SwapStatus.FAILED
        assert result.error_kind == ErrorKind.VALIDATION_FAILURE

    def test_skip_pending(self, session, make_token):
        first, second = make_token(1).key, make_token(2).key
        session.fail(first, "No quote available: No route found", ErrorKind.QUOTE_UNAVAILABLE)
        advance(session, second, TokenState.QUOTED, TokenState.SELECTED, TokenState.BATCHED)

        skipped = session.skip_pending("Cancelled by user", ErrorKind.USER_CANCELLED)

        assert [r.token for r in skipped] == [make_token(2).address]
        assert session.pending == []
        assert session.results[first].status == SwapStatus.FAILED

    def test_result_values_from_quote_or_balance(self, session, make_token):
        key = make_token(1).key

        result = session.fail(key, "No quote available: No route found", ErrorKind.QUOTE_UNAVAILABLE)

        assert result.input_value_usd == pytest.approx(50.0)
        assert result.quoted_output is None
        assert result.symbol == "TKN1"


# =============================================================================
# Observers and cancellation
# =============================================================================

class TestObservers:
    def test_subscribers_see_transitions_and_phases(self, session, make_token):
        events = []
        session.subscribe(events.append)

        session.set_phase(SessionPhase.QUOTING)
        session.transition(make_token(1).key, TokenState.QUOTED, "0.50% impact")

        assert isinstance(events[0], PhaseChange)
        assert events[0].to_phase == SessionPhase.QUOTING
        assert isinstance(events[1], TokenTransition)
        assert events[1].reason == "0.50% impact"

    def test_unchanged_phase_not_announced(self, session):
        events = []
        session.subscribe(events.append)

        session.set_phase(SessionPhase.CREATED)

        assert events == []

    def test_unsubscribe(self, session, make_token):
        events = []
        unsubscribe = session.subscribe(events.append)
        unsubscribe()

        session.transition(make_token(1).key, TokenState.QUOTED)

        assert events == []

    def test_failing_subscriber_does_not_break_session(self, session, make_token):
        def broken(event):
            raise RuntimeError("observer crashed")

        seen = []
        session.subscribe(broken)
        session.subscribe(seen.append)

        session.transition(make_token(1).key, TokenState.QUOTED)

        assert session.state_of(make_token(1).key) == TokenState.QUOTED
        assert len(seen) == 1


class TestCancelToken:
    def test_cancel(self, session):
        assert not session.is_cancelled

        session.cancel_token.cancel()

        assert session.is_cancelled

    @pytest.mark.asyncio
    async def test_wait_returns_once_cancelled(self):
        token = CancelToken()
        token.cancel()

        await token.wait()

        assert token.cancelled
