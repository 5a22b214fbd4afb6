"""Unit tests for the state-transition driver and its timeout budget."""
import threading
from unittest.mock import MagicMock

import pytest

from cckm.core.ciphertrust.exceptions import (
    CipherTrustAPIError,
    TransitionCancelledError,
    TransitionFailedError,
    TransitionTimeoutError,
)
from cckm.core.desired import CUSTOM_KEYSTORE_TYPE_AWS_CLOUDHSM, CUSTOM_KEYSTORE_TYPE_EXTERNAL
from cckm.core.models import CONNECT_KEYSTORE, DISCONNECT_KEYSTORE, ConnectionState, ObservedState
from cckm.core.transitions import drive_transition, max_attempts_for, transition_timeout


def snapshot(state: str) -> ObservedState:
    return ObservedState.from_document({"id": "cks-1", "aws_param": {"connection_state": state}})


def fetch_sequence(*states):
    """Fetch stub returning the given states, repeating the last one."""
    fetch = MagicMock(side_effect=[snapshot(s) for s in states] + [snapshot(states[-1])] * 20)
    return fetch


# ─────────────────────────────────────────────────────────────────────────────
# Poll loop
# ─────────────────────────────────────────────────────────────────────────────
def test_reaches_target_on_third_fetch():
    fetch = fetch_sequence("CONNECTING", "CONNECTING", "CONNECTED")

    result = drive_transition(ConnectionState.CONNECTED, fetch, max_attempts=5, interval=0)

    assert result.connection_state is ConnectionState.CONNECTED
    assert fetch.call_count == 3


def test_failed_state_stops_immediately():
    fetch = fetch_sequence("CONNECTING", "FAILED", "CONNECTED")

    with pytest.raises(TransitionFailedError) as exc_info:
        drive_transition(ConnectionState.CONNECTED, fetch, max_attempts=5, interval=0, resource_id="cks-1")

    assert fetch.call_count == 2
    assert not isinstance(exc_info.value, TransitionTimeoutError)
    assert exc_info.value.state == "FAILED"
    assert exc_info.value.attempts == 2


def test_timeout_after_exactly_max_attempts():
    fetch = fetch_sequence("DISCONNECTING")

    with pytest.raises(TransitionTimeoutError) as exc_info:
        drive_transition(ConnectionState.DISCONNECTED, fetch, max_attempts=3, interval=0)

    assert fetch.call_count == 3
    assert exc_info.value.attempts == 3
    assert "after 3 attempts" in str(exc_info.value)
    assert exc_info.value.last_state == "DISCONNECTING"


def test_fetch_error_propagates_without_retry():
    error = CipherTrustAPIError(500, "boom", "api/v1/cckm/aws/custom-key-stores/cks-1")
    fetch = MagicMock(side_effect=error)

    with pytest.raises(CipherTrustAPIError):
        drive_transition(ConnectionState.CONNECTED, fetch, max_attempts=5, interval=0)

    assert fetch.call_count == 1


def test_unknown_state_keeps_polling():
    fetch = fetch_sequence("PENDING_SOMETHING", "CONNECTED")

    drive_transition(ConnectionState.CONNECTED, fetch, max_attempts=5, interval=0)

    assert fetch.call_count == 2


def test_cancellation_observed_between_attempts():
    cancel = threading.Event()
    calls = []

    def fetch():
        calls.append(1)
        if len(calls) == 2:
            cancel.set()
        return snapshot("CONNECTING")

    with pytest.raises(TransitionCancelledError):
        drive_transition(ConnectionState.CONNECTED, fetch, max_attempts=10, interval=0.01, cancel=cancel)

    assert len(calls) == 2


def test_cancel_wakes_sleeping_poll():
    """A long interval does not delay cancellation until it elapses."""
    cancel = threading.Event()
    fetch = fetch_sequence("CONNECTING")
    timer = threading.Timer(0.05, cancel.set)
    timer.start()
    try:
        with pytest.raises(TransitionCancelledError):
            drive_transition(ConnectionState.CONNECTED, fetch, max_attempts=3, interval=30, cancel=cancel)
    finally:
        timer.cancel()
    assert fetch.call_count == 1


def test_rejects_non_positive_attempts():
    with pytest.raises(ValueError):
        drive_transition(ConnectionState.CONNECTED, fetch_sequence("CONNECTED"), max_attempts=0, interval=0)


# ─────────────────────────────────────────────────────────────────────────────
# Timeout budget
# ─────────────────────────────────────────────────────────────────────────────
@pytest.mark.parametrize(
    "store_type, directive, seconds, attempts",
    [
        (CUSTOM_KEYSTORE_TYPE_AWS_CLOUDHSM, CONNECT_KEYSTORE, 21 * 60, 63),
        (CUSTOM_KEYSTORE_TYPE_AWS_CLOUDHSM, DISCONNECT_KEYSTORE, 11 * 60, 33),
        (CUSTOM_KEYSTORE_TYPE_EXTERNAL, CONNECT_KEYSTORE, 2 * 60, 6),
        (CUSTOM_KEYSTORE_TYPE_EXTERNAL, DISCONNECT_KEYSTORE, 2 * 60, 6),
    ],
)
def test_budget_depends_on_store_type(store_type, directive, seconds, attempts):
    assert transition_timeout(store_type, directive) == seconds
    assert max_attempts_for(store_type, directive) == attempts


def test_budget_never_below_one_attempt():
    assert max_attempts_for(CUSTOM_KEYSTORE_TYPE_EXTERNAL, CONNECT_KEYSTORE, interval=600) == 1
