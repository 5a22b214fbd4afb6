"""Drive asynchronous remote state transitions to completion by polling.

Connect and disconnect of a custom key store return immediately; the store
then moves through transitional states. `drive_transition` polls the object
until it reaches the target state, reports FAILED, or the attempt budget
runs out.

Timeout budget per backing key store type:

    | type          | connect | disconnect |
    |---------------|---------|------------|
    | AWS_CLOUDHSM  | 21 min  | 11 min     |
    | other         |  2 min  |  2 min     |

split into 20 second polling intervals.
"""
from __future__ import annotations
import logging
import threading
from typing import Callable, Optional

from .ciphertrust.exceptions import (
    TransitionCancelledError,
    TransitionFailedError,
    TransitionTimeoutError,
)
from .desired import CUSTOM_KEYSTORE_TYPE_AWS_CLOUDHSM
from .models import (
    CONNECT_KEYSTORE,
    DISCONNECT_KEYSTORE,
    ConnectionState,
    ObservedState,
)

logger = logging.getLogger(__name__)

POLL_INTERVAL_SECONDS = 20

# (key store type, directive) -> total budget in seconds
TRANSITION_TIMEOUTS = {
    (CUSTOM_KEYSTORE_TYPE_AWS_CLOUDHSM, CONNECT_KEYSTORE): 21 * 60,
    (CUSTOM_KEYSTORE_TYPE_AWS_CLOUDHSM, DISCONNECT_KEYSTORE): 11 * 60,
}
DEFAULT_TRANSITION_TIMEOUT = 2 * 60


def transition_timeout(key_store_type: str, directive: str) -> int:
    """Total polling budget (seconds) for a directive on a key store type."""
    return TRANSITION_TIMEOUTS.get((key_store_type, directive), DEFAULT_TRANSITION_TIMEOUT)


def max_attempts_for(key_store_type: str, directive: str, interval: float = POLL_INTERVAL_SECONDS) -> int:
    """Number of polls fitting in the budget (at least one)."""
    if interval <= 0:
        interval = POLL_INTERVAL_SECONDS
    return max(1, int(transition_timeout(key_store_type, directive) // interval))


def connection_state_of(state: ObservedState) -> ConnectionState:
    return state.connection_state


def drive_transition(
    target_state: ConnectionState,
    fetch: Callable[[], ObservedState],
    max_attempts: int,
    interval: float = POLL_INTERVAL_SECONDS,
    *,
    cancel: Optional[threading.Event] = None,
    extract_state: Callable[[ObservedState], ConnectionState] = connection_state_of,
    resource_id: str = "",
) -> ObservedState:
    """Poll until the object reaches `target_state`.

    Args:
        target_state: Stable state to wait for (CONNECTED or DISCONNECTED)
        fetch: Returns a fresh snapshot of the object; its errors propagate
        max_attempts: Maximum number of fetches
        interval: Seconds to wait between fetches
        cancel: Set by the caller to stop between attempts
        extract_state: Reads the connection state out of a snapshot
        resource_id: Used in log lines and error messages

    Returns:
        The snapshot in which the target state was observed

    Raises:
        TransitionFailedError: The object reported FAILED (no further polls)
        TransitionTimeoutError: `max_attempts` fetches without reaching the target
        TransitionCancelledError: `cancel` was set before the next attempt
        TransportError: `fetch` failed (fatal, not retried)
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")
    target = ConnectionState(target_state)
    last_state = ConnectionState.UNKNOWN

    for attempt in range(1, max_attempts + 1):
        if cancel is not None and cancel.is_set():
            raise TransitionCancelledError(
                f"waiting for {target.value} on {resource_id or 'object'} cancelled after {attempt - 1} attempts",
                resource_id=resource_id,
                target_state=target.value,
            )

        snapshot = fetch()
        last_state = extract_state(snapshot)
        logger.debug(f"[transition] {resource_id} state={last_state.value} (attempt {attempt}/{max_attempts})")

        if last_state == target:
            logger.info(f"[transition] {resource_id} reached {target.value} after {attempt} attempts")
            return snapshot
        if last_state == ConnectionState.FAILED:
            logger.error(f"[transition] {resource_id} entered FAILED while waiting for {target.value}")
            raise TransitionFailedError(
                last_state.value, attempts=attempt, resource_id=resource_id, target_state=target.value
            )

        if attempt < max_attempts:
            _wait(interval, cancel)

    logger.error(f"[transition] {resource_id} did not reach {target.value} after {max_attempts} attempts")
    raise TransitionTimeoutError(
        max_attempts, resource_id=resource_id, target_state=target.value, last_state=last_state.value
    )


def _wait(interval: float, cancel: Optional[threading.Event]) -> None:
    """Sleep between polls, waking early if cancelled."""
    if interval <= 0:
        return
    if cancel is None:
        threading.Event().wait(interval)
    else:
        cancel.wait(interval)
