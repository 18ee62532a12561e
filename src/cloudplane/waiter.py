"""Wait for a remote object's status to reach a target state.

Resource handlers build a ``StateChangeConf`` around a zero-argument refresh
function and call ``wait()``. The refresh function returns a ``FetchResult``
(snapshot plus status label, or ``FetchResult.not_found()`` when the object
does not exist) and raises on any other failure.

Example:
    conf = StateChangeConf(
        pending=['PENDING'],
        target=['ACTIVE', 'INACTIVE'],
        refresh=lambda: status_monitor(client, name),
        timeout=600,
        min_timeout=10,
        description=f"Network Monitor ({name}) create",
    )
    monitor = conf.wait()
"""

import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional, Sequence

from cloudplane.utils.errors import (
    ResourceNotFoundError,
    UnexpectedStateError,
    WaitCancelledError,
    WaitError,
    WaitFetchError,
    WaitNotFoundError,
    WaitTimeoutError,
)
from cloudplane.utils.logging import get_logger

logger = get_logger(__name__)

# Backoff between polls when no fixed poll interval is configured
INITIAL_WAIT = 0.1
MAX_WAIT = 10.0

# Status label reported for an object that does not exist
NOT_FOUND_STATUS = ''


class FetchKind(Enum):
    """Outcome kind of a single status fetch."""
    FOUND = "found"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class FetchResult:
    """One observation of a remote object."""
    snapshot: Any
    status: str
    kind: FetchKind = FetchKind.FOUND

    @classmethod
    def found(cls, snapshot: Any, status: str) -> 'FetchResult':
        return cls(snapshot=snapshot, status=status, kind=FetchKind.FOUND)

    @classmethod
    def not_found(cls) -> 'FetchResult':
        return cls(snapshot=None, status=NOT_FOUND_STATUS, kind=FetchKind.NOT_FOUND)

    @property
    def is_not_found(self) -> bool:
        return self.kind is FetchKind.NOT_FOUND


RefreshFunc = Callable[[], FetchResult]


class WaitState(Enum):
    """States of a single wait."""
    PENDING = "pending"
    TARGET = "target"
    UNRECOGNIZED = "unrecognized"


@dataclass
class StateChangeConf:
    """Configuration of one wait.

    Attributes:
        pending: Status labels meaning "still in progress"
        target: Status labels meaning "done"; empty means absence is the goal
        refresh: Zero-argument status fetch
        timeout: Total time budget in seconds
        min_timeout: Floor for the delay between two fetches
        delay: Time to wait before the first fetch
        poll_interval: Fixed delay between fetches instead of exponential backoff
        not_found_checks: Consecutive not-found results tolerated when absence
            is neither pending nor target
        continuous_target_occurrence: Consecutive target observations required
        description: Used in log and error messages
    """
    pending: Sequence[str]
    target: Sequence[str]
    refresh: RefreshFunc
    timeout: float
    min_timeout: float = 0.0
    delay: float = 0.0
    poll_interval: float = 0.0
    not_found_checks: int = 20
    continuous_target_occurrence: int = 1
    description: str = 'resource'

    def wait(
        self,
        cancel_event: Optional[threading.Event] = None,
        clock: Optional[Callable[[], float]] = None,
        sleep: Optional[Callable[[float], Any]] = None,
    ) -> Any:
        return wait_for_state(self, cancel_event=cancel_event, clock=clock, sleep=sleep)

    def next_wait(self, attempt: int) -> float:
        """Delay before the fetch following ``attempt`` (0-indexed)."""
        if self.poll_interval > 0:
            wait = self.poll_interval
        else:
            wait = min(INITIAL_WAIT * (2 ** attempt), MAX_WAIT)
        return max(wait, self.min_timeout)


def _default_sleep(cancel_event: Optional[threading.Event]) -> Callable[[float], Any]:
    if cancel_event is None:
        return time.sleep
    # Event.wait returns early once the event is set
    return cancel_event.wait


def wait_for_state(
    conf: StateChangeConf,
    cancel_event: Optional[threading.Event] = None,
    clock: Optional[Callable[[], float]] = None,
    sleep: Optional[Callable[[float], Any]] = None,
) -> Any:
    """Poll ``conf.refresh`` until the status reaches ``conf.target``.

    Args:
        conf: Wait configuration
        cancel_event: Checked before every fetch; setting it ends the wait
        clock: Monotonic clock; defaults to time.monotonic
        sleep: Sleep function; defaults to a sleep that wakes on cancellation

    Returns:
        The snapshot of the final fetch (None when absence satisfied the wait)

    Raises:
        WaitFetchError: The refresh function raised
        WaitNotFoundError: The object stayed absent beyond ``not_found_checks``
        UnexpectedStateError: A status outside both pending and target was seen
        WaitTimeoutError: The budget ran out while still pending
        WaitCancelledError: ``cancel_event`` was set
    """
    pending = set(conf.pending)
    target = set(conf.target)
    overlap = pending & target
    if overlap:
        raise ValueError(f"pending and target states overlap: {sorted(overlap)}")

    clock = clock or time.monotonic
    sleeper = sleep or _default_sleep(cancel_event)
    start = clock()
    deadline = start + conf.timeout

    last_snapshot: Any = None
    last_status: Optional[str] = None
    last_error: Optional[Exception] = None
    not_found_count = 0
    target_count = 0
    attempt = 0

    def cancelled() -> bool:
        return cancel_event is not None and cancel_event.is_set()

    def cancel_error() -> WaitCancelledError:
        return WaitCancelledError(
            f"waiting for {conf.description}: cancelled",
            last_snapshot=last_snapshot,
            last_status=last_status,
        )

    if conf.delay > 0 and not cancelled():
        sleeper(min(conf.delay, max(deadline - clock(), 0)))

    while True:
        if cancelled():
            raise cancel_error()

        try:
            result = conf.refresh()
        except WaitError:
            raise
        except Exception as e:
            raise WaitFetchError(
                f"waiting for {conf.description}: {e}",
                cause=e,
                last_snapshot=last_snapshot,
                last_status=last_status,
            ) from e

        state = WaitState.PENDING
        if result.is_not_found:
            last_status = NOT_FOUND_STATUS
            target_count = 0
            if not target or NOT_FOUND_STATUS in target:
                state = WaitState.TARGET
            elif NOT_FOUND_STATUS not in pending:
                not_found_count += 1
                last_error = ResourceNotFoundError(
                    f"couldn't find {conf.description} ({not_found_count} consecutive checks)"
                )
                if not_found_count > conf.not_found_checks:
                    raise WaitNotFoundError(
                        f"waiting for {conf.description}: couldn't find resource "
                        f"({not_found_count} retries)",
                        not_found_count=not_found_count,
                        last_snapshot=last_snapshot,
                        last_status=last_status,
                    )
        else:
            not_found_count = 0
            last_error = None
            last_snapshot = result.snapshot
            last_status = result.status
            if result.status in target:
                target_count += 1
                if target_count >= conf.continuous_target_occurrence:
                    state = WaitState.TARGET
            elif result.status in pending:
                target_count = 0
            else:
                state = WaitState.UNRECOGNIZED

        logger.debug(
            f"Waiting for {conf.description}: status={result.status!r} "
            f"({state.value}, attempt {attempt + 1})"
        )

        if state is WaitState.TARGET:
            logger.debug(f"{conf.description} reached {result.status!r} "
                         f"after {clock() - start:.1f}s")
            return result.snapshot

        if state is WaitState.UNRECOGNIZED:
            raise UnexpectedStateError(
                f"waiting for {conf.description}: unexpected state {result.status!r}, "
                f"wanted target {sorted(target)}",
                expected=sorted(target),
                last_snapshot=last_snapshot,
                last_status=last_status,
            )

        wait = conf.next_wait(attempt)
        attempt += 1
        remaining = deadline - clock()
        if remaining <= wait:
            if remaining > 0:
                sleeper(remaining)
            if cancelled():
                raise cancel_error()
            logger.debug(f"Timed out waiting for {conf.description} (last status {last_status!r})")
            raise WaitTimeoutError(
                f"timeout while waiting for {conf.description} "
                f"(last state: {last_status!r}, timeout: {conf.timeout:g}s)",
                timeout=conf.timeout,
                last_error=last_error,
                last_snapshot=last_snapshot,
                last_status=last_status,
            )

        sleeper(wait)
