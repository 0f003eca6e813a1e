"""Bounded exponential-backoff retries for resource deletions."""

import asyncio
import logging
from dataclasses import dataclass

from imagedock.provisioning.errors import ResourceNotFoundError
from imagedock.provisioning.types import Outcome

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """How often and how patiently one resource deletion is attempted."""

    max_attempts: int = 5
    initial_backoff: float = 3.0
    max_backoff: float = 15.0
    multiplier: float = 1.5

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {self.max_attempts}")
        if self.multiplier <= 1:
            raise ValueError(f"multiplier must be > 1, got {self.multiplier}")

    def delay(self, attempt: int) -> float:
        """Seconds to wait after the given zero-based failed attempt."""
        return min(self.initial_backoff * self.multiplier**attempt, self.max_backoff)

    @classmethod
    def from_dict(cls, d: dict | None) -> "RetryPolicy":
        d = d or {}
        defaults = cls()
        return cls(
            max_attempts=int(d.get("max_attempts", defaults.max_attempts)),
            initial_backoff=float(d.get("initial_backoff", defaults.initial_backoff)),
            max_backoff=float(d.get("max_backoff", defaults.max_backoff)),
            multiplier=float(d.get("multiplier", defaults.multiplier)),
        )


async def run_with_retry(action, policy: RetryPolicy, kind, name, attempt_timeout=None, ui=None, sleep=None) -> Outcome:
    """Run a deletion *action* until it succeeds or *policy* is exhausted.

    A ResourceNotFoundError counts as success: the resource is already gone.
    Exhaustion is reported and returned as a failed Outcome rather than raised.
    asyncio.CancelledError is never caught, so cancelling the caller stops
    the remaining attempts.

    Args:
        action: async callable performing one deletion attempt.
        attempt_timeout: optional seconds allowed for a single attempt.
        ui: optional sink with say()/error() for progress and failures.
        sleep: async callable(seconds) used for backoff; defaults to asyncio.sleep.

    Returns:
        Outcome for the resource.
    """
    sleep = sleep or asyncio.sleep
    _say(ui, f"Attempting deletion -> {kind} : {name}")
    last_error = None
    for attempt in range(policy.max_attempts):
        try:
            if attempt_timeout is not None:
                await asyncio.wait_for(action(), timeout=attempt_timeout)
            else:
                await action()
        except ResourceNotFoundError:
            logger.info(f"{kind} '{name}' not found, treating as deleted")
            if ui:
                ui.say(f"Deleted -> {kind} : '{name}' (already gone)")
            return Outcome(kind, name, True)
        except Exception as e:
            last_error = e if str(e) else TimeoutError(f"attempt timed out after {attempt_timeout}s")
            if attempt + 1 < policy.max_attempts:
                delay = policy.delay(attempt)
                _say(ui, f"Couldn't delete resource {kind} '{name}' (attempt {attempt + 1}/{policy.max_attempts}): {last_error}. Retrying in {delay:.1f}s")
                await sleep(delay)
            continue
        else:
            if ui:
                ui.say(f"Deleted -> {kind} : '{name}'")
            return Outcome(kind, name, True)

    report_deletion_failure(ui, kind, name, last_error)
    return Outcome(kind, name, False, str(last_error))


def report_deletion_failure(ui, kind, name, error):
    """Tell the operator which resource has to be removed by hand."""
    message = f"Error deleting resource. Please delete manually.\n\nName: {name}\nType: {kind}\nError: {error}"
    if ui:
        ui.say(message)
        ui.error(str(error))
    else:
        logger.error(message)


def _say(ui, message):
    if ui:
        ui.say(message)
    else:
        logger.info(message)
