"""Retry logic with classified errors, exponential backoff and resumable state.

This module provides:
- RetryController: runs a gateway call, retrying transient failures
- RetryState: persisted progress of one logical operation
- RetryOutcome: typed result of execute_with_retry
- make_operation_id: stable id for an (method, endpoint, payload) triple

Retry policy is a pure function of the gateway result: Retryable results are
retried with a backoff multiplier chosen by classify_error, Fatal results
return immediately. State is persisted per operation so that a later process
can resume an operation instead of restarting it.
"""

from __future__ import annotations

import hashlib
import json
import logging
import random
from collections.abc import Callable
from dataclasses import asdict, dataclass
from typing import Any

from catalogsync.client.api import ApiResponse, Fatal, GatewayResult, Ok
from catalogsync.client.errors import GatewayError, classify_error
from catalogsync.client.kvstore import KeyValueStore
from catalogsync.client.pacing import Scheduler, SystemScheduler
from catalogsync.core.config import SyncSettings
from catalogsync.core.types import ErrorCategory

logger = logging.getLogger(__name__)

# Default retry configuration
DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_DELAY = 1.0  # seconds
DEFAULT_MAX_DELAY = 60.0  # seconds
JITTER_RATIO = 0.1

# Persisted state older than this is discarded instead of resumed
DEFAULT_STATE_MAX_AGE = 24 * 60 * 60  # seconds

RETRY_STATE_PREFIX = "retry_state:"


def make_operation_id(
    method: str, endpoint: str, payload: dict[str, Any] | None = None
) -> str:
    """Derive a stable operation id from the request it performs."""
    body = json.dumps(payload, sort_keys=True, default=str) if payload else ""
    digest = hashlib.sha1(f"{method.upper()} {endpoint} {body}".encode()).hexdigest()
    return f"{method.upper()}:{endpoint}:{digest[:12]}"


@dataclass
class RetryState:
    """Persisted progress of a failing operation.

    Attributes:
        operation_id: Logical operation identifier.
        attempts: Attempts made so far, across invocations.
        last_error: Description of the last failure.
        next_retry_at: Earliest time the next attempt should run.
        endpoint: Request endpoint.
        method: Request method.
        payload: Request body.
        updated_at: When this state was last written.
    """

    operation_id: str
    attempts: int = 0
    last_error: str | None = None
    next_retry_at: float | None = None
    endpoint: str | None = None
    method: str = "GET"
    payload: dict[str, Any] | None = None
    updated_at: float = 0.0

    def to_json(self) -> str:
        return json.dumps(asdict(self), default=str)

    @classmethod
    def from_json(cls, raw: str) -> RetryState:
        data = json.loads(raw)
        return cls(
            operation_id=data["operation_id"],
            attempts=int(data.get("attempts", 0)),
            last_error=data.get("last_error"),
            next_retry_at=data.get("next_retry_at"),
            endpoint=data.get("endpoint"),
            method=data.get("method", "GET"),
            payload=data.get("payload"),
            updated_at=float(data.get("updated_at", 0.0)),
        )


@dataclass
class RetryOutcome:
    """Result of executing a call with retry.

    Attributes:
        success: True if a call eventually succeeded.
        attempts: Attempts made (including resumed ones).
        data: Response of the successful call.
        error: Last error when unsuccessful.
        category: Category of the last error.
    """

    success: bool
    attempts: int
    data: ApiResponse | None = None
    error: GatewayError | None = None
    category: ErrorCategory | None = None

    @property
    def error_message(self) -> str | None:
        return str(self.error) if self.error else None


@dataclass
class RetryStats:
    """Counters for one controller instance."""

    calls: int = 0
    attempts: int = 0
    retries: int = 0
    successes: int = 0
    failures: int = 0
    resumed: int = 0


class RetryController:
    """Runs gateway calls with classified retry and exponential backoff."""

    def __init__(
        self,
        store: KeyValueStore | None = None,
        *,
        max_attempts: int = DEFAULT_MAX_RETRIES + 1,
        base_delay: float = DEFAULT_BASE_DELAY,
        max_delay: float = DEFAULT_MAX_DELAY,
        max_state_age: float = DEFAULT_STATE_MAX_AGE,
        scheduler: Scheduler | None = None,
        rng: random.Random | None = None,
    ) -> None:
        """Initialize the controller.

        Args:
            store: Durable store for RetryState (None disables persistence).
            max_attempts: Attempts allowed per invocation (>= 1).
            base_delay: Backoff delay before the first retry.
            max_delay: Upper bound for any delay.
            max_state_age: Seconds after which persisted state is stale.
            scheduler: Clock/sleep provider.
            rng: Random source for jitter.
        """
        self._store = store
        self.max_attempts = max(1, max_attempts)
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.max_state_age = max_state_age
        self._scheduler = scheduler or SystemScheduler()
        self._rng = rng or random.Random()
        self.stats = RetryStats()

    @classmethod
    def from_settings(
        cls,
        settings: SyncSettings,
        store: KeyValueStore | None = None,
        scheduler: Scheduler | None = None,
    ) -> RetryController:
        """Build a controller from sync settings."""
        return cls(
            store,
            max_attempts=settings.max_attempts,
            base_delay=settings.base_delay,
            max_delay=settings.max_delay,
            max_state_age=settings.retry_state_max_age,
            scheduler=scheduler,
        )

    # === Backoff ===

    def compute_delay(self, attempt: int, multiplier: float, jitter: bool = True) -> float:
        """Delay before the retry that follows the given failed attempt.

        Args:
            attempt: Number of the attempt that just failed (1-based).
            multiplier: Backoff multiplier of the error category.
            jitter: Add uniform jitter in [0, 10%] of the base component.

        Returns:
            Delay in seconds, never above max_delay.
        """
        delay = self.base_delay * multiplier ** max(0, attempt - 1)
        if jitter:
            delay += self._rng.uniform(0, JITTER_RATIO * delay)
        return min(delay, self.max_delay)

    # === Execution ===

    def execute_with_retry(
        self,
        call: Callable[[], GatewayResult],
        *,
        operation_id: str | None = None,
        endpoint: str | None = None,
        method: str = "GET",
        payload: dict[str, Any] | None = None,
    ) -> RetryOutcome:
        """Execute a call, retrying transient failures.

        When an operation id is given (or derivable from endpoint), fresh
        persisted state for it is resumed: its attempt count carries over and
        the first attempt waits for its next_retry_at.

        Args:
            call: Function performing one gateway request.
            operation_id: Logical operation id for persisted state.
            endpoint: Request endpoint (stored for inspection/resume).
            method: Request method.
            payload: Request body.

        Returns:
            RetryOutcome; failures are returned, never raised.
        """
        if operation_id is None and endpoint is not None:
            operation_id = make_operation_id(method, endpoint, payload)

        self.stats.calls += 1
        state = self.load_state(operation_id) if operation_id else None
        if state is not None:
            self.stats.resumed += 1
            logger.info(
                f"Resuming operation {operation_id} after {state.attempts} attempts"
            )
            if state.next_retry_at:
                self._scheduler.wait_until(state.next_retry_at)
        elif operation_id:
            state = RetryState(
                operation_id=operation_id,
                endpoint=endpoint,
                method=method.upper(),
                payload=payload,
            )

        prior_attempts = state.attempts if state else 0
        attempts = prior_attempts
        error: GatewayError | None = None
        category: ErrorCategory | None = None

        for local_attempt in range(1, self.max_attempts + 1):
            attempts += 1
            self.stats.attempts += 1
            result = call()

            if isinstance(result, Ok):
                self.stats.successes += 1
                if operation_id:
                    self.clear_state(operation_id)
                return RetryOutcome(success=True, attempts=attempts, data=result.response)

            error = result.error
            classification = classify_error(error)
            category = classification.category

            if isinstance(result, Fatal) or not classification.retryable:
                logger.error(f"Fatal {category.value} error, not retrying: {error}")
                self.stats.failures += 1
                if operation_id:
                    self.clear_state(operation_id)
                return RetryOutcome(
                    success=False, attempts=attempts, error=error, category=category
                )

            delay = self.compute_delay(attempts, classification.multiplier)
            if error.retry_after is not None:
                delay = min(error.retry_after, self.max_delay)

            if state is not None:
                state.attempts = attempts
                state.last_error = str(error)
                state.next_retry_at = self._scheduler.now() + delay
                self._save_state(state)

            if local_attempt == self.max_attempts:
                break

            self.stats.retries += 1
            logger.warning(
                f"Attempt {local_attempt}/{self.max_attempts} failed "
                f"({category.value}): {error}. Retrying in {delay:.1f}s..."
            )
            self._scheduler.sleep(delay)

        logger.error(f"All {self.max_attempts} attempts failed: {error}")
        self.stats.failures += 1
        return RetryOutcome(success=False, attempts=attempts, error=error, category=category)

    def resume(
        self, operation_id: str, call: Callable[[], GatewayResult]
    ) -> RetryOutcome | None:
        """Resume a persisted operation.

        Returns:
            The outcome, or None if no fresh state exists for the id.
        """
        state = self.load_state(operation_id)
        if state is None:
            return None
        return self.execute_with_retry(
            call,
            operation_id=operation_id,
            endpoint=state.endpoint,
            method=state.method,
            payload=state.payload,
        )

    # === Persisted state ===

    def _key(self, operation_id: str) -> str:
        return f"{RETRY_STATE_PREFIX}{operation_id}"

    def _save_state(self, state: RetryState) -> None:
        if self._store is None:
            return
        state.updated_at = self._scheduler.now()
        self._store.set(self._key(state.operation_id), state.to_json())

    def _is_stale(self, state: RetryState) -> bool:
        return self._scheduler.now() - state.updated_at > self.max_state_age

    def load_state(self, operation_id: str) -> RetryState | None:
        """Load fresh persisted state; stale or corrupt state is discarded."""
        if self._store is None:
            return None
        raw = self._store.get(self._key(operation_id))
        if raw is None:
            return None
        try:
            state = RetryState.from_json(raw)
        except (ValueError, KeyError, TypeError):
            logger.warning(f"Discarding unreadable retry state for {operation_id}")
            self.clear_state(operation_id)
            return None
        if self._is_stale(state):
            logger.info(f"Discarding stale retry state for {operation_id}")
            self.clear_state(operation_id)
            return None
        return state

    def clear_state(self, operation_id: str) -> None:
        """Delete persisted state for an operation."""
        if self._store is not None:
            self._store.delete(self._key(operation_id))

    def pending_states(self) -> list[RetryState]:
        """List fresh persisted states (full scan)."""
        if self._store is None:
            return []
        states = []
        for key in self._store.keys(RETRY_STATE_PREFIX):
            state = self.load_state(key[len(RETRY_STATE_PREFIX):])
            if state is not None:
                states.append(state)
        return states

    def cleanup_stale(self) -> int:
        """Remove stale persisted states (full scan).

        Returns:
            Number of states removed.
        """
        if self._store is None:
            return 0
        removed = 0
        for key in self._store.keys(RETRY_STATE_PREFIX):
            if self.load_state(key[len(RETRY_STATE_PREFIX):]) is None:
                removed += 1
        if removed:
            logger.info(f"Removed {removed} stale retry states")
        return removed

    def clear_all(self) -> int:
        """Delete every persisted state, fresh or stale.

        Returns:
            Number of states removed.
        """
        if self._store is None:
            return 0
        keys = self._store.keys(RETRY_STATE_PREFIX)
        for key in keys:
            self._store.delete(key)
        return len(keys)
