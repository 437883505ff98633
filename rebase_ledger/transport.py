"""
transport.py - In-Memory Bridge Transport

Reference message-transport collaborator connecting ledger instances:
- Messages are just data, receivers are just objects with receive(message)
- Simple heap-based delivery ordered by (deliver_at, submission order)
- Each message id is delivered at most once
- Per-route flow control with an integer token bucket

Core concepts:
1. RateLimiterConfig: capacity/refill pair for one route (or disabled)
2. TokenBucket: refills linearly with time, never above capacity
3. MessageChannel: in-flight queue plus delivery to registered receivers

Throttling is transport policy only. A route that is over budget refuses the
message before the sending ledger applies anything.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Dict, List, Optional, Protocol, Set, Tuple
import heapq

from .core import ExecuteResult, LedgerError, RateLimitExceeded, require_uint
from .accrual import elapsed_seconds

if TYPE_CHECKING:
    from .bridge import BridgeMessage


# ============================================================================
# FLOW CONTROL
# ============================================================================

@dataclass(frozen=True, slots=True)
class RateLimiterConfig:
    """
    Flow-control budget for one route.

    Attributes:
        capacity: Maximum amount the bucket can hold (largest single message)
        refill_rate: Amount added back per second
        enabled: False disables throttling (capacity and refill_rate must be 0)

    An enabled config needs 0 < refill_rate < capacity.
    """
    capacity: int = 0
    refill_rate: int = 0
    enabled: bool = False

    def __post_init__(self):
        require_uint(self.capacity, "capacity")
        require_uint(self.refill_rate, "refill_rate")
        if self.enabled:
            if self.refill_rate == 0 or self.refill_rate >= self.capacity:
                raise ValueError(
                    f"enabled rate limiter needs 0 < refill_rate < capacity, "
                    f"got capacity={self.capacity} refill_rate={self.refill_rate}"
                )
        elif self.capacity != 0 or self.refill_rate != 0:
            raise ValueError("disabled rate limiter must have zero capacity and refill_rate")


DISABLED_LIMITER = RateLimiterConfig()


class TokenBucket:
    """
    Integer token bucket.

    Starts full. Tokens refill at config.refill_rate per whole second up to
    config.capacity. A disabled bucket accepts any amount.
    """

    def __init__(self, config: RateLimiterConfig = DISABLED_LIMITER, now: Optional[datetime] = None):
        self._config = config
        self._tokens = config.capacity
        self._last_updated = now

    @property
    def config(self) -> RateLimiterConfig:
        return self._config

    def _refill(self, now: datetime) -> None:
        if self._last_updated is not None:
            elapsed = elapsed_seconds(self._last_updated, now)
            self._tokens = min(
                self._config.capacity,
                self._tokens + elapsed * self._config.refill_rate,
            )
        if self._last_updated is None or now > self._last_updated:
            self._last_updated = now

    def available(self, now: datetime) -> int:
        """Tokens available at now (refills first)."""
        self._refill(now)
        return self._tokens

    def check(self, amount: int, now: datetime) -> None:
        """
        Verify amount fits in the budget without consuming anything.

        Raises:
            RateLimitExceeded: If amount exceeds capacity (wait_seconds=0,
                the amount can never pass) or the current token count.
        """
        require_uint(amount, "amount")
        if not self._config.enabled:
            return
        if amount > self._config.capacity:
            raise RateLimitExceeded(
                f"amount {amount} exceeds bucket capacity {self._config.capacity}"
            )
        self._refill(now)
        if amount > self._tokens:
            missing = amount - self._tokens
            wait = -(-missing // self._config.refill_rate)
            raise RateLimitExceeded(
                f"amount {amount} exceeds available {self._tokens}, retry in {wait}s",
                wait_seconds=wait,
            )

    def consume(self, amount: int, now: datetime) -> None:
        """
        Take amount out of the bucket.

        Raises:
            RateLimitExceeded: If check() would fail (nothing is consumed).
        """
        self.check(amount, now)
        if self._config.enabled:
            self._tokens -= amount

    def set_config(self, config: RateLimiterConfig, now: datetime) -> None:
        """Replace the budget; accrued tokens are kept but capped at the new capacity."""
        self._refill(now)
        if not self._config.enabled and config.enabled:
            self._tokens = config.capacity
        self._config = config
        self._tokens = min(self._tokens, config.capacity)

    def __repr__(self) -> str:
        if not self._config.enabled:
            return "TokenBucket(disabled)"
        return f"TokenBucket({self._tokens}/{self._config.capacity}, +{self._config.refill_rate}/s)"


# ============================================================================
# MESSAGE CHANNEL
# ============================================================================

class MessageReceiver(Protocol):
    """Anything that can apply an inbound bridge message."""

    def receive(self, message: 'BridgeMessage') -> ExecuteResult:
        ...


class MessageChannel:
    """
    In-memory transport between named ledger instances.

    Design:
    - Receivers register under their ledger name
    - submit() consumes route budget and queues the message
    - deliver_due() hands due messages to their destination, in order
    - A message id is accepted and delivered at most once
    """

    def __init__(self, verbose: bool = False):
        self._heap: List[Tuple[datetime, int, 'BridgeMessage']] = []
        self._receivers: Dict[str, MessageReceiver] = {}
        self._routes: Dict[Tuple[str, str], TokenBucket] = {}
        self._submitted: Set[str] = set()
        self._delivered: Set[str] = set()
        self._sequence = 0
        self.verbose = verbose

    def register(self, ledger_name: str, receiver: MessageReceiver) -> None:
        """Register the receiver for messages addressed to ledger_name."""
        self._receivers[ledger_name] = receiver

    def configure_route(
        self,
        source: str,
        dest: str,
        config: RateLimiterConfig,
        now: Optional[datetime] = None,
    ) -> None:
        """Set the flow-control budget for messages from source to dest."""
        bucket = self._routes.get((source, dest))
        if bucket is None:
            self._routes[(source, dest)] = TokenBucket(config, now)
        else:
            bucket.set_config(config, now or datetime(1970, 1, 1))

    def bucket_for(self, source: str, dest: str) -> TokenBucket:
        """Bucket of a route (a disabled bucket for unconfigured routes)."""
        bucket = self._routes.get((source, dest))
        if bucket is None:
            bucket = TokenBucket()
            self._routes[(source, dest)] = bucket
        return bucket

    def check(self, message: 'BridgeMessage', now: datetime) -> None:
        """
        Verify that submit(message, now) would be accepted.

        Raises:
            ValueError: If the destination is unknown or the id was already submitted
            RateLimitExceeded: If the route budget cannot cover message.amount
        """
        if message.dest_ledger not in self._receivers:
            raise ValueError(f"No receiver registered for ledger {message.dest_ledger}")
        if message.message_id in self._submitted:
            raise ValueError(f"Message {message.message_id} already submitted")
        self.bucket_for(message.source_ledger, message.dest_ledger).check(message.amount, now)

    def submit(
        self,
        message: 'BridgeMessage',
        now: datetime,
        delay: timedelta = timedelta(0),
    ) -> datetime:
        """
        Consume route budget and queue message for delivery at now + delay.

        Returns the scheduled delivery time.
        """
        if delay < timedelta(0):
            raise ValueError("delay cannot be negative")
        self.check(message, now)
        self.bucket_for(message.source_ledger, message.dest_ledger).consume(message.amount, now)

        deliver_at = now + delay
        heapq.heappush(self._heap, (deliver_at, self._sequence, message))
        self._sequence += 1
        self._submitted.add(message.message_id)

        if self.verbose:
            print(f"📨 Queued {message.message_id}: {message.source_ledger} → "
                  f"{message.dest_ledger} amount={message.amount} at {deliver_at}")
        return deliver_at

    def deliver_due(self, now: datetime) -> List[Tuple['BridgeMessage', ExecuteResult]]:
        """
        Deliver every message with deliver_at <= now, in order.

        Returns (message, result) pairs for the messages handed over.

        Raises:
            Exception: Any exception raised by a receiver propagates unchanged.
                       The failing message is put back in the queue so a later
                       call retries it; messages after it stay queued.
        """
        delivered = []
        while self._heap and self._heap[0][0] <= now:
            entry = heapq.heappop(self._heap)
            message = entry[2]
            if message.message_id in self._delivered:
                continue

            receiver = self._receivers.get(message.dest_ledger)
            if receiver is None:
                heapq.heappush(self._heap, entry)
                raise LedgerError(f"No receiver registered for ledger {message.dest_ledger}")
            try:
                result = receiver.receive(message)
            except Exception:
                heapq.heappush(self._heap, entry)
                raise

            self._delivered.add(message.message_id)
            delivered.append((message, result))
            if self.verbose:
                print(f"📬 Delivered {message.message_id} to {message.dest_ledger}: {result.value}")
        return delivered

    def pending_count(self) -> int:
        return len(self._heap)

    def peek_next(self) -> Optional[datetime]:
        """Delivery time of the next queued message, or None when empty."""
        if not self._heap:
            return None
        return self._heap[0][0]

    def is_delivered(self, message_id: str) -> bool:
        return message_id in self._delivered
