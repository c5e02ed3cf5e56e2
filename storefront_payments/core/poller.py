"""
Status reconciliation poller.

Client-side state machine that re-queries a payment's status until the
payment settles::

    loading --> pending --> success
        \\          \\
         \\          +----> failed
          +---------------> success | failed

The last known record seeds what is displayed, so nothing blocks before the
first render. The first query fires immediately; afterwards the next query
is armed only once the previous one has settled into a non-terminal state,
so queries never overlap. Reaching ``success`` or ``failed`` ends the loop
for good. Transport failures keep the last known state and the next tick
retries. ``refresh()`` issues an extra query on demand, serialized with
the loop.

The poller is a scoped resource: ``async with`` starts it and always tears
the task down on exit, so navigating away never leaks a timer.
"""
import asyncio
import contextlib
from enum import Enum
from typing import Awaitable, Callable, List, Optional

import structlog

from storefront_payments.domain import (
    NetworkError,
    PaymentNotFoundError,
    PaymentStatus,
    PaymentStatusView,
)
from storefront_payments.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

StatusFetcher = Callable[[str], Awaitable[PaymentStatusView]]
StateListener = Callable[["PollState", Optional[PaymentStatusView]], None]


class PollState(str, Enum):
    """What the poller currently knows about the payment."""

    LOADING = "loading"
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (PollState.SUCCESS, PollState.FAILED)


class StatusPoller:
    """
    Polls one payment until it reaches a terminal status.

    Attributes:
        state: Current state of the machine
        latest: Most recent status answer (initially the seed)
        transitions: Initial state followed by one entry per settled query
        request_counter: Number of queries issued so far
        exhausted: True if polling stopped at ``max_attempts`` while unsettled
    """

    def __init__(
        self,
        payment_number: str,
        fetch_status: StatusFetcher,
        seed: Optional[PaymentStatusView] = None,
        interval: float = 5.0,
        max_attempts: Optional[int] = None,
        on_change: Optional[StateListener] = None,
    ):
        """
        Initialize the poller.

        Args:
            payment_number: Payment to watch
            fetch_status: Async status query, e.g. ``PaymentStatusClient.get_status``
            seed: Last known record, shown until the first query answers
            interval: Delay between settled queries
            max_attempts: Optional upper bound on queries
            on_change: Called with the new state whenever it changes; its
                exceptions are logged and polling carries on
        """
        if interval < 0:
            raise ValueError("interval must not be negative")
        if max_attempts is not None and max_attempts <= 0:
            raise ValueError("max_attempts must be positive")

        self.payment_number = payment_number
        self.fetch_status = fetch_status
        self.interval = interval
        self.max_attempts = max_attempts
        self.on_change = on_change

        self.latest = seed
        self.state = PollState.LOADING
        if seed is not None and seed.status.is_terminal:
            self.state = PollState(seed.status.value)
        self.transitions: List[PollState] = [self.state]
        self.request_counter = 0
        self.exhausted = False
        self._task: Optional[asyncio.Task] = None
        self._lock = asyncio.Lock()

    @property
    def display_status(self) -> Optional[PaymentStatus]:
        """Status to render: the freshest answer, falling back to the seed."""
        return self.latest.status if self.latest is not None else None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Arm the polling loop. No-op if already running or already settled."""
        if self.state.is_terminal or self._task is not None:
            return
        self._task = asyncio.create_task(
            self._run(), name=f"status-poller:{self.payment_number}"
        )

    async def wait(self) -> PollState:
        """Block until the loop ends (terminal, exhausted or cancelled)."""
        task = self._task
        if task is not None:
            await asyncio.wait({task})
            if not task.cancelled() and task.exception() is not None:
                raise task.exception()
        return self.state

    async def aclose(self) -> None:
        """Cancel the loop; safe to call repeatedly."""
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.info(
            "status_poller_cancelled",
            payment_number=self.payment_number,
            state=self.state.value,
            queries=self.request_counter,
        )

    async def __aenter__(self) -> "StatusPoller":
        self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def refresh(self) -> PollState:
        """
        Query the status right away instead of waiting for the next tick.

        Shares a lock with the polling loop, so a manual refresh never
        overlaps a scheduled query. Counts towards ``max_attempts``. Once the
        payment has settled this is a no-op; if the refresh settles it, the
        loop is stopped.
        """
        async with self._lock:
            if self.state.is_terminal:
                return self.state
            await self._tick()

        if self.state.is_terminal:
            self._log_settled()
            task = self._task
            if task is not None and not task.done() and task is not asyncio.current_task():
                task.cancel()
        return self.state

    async def _run(self) -> None:
        while True:
            async with self._lock:
                if not self.state.is_terminal:
                    await self._tick()
            if self.state.is_terminal:
                self._log_settled()
                return
            if self.max_attempts is not None and self.request_counter >= self.max_attempts:
                self.exhausted = True
                logger.warning(
                    "status_poller_exhausted",
                    payment_number=self.payment_number,
                    state=self.state.value,
                    queries=self.request_counter,
                )
                return
            await asyncio.sleep(self.interval)

    def _log_settled(self) -> None:
        logger.info(
            "status_poller_settled",
            payment_number=self.payment_number,
            state=self.state.value,
            queries=self.request_counter,
        )

    async def _tick(self) -> None:
        self.request_counter += 1
        try:
            view = await self.fetch_status(self.payment_number)
        except (NetworkError, PaymentNotFoundError) as e:
            metrics.record_status_poll("error")
            logger.warning(
                "status_poll_failed",
                payment_number=self.payment_number,
                request=self.request_counter,
                state=self.state.value,
                error=str(e),
            )
            return

        metrics.record_status_poll(view.status.value)
        self.latest = view
        self._set_state(PollState(view.status.value))

    def _set_state(self, new_state: PollState) -> None:
        previous = self.state
        self.state = new_state
        self.transitions.append(new_state)
        if new_state != previous:
            logger.info(
                "status_poller_transition",
                payment_number=self.payment_number,
                previous=previous.value,
                current=new_state.value,
            )
            if self.on_change is not None:
                try:
                    self.on_change(new_state, self.latest)
                except Exception as e:
                    # A broken listener must not stop reconciliation
                    logger.error(
                        "status_poller_listener_failed",
                        payment_number=self.payment_number,
                        state=new_state.value,
                        error=str(e),
                        error_type=type(e).__name__,
                    )
