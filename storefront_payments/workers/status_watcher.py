"""
Payment status watcher.

Follows one payment from the command line until it settles, the poll
budget runs out, or the process is told to stop. SIGUSR1 forces an
immediate status query.
"""
import asyncio
import signal
import sys
from typing import Any, Optional, Set

import structlog

from storefront_payments.config import get_settings
from storefront_payments.core.poller import PollState, StatusPoller
from storefront_payments.domain import PaymentStatusView
from storefront_payments.integrations.status_client import PaymentStatusClient
from storefront_payments.monitoring.logging import setup_logging

logger = structlog.get_logger(__name__)


def _report(state: PollState, view: Optional[PaymentStatusView]) -> None:
    logger.info(
        "payment_status_changed",
        state=state.value,
        provider=view.provider.value if view is not None else None,
    )


async def watch_payment(
    payment_number: str,
    interval: Optional[float] = None,
    max_attempts: Optional[int] = None,
) -> PollState:
    """
    Poll a payment until it reaches a terminal state.

    Args:
        payment_number: Payment to follow
        interval: Seconds between queries (default from settings)
        max_attempts: Query budget (default from settings)

    Returns:
        PollState: Final state of the poller
    """
    settings = get_settings()
    client = PaymentStatusClient(settings=settings)
    poller = StatusPoller(
        payment_number,
        client.get_status,
        interval=interval if interval is not None else settings.poll_interval_seconds,
        max_attempts=max_attempts or settings.effective_poll_max_attempts,
        on_change=_report,
    )

    loop = asyncio.get_running_loop()
    stop = asyncio.Event()

    def signal_handler(sig: int, frame: Any) -> None:
        logger.info("status_watcher_shutdown_signal_received", signal=sig)
        loop.call_soon_threadsafe(stop.set)

    refreshes: Set[asyncio.Task] = set()

    def refresh_handler(sig: int, frame: Any) -> None:
        logger.info("status_watcher_refresh_requested", signal=sig)
        loop.call_soon_threadsafe(schedule_refresh)

    def schedule_refresh() -> None:
        task = loop.create_task(poller.refresh())
        refreshes.add(task)
        task.add_done_callback(refreshes.discard)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)
    if hasattr(signal, "SIGUSR1"):
        signal.signal(signal.SIGUSR1, refresh_handler)

    logger.info("status_watcher_starting", payment_number=payment_number)
    try:
        async with poller:
            waiter = asyncio.create_task(poller.wait())
            stopper = asyncio.create_task(stop.wait())
            done, _ = await asyncio.wait({waiter, stopper}, return_when=asyncio.FIRST_COMPLETED)
            stopper.cancel()
            if waiter in done:
                waiter.result()
            else:
                waiter.cancel()
    finally:
        for task in list(refreshes):
            task.cancel()
        await client.aclose()
        logger.info(
            "status_watcher_stopped",
            payment_number=payment_number,
            state=poller.state.value,
            queries=poller.request_counter,
            exhausted=poller.exhausted,
        )

    return poller.state


def main() -> None:
    import argparse

    parser = argparse.ArgumentParser(description="Watch a payment until it settles")
    parser.add_argument("payment_number", help="Payment number to follow")
    parser.add_argument("--interval", type=float, default=None, help="Seconds between queries")
    parser.add_argument("--max-attempts", type=int, default=None, help="Query budget")
    args = parser.parse_args()

    setup_logging()
    state = asyncio.run(
        watch_payment(args.payment_number, interval=args.interval, max_attempts=args.max_attempts)
    )
    sys.exit(0 if state == PollState.SUCCESS else 1)


if __name__ == "__main__":
    main()
