"""
Tests for the command-line payment status watcher.
"""
import asyncio
import signal
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from storefront_payments.core.poller import PollState
from storefront_payments.domain import PaymentProvider, PaymentStatus, PaymentStatusView
from storefront_payments.workers import status_watcher


@pytest.fixture
def status_client(mocker: Any, test_settings: Any) -> MagicMock:
    client = MagicMock()
    client.aclose = AsyncMock()
    mocker.patch.object(status_watcher, "PaymentStatusClient", return_value=client)
    mocker.patch.object(status_watcher, "get_settings", return_value=test_settings)
    mocker.patch.object(status_watcher.signal, "signal")
    return client


class TestStatusWatcher:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_watch_until_settled(self, status_client: MagicMock) -> None:
        status_client.get_status = AsyncMock(
            side_effect=[
                PaymentStatusView(status=PaymentStatus.PENDING, provider=PaymentProvider.QPAY),
                PaymentStatusView(status=PaymentStatus.SUCCESS, provider=PaymentProvider.QPAY),
            ]
        )

        state = await status_watcher.watch_payment("PAY0000001", interval=0)

        assert state == PollState.SUCCESS
        assert status_client.get_status.await_count == 2
        status_client.aclose.assert_awaited_once()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_watch_gives_up_after_budget(self, status_client: MagicMock) -> None:
        status_client.get_status = AsyncMock(
            return_value=PaymentStatusView(
                status=PaymentStatus.PENDING, provider=PaymentProvider.BONUM
            )
        )

        state = await status_watcher.watch_payment("PAY0000001", interval=0, max_attempts=3)

        assert state == PollState.PENDING
        assert status_client.get_status.await_count == 3

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_refresh_signal_queries_immediately(self, status_client: MagicMock) -> None:
        """Test that SIGUSR1 settles the payment without waiting for the next tick."""
        status_client.get_status = AsyncMock(
            side_effect=[
                PaymentStatusView(status=PaymentStatus.PENDING, provider=PaymentProvider.BONUM),
                PaymentStatusView(status=PaymentStatus.SUCCESS, provider=PaymentProvider.BONUM),
            ]
        )

        watcher = asyncio.create_task(status_watcher.watch_payment("PAY0000001", interval=60))
        while status_client.get_status.await_count < 1:
            await asyncio.sleep(0)

        handlers = {
            call.args[0]: call.args[1] for call in status_watcher.signal.signal.call_args_list
        }
        handlers[signal.SIGUSR1](signal.SIGUSR1, None)
        state = await asyncio.wait_for(watcher, timeout=1)

        assert state == PollState.SUCCESS
        assert status_client.get_status.await_count == 2
        status_client.aclose.assert_awaited_once()
