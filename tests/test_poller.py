"""
Tests for the status reconciliation poller.
"""
import asyncio
from typing import Any, List, Optional, Union

import httpx
import pytest

from storefront_payments.core.poller import PollState, StatusPoller
from storefront_payments.domain import (
    NetworkError,
    PaymentProvider,
    PaymentStatus,
    PaymentStatusView,
)
from storefront_payments.integrations.status_client import PaymentStatusClient


def view(status: str, provider: str = "bonum") -> PaymentStatusView:
    return PaymentStatusView(status=PaymentStatus(status), provider=PaymentProvider(provider))


class ScriptedStatus:
    """Status source answering from a script; the last answer repeats."""

    def __init__(self, *answers: Union[PaymentStatusView, Exception]):
        self.answers = list(answers)
        self.queries: List[str] = []

    async def __call__(self, payment_number: str) -> PaymentStatusView:
        self.queries.append(payment_number)
        index = min(len(self.queries), len(self.answers)) - 1
        answer = self.answers[index]
        if isinstance(answer, Exception):
            raise answer
        return answer


class TestStatusPoller:
    """Test suite for StatusPoller."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_stops_after_terminal_status(self) -> None:
        """Test that pending, pending, success issues exactly three queries."""
        source = ScriptedStatus(view("pending"), view("pending"), view("success"))
        poller = StatusPoller("PAY0000001", source, interval=0)

        async with poller:
            assert await poller.wait() == PollState.SUCCESS

        await asyncio.sleep(0.01)
        assert len(source.queries) == 3
        assert poller.request_counter == 3
        assert not poller.is_running

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_seeded_pending_walks_loading_pending_pending_success(self) -> None:
        """Test the observed transitions when seeded from the last known record."""
        source = ScriptedStatus(view("pending"), view("pending"), view("success"))
        seen: List[PollState] = []
        poller = StatusPoller(
            "PAY0000001",
            source,
            seed=view("pending"),
            interval=0,
            on_change=lambda state, latest: seen.append(state),
        )

        assert poller.state == PollState.LOADING
        assert poller.display_status == PaymentStatus.PENDING

        async with poller:
            await poller.wait()

        assert poller.transitions == [
            PollState.LOADING,
            PollState.PENDING,
            PollState.PENDING,
            PollState.SUCCESS,
        ]
        assert seen == [PollState.PENDING, PollState.SUCCESS]
        assert poller.display_status == PaymentStatus.SUCCESS
        assert len(source.queries) == 3

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_failed_is_terminal(self) -> None:
        source = ScriptedStatus(view("pending"), view("failed"))
        poller = StatusPoller("PAY0000001", source, interval=0)

        async with poller:
            assert await poller.wait() == PollState.FAILED

        assert len(source.queries) == 2

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_terminal_seed_issues_no_queries(self) -> None:
        source = ScriptedStatus(view("pending"))
        poller = StatusPoller("PAY0000001", source, seed=view("success"), interval=0)

        async with poller:
            assert not poller.is_running
            assert await poller.wait() == PollState.SUCCESS

        assert source.queries == []

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_network_failure_keeps_last_state(self) -> None:
        """Test that a failed poll is invisible and the next tick retries."""
        source = ScriptedStatus(
            view("pending"),
            NetworkError("status endpoint unreachable", operation="get_status"),
            view("success"),
        )
        states: List[Optional[PollState]] = []

        async def observe(payment_number: str) -> PaymentStatusView:
            states.append(poller.state)
            return await source(payment_number)

        poller = StatusPoller("PAY0000001", observe, interval=0)

        async with poller:
            await poller.wait()

        assert states == [PollState.LOADING, PollState.PENDING, PollState.PENDING]
        assert poller.transitions == [PollState.LOADING, PollState.PENDING, PollState.SUCCESS]
        assert poller.request_counter == 3

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_max_attempts_bounds_polling(self) -> None:
        """Test that an abandoned payment stops being polled."""
        source = ScriptedStatus(view("pending"))
        poller = StatusPoller("PAY0000001", source, interval=0, max_attempts=4)

        async with poller:
            assert await poller.wait() == PollState.PENDING

        assert poller.exhausted is True
        assert len(source.queries) == 4

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_teardown_cancels_the_timer(self) -> None:
        """Test that leaving the scope stops further queries."""
        source = ScriptedStatus(view("pending"))

        async with StatusPoller("PAY0000001", source, interval=0.01) as poller:
            await asyncio.sleep(0.035)
            assert poller.is_running

        issued = len(source.queries)
        await asyncio.sleep(0.05)

        assert issued >= 1
        assert len(source.queries) == issued
        assert not poller.is_running
        assert poller.state == PollState.PENDING

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_aclose_is_idempotent(self) -> None:
        poller = StatusPoller("PAY0000001", ScriptedStatus(view("pending")), interval=10)
        poller.start()
        await asyncio.sleep(0)

        await poller.aclose()
        await poller.aclose()

        assert not poller.is_running

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_failing_listener_does_not_stop_polling(self) -> None:
        """Test that an exception in on_change is logged and polling continues."""
        source = ScriptedStatus(view("pending"), view("pending"), view("success"))
        calls: List[PollState] = []

        def listener(state: PollState, latest: Optional[PaymentStatusView]) -> None:
            calls.append(state)
            raise RuntimeError("render failed")

        poller = StatusPoller("PAY0000001", source, interval=0, on_change=listener)

        async with poller:
            assert await poller.wait() == PollState.SUCCESS

        assert calls == [PollState.PENDING, PollState.SUCCESS]
        assert len(source.queries) == 3

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_refresh_settles_without_waiting_for_the_timer(self) -> None:
        """Test a manual refresh between ticks of a slow loop."""
        source = ScriptedStatus(view("pending"), view("success"))
        poller = StatusPoller("PAY0000001", source, interval=10)

        async with poller:
            while poller.request_counter < 1:
                await asyncio.sleep(0)
            assert poller.state == PollState.PENDING

            assert await poller.refresh() == PollState.SUCCESS
            assert await asyncio.wait_for(poller.wait(), timeout=1) == PollState.SUCCESS

        assert len(source.queries) == 2
        assert poller.transitions == [PollState.LOADING, PollState.PENDING, PollState.SUCCESS]
        assert not poller.is_running

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_refresh_before_start(self) -> None:
        source = ScriptedStatus(view("pending"))
        poller = StatusPoller("PAY0000001", source, interval=0)

        assert await poller.refresh() == PollState.PENDING

        assert poller.request_counter == 1
        assert poller.transitions == [PollState.LOADING, PollState.PENDING]
        assert not poller.is_running

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_refresh_after_settling_is_a_no_op(self) -> None:
        source = ScriptedStatus(view("pending"))
        poller = StatusPoller("PAY0000001", source, seed=view("failed"), interval=0)

        assert await poller.refresh() == PollState.FAILED

        assert source.queries == []
        assert poller.request_counter == 0

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unexpected_errors_propagate_from_wait(self) -> None:
        poller = StatusPoller("PAY0000001", ScriptedStatus(RuntimeError("bug")), interval=0)

        async with poller:
            with pytest.raises(RuntimeError, match="bug"):
                await poller.wait()

    @pytest.mark.unit
    def test_rejects_invalid_configuration(self) -> None:
        source = ScriptedStatus(view("pending"))
        with pytest.raises(ValueError):
            StatusPoller("PAY0000001", source, interval=-1)
        with pytest.raises(ValueError):
            StatusPoller("PAY0000001", source, max_attempts=0)


class TestPaymentStatusClient:
    """Test suite for PaymentStatusClient."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_get_status(self, test_settings: Any) -> None:
        seen: List[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.url.path)
            return httpx.Response(200, json={"status": "success", "provider": "qpay"})

        client = PaymentStatusClient(settings=test_settings, transport=httpx.MockTransport(handler))
        try:
            result = await client.get_status("PAY0000001")
        finally:
            await client.aclose()

        assert seen == ["/payments/PAY0000001/status"]
        assert result == view("success", "qpay")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_server_errors_become_network_errors(self, test_settings: Any) -> None:
        replies: List[Any] = [
            httpx.Response(503, text="unavailable"),
            httpx.Response(200, json={"status": "unknown"}),
            httpx.ConnectError("refused"),
        ]

        def handler(request: httpx.Request) -> httpx.Response:
            reply = replies.pop(0)
            if isinstance(reply, Exception):
                raise reply
            return reply

        client = PaymentStatusClient(settings=test_settings, transport=httpx.MockTransport(handler))
        try:
            for _ in range(3):
                with pytest.raises(NetworkError):
                    await client.get_status("PAY0000001")
        finally:
            await client.aclose()
