"""
Unit tests for cancel_on_disconnect.
"""

import asyncio
import time

import pytest
from fastapi import Request

from service_gateway.app.adapters.disconnect import cancel_on_disconnect
from shared.errors import ClientDisconnectedError


def make_request(receive):
    return Request({
        "type": "http",
        "method": "POST",
        "path": "/v1/ai/complete",
        "headers": [],
        "query_string": b"",
    }, receive)


async def disconnect_after(delay):
    await asyncio.sleep(delay)
    return {"type": "http.disconnect"}


async def never_disconnect():
    await asyncio.Event().wait()


class TestCancelOnDisconnect:
    """Test cases for cancel_on_disconnect."""

    @pytest.mark.asyncio
    async def test_disconnect_cancels_backend_call(self):
        """Test a caller leaving mid-call cancels the call promptly."""
        cancelled = asyncio.Event()

        async def backend_call():
            try:
                await asyncio.sleep(5)
            except asyncio.CancelledError:
                cancelled.set()
                raise
            return "done"

        request = make_request(lambda: disconnect_after(0.1))

        started = time.monotonic()
        with pytest.raises(ClientDisconnectedError) as exc_info:
            await cancel_on_disconnect(request, backend_call())

        assert time.monotonic() - started < 1.0
        assert cancelled.is_set()
        assert exc_info.value.status_code == 499

    @pytest.mark.asyncio
    async def test_result_returned_while_connected(self):
        async def backend_call():
            await asyncio.sleep(0.01)
            return "done"

        request = make_request(never_disconnect)

        assert await cancel_on_disconnect(request, backend_call()) == "done"

    @pytest.mark.asyncio
    async def test_backend_error_propagates(self):
        async def backend_call():
            raise ValueError("boom")

        request = make_request(never_disconnect)

        with pytest.raises(ValueError, match="boom"):
            await cancel_on_disconnect(request, backend_call())

    @pytest.mark.asyncio
    async def test_unusable_receive_lets_call_finish(self):
        """Test a server that cannot report disconnects does not abort the call."""
        async def broken_receive():
            raise RuntimeError("receive unavailable")

        async def backend_call():
            await asyncio.sleep(0.05)
            return "done"

        request = make_request(broken_receive)

        assert await cancel_on_disconnect(request, backend_call()) == "done"
