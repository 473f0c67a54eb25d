import logging
from unittest.mock import AsyncMock, MagicMock

import pytest

from core.notifier import Notifier


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def make_session(status=200, error=None):
    session = MagicMock()
    session.closed = False
    resp = MagicMock()
    resp.status = status
    ctx = MagicMock()
    if error is not None:
        ctx.__aenter__ = AsyncMock(side_effect=error)
    else:
        ctx.__aenter__ = AsyncMock(return_value=resp)
    ctx.__aexit__ = AsyncMock(return_value=False)
    session.post.return_value = ctx
    session.close = AsyncMock()
    return session


class TestNotifier:

    @pytest.mark.asyncio
    async def test_logs_notification(self, caplog):
        caplog.set_level(logging.INFO)
        assert await Notifier().notify("Challenge Solver", "Captcha Solved Successfully!") is True
        assert "[Challenge Solver] Captcha Solved Successfully!" in caplog.text

    @pytest.mark.asyncio
    async def test_disabled(self):
        assert await Notifier(enabled=False).notify("t", "m") is False

    @pytest.mark.asyncio
    async def test_duplicates_suppressed_within_cooldown(self):
        clock = FakeClock()
        notifier = Notifier(cooldown_seconds=60, clock=clock)
        assert await notifier.notify("t", "m") is True
        clock.now += 30
        assert await notifier.notify("t", "m") is False
        assert await notifier.notify("t", "other") is True
        clock.now += 31
        assert await notifier.notify("t", "m") is True

    @pytest.mark.asyncio
    async def test_webhook_payload(self):
        session = make_session()
        notifier = Notifier(webhook_url="https://hooks.example/x", session=session)
        await notifier.notify("Title", "Body")

        args, kwargs = session.post.call_args
        assert args[0] == "https://hooks.example/x"
        assert kwargs["json"]["text"] == "*Title*"
        assert kwargs["json"]["attachments"][0]["text"] == "Body"

    @pytest.mark.asyncio
    async def test_webhook_failure_is_logged_not_raised(self, caplog):
        session = make_session(error=OSError("unreachable"))
        notifier = Notifier(webhook_url="https://hooks.example/x", session=session)
        assert await notifier.notify("t", "m") is True
        assert "Failed to send webhook notification" in caplog.text

    @pytest.mark.asyncio
    async def test_no_webhook_no_request(self):
        session = make_session()
        await Notifier(session=session).notify("t", "m")
        session.post.assert_not_called()

    @pytest.mark.asyncio
    async def test_close(self):
        session = make_session()
        notifier = Notifier(session=session)
        await notifier.close()
        session.close.assert_awaited_once()
        assert notifier.session is None
