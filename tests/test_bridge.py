import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from core.bridge import BackgroundService, BridgeRequest, BridgeResponse, CrossContextBridge
from core.errors import BridgeTimeout, CredentialMissing, TranscriptionError
from core.notifier import Notifier
from solvers.transcription import TranscriptionResult


def make_service(credential="tok"):
    pipeline = MagicMock()
    pipeline.download_audio = AsyncMock(return_value=b"ID3" + b"\x00" * 200)
    pipeline.process = AsyncMock(return_value=TranscriptionResult(
        text="85", source="api", duration_ms=12, raw_text="eight five",
    ))
    pipeline.close = AsyncMock()
    pipeline.cache.clear_expired = MagicMock(return_value=0)
    credentials = MagicMock()
    credentials.get_credential.return_value = credential
    notifier = MagicMock(spec=Notifier)
    notifier.notify = AsyncMock(return_value=True)
    notifier.close = AsyncMock()
    return BackgroundService(pipeline, credentials, notifier=notifier)


class TestBridgeMessages:

    def test_request_accepts_wire_name(self):
        request = BridgeRequest(action="transcribe", audioUrl="https://a/x.mp3")
        assert request.audio_url == "https://a/x.mp3"

    def test_request_accepts_field_name(self):
        assert BridgeRequest(action="transcribe", audio_url="u").audio_url == "u"

    def test_response_defaults(self):
        response = BridgeResponse(success=True)
        assert response.text is None and response.error is None


class TestBackgroundService:

    @pytest.mark.asyncio
    async def test_transcribe(self):
        service = make_service()
        response = await service.handle(BridgeRequest(action="transcribe", audioUrl="https://a/x.mp3"))
        assert response.success is True
        assert response.text == "85"
        assert response.metadata == {"source": "api", "duration": 12, "rawText": "eight five"}
        service.pipeline.download_audio.assert_awaited_once_with("https://a/x.mp3")
        service.pipeline.process.assert_awaited_once()
        assert service.pipeline.process.await_args.args[1] == "tok"

    @pytest.mark.asyncio
    async def test_missing_audio_url(self):
        service = make_service()
        response = await service.handle(BridgeRequest(action="transcribe"))
        assert response.success is False
        assert response.error == "Missing audioUrl parameter"
        service.pipeline.download_audio.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_credential_fails_only_that_request(self):
        service = make_service(credential=None)
        service.pipeline.process.side_effect = CredentialMissing("Wit.ai token is missing")
        response = await service.handle(BridgeRequest(action="transcribe", audioUrl="u"))
        assert response.success is False
        assert "token" in response.error

        ping = await service.handle(BridgeRequest(action="ping"))
        assert ping.success is True

    @pytest.mark.asyncio
    async def test_transcription_error(self):
        service = make_service()
        service.pipeline.download_audio.side_effect = TranscriptionError("Failed to download audio: 403")
        response = await service.handle(BridgeRequest(action="transcribe", audioUrl="u"))
        assert response.success is False
        assert "403" in response.error

    @pytest.mark.asyncio
    async def test_unexpected_error_becomes_response(self):
        service = make_service()
        service.pipeline.download_audio.side_effect = RuntimeError("boom")
        response = await service.handle(BridgeRequest(action="transcribe", audioUrl="u"))
        assert response == BridgeResponse(success=False, error="boom")

    @pytest.mark.asyncio
    async def test_notify(self):
        service = make_service()
        response = await service.handle(BridgeRequest(action="notify", title="T", message="M"))
        assert response.success is True
        service.notifier.notify.assert_awaited_once_with("T", "M")

    @pytest.mark.asyncio
    async def test_ping(self):
        response = await make_service().handle(BridgeRequest(action="ping"))
        assert response.success is True
        assert response.pong is True

    @pytest.mark.asyncio
    async def test_unknown_action(self):
        response = await make_service().handle(BridgeRequest(action="explode"))
        assert response.success is False
        assert response.error == "Unknown action"

    @pytest.mark.asyncio
    async def test_periodic_cleanup(self):
        service = make_service()
        service.cleanup_interval = 0.01
        service.start()
        await asyncio.sleep(0.05)
        await service.stop()
        assert service.pipeline.cache.clear_expired.call_count >= 1
        service.pipeline.close.assert_awaited_once()


class TestCrossContextBridge:

    @pytest.mark.asyncio
    async def test_round_trip(self):
        bridge = CrossContextBridge(make_service().handle, timeout=1)
        try:
            response = await bridge.request("ping")
            assert response.pong is True
        finally:
            await bridge.close()

    @pytest.mark.asyncio
    async def test_timeout_is_distinguishable(self):
        async def slow(request):
            await asyncio.sleep(10)

        bridge = CrossContextBridge(slow, timeout=0.05)
        try:
            with pytest.raises(BridgeTimeout) as exc_info:
                await bridge.request("transcribe", audioUrl="u")
            assert exc_info.value.action == "transcribe"
            assert isinstance(exc_info.value, asyncio.TimeoutError)
        finally:
            await bridge.close()

    @pytest.mark.asyncio
    async def test_timeout_cancels_handler(self):
        started = asyncio.Event()
        cancelled = asyncio.Event()

        async def slow(request):
            started.set()
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.set()
                raise

        bridge = CrossContextBridge(slow, timeout=0.05)
        try:
            with pytest.raises(BridgeTimeout):
                await bridge.request("transcribe", audioUrl="u")
            assert started.is_set()
            await asyncio.wait_for(cancelled.wait(), 1)
            await asyncio.sleep(0)
            assert not bridge._inflight
        finally:
            await bridge.close()

    @pytest.mark.asyncio
    async def test_slow_request_does_not_block_ping(self):
        release = asyncio.Event()

        async def handler(request):
            if request.action == "transcribe":
                await release.wait()
                return BridgeResponse(success=True, text="1")
            return BridgeResponse(success=True, pong=True)

        bridge = CrossContextBridge(handler, timeout=1)
        try:
            slow = asyncio.create_task(bridge.request("transcribe", audioUrl="u"))
            ping = await bridge.request("ping", timeout=0.5)
            assert ping.pong is True
            release.set()
            assert (await slow).text == "1"
        finally:
            await bridge.close()

    @pytest.mark.asyncio
    async def test_handler_exception_resolves_with_error(self):
        async def broken(request):
            raise RuntimeError("handler crashed")

        bridge = CrossContextBridge(broken, timeout=1)
        try:
            response = await bridge.request("ping")
            assert response.success is False
            assert "crashed" in response.error
        finally:
            await bridge.close()

    @pytest.mark.asyncio
    async def test_close_cancels_in_flight(self):
        started = asyncio.Event()

        async def hang(request):
            started.set()
            await asyncio.sleep(10)

        bridge = CrossContextBridge(hang, timeout=5)
        pending = asyncio.create_task(bridge.request("ping"))
        await started.wait()
        await bridge.close()
        assert not bridge.running
        with pytest.raises(asyncio.CancelledError):
            await pending
