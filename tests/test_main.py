import argparse
from unittest.mock import MagicMock

import pytest

from browser.interaction import DomEventBackend, MouseBackend
from core.config import SolverSettings
from main import build_engine, settings_from_args
from solvers.recaptcha import RecaptchaFlow
from solvers.turnstile import TurnstileFlow


@pytest.fixture
def settings(tmp_path):
    return SolverSettings(
        cache_file=str(tmp_path / "cache.json"),
        credential_file=str(tmp_path / "credentials.enc"),
        recaptcha_max_attempts=4,
        max_attempts=9,
        behavior_profile="fast",
    )


@pytest.mark.asyncio
async def test_build_engine_wires_flows_in_priority_order(settings):
    service, bridge, orchestrator = build_engine(settings)
    try:
        recaptcha, turnstile = orchestrator.flows
        assert isinstance(recaptcha, RecaptchaFlow)
        assert isinstance(turnstile, TurnstileFlow)
        assert recaptcha.max_attempts == 4
        assert turnstile.max_attempts == 9
        assert recaptcha.bridge is bridge
        assert recaptcha.driver is turnstile.driver
        assert isinstance(recaptcha.driver.backend, DomEventBackend)
        assert orchestrator.bridge is bridge

        response = await bridge.request("ping", timeout=1)
        assert response.pong is True
    finally:
        await bridge.close()
        await service.stop()


@pytest.mark.asyncio
async def test_build_engine_with_mouse_backend(settings):
    service, bridge, orchestrator = build_engine(settings, page=MagicMock(), use_mouse=True)
    try:
        assert isinstance(orchestrator.flows[0].driver.backend, MouseBackend)
    finally:
        await bridge.close()
        await service.stop()


@pytest.mark.parametrize("visible,headless", [(False, True), (True, False)])
def test_visible_flag_disables_headless(monkeypatch, tmp_path, visible, headless):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("HEADLESS", raising=False)
    args = argparse.Namespace(visible=visible, log_level=None)
    assert settings_from_args(args).headless is headless


def test_log_level_override(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("LOG_LEVEL", raising=False)
    args = argparse.Namespace(visible=False, log_level="DEBUG")
    assert settings_from_args(args).log_level == "DEBUG"
