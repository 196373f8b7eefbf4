"""Tests for gateway configuration from the environment."""

import asyncio

import pytest

from handsign_gateway.main import Gateway, load_capture_config


def test_capture_config_defaults(monkeypatch):
    for var in ("HANDSIGN_COUNTDOWN", "HANDSIGN_CAPTURE_SECONDS", "HANDSIGN_SAMPLE_MS"):
        monkeypatch.delenv(var, raising=False)
    config = load_capture_config()
    assert config.countdown_from == 3
    assert config.capture_duration == 5.0
    assert config.sample_interval == pytest.approx(0.1)
    assert config.max_frames == 50


def test_capture_config_from_env(monkeypatch):
    monkeypatch.setenv("HANDSIGN_COUNTDOWN", "5")
    monkeypatch.setenv("HANDSIGN_CAPTURE_SECONDS", "2.5")
    monkeypatch.setenv("HANDSIGN_SAMPLE_MS", "50")
    config = load_capture_config()
    assert config.countdown_from == 5
    assert config.max_frames == 50


def test_gateway_start_and_stop(tmp_path):
    gateway = Gateway(token="t", model_dir=str(tmp_path), default_frames=6)

    async def scenario():
        await gateway.start()
        await gateway.stop()

    asyncio.run(scenario())
    assert gateway.server.default_frames == 6
    assert gateway.get_stats()["active_controller"] is None
