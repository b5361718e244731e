from __future__ import annotations

import importlib

import pytest

import config


def test_api_host_is_read_from_api_host_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("API_HOST", "127.0.0.1")
    try:
        assert importlib.reload(config).API_HOST == "127.0.0.1"
    finally:
        monkeypatch.delenv("API_HOST")
        importlib.reload(config)
    assert config.API_HOST == "0.0.0.0"
