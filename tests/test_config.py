import pytest

import config


@pytest.mark.parametrize("raw,expected", [("true", True), ("1", True), (" Yes ", True), ("false", False), ("0", False)])
def test_flag_parsing(monkeypatch, raw, expected):
    monkeypatch.setenv("ZENBANK_TEST_FLAG", raw)
    assert config._flag("ZENBANK_TEST_FLAG", "false") is expected


def test_flag_default(monkeypatch):
    monkeypatch.delenv("ZENBANK_TEST_FLAG", raising=False)
    assert config._flag("ZENBANK_TEST_FLAG", "true") is True


def test_defaults_match_idle_window():
    assert config.settings.IDLE_WARNING_SECONDS < config.settings.IDLE_TIMEOUT_SECONDS

