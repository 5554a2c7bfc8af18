"""Tests for logging setup."""

from __future__ import annotations

import logging

import pytest

from treeupdt.core.logging import setup_logging


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    monkeypatch.delenv("TREEUPDT_LOG_LEVEL", raising=False)
    monkeypatch.delenv("TREEUPDT_LOG_FORMAT", raising=False)


class TestSetupLogging:
    def test_default_level(self):
        setup_logging()
        assert logging.getLogger("treeupdt").level == logging.WARNING

    def test_verbose(self):
        setup_logging(verbose=True)
        assert logging.getLogger("treeupdt").level == logging.DEBUG

    def test_env_overrides_verbose(self, monkeypatch):
        monkeypatch.setenv("TREEUPDT_LOG_LEVEL", "error")
        setup_logging(verbose=True)
        assert logging.getLogger("treeupdt").level == logging.ERROR

    def test_http_clients_quiet(self):
        setup_logging(verbose=True)
        assert logging.getLogger("httpx").level == logging.WARNING

    def test_json_format(self, monkeypatch, capsys):
        monkeypatch.setenv("TREEUPDT_LOG_FORMAT", "json")
        setup_logging()
        logging.getLogger("treeupdt.test").warning("hello")
        err = capsys.readouterr().err
        assert '"event": "hello"' in err
        assert '"level": "warning"' in err
