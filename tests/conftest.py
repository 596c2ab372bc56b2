"""Shared pytest fixtures."""

from __future__ import annotations

import os

import pytest

from tutorscribe import config


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch, tmp_path):
    """Give every test a fresh settings singleton and its own working directory."""

    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(config, "_ENV_PATH", tmp_path / ".env")
    monkeypatch.setattr(config, "_settings", None)

    for key in list(os.environ):
        if key.startswith("TUTORSCRIBE_"):
            monkeypatch.delenv(key, raising=False)

    yield
