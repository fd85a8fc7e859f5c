"""Shared fixtures."""

import pytest

from twofactor import storage


@pytest.fixture
def data_dir(tmp_path, monkeypatch):
    """Point credential storage at a temporary directory."""
    monkeypatch.setenv(storage.DATA_DIR_ENV, str(tmp_path))
    return tmp_path
