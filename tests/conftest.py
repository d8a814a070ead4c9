"""Shared pytest fixtures."""

import pytest

from larder.config import Config
from larder.store.store import PackageStore


@pytest.fixture
def store(tmp_path):
    """A fresh package store rooted in the test's temporary directory."""
    return PackageStore(tmp_path / "store")


@pytest.fixture
def config(tmp_path):
    """Config pointing at the temporary store, with a small worker pool."""
    return Config(store_path=tmp_path / "store", workers=2)
