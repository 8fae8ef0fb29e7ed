"""Shared test fixtures"""
import os

import pytest

os.environ.setdefault("ENABLE_SCHEDULER", "false")

from tests.fakes import FakeDatabase  # noqa: E402


@pytest.fixture
def fake_db():
    """Session factory double recording every statement"""
    return FakeDatabase()
