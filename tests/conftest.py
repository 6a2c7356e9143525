"""Pytest configuration and fixtures."""

import sys
from pathlib import Path

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Add tests to path for azure_mock imports
tests_path = Path(__file__).parent
sys.path.insert(0, str(tests_path))

from azure_mock import FakeClock, MockEventRecorder, MockObjectStore  # noqa: E402


@pytest.fixture
def store() -> MockObjectStore:
    return MockObjectStore()


@pytest.fixture
def recorder() -> MockEventRecorder:
    return MockEventRecorder()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture(autouse=True)
def clean_credential_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep credential variables from the developer's shell out of every test."""
    for var in (
        "AZURE_CLIENT_SECRET",
        "AZURE_CLIENT_CERTIFICATE_PATH",
        "AZURE_CLIENT_CERTIFICATE_PASSWORD",
        "AZURE_USERNAME",
        "AZURE_PASSWORD",
    ):
        monkeypatch.delenv(var, raising=False)
