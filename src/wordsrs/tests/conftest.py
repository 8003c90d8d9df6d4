"""Test configuration."""
import os
import tempfile
from pathlib import Path

import pytest
from dotenv import load_dotenv

# Set test environment before any imports
os.environ["ENV"] = "test"
os.environ["DATABASE_URL"] = f"sqlite:///{Path(tempfile.gettempdir()) / 'wordsrs_test.db'}"

# Load test environment variables
test_env_path = Path(__file__).parent.parent.parent.parent / ".env.test"
load_dotenv(test_env_path)


class FakeClock:
    """Monotonic clock the tests move by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    """Create a controllable clock for debounce guards."""
    return FakeClock()
