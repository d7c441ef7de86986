import sys
from pathlib import Path

import pytest

BACKEND = Path(__file__).resolve().parents[1] / "backend"
backend_str = str(BACKEND)
if backend_str not in sys.path:
    sys.path.insert(0, backend_str)

from fakes import FakeCompletions, RecordingSink  # noqa: E402
from services.storage import MemoryStore  # noqa: E402


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def completions():
    return FakeCompletions()


@pytest.fixture
def sink():
    return RecordingSink()
