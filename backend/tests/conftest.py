"""
Test configuration for the voucher service backend tests.

sys.path is configured so 'from backend...' resolves when pytest is run from
the repository root or from backend/ without an editable install.
"""
import sys
from pathlib import Path

import pytest

_backend_dir = Path(__file__).parent.parent        # .../backend/
_project_root = _backend_dir.parent               # .../repo root

if str(_project_root) not in sys.path:
    sys.path.insert(0, str(_project_root))

from backend.intake.registry import SessionRegistry  # noqa: E402
from backend.tests.fake_router import OFFER_PROFILES, FakeClock, FakeRouter  # noqa: E402


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def registry(clock: FakeClock) -> SessionRegistry:
    return SessionRegistry(OFFER_PROFILES, clock=clock)


@pytest.fixture
def router() -> FakeRouter:
    return FakeRouter()
