import pytest
import structlog

from tests.telegram_fakes import FakeBot


@pytest.fixture(autouse=True)
def _reset_structlog():
    structlog.reset_defaults()
    yield
    structlog.reset_defaults()


@pytest.fixture
def fake_bot() -> FakeBot:
    return FakeBot()
