from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from fxcalc.core.config import Settings
from fxcalc.main import create_app


class FakeClock:
    """Controllable replacement for ``datetime.now(timezone.utc)``."""

    def __init__(self, start: datetime = datetime(2025, 5, 1, 12, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


async def no_sleep(_delay: float) -> None:
    return None


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        exchange_rate_api_provider="mock",
        data_dir=tmp_path,
        db_path=tmp_path / "test.sqlite3",
    )


@pytest.fixture
def client(settings: Settings) -> TestClient:
    app = create_app(settings_override=settings)
    return TestClient(app)
