from __future__ import annotations

import os
from typing import Iterator

import pytest

# Keep the module-level engine off disk; tests build their own databases.
os.environ.setdefault("SESSIONGATE_SQLITE_PATH", ":memory:")

from sessiongate.auth.rate_limit import RateLimiter  # noqa: E402
from sessiongate.auth.service import AuthService  # noqa: E402
from sessiongate.db import build_engine, build_session_factory, init_database  # noqa: E402


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def session_factory(tmp_path) -> Iterator:
    engine = build_engine(f"sqlite:///{tmp_path / 'auth.db'}")
    init_database(engine)
    yield build_session_factory(engine)
    engine.dispose()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def auth_service(session_factory, clock) -> AuthService:
    limiter = RateLimiter(limit=10, window_seconds=180, clock=clock)
    return AuthService(session_factory, rate_limiter=limiter)
