from __future__ import annotations

import logging
from pathlib import Path

import pytest

from candletrader.core.logging import LoggingContext
from candletrader.services.runtime.state import SharedState
from tests.fakes.fake_api import FakeApi, make_config


class ManualClock:
    """Monotonic clock advanced explicitly by tests."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def config():
    return make_config()


@pytest.fixture
def fake_api() -> FakeApi:
    return FakeApi()


@pytest.fixture
def state(clock: ManualClock) -> SharedState:
    return SharedState(clock=clock, wall_clock=clock)


@pytest.fixture
def logging_ctx(tmp_path: Path, config):
    ctx = LoggingContext(config.logging, tmp_path / "run")
    yield ctx
    ctx.close()


@pytest.fixture(autouse=True)
def _reset_root_handlers():
    root = logging.getLogger()
    before = list(root.handlers)
    yield
    for handler in list(root.handlers):
        if handler not in before:
            root.removeHandler(handler)
