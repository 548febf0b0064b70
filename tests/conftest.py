"""Pytest configuration and shared fixtures"""

from collections.abc import AsyncGenerator
from decimal import Decimal
from pathlib import Path
from typing import Any

import pytest

from tradebot.config.schemas import BotType, TradingBotConfig
from tradebot.core.events import EventType, StrategyEvent
from tradebot.core.time_provider import SimulatedTimeProvider
from tradebot.replay import PaperExchange
from tradebot.strategies.base import BaseTradingStrategy


def make_config(bot_type: BotType, symbol: str = "ETH", **overrides: Any) -> TradingBotConfig:
    """Build a TradingBotConfig with sensible test defaults."""
    data: dict[str, Any] = {
        "bot_type": bot_type,
        "symbol": symbol,
        "investment_size": Decimal("1000"),
        "max_position": Decimal("10"),
        "metadata": {},
    }
    data.update(overrides)
    return TradingBotConfig(**data)


class EventRecorder:
    """Collects every event a strategy or bot emits."""

    def __init__(self) -> None:
        self.events: list[StrategyEvent] = []

    async def __call__(self, event: StrategyEvent) -> None:
        self.events.append(event)

    def attach(self, emitter: Any) -> "EventRecorder":
        for event_type in EventType:
            emitter.on(event_type, self)
        return self

    def of_type(self, event_type: EventType) -> list[StrategyEvent]:
        return [event for event in self.events if event.event_type == event_type]

    def types(self) -> list[EventType]:
        return [event.event_type for event in self.events]


@pytest.fixture
def sim_time() -> SimulatedTimeProvider:
    """Clock starting at 2024-01-01 00:00 UTC"""
    return SimulatedTimeProvider()


@pytest.fixture
def config_factory():
    """Factory for TradingBotConfig objects"""
    return make_config


@pytest.fixture
async def paper_exchange() -> AsyncGenerator[PaperExchange, None]:
    """Connected paper exchange with manual fill delivery"""
    exchange = PaperExchange(
        prices={
            "ETH": Decimal("2400"),
            "BTC": Decimal("40000"),
            "SOL": Decimal("100"),
        },
        auto_deliver=False,
    )
    await exchange.connect()
    yield exchange
    await exchange.disconnect()


@pytest.fixture
def recorder() -> EventRecorder:
    return EventRecorder()


@pytest.fixture
async def stop_after() -> AsyncGenerator[list[BaseTradingStrategy], None]:
    """Strategies appended here are stopped at teardown so no timer outlives a test."""
    started: list[BaseTradingStrategy] = []
    yield started
    for strategy in started:
        await strategy.stop()


@pytest.fixture
def test_config_dir(tmp_path: Path) -> Path:
    """Create a temporary directory for test configs"""
    config_dir = tmp_path / "configs"
    config_dir.mkdir()
    return config_dir


@pytest.fixture
def example_config_yaml(test_config_dir: Path) -> Path:
    """Create an example YAML config file"""
    config_file = test_config_dir / "test_config.yaml"
    config_content = """
log_level: INFO
log_to_file: true
log_to_console: true
json_logs: false

bots:
  - name: test_bot
    exchange: paper
    dry_run: true
    auto_start: false
    strategy:
      bot_type: grid
      symbol: ETH
      investment_size: "1000"
      max_position: "1"
      metadata:
        grid_quantity: 10
        grid_mode: arithmetic
        upper_bound: "2880"
        lower_bound: "1920"
        active_levels: 2
"""
    config_file.write_text(config_content)
    return config_file
