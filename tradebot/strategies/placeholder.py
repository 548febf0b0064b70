"""
PlaceholderStrategy - stands in for bot types that have no implementation.

It connects, tracks the price and counts fill volume, but never places
orders. The orchestrator can therefore drive every bot type the same way.
"""

from typing import Any

from tradebot.api.exchange_protocol import IExchange
from tradebot.api.models import OrderFill
from tradebot.config.schemas import StrategyConfig, StrategyParams
from tradebot.core.events import EventType
from tradebot.core.time_provider import TimeProvider
from tradebot.strategies.base import BaseTradingStrategy


class PlaceholderStrategy(BaseTradingStrategy):
    strategy_type = "placeholder"

    def __init__(
        self,
        exchange: IExchange,
        config: StrategyConfig,
        strategy_name: str,
        bot_id: str | None = None,
        user_id: str | None = None,
        time_provider: TimeProvider | None = None,
    ) -> None:
        super().__init__(exchange, config, bot_id, user_id, time_provider)
        self.strategy_name = strategy_name

    @classmethod
    def parse_params(cls, config: StrategyConfig) -> StrategyParams:
        return StrategyParams.from_metadata(config.metadata)

    async def _on_initialize(self) -> None:
        self.logger.warning("strategy_not_implemented", strategy_name=self.strategy_name)

    async def _on_start(self) -> None:
        await self._subscribe_fills()

    async def _process_fill(self, fill: OrderFill) -> None:
        self._update_volume_metrics(fill)
        self.state.current_price = fill.price
        await self.emit(EventType.ORDER_FILLED, {"fill": fill.to_dict()})

    def get_statistics(self) -> dict[str, Any]:
        stats = super().get_statistics()
        stats.update(
            {
                "strategy_name": self.strategy_name,
                "implemented": False,
                "message": f"{self.strategy_name} strategy is not yet implemented",
            }
        )
        return stats
