"""
Trader construction from configuration.

The backend is chosen by the configuration's exchange key at construction
time; callers only ever see the Trader interface.
"""

import time
from typing import Callable, Dict, List

from loguru import logger

from src.core.config import GatewayConfig, TraderConfig
from src.core.exceptions import ConfigurationError, NotFoundError
from src.core.locks import ReadWriteLock
from .aster_trader import AsterTrader
from .binance_trader import BinanceTrader
from .hyperliquid_trader import HyperliquidTrader
from .trader import Trader
from .transport import RetryingTransport


def create_trader(
    trader_config: TraderConfig,
    settings: GatewayConfig,
    sleep: Callable[[float], None] = time.sleep
) -> Trader:
    """
    Build the trader for one configured account.

    Args:
        trader_config: Account entry
        settings: Gateway-wide settings (cache TTL, cooldowns, slippage, retries)
        sleep: Blocking sleep used for cooldowns and retry backoff

    Returns:
        Trader: BinanceTrader, HyperliquidTrader or AsterTrader

    Raises:
        ConfigurationError: Unknown exchange or invalid key material
    """
    testnet = settings.is_testnet(trader_config)
    common = dict(
        cache_ttl=settings.cache_ttl_seconds,
        leverage_cooldown=settings.leverage_cooldown_seconds,
        slippage=settings.slippage,
        sleep=sleep,
    )

    exchange = trader_config.exchange
    if exchange == "binance":
        return BinanceTrader(
            api_key=trader_config.api_key,
            api_secret=trader_config.api_secret,
            testnet=testnet,
            margin_type_cooldown=settings.margin_type_cooldown_seconds,
            transport=RetryingTransport(max_attempts=settings.max_attempts, sleep=sleep),
            **common,
        )

    if exchange == "hyperliquid":
        return HyperliquidTrader(
            private_key=trader_config.private_key,
            wallet_address=trader_config.wallet_address or None,
            testnet=testnet,
            transport=RetryingTransport(max_attempts=settings.max_attempts, sleep=sleep),
            **common,
        )

    if exchange == "aster":
        if testnet:
            logger.warning(f"Aster has no testnet; trader '{trader_config.id}' uses mainnet")
        return AsterTrader(
            user=trader_config.user,
            signer=trader_config.signer,
            private_key=trader_config.private_key,
            max_attempts=settings.max_attempts,
            **common,
        )

    raise ConfigurationError(f"Unsupported exchange: {exchange}")


class TraderManager:
    """
    Registry of independent trader instances keyed by trader id.

    Examples:
        >>> manager = TraderManager.from_config(load_config())
        >>> manager.get("binance_main").get_balance()
        BalanceSnapshot(wallet_balance=1000.0, ...)
    """

    def __init__(self):
        self._traders: Dict[str, Trader] = {}
        self._lock = ReadWriteLock()

    @classmethod
    def from_config(
        cls,
        settings: GatewayConfig,
        factory: Callable[[TraderConfig, GatewayConfig], Trader] = create_trader
    ) -> "TraderManager":
        """Build a trader for every enabled account."""
        manager = cls()
        for trader_config in settings.enabled_traders():
            manager.add(trader_config.id, factory(trader_config, settings))
        logger.info(f"TraderManager loaded {len(manager)} traders")
        return manager

    def add(self, trader_id: str, trader: Trader) -> None:
        """
        Register a trader.

        Raises:
            ConfigurationError: If trader_id is already registered
        """
        with self._lock.write():
            if trader_id in self._traders:
                raise ConfigurationError(f"Trader id '{trader_id}' already registered")
            self._traders[trader_id] = trader
        logger.info(f"Registered trader '{trader_id}' ({trader.exchange})")

    def get(self, trader_id: str) -> Trader:
        with self._lock.read():
            if trader_id not in self._traders:
                raise NotFoundError(f"Trader '{trader_id}' not found")
            return self._traders[trader_id]

    def ids(self) -> List[str]:
        with self._lock.read():
            return list(self._traders)

    def __len__(self) -> int:
        with self._lock.read():
            return len(self._traders)
