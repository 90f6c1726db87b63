"""
Execution module for venue order management.

This module handles:
- Precision rules and rounding per symbol
- Wallet request signing and bounded retries
- Order lifecycle (open, close, leverage, stop-loss, take-profit)
- Venue backends: Binance, Aster, Hyperliquid
"""

from .aster_trader import AsterTrader
from .binance_trader import BinanceTrader
from .factory import TraderManager, create_trader
from .hyperliquid_trader import HyperliquidTrader
from .trader import Trader

__all__ = [
    "AsterTrader",
    "BinanceTrader",
    "HyperliquidTrader",
    "Trader",
    "TraderManager",
    "create_trader",
]
