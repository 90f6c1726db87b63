"""
Multi-Exchange Execution Gateway - unified derivatives trading across venues

This package turns trade decisions into venue-legal orders on Binance
USDT-M futures, Aster and Hyperliquid behind one Trader interface.

Modules:
    core: Models, exceptions, configuration and account state caching
    execution: Precision, signing, retrying transport and venue traders
    processors: Decision sequencing and cycle execution
"""

__version__ = "0.1.0"
__author__ = "Execution Gateway Team"
