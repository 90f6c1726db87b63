"""
Decision processors for the execution gateway.

This package turns a batch of trade intents into venue actions:
- sequence_intents: Orders closes before opens before everything else
- DecisionExecutor: Executes a sequenced batch against one trader

Examples:
    >>> from src.execution import create_trader
    >>> from src.processors import DecisionExecutor
    >>>
    >>> trader = create_trader(trader_config, settings)
    >>> executor = DecisionExecutor.from_config(trader, settings)
    >>> records = executor.execute_cycle(intents)
"""

from .decision_executor import DecisionExecutor
from .sequencer import sequence_intents

__all__ = [
    "DecisionExecutor",
    "sequence_intents",
]
