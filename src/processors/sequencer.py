"""
Ordering of a decision batch before execution.

Closes run first so that margin they release is available to the opens
that follow; everything else (hold, wait, stop/take-profit updates and
unknown actions) runs last. Within each class the incoming order is kept.
"""

from typing import Iterable, List

from src.core.models import CLOSE_ACTIONS, OPEN_ACTIONS, TradeIntent


CLOSE_PRIORITY = 1
OPEN_PRIORITY = 2
IDLE_PRIORITY = 3
OTHER_PRIORITY = 999


def action_priority(action: str) -> int:
    """
    Execution class of an action; lower runs earlier.

    Examples:
        >>> action_priority("close_short")
        1
        >>> action_priority("open_long")
        2
        >>> action_priority("hold")
        3
    """
    if action in CLOSE_ACTIONS:
        return CLOSE_PRIORITY
    if action in OPEN_ACTIONS:
        return OPEN_PRIORITY
    if action in ("hold", "wait"):
        return IDLE_PRIORITY
    return OTHER_PRIORITY


def sequence_intents(intents: Iterable[TradeIntent]) -> List[TradeIntent]:
    """
    Return intents reordered closes, then opens, then everything else.

    The sort is stable and the function is idempotent:
    sequence_intents(sequence_intents(x)) == sequence_intents(x).

    Examples:
        >>> batch = [TradeIntent(symbol="BTCUSDT", action="open_long"),
        ...          TradeIntent(symbol="BTCUSDT", action="close_short"),
        ...          TradeIntent(symbol="ETHUSDT", action="hold")]
        >>> [i.action for i in sequence_intents(batch)]
        ['close_short', 'open_long', 'hold']
    """
    return sorted(intents, key=lambda intent: action_priority(intent.action))
