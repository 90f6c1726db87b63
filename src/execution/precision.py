"""
Venue precision rules and rounding helpers.

Venues reject orders whose price or quantity is not a multiple of the
symbol's tick/step size, or that carry more decimals than allowed. The
PrecisionRegistry lazily fetches every symbol's rules once through a
venue-supplied fetcher and rounds values to venue-legal numbers.

Rounding is half away from zero and the result is rebuilt from the decimal
tick so that round_to_tick_size(100.237, 0.01) == 100.24 exactly.
"""

import math
from decimal import Decimal, ROUND_HALF_UP
from typing import Callable, Dict, Optional
from loguru import logger

from src.core.exceptions import PrecisionLookupError
from src.core.locks import ReadWriteLock
from src.core.models import PrecisionSpec


DEFAULT_SIG_FIGS = 5


def _to_decimal(value: float) -> Decimal:
    return Decimal(repr(float(value)))


def round_half_away(value: float) -> float:
    """Round to the nearest integer, ties away from zero."""
    return math.copysign(math.floor(abs(value) + 0.5), value)


def round_to_tick_size(value: float, tick_size: float) -> float:
    """
    Round value to the nearest multiple of tick_size.

    Args:
        value: Price or quantity
        tick_size: Increment, must be positive

    Returns:
        float: Nearest multiple of tick_size

    Raises:
        ValueError: If tick_size is not positive

    Examples:
        >>> round_to_tick_size(100.237, 0.01)
        100.24
        >>> round_to_tick_size(0.12345, 0.001)
        0.123
    """
    if tick_size <= 0:
        raise ValueError(f"tick_size must be positive, got {tick_size}")
    steps = round_half_away(value / tick_size)
    return float(Decimal(int(steps)) * _to_decimal(tick_size))


def round_to_precision(value: float, precision: int) -> float:
    """
    Round value to a number of decimal places, ties away from zero.

    Examples:
        >>> round_to_precision(1.2345, 3)
        1.235
    """
    quantum = Decimal(1).scaleb(-precision)
    return float(_to_decimal(value).quantize(quantum, rounding=ROUND_HALF_UP))


def round_significant_figures(value: float, sig_figs: int = DEFAULT_SIG_FIGS) -> float:
    """
    Round value to a fixed number of significant figures.

    The exponent is normalized so the mantissa lies in [1, 10), the mantissa
    is rounded to sig_figs - 1 decimals, and the exponent is restored. Sign
    and order of magnitude are preserved.

    Examples:
        >>> round_significant_figures(123456.0)
        123460.0
        >>> round_significant_figures(0.000123456)
        0.00012346
        >>> round_significant_figures(-98765.4321)
        -98765.0
    """
    if sig_figs < 1:
        raise ValueError(f"sig_figs must be at least 1, got {sig_figs}")
    if value == 0 or not math.isfinite(value):
        return value

    exact = _to_decimal(value)
    exponent = exact.adjusted()
    quantum = Decimal(1).scaleb(exponent - (sig_figs - 1))
    return float(exact.quantize(quantum, rounding=ROUND_HALF_UP))


def format_with_precision(value: float, precision: int) -> str:
    """
    Format value with precision decimals, trimming trailing zeros.

    Integer digits are never trimmed.

    Examples:
        >>> format_with_precision(0.1000, 4)
        '0.1'
        >>> format_with_precision(100.0, 0)
        '100'
        >>> format_with_precision(2.50, 2)
        '2.5'
    """
    text = f"{value:.{precision}f}"
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return "0" if text in ("-0", "") else text


def decimals_of(increment: str) -> int:
    """
    Count the decimals a step or tick size string implies.

    Examples:
        >>> decimals_of("0.00100000")
        3
        >>> decimals_of("1")
        0
    """
    normalized = Decimal(increment).normalize()
    exponent = normalized.as_tuple().exponent
    return max(0, -exponent) if isinstance(exponent, int) else 0


def parse_symbol_filters(symbol_info: dict) -> PrecisionSpec:
    """
    Build a PrecisionSpec from a Binance-style exchangeInfo symbol entry.

    PRICE_FILTER.tickSize and LOT_SIZE.stepSize provide increments; their
    decimals override pricePrecision/quantityPrecision when present.

    Args:
        symbol_info: One element of exchangeInfo["symbols"]

    Returns:
        PrecisionSpec: Parsed rules
    """
    price_precision = int(symbol_info.get("pricePrecision", 2))
    quantity_precision = int(symbol_info.get("quantityPrecision", 3))
    tick_size = 0.0
    step_size = 0.0

    for flt in symbol_info.get("filters", []):
        filter_type = flt.get("filterType")
        if filter_type == "PRICE_FILTER" and flt.get("tickSize"):
            tick_size = float(flt["tickSize"])
            if tick_size > 0:
                price_precision = decimals_of(flt["tickSize"])
        elif filter_type == "LOT_SIZE" and flt.get("stepSize"):
            step_size = float(flt["stepSize"])
            if step_size > 0:
                quantity_precision = decimals_of(flt["stepSize"])

    return PrecisionSpec(
        symbol=symbol_info["symbol"],
        price_precision=price_precision,
        quantity_precision=quantity_precision,
        tick_size=tick_size,
        step_size=step_size,
    )


class PrecisionRegistry:
    """
    Lazily populated per-symbol precision cache.

    On a miss the registry calls fetcher once, which returns rules for every
    symbol the venue lists, and stores them all under the write lock. A
    symbol still missing after the fetch raises PrecisionLookupError; the
    failure is not retried.

    Attributes:
        venue: Venue name used in log and error messages

    Examples:
        >>> registry = PrecisionRegistry(fetch_all_specs, venue="binance")
        >>> registry.round_price("BTCUSDT", 45123.456)
        45123.5
        >>> registry.format_quantity("BTCUSDT", 0.12345)
        '0.123'
    """

    def __init__(self, fetcher: Callable[[], Dict[str, PrecisionSpec]], venue: str = ""):
        self._fetcher = fetcher
        self.venue = venue
        self._lock = ReadWriteLock()
        self._specs: Dict[str, PrecisionSpec] = {}

    def _lookup(self, symbol: str) -> Optional[PrecisionSpec]:
        with self._lock.read():
            return self._specs.get(symbol)

    def resolve(self, symbol: str) -> PrecisionSpec:
        """
        Return the PrecisionSpec for symbol, fetching venue metadata on a miss.

        Raises:
            PrecisionLookupError: If the venue does not list the symbol.
        """
        spec = self._lookup(symbol)
        if spec is not None:
            return spec

        with self._lock.write():
            spec = self._specs.get(symbol)
            if spec is not None:
                return spec

            specs = self._fetcher()
            self._specs.update(specs)
            logger.info(
                f"Loaded precision rules for {len(specs)} {self.venue} symbols"
            )
            spec = self._specs.get(symbol)

        if spec is None:
            raise PrecisionLookupError(
                f"No precision information for {symbol} on {self.venue or 'venue'}"
            )
        logger.debug(
            f"{symbol} precision: price={spec.price_precision} "
            f"qty={spec.quantity_precision} tick={spec.tick_size} step={spec.step_size}"
        )
        return spec

    def round_price(self, symbol: str, price: float) -> float:
        spec = self.resolve(symbol)
        if spec.sig_figs:
            return round_significant_figures(price, spec.sig_figs)
        if spec.tick_size > 0:
            return round_to_tick_size(price, spec.tick_size)
        return round_to_precision(price, spec.price_precision)

    def round_quantity(self, symbol: str, quantity: float) -> float:
        spec = self.resolve(symbol)
        if spec.step_size > 0:
            return round_to_tick_size(quantity, spec.step_size)
        return round_to_precision(quantity, spec.quantity_precision)

    def format_price(self, symbol: str, price: float) -> str:
        rounded = self.round_price(symbol, price)
        spec = self.resolve(symbol)
        if spec.sig_figs:
            return format_with_precision(rounded, max(spec.price_precision, 8))
        return format_with_precision(rounded, spec.price_precision)

    def format_quantity(self, symbol: str, quantity: float) -> str:
        rounded = self.round_quantity(symbol, quantity)
        return format_with_precision(rounded, self.resolve(symbol).quantity_precision)
