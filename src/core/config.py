"""
Gateway configuration loading.

Settings live in config.yaml; credentials live in .env (loaded with
python-dotenv) or the process environment. A trader entry may carry its
credentials inline, otherwise each missing field is looked up as:

    <TRADER_ID>_<FIELD>   e.g. BINANCE_MAIN_API_KEY
    <EXCHANGE>_<FIELD>    e.g. BINANCE_API_KEY

Required credential fields per exchange:
    binance:     api_key, api_secret
    hyperliquid: private_key (wallet_address optional, derived from the key)
    aster:       user, signer, private_key

Credentials are excluded from model reprs and never logged.
"""

import os
import re
from pathlib import Path
from typing import Dict, List, Literal, Optional, Tuple, Union

import yaml
from dotenv import load_dotenv
from loguru import logger
from pydantic import BaseModel, Field, ValidationError, model_validator

from .exceptions import ConfigurationError


PROJECT_ROOT = Path(__file__).parent.parent.parent

CREDENTIAL_FIELDS: Dict[str, Tuple[str, ...]] = {
    "binance": ("api_key", "api_secret"),
    "hyperliquid": ("private_key",),
    "aster": ("user", "signer", "private_key"),
}
OPTIONAL_CREDENTIAL_FIELDS: Dict[str, Tuple[str, ...]] = {
    "hyperliquid": ("wallet_address",),
}
PLACEHOLDER_TEXTS = ["your_", "_here", "placeholder"]


def is_placeholder(value: str) -> bool:
    """Return True if value looks like an unedited template value."""
    lowered = value.lower()
    return any(text in lowered for text in PLACEHOLDER_TEXTS)


class TraderConfig(BaseModel):
    """
    One trading account on one exchange.

    Attributes:
        id: Unique trader id
        name: Display name
        exchange: 'binance', 'hyperliquid' or 'aster'
        enabled: Whether the factory should build this trader
        testnet: Per-trader override of GatewayConfig.use_testnet
        api_key / api_secret: Binance credentials
        private_key: Wallet key (hyperliquid, aster)
        wallet_address: Hyperliquid account address
        user / signer: Aster main wallet and API wallet addresses

    Examples:
        >>> cfg = TraderConfig(id="bn1", name="Binance", exchange="binance",
        ...                    api_key="k", api_secret="s")
        >>> cfg.exchange
        'binance'
    """

    id: str = Field(min_length=1, description="Unique trader id")
    name: str = Field(min_length=1, description="Display name")
    exchange: Literal["binance", "hyperliquid", "aster"]
    enabled: bool = True
    testnet: Optional[bool] = None

    api_key: str = Field(default="", repr=False)
    api_secret: str = Field(default="", repr=False)
    private_key: str = Field(default="", repr=False)
    wallet_address: str = ""
    user: str = ""
    signer: str = ""

    @model_validator(mode="after")
    def validate_credentials(self) -> "TraderConfig":
        """Ensure an enabled trader's credentials are present and not placeholders."""
        if not self.enabled:
            return self

        missing = [
            field for field in CREDENTIAL_FIELDS[self.exchange]
            if not getattr(self, field)
        ]
        if missing:
            raise ValueError(
                f"Trader '{self.id}' ({self.exchange}) is missing credentials: "
                f"{', '.join(missing)}. Set them in config.yaml or your .env file."
            )

        for field in CREDENTIAL_FIELDS[self.exchange]:
            if is_placeholder(getattr(self, field)):
                raise ValueError(
                    f"Trader '{self.id}' {field} appears to be a placeholder value. "
                    f"Please set your actual {self.exchange} credentials."
                )
        return self


class GatewayConfig(BaseModel):
    """
    Top-level gateway settings.

    Attributes:
        use_testnet: Default network for traders without an override
        cache_ttl_seconds: Balance/position cache lifetime
        leverage_cooldown_seconds: Block after a leverage change
        margin_type_cooldown_seconds: Block after a margin type change (binance)
        action_pause_seconds: Pause after each successful cycle action
        slippage: Aggressive limit offset from the market price
        default_leverage: Leverage for open intents that carry none
        max_attempts: Retry bound per venue call
        traders: Configured trading accounts
    """

    use_testnet: bool = True
    cache_ttl_seconds: float = Field(default=15.0, ge=0)
    leverage_cooldown_seconds: float = Field(default=5.0, ge=0)
    margin_type_cooldown_seconds: float = Field(default=3.0, ge=0)
    action_pause_seconds: float = Field(default=1.0, ge=0)
    slippage: float = Field(default=0.01, ge=0, lt=1)
    default_leverage: int = Field(default=5, ge=1)
    max_attempts: int = Field(default=3, ge=1)
    traders: List[TraderConfig] = Field(min_length=1)

    @model_validator(mode="after")
    def validate_traders(self) -> "GatewayConfig":
        """Reject duplicate trader ids."""
        seen = set()
        for trader in self.traders:
            if trader.id in seen:
                raise ValueError(f"Duplicate trader id: '{trader.id}'")
            seen.add(trader.id)
        return self

    def enabled_traders(self) -> List[TraderConfig]:
        return [trader for trader in self.traders if trader.enabled]

    def is_testnet(self, trader: TraderConfig) -> bool:
        return self.use_testnet if trader.testnet is None else trader.testnet


def _env_prefix(value: str) -> str:
    return re.sub(r"[^A-Z0-9]", "_", value.upper())


def _fill_credentials_from_env(trader: dict) -> dict:
    """Fill missing credential fields of a raw trader entry from the environment."""
    exchange = str(trader.get("exchange", "")).lower()
    fields = CREDENTIAL_FIELDS.get(exchange, ()) + OPTIONAL_CREDENTIAL_FIELDS.get(exchange, ())

    filled = dict(trader)
    for field in fields:
        if filled.get(field):
            continue
        candidates = [f"{_env_prefix(exchange)}_{field.upper()}"]
        if filled.get("id"):
            candidates.insert(0, f"{_env_prefix(str(filled['id']))}_{field.upper()}")
        for var_name in candidates:
            value = os.getenv(var_name)
            if value:
                filled[field] = value
                break
    return filled


def _read_yaml(config_path: Path) -> dict:
    if not config_path.exists():
        raise ConfigurationError(f"Configuration file not found: {config_path}")

    try:
        with open(config_path, "r") as f:
            config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Failed to parse configuration file: {e}") from e
    except OSError as e:
        raise ConfigurationError(f"Error reading configuration file: {e}") from e

    if config is None:
        raise ConfigurationError("Configuration file is empty")
    if not isinstance(config, dict):
        raise ConfigurationError("Configuration file must contain a mapping")
    return config


def load_config(
    config_path: Optional[Union[str, Path]] = None,
    env_file: Optional[Union[str, Path]] = None
) -> GatewayConfig:
    """
    Load and validate gateway configuration.

    Args:
        config_path: Path to config.yaml. Defaults to the project root.
        env_file: .env file to load. Defaults to python-dotenv's search.
            Variables already set in the environment take precedence.

    Returns:
        GatewayConfig: Validated configuration

    Raises:
        ConfigurationError: If the file is missing, unparseable, or fails
            validation (missing or placeholder credentials, bad values)

    Examples:
        >>> config = load_config("config.yaml")
        >>> [t.id for t in config.enabled_traders()]
        ['binance_main']
    """
    path = Path(config_path) if config_path else PROJECT_ROOT / "config.yaml"
    if env_file is not None:
        load_dotenv(env_file)
    else:
        load_dotenv()

    raw = _read_yaml(path)
    raw_traders = raw.get("traders") or []
    if not isinstance(raw_traders, list):
        raise ConfigurationError("'traders' must be a list")
    raw["traders"] = [
        _fill_credentials_from_env(trader) if isinstance(trader, dict) else trader
        for trader in raw_traders
    ]

    try:
        config = GatewayConfig(**raw)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration in {path}: {e}") from e

    logger.info(
        f"Loaded configuration: {len(config.traders)} traders "
        f"({len(config.enabled_traders())} enabled), "
        f"{'testnet' if config.use_testnet else 'mainnet'} by default"
    )
    return config
