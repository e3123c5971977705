"""
Configuration management for the OKX / KuCoin Spot Arbitrage Bot.
Uses Pydantic for validation and type safety.
"""

from decimal import Decimal
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def parse_amount_tiers(raw: str) -> List[Tuple[Decimal, Decimal]]:
    """
    Parse a trade amount table like ``"0.01:1000,0.1:100,5:4"``.

    Each entry is ``<exclusive upper price bound>:<units>``. Bounds must be
    strictly ascending and units non-increasing, so a higher unit price never
    buys more units.
    """
    tiers: List[Tuple[Decimal, Decimal]] = []
    for chunk in raw.split(","):
        chunk = chunk.strip()
        if not chunk:
            continue
        try:
            bound, units = chunk.split(":")
            tiers.append((Decimal(bound.strip()), Decimal(units.strip())))
        except (ValueError, ArithmeticError):
            raise ValueError(f"Invalid trade amount tier: {chunk!r}")

    validate_amount_tiers(tiers)
    return tiers


def validate_amount_tiers(tiers: List[Tuple[Decimal, Decimal]]) -> None:
    """Reject empty, unsorted or non-monotonic trade amount tables."""
    if not tiers:
        raise ValueError("Trade amount table must have at least one tier")

    for (prev_bound, prev_units), (bound, units) in zip(tiers, tiers[1:]):
        if bound <= prev_bound:
            raise ValueError("Trade amount tier bounds must be strictly ascending")
        if units > prev_units:
            raise ValueError("Trade amount tier units must not increase with price")

    for bound, units in tiers:
        if bound <= 0 or units <= 0:
            raise ValueError("Trade amount tier bounds and units must be positive")


class VenueSettings(BaseSettings):
    """Fields shared by both venue sections."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", populate_by_name=True)

    api_key: str = ""
    secret_key: SecretStr = SecretStr("")
    passphrase: SecretStr = SecretStr("")
    base_url: str = ""
    taker_fee_rate: Decimal = Decimal("0.001")
    requests_per_second: float = 5.0

    def missing_credentials(self) -> List[str]:
        """Names of credential fields that are not configured."""
        missing = []
        if not self.api_key:
            missing.append("api_key")
        if not self.secret_key.get_secret_value():
            missing.append("secret_key")
        if not self.passphrase.get_secret_value():
            missing.append("passphrase")
        return missing

    def is_configured(self) -> bool:
        """Check if all three credentials are present."""
        return not self.missing_credentials()

    @field_validator("taker_fee_rate")
    @classmethod
    def validate_fee_rate(cls, v: Decimal) -> Decimal:
        if not Decimal("0") <= v < Decimal("1"):
            raise ValueError("Fee rate must be between 0 and 1")
        return v


class OKXConfig(VenueSettings):
    """OKX API configuration."""

    api_key: str = Field("", alias="OKX_API_KEY")
    secret_key: SecretStr = Field(SecretStr(""), alias="OKX_SECRET_KEY")
    passphrase: SecretStr = Field(SecretStr(""), alias="OKX_PASSPHRASE")
    base_url: str = Field("https://www.okx.com", alias="OKX_BASE_URL")
    taker_fee_rate: Decimal = Field(Decimal("0.001"), alias="OKX_TAKER_FEE_RATE")
    # OKX allows 60 orders / 2s per instrument; stay well under it
    requests_per_second: float = Field(10.0, alias="OKX_REQUESTS_PER_SECOND")


class KuCoinConfig(VenueSettings):
    """KuCoin API configuration."""

    api_key: str = Field("", alias="KUCOIN_API_KEY")
    secret_key: SecretStr = Field(SecretStr(""), alias="KUCOIN_SECRET_KEY")
    passphrase: SecretStr = Field(SecretStr(""), alias="KUCOIN_PASSPHRASE")
    base_url: str = Field("https://api.kucoin.com", alias="KUCOIN_BASE_URL")
    taker_fee_rate: Decimal = Field(Decimal("0.001"), alias="KUCOIN_TAKER_FEE_RATE")
    requests_per_second: float = Field(5.0, alias="KUCOIN_REQUESTS_PER_SECOND")


class ScannerConfig(BaseSettings):
    """Opportunity scanning thresholds."""

    min_profit_percent: Decimal = Field(Decimal("0.5"), alias="MIN_PROFIT_PERCENT")
    # Above this the quote is treated as a data anomaly, not an opportunity
    max_profit_percent: Decimal = Field(Decimal("50"), alias="MAX_PROFIT_PERCENT")
    min_price_diff: Decimal = Field(Decimal("0.00000001"), alias="MIN_PRICE_DIFF")
    min_net_profit: Decimal = Field(Decimal("0.01"), alias="MIN_NET_PROFIT")
    max_price: Decimal = Field(Decimal("5"), alias="MAX_PRICE")
    max_opportunities: int = Field(50, alias="MAX_OPPORTUNITIES")
    quote_asset: str = Field("USDT", alias="QUOTE_ASSET")
    trade_amount_tiers: str = Field(
        "0.01:1000,0.1:100,0.5:20,1:10,5:4", alias="TRADE_AMOUNT_TIERS"
    )
    trade_amount_fallback: Decimal = Field(Decimal("1"), alias="TRADE_AMOUNT_FALLBACK")

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", populate_by_name=True)

    @field_validator("trade_amount_tiers")
    @classmethod
    def validate_tiers(cls, v: str) -> str:
        parse_amount_tiers(v)
        return v

    @field_validator("max_opportunities")
    @classmethod
    def validate_max_opportunities(cls, v: int) -> int:
        if v < 1:
            raise ValueError("MAX_OPPORTUNITIES must be at least 1")
        return v

    @property
    def amount_tiers(self) -> List[Tuple[Decimal, Decimal]]:
        return parse_amount_tiers(self.trade_amount_tiers)


class ExecutionConfig(BaseSettings):
    """Order execution configuration."""

    min_trade_balance: Decimal = Field(Decimal("1"), alias="MIN_TRADE_BALANCE")
    max_balance_fraction: Decimal = Field(Decimal("0.9"), alias="MAX_BALANCE_FRACTION")
    settlement_delay_seconds: float = Field(2.0, alias="SETTLEMENT_DELAY_SECONDS")
    request_timeout_seconds: float = Field(15.0, alias="REQUEST_TIMEOUT_SECONDS")
    price_request_timeout_seconds: float = Field(10.0, alias="PRICE_REQUEST_TIMEOUT_SECONDS")
    amount_decimals: int = Field(4, alias="AMOUNT_DECIMALS")
    poll_interval_seconds: float = Field(10.0, alias="POLL_INTERVAL_SECONDS")
    auto_trade: bool = Field(False, alias="AUTO_TRADE")

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", populate_by_name=True)

    @field_validator("max_balance_fraction")
    @classmethod
    def validate_fraction(cls, v: Decimal) -> Decimal:
        if not Decimal("0") < v <= Decimal("1"):
            raise ValueError("MAX_BALANCE_FRACTION must be in (0, 1]")
        return v

    @field_validator("request_timeout_seconds", "price_request_timeout_seconds")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if not 10.0 <= v <= 15.0:
            raise ValueError("Venue request timeouts must be between 10 and 15 seconds")
        return v

    @field_validator("settlement_delay_seconds")
    @classmethod
    def validate_delay(cls, v: float) -> float:
        if v < 0:
            raise ValueError("SETTLEMENT_DELAY_SECONDS cannot be negative")
        return v


class MonitoringConfig(BaseSettings):
    """Monitoring and notification configuration."""

    log_level: str = Field("INFO", alias="LOG_LEVEL")
    enable_notifications: bool = Field(False, alias="ENABLE_NOTIFICATIONS")
    discord_webhook_url: str = Field("", alias="DISCORD_WEBHOOK_URL")
    telegram_bot_token: str = Field("", alias="TELEGRAM_BOT_TOKEN")
    telegram_chat_id: str = Field("", alias="TELEGRAM_CHAT_ID")

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", populate_by_name=True)


class DatabaseConfig(BaseSettings):
    """Trade history storage configuration."""

    trade_store: str = Field("memory", alias="TRADE_STORE")
    database_path: Path = Field(Path("./data/trades.db"), alias="DATABASE_PATH")

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", populate_by_name=True)

    @field_validator("trade_store")
    @classmethod
    def validate_store(cls, v: str) -> str:
        v = v.lower()
        if v not in ("memory", "sqlite"):
            raise ValueError("TRADE_STORE must be 'memory' or 'sqlite'")
        return v


class DevelopmentConfig(BaseSettings):
    """Development and testing configuration."""

    debug_mode: bool = Field(False, alias="DEBUG_MODE")

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", populate_by_name=True)


class BotConfig:
    """Master configuration class that aggregates all config sections."""

    def __init__(self):
        self.okx = OKXConfig()
        self.kucoin = KuCoinConfig()
        self.scanner = ScannerConfig()
        self.execution = ExecutionConfig()
        self.monitoring = MonitoringConfig()
        self.database = DatabaseConfig()
        self.development = DevelopmentConfig()

        if self.database.trade_store == "sqlite":
            self.database.database_path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def is_debug(self) -> bool:
        return self.development.debug_mode

    def credential_report(self) -> Dict[str, List[str]]:
        """Missing credential field names per venue (values are never included)."""
        return {
            "OKX": self.okx.missing_credentials(),
            "KuCoin": self.kucoin.missing_credentials(),
        }


# Global config instance
_config: Optional[BotConfig] = None


def get_config() -> BotConfig:
    """Get or create the global configuration instance."""
    global _config
    if _config is None:
        _config = BotConfig()
    return _config


def reload_config() -> BotConfig:
    """Force reload configuration from environment."""
    global _config
    _config = BotConfig()
    return _config
