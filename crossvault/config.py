"""
Configuration Management System

Hierarchical configuration loading:
1. Environment variables (highest priority)
2. config.yaml file

The loaded CrossVaultConfig is built once at startup and handed to each
component's constructor.
"""

import os
from typing import Optional, Dict, Any
from pathlib import Path
import yaml
from pydantic import BaseModel, Field, ValidationError, validator

from .types import ConfigurationError, RetryOptions


# Pool-state reader (StateView) deployments per chain
STATE_VIEW_ADDRESSES: Dict[str, str] = {
    'base-sepolia': '0x571291B572ED32Ce6751A2cb2F1CFeeD1E09a81D',
    'unichain-sepolia': '0x75f7Ab88D2f27386c1e5C304eBBBA84D3BfF0adF',
    'sepolia': '0x75f7Ab88D2f27386c1e5C304eBBBA84D3BfF0adF',
}


def _validate_address(v: str) -> str:
    if not isinstance(v, str) or not v.startswith('0x') or len(v) != 42:
        raise ValueError(f"Invalid address: {v}")
    return v


class ChainConfig(BaseModel):
    """Immutable descriptor of one chain and its pool"""
    name: str = Field(..., description="Chain key, e.g. base-sepolia")
    chain_id: int
    rpc_url: str = Field(..., description="HTTP RPC endpoint")
    pool_id: str = Field(..., description="bytes32 pool identifier")
    state_view_address: Optional[str] = Field(default=None, description="Pool-state reader")
    base_token_address: str = Field(..., description="Priced token")
    quote_token_address: str = Field(..., description="Quote token (USDC)")
    base_token_decimals: int = Field(default=18, ge=0, le=77)
    quote_token_decimals: int = Field(default=6, ge=0, le=77)

    @validator('rpc_url')
    def validate_rpc_url(cls, v):
        if not v:
            raise ValueError("rpc_url is required")
        return v

    @validator('pool_id')
    def validate_pool_id(cls, v):
        if not v.startswith('0x') or len(v) != 66:
            raise ValueError(f"pool_id must be a 0x-prefixed bytes32 hex string: {v}")
        return v

    @validator('base_token_address', 'quote_token_address')
    def validate_token_address(cls, v):
        return _validate_address(v)

    @validator('state_view_address', always=True)
    def resolve_state_view(cls, v, values):
        if v:
            return _validate_address(v)
        name = values.get('name')
        if name in STATE_VIEW_ADDRESSES:
            return STATE_VIEW_ADDRESSES[name]
        raise ValueError(f"No StateView address known for chain: {name}")

    class Config:
        frozen = True


class WatcherConfig(BaseModel):
    """Price watcher configuration"""
    poll_interval_seconds: float = Field(default=5.0, gt=0)
    threshold_bps: float = Field(default=50, ge=0)
    read_retry: RetryOptions = Field(
        default_factory=lambda: RetryOptions(
            max_retries=3, base_delay=0.5, max_delay=5.0, backoff_multiplier=2
        )
    )


class LedgerConfig(BaseModel):
    """Wallet ledger (Circle programmable wallets) configuration"""
    api_key: str
    source_wallet_id: str
    entity_secret_hex: str
    base_url: str = Field(default="https://api.circle.com/v1/w3s")
    request_timeout_seconds: float = Field(default=30.0, gt=0)
    fee_level: str = Field(default="MEDIUM")
    confirm_max_attempts: int = Field(default=10, ge=1)
    confirm_interval_seconds: float = Field(default=5.0, ge=0)
    request_retry: RetryOptions = Field(
        default_factory=lambda: RetryOptions(
            max_retries=2, base_delay=1.0, max_delay=8.0, backoff_multiplier=2
        )
    )

    @validator('api_key', 'source_wallet_id', 'entity_secret_hex')
    def validate_required(cls, v):
        if not v:
            raise ValueError("value is required")
        return v


class SettlementConfig(BaseModel):
    """Settlement orchestration configuration"""
    vault_wallet_id: str
    token_symbol: str = Field(default="USDC")
    max_attempts: int = Field(default=3, ge=1)
    retry_backoff_seconds: float = Field(default=2.0, ge=0)

    @validator('vault_wallet_id')
    def validate_vault(cls, v):
        if not v:
            raise ValueError("vault_wallet_id is required")
        return v


class LoggingSettings(BaseModel):
    """Logging configuration"""
    level: str = Field(default="INFO")
    log_dir: Optional[Path] = None
    cloudwatch_enabled: bool = Field(default=False)
    cloudwatch_region: str = Field(default="us-east-1")
    cloudwatch_log_group: str = Field(default="CrossVault")


class MetricsConfig(BaseModel):
    """Prometheus metrics endpoint configuration"""
    enabled: bool = Field(default=False)
    port: int = Field(default=8000)
    # One-shot commands push here instead of being scraped
    pushgateway_url: Optional[str] = None
    push_job: str = Field(default="crossvault_settle")


class DatabaseConfig(BaseModel):
    """Settlement record persistence (disabled when url is unset)"""
    url: Optional[str] = None


class CrossVaultConfig(BaseModel):
    """Main configuration model"""
    chain_a: ChainConfig
    chain_b: ChainConfig
    watcher: WatcherConfig = Field(default_factory=WatcherConfig)
    ledger: Optional[LedgerConfig] = None
    settlement: Optional[SettlementConfig] = None
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)

    def require_ledger(self) -> LedgerConfig:
        if self.ledger is None:
            raise ConfigurationError(
                "Ledger not configured (ARC_API_KEY, ARC_WALLET_ID_SOURCE, ENTITY_SECRET_HEX)"
            )
        return self.ledger

    def require_settlement(self) -> SettlementConfig:
        if self.settlement is None:
            raise ConfigurationError(
                "Settlement not configured (ARC_WALLET_ID_OPERATOR_VAULT)"
            )
        return self.settlement


# (env var, section, key, caster)
ENV_OVERRIDES = [
    ('CHAIN_A_RPC_URL', 'chain_a', 'rpc_url', str),
    ('CHAIN_B_RPC_URL', 'chain_b', 'rpc_url', str),
    ('CHAIN_A_NAME', 'chain_a', 'name', str),
    ('CHAIN_B_NAME', 'chain_b', 'name', str),
    ('CHAIN_A_ID', 'chain_a', 'chain_id', int),
    ('CHAIN_B_ID', 'chain_b', 'chain_id', int),
    ('POLL_INTERVAL_SECONDS', 'watcher', 'poll_interval_seconds', float),
    ('THRESHOLD_BPS', 'watcher', 'threshold_bps', float),
    ('ARC_API_KEY', 'ledger', 'api_key', str),
    ('ARC_WALLET_ID_SOURCE', 'ledger', 'source_wallet_id', str),
    ('ENTITY_SECRET_HEX', 'ledger', 'entity_secret_hex', str),
    ('ARC_WALLET_ID_OPERATOR_VAULT', 'settlement', 'vault_wallet_id', str),
    ('SETTLEMENT_TOKEN_SYMBOL', 'settlement', 'token_symbol', str),
    ('LOG_LEVEL', 'logging', 'level', str),
    ('DATABASE_URL', 'database', 'url', str),
    ('METRICS_PUSHGATEWAY_URL', 'metrics', 'pushgateway_url', str),
]


class ConfigLoader:
    """Configuration loader with hierarchical loading"""

    def __init__(self, config_path: Optional[Path] = None, environ: Optional[Dict[str, str]] = None):
        self.config_path = Path(config_path) if config_path else Path("config.yaml")
        self.environ = environ if environ is not None else os.environ
        self._config: Optional[CrossVaultConfig] = None

    def load(self) -> CrossVaultConfig:
        """Load configuration from all sources"""
        config_data = self._load_yaml()
        config_data = self._apply_env_overrides(config_data)

        try:
            self._config = CrossVaultConfig(**config_data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e

        return self._config

    def _load_yaml(self) -> Dict[str, Any]:
        """Load configuration from YAML file"""
        if not self.config_path.exists():
            raise ConfigurationError(f"Configuration file not found: {self.config_path}")

        with open(self.config_path, 'r') as f:
            data = yaml.safe_load(f)

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigurationError(f"Configuration root must be a mapping: {self.config_path}")
        return data

    def _apply_env_overrides(self, config_data: Dict[str, Any]) -> Dict[str, Any]:
        """Apply environment variable overrides"""
        for env_name, section, key, caster in ENV_OVERRIDES:
            value = self.environ.get(env_name)
            if not value:
                continue
            try:
                config_data.setdefault(section, {})[key] = caster(value)
            except ValueError as e:
                raise ConfigurationError(f"Invalid value for {env_name}: {value}") from e
        return config_data

    @property
    def config(self) -> CrossVaultConfig:
        """Get loaded configuration"""
        if self._config is None:
            raise RuntimeError("Configuration not loaded. Call load() first.")
        return self._config


def load_config(config_path: Optional[Path] = None) -> CrossVaultConfig:
    """Load configuration from config_path (default config.yaml) and the environment"""
    return ConfigLoader(config_path).load()
