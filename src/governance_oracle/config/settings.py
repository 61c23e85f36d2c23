"""Configuration settings using pydantic-settings for validation."""

import os
import re
from typing import Any, Dict, Literal, Optional

import yaml
from pydantic import AliasChoices, BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _section_config(prefix: str) -> SettingsConfigDict:
    return SettingsConfigDict(
        env_prefix=prefix,
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


class DashCoreConfig(BaseSettings):
    """Dash Core RPC connection."""
    model_config = _section_config("DASH_CORE_")

    host: str = Field(default="127.0.0.1", description="Node RPC host")
    port: int = Field(default=9998, description="Node RPC port")
    username: str = Field(description="RPC username")
    password: str = Field(description="RPC password")
    timeout: int = Field(default=30000, description="Per-request timeout in milliseconds")

    @field_validator('timeout', 'port')
    @classmethod
    def validate_positive(cls, v):
        if v <= 0:
            raise ValueError("must be positive")
        return v

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}"


class PlatformConfig(BaseSettings):
    """Document store (Dash Platform) connection and signing identity."""
    model_config = _section_config("PLATFORM_")

    network: Literal["mainnet", "testnet"] = Field(default="testnet", description="Target network")
    identity_id: str = Field(description="Identity that owns every written document")
    private_key: str = Field(description="Hex-encoded secp256k1 key of the identity")
    contract_id: str = Field(
        validation_alias=AliasChoices("contract_id", "GOVERNANCE_CONTRACT_ID"),
        description="Governance data contract id",
    )
    gateway_url: str = Field(default="http://127.0.0.1:3010", description="Document gateway base URL")
    timeout: int = Field(default=30000, description="Gateway request timeout in milliseconds")


class SyncConfig(BaseSettings):
    """Sync intervals and retry policy."""
    model_config = _section_config("SYNC_")

    proposal_interval_ms: int = Field(default=300000, description="Proposal sync interval")
    vote_interval_ms: int = Field(default=300000, description="Vote sync interval")
    masternode_interval_ms: int = Field(default=3600000, description="Masternode sync interval")
    retry_attempts: int = Field(default=3, description="Attempts per RPC/store call")
    retry_delay_ms: int = Field(default=5000, description="Delay between attempts")
    retry_strategy: Literal["fixed", "exponential"] = Field(default="fixed", description="Retry delay strategy")

    @field_validator('proposal_interval_ms', 'vote_interval_ms', 'masternode_interval_ms', 'retry_attempts')
    @classmethod
    def validate_positive(cls, v):
        if v <= 0:
            raise ValueError("must be positive")
        return v

    @field_validator('retry_delay_ms')
    @classmethod
    def validate_non_negative(cls, v):
        if v < 0:
            raise ValueError("must not be negative")
        return v


class HealthConfig(BaseSettings):
    """Health check server."""
    model_config = _section_config("HEALTH_")

    port: int = Field(default=8080, description="Health check server port")
    host: str = Field(default="0.0.0.0", description="Health check server host")
    enabled: bool = Field(default=True, description="Serve the health endpoint")


class LoggingConfig(BaseSettings):
    """Logging configuration."""
    model_config = _section_config("LOG_")

    level: str = Field(default="info", description="debug, info, warn or error")
    format: Literal["text", "json"] = Field(default="text", description="Log line format")

    @field_validator('level')
    @classmethod
    def validate_level(cls, v):
        level = v.strip().lower()
        if level == 'warn':
            level = 'warning'
        if level not in ['debug', 'info', 'warning', 'error']:
            raise ValueError("Log level must be 'debug', 'info', 'warn' or 'error'")
        return level


class OracleSettings(BaseModel):
    """Main oracle daemon settings."""
    service_name: str = Field(default="governance-oracle", description="Service name")
    dash_core: DashCoreConfig = Field(default_factory=DashCoreConfig)
    platform: PlatformConfig = Field(default_factory=PlatformConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    health: HealthConfig = Field(default_factory=HealthConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def substitute_env_vars(obj: Any) -> Any:
    """
    Recursively substitute environment variables in configuration objects.

    Supports syntax:
    - ${VAR_NAME} - Required variable (raises error if not found)
    - ${VAR_NAME:-default} - Optional variable with default value

    Raises:
        ValueError: If required environment variable is not found
    """
    if isinstance(obj, dict):
        return {key: substitute_env_vars(value) for key, value in obj.items()}
    elif isinstance(obj, list):
        return [substitute_env_vars(item) for item in obj]
    elif isinstance(obj, str):
        def replace_env_var(match):
            var_expr = match.group(1)

            if ':-' in var_expr:
                var_name, default_value = var_expr.split(':-', 1)
                return os.getenv(var_name.strip(), default_value)
            else:
                var_name = var_expr.strip()
                value = os.getenv(var_name)
                if value is None:
                    raise ValueError(f"Required environment variable '{var_name}' is not set")
                return value

        return re.sub(r'\$\{([^}]+)\}', replace_env_var, obj)
    else:
        return obj


def load_settings(config_file: Optional[str] = None) -> OracleSettings:
    """
    Load settings from the environment and an optional YAML file.

    Values from the file are passed as explicit arguments, so they take
    precedence over environment variables for the keys they set.

    Raises:
        pydantic.ValidationError: If a required value is missing or invalid
        FileNotFoundError: If config file doesn't exist
    """
    file_data: Dict[str, Any] = {}

    if config_file:
        if not os.path.exists(config_file):
            raise FileNotFoundError(f"Configuration file not found: {config_file}")

        with open(config_file, 'r') as f:
            raw_config = yaml.safe_load(f) or {}

        file_data = substitute_env_vars(raw_config)

    return OracleSettings(
        service_name=file_data.get('service_name', 'governance-oracle'),
        dash_core=DashCoreConfig(**file_data.get('dash_core', {})),
        platform=PlatformConfig(**file_data.get('platform', {})),
        sync=SyncConfig(**file_data.get('sync', {})),
        health=HealthConfig(**file_data.get('health', {})),
        logging=LoggingConfig(**file_data.get('logging', {})),
    )
