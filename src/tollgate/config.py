"""Tollgate configuration — loads from tollgate.yaml + .env."""

from __future__ import annotations

import json
import os
from decimal import Decimal
from pathlib import Path
from typing import Annotated, Any

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


def _load_yaml_config() -> dict[str, Any]:
    """Load tollgate.yaml from TOLLGATE_CONFIG_PATH or default locations."""
    config_path = os.getenv("TOLLGATE_CONFIG_PATH")
    search_paths = (
        [Path(config_path)]
        if config_path
        else [
            Path("/etc/tollgate/tollgate.yaml"),
            Path("tollgate.yaml"),
        ]
    )
    for path in search_paths:
        if path.exists():
            with open(path) as f:
                return yaml.safe_load(f) or {}
    return {}


def _split_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return []
        if text.startswith("["):
            try:
                parsed = json.loads(text)
            except json.JSONDecodeError:
                parsed = None
            if isinstance(parsed, list):
                return [str(item).strip() for item in parsed if str(item).strip()]
        return [item.strip() for item in text.split(",") if item.strip()]
    if isinstance(value, (list, tuple, set)):
        return [str(item).strip() for item in value if str(item).strip()]
    return [str(value).strip()] if str(value).strip() else []


class TextGenConfig(BaseSettings):
    """External text-generation service configuration."""

    api_url: str = Field(default="https://api.chaingpt.org/chat/stream")
    api_key: str = Field(default="", description="Bearer token for the text-generation service")
    timeout_s: float = Field(default=60.0, gt=0)
    research_model: str = "general_assistant"
    generator_model: str = "smart_contract_generator"
    auditor_model: str = "smart_contract_auditor"

    model_config = SettingsConfigDict(env_prefix="TOLLGATE_TEXTGEN_")


class NetworkProfile(BaseModel):
    """One chain the gateway can price and deploy against."""

    rpc_url: str
    hardhat_network: str


def _default_networks() -> dict[str, NetworkProfile]:
    return {
        "testnet": NetworkProfile(
            rpc_url="https://data-seed-prebsc-1-s1.binance.org:8545/",
            hardhat_network="bscTestnet",
        ),
        "mainnet": NetworkProfile(
            rpc_url="https://bsc-dataseed.binance.org/",
            hardhat_network="bscMainnet",
        ),
    }


class PolicyConfig(BaseSettings):
    """Identity and spend-cap policy."""

    deny_list: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: ["0xdead00000000000000000000000000000000beef"],
        description="Caller identities that are always refused (case-insensitive)",
    )
    spend_cap: Decimal = Field(default=Decimal("0.05"), gt=0, description="Ceiling in native units")
    gas_units: int = Field(default=3_000_000, gt=0, description="Gas estimate for one deployment")
    native_unit: str = "BNB"
    spend_capped_actions: Annotated[list[str], NoDecode] = Field(default_factory=lambda: ["deploy"])
    rpc_timeout_s: float = Field(default=10.0, gt=0)

    @field_validator("deny_list", mode="before")
    @classmethod
    def _parse_deny_list(cls, value: Any) -> list[str]:
        return [item.lower() for item in _split_list(value)]

    @field_validator("spend_capped_actions", mode="before")
    @classmethod
    def _parse_actions(cls, value: Any) -> list[str]:
        return _split_list(value)

    model_config = SettingsConfigDict(env_prefix="TOLLGATE_POLICY_")


class PaymentConfig(BaseSettings):
    """Pay-per-call challenge configuration."""

    gated_actions: Annotated[list[str], NoDecode] = Field(default_factory=lambda: ["research", "generate"])
    prices: Annotated[dict[str, str], NoDecode] = Field(
        default_factory=lambda: {"research": "0.001", "generate": "0.005"},
    )
    default_price: str = "0.001"
    currency: str = "BNB"
    ttl_seconds: int = Field(default=300, gt=0, le=86_400)

    @field_validator("gated_actions", mode="before")
    @classmethod
    def _parse_gated_actions(cls, value: Any) -> list[str]:
        return _split_list(value)

    @field_validator("prices", mode="before")
    @classmethod
    def _parse_prices(cls, value: Any) -> dict[str, str]:
        if value is None:
            return {}
        if isinstance(value, str):
            text = value.strip()
            if not text:
                return {}
            if text.startswith("{"):
                return {str(k): str(v) for k, v in json.loads(text).items()}
            prices: dict[str, str] = {}
            for item in text.split(","):
                action, sep, price = item.partition("=")
                if sep and action.strip() and price.strip():
                    prices[action.strip()] = price.strip()
            return prices
        return {str(k): str(v) for k, v in dict(value).items()}

    model_config = SettingsConfigDict(env_prefix="TOLLGATE_PAYMENTS_")


class DeployConfig(BaseSettings):
    """Build/deploy toolchain configuration."""

    project_dir: str = Field(default=".", description="Toolchain project root (cwd for the subprocess)")
    contracts_dir: str = "contracts"
    source_filename: str = "GenContract.sol"
    scripts_dir: str = "scripts"
    deploy_script: str = "scripts/deploy.cjs"
    command: Annotated[list[str], NoDecode] = Field(default_factory=lambda: ["npx", "hardhat", "run"])
    timeout_s: float = Field(default=600.0, gt=0, description="Upper bound on one toolchain run")

    @field_validator("command", mode="before")
    @classmethod
    def _parse_command(cls, value: Any) -> list[str]:
        if isinstance(value, str):
            text = value.strip()
            if text.startswith("["):
                return [str(part) for part in json.loads(text)]
            return text.split()
        return [str(part) for part in value]

    model_config = SettingsConfigDict(env_prefix="TOLLGATE_DEPLOY_")


class TollgateConfig(BaseSettings):
    """Root Tollgate configuration."""

    # Server
    host: str = Field(default="0.0.0.0", description="Server bind host")
    port: int = Field(default=8000, description="Server bind port")

    # Auth
    api_key: str = Field(default="", description="API key for authentication. Empty = no auth")

    # Sub-configs
    textgen: TextGenConfig = Field(default_factory=TextGenConfig)
    policy: PolicyConfig = Field(default_factory=PolicyConfig)
    payments: PaymentConfig = Field(default_factory=PaymentConfig)
    deploy: DeployConfig = Field(default_factory=DeployConfig)
    networks: dict[str, NetworkProfile] = Field(default_factory=_default_networks)

    # Logging
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json", description="'json' or 'console'")

    model_config = SettingsConfigDict(
        env_prefix="TOLLGATE_",
        env_nested_delimiter="__",
    )

    @classmethod
    def load(cls) -> TollgateConfig:
        """Load config from YAML + env vars (env takes precedence)."""
        yaml_cfg = _load_yaml_config()

        textgen_data = yaml_cfg.pop("textgen", {})
        policy_data = yaml_cfg.pop("policy", {})
        payments_data = yaml_cfg.pop("payments", {})
        deploy_data = yaml_cfg.pop("deploy", {})

        # Only pass YAML sub-configs if they have data;
        # otherwise let pydantic-settings pick up env vars
        kwargs: dict[str, Any] = {**yaml_cfg}
        if textgen_data:
            kwargs["textgen"] = TextGenConfig(**textgen_data)
        if policy_data:
            kwargs["policy"] = PolicyConfig(**policy_data)
        if payments_data:
            kwargs["payments"] = PaymentConfig(**payments_data)
        if deploy_data:
            kwargs["deploy"] = DeployConfig(**deploy_data)

        return cls(**kwargs)


# Singleton
_config: TollgateConfig | None = None


def get_config() -> TollgateConfig:
    """Get or create the global config."""
    global _config
    if _config is None:
        _config = TollgateConfig.load()
    return _config
