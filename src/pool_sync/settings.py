"""Settings module with unified configuration precedence: CLI > ENV > CONFIG FILE."""

from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Annotated, Any

from dotenv import load_dotenv
from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import (
    BaseSettings,
    NoDecode,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from .constants import (
    DEFAULT_REBALANCE_GAS,
    DEFAULT_RPC_ENDPOINTS,
    MAX_PAIR_PROBES,
    ZERO_ADDRESS,
)

load_dotenv()

SECRET_FIELDS = {"private_key"}


class SyncSettings(BaseSettings):
    """Single source of truth for configuration. Values may come from:
    - CLI (init kwargs)
    - ENV / .env (prefixed with POOL_SYNC_)
    - Config file (TOML), lowest precedence

    Do not read os.environ or files elsewhere in the codebase.
    """

    # --- ledger endpoints / addresses ---
    rpc_endpoints: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: list(DEFAULT_RPC_ENDPOINTS)
    )
    factory_address: str = ZERO_ADDRESS
    rebalancer_address: str = ZERO_ADDRESS
    chain_id: int | None = None

    # --- signing ---
    private_key: SecretStr | None = None

    # --- failover and deadlines ---
    max_retries: int = Field(default=2, ge=0)
    call_timeout_seconds: float = Field(default=30.0, gt=0)
    operation_timeout_seconds: float | None = 120.0
    discovery_timeout_seconds: float | None = 90.0
    discovery_max_pairs: int = Field(default=MAX_PAIR_PROBES, gt=0, le=MAX_PAIR_PROBES)

    # --- transaction monitoring ---
    monitor_timeout_seconds: float = Field(default=600.0, gt=0)
    receipt_poll_interval_seconds: float = Field(default=2.0, gt=0)

    # --- rebalancing defaults ---
    default_target_ratio: float = Field(default=1.0, gt=0)
    default_slippage_tolerance: float = Field(default=0.5, ge=0, lt=100.0)
    default_rebalance_gas: int = Field(default=DEFAULT_REBALANCE_GAS, gt=0)

    # --- logging ---
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_prefix="POOL_SYNC_",
        env_file=".env",
        extra="ignore",  # ignore unknown keys in env/config file
    )

    @field_validator("private_key", mode="before")
    @classmethod
    def wrap_secrets(cls, v: Any) -> SecretStr | None:
        """Wrap string secrets in SecretStr."""
        if v is None or isinstance(v, SecretStr):
            return v
        return SecretStr(v)

    @field_validator("rpc_endpoints", mode="before")
    @classmethod
    def split_endpoints(cls, v: Any) -> Any:
        """Accept a comma-separated string as well as a list."""
        if isinstance(v, str):
            return [part.strip() for part in v.split(",") if part.strip()]
        return v

    @model_validator(mode="after")
    def validate_endpoints(self) -> "SyncSettings":
        """At least one RPC endpoint is required for any ledger call."""
        if not self.rpc_endpoints:
            raise ValueError("rpc_endpoints must contain at least one endpoint")
        return self

    @model_validator(mode="after")
    def validate_discovery_budget(self) -> "SyncSettings":
        """Discovery must hit its own budget before the operation timeout.

        Otherwise the operation timeout cancels discovery and the pairs
        already found are lost instead of coming back as a truncated report.
        """
        operation = self.operation_timeout_seconds
        if operation is None or operation <= 0:
            return self
        budget = self.discovery_timeout_seconds
        if budget is None or budget <= 0 or budget >= operation:
            raise ValueError(
                f"discovery_timeout_seconds ({budget}) must be positive and shorter "
                f"than operation_timeout_seconds ({operation})"
            )
        return self

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Custom config-file source with explicit precedence: CLI > ENV > FILE."""
        env_cfg = os.environ.get("POOL_SYNC_CONFIG")
        cfg_path = Path(env_cfg) if env_cfg else None

        class TomlConfigSource(PydanticBaseSettingsSource):
            def __init__(self, settings_cls: type[BaseSettings], path: Path | None):
                super().__init__(settings_cls)
                self._path = path

            def get_field_value(
                self, field: Any, field_name: str
            ) -> tuple[Any, str, bool]:
                return None, "", False

            def __call__(self) -> dict[str, Any]:
                if not self._path:
                    # Try default locations
                    local_config = Path("pool-sync.toml")
                    user_config = Path.home() / ".config" / "pool-sync" / "config.toml"
                    if local_config.exists():
                        self._path = local_config
                    elif user_config.exists():
                        self._path = user_config
                    else:
                        return {}

                if not self._path.exists():
                    return {}

                with self._path.open("rb") as f:
                    data = tomllib.load(f)  # supports top-level or [pool_sync]
                body = data.get("pool_sync", data)
                if not isinstance(body, dict):
                    return {}

                for key in SECRET_FIELDS:
                    if key in body:
                        raise ValueError(
                            f"Security violation: '{key}' found in TOML config file. "
                            f"Secrets must only be provided via environment variables or CLI flags."
                        )

                return body

        return (
            init_settings,  # CLI (highest)
            env_settings,  # ENV
            dotenv_settings,  # .env
            TomlConfigSource(settings_cls, cfg_path),  # CONFIG (lowest)
            file_secret_settings,  # optional secrets dir
        )

    def as_safe_dict(self) -> dict[str, Any]:
        """Return the config as a dict with secrets redacted."""
        data = self.model_dump()
        if self.private_key:
            data["private_key"] = "***redacted***"
        return data

    @property
    def can_sign(self) -> bool:
        """Check if a signing key is configured for submitting rebalances."""
        return self.private_key is not None

    @property
    def private_key_required(self) -> str:
        """Get the signing key, raising ValueError if not set."""
        if self.private_key is None:
            raise ValueError("private_key must be configured to submit transactions")
        return self.private_key.get_secret_value()
