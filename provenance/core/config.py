"""provenance.core.config

Three config surfaces only:
1) `config/default.yaml` + `config/presets/*.yaml`
2) Environment variables (secrets only)
3) `config/user.yaml` (optional, replaces default.yaml when present)

Everything else is derived.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings

from provenance.core.exceptions import ConfigError


def _deep_merge(base: dict[str, Any], overlay: dict[str, Any]) -> dict[str, Any]:
    result: dict[str, Any] = dict(base)
    for k, v in overlay.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


class LedgerConfig(BaseModel):
    db_filename: str = "ledger.db"
    lock_timeout_seconds: float = 5.0
    max_payload_bytes: int = 64 * 1024
    identity_cache_ttl_seconds: float = 30.0
    history_page_size: int = 200

    @field_validator("lock_timeout_seconds")
    @classmethod
    def lock_timeout_must_be_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("lock_timeout_seconds must be > 0")
        return v


class AnchorConfig(BaseModel):
    enabled: bool = False
    sink: Literal["checkpoint", "http", "eas"] = "checkpoint"
    interval_seconds: float = 300.0
    commit_timeout_seconds: float = 30.0
    max_retries: int = 3
    backoff_base_seconds: float = 1.0
    backoff_max_seconds: float = 30.0
    max_batches_per_anchor: int = 1000
    http_url: str = ""
    http_token: str = ""  # secret: set via PROVENANCE_ANCHOR__HTTP_TOKEN
    checkpoint_key_hex: str = ""  # secret: 32-byte Ed25519 seed, hex; unset uses checkpoint.key beside the db

    @field_validator("max_retries")
    @classmethod
    def retries_cannot_be_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("max_retries must be >= 0")
        return v


class EASConfig(BaseModel):
    eas_contract: str = "0xA1207F3BBa224E2c9c3c6D5aF63D0eb1582Ce587"
    schema_uid: str = ""  # Set after schema registration
    attester_private_key: str = ""  # Private key for signing attestations
    chain_id: int = 1


class LoggingConfig(BaseModel):
    level: str = "INFO"
    json_output: bool = False


class ApiConfig(BaseModel):
    host: str = "127.0.0.1"
    port: int = 5050
    auth_token: str = ""
    cors_origins: list[str] = Field(default_factory=list)


class Config(BaseSettings):
    """Root configuration. Single source of truth."""

    # Paths
    data_dir: Path = Path("data")
    config_dir: Path = Path("config")

    # Preset selection
    preset: Literal["local", "strict", "custom"] = "local"

    # Component configs
    ledger: LedgerConfig = Field(default_factory=LedgerConfig)
    anchor: AnchorConfig = Field(default_factory=AnchorConfig)
    eas: EASConfig = Field(default_factory=EASConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    api: ApiConfig = Field(default_factory=ApiConfig)

    model_config = {"env_prefix": "PROVENANCE_", "env_nested_delimiter": "__"}

    @property
    def db_path(self) -> Path:
        return Path(self.data_dir) / self.ledger.db_filename

    @classmethod
    def from_yaml(cls, path: Path) -> Config:
        if not path.exists():
            raise ConfigError(f"Config file not found: {path}")

        try:
            raw = yaml.safe_load(path.read_text()) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Config file is not valid YAML: {path}") from e

        preset_name = raw.get("preset", "local")
        preset_path = path.parent / "presets" / f"{preset_name}.yaml"
        if preset_path.exists():
            preset_data = yaml.safe_load(preset_path.read_text()) or {}
            raw = _deep_merge(preset_data, raw)

        return cls(**raw)

    @classmethod
    def from_repo_defaults(cls, repo_root: Path | None = None) -> Config:
        root = repo_root or Path.cwd()
        return cls.from_yaml(root / "config" / "default.yaml")

    @classmethod
    def load(cls, repo_root: Path | None = None) -> Config:
        """user.yaml if present, else default.yaml."""

        root = repo_root or Path.cwd()
        user_path = root / "config" / "user.yaml"
        if user_path.exists():
            return cls.from_yaml(user_path)
        return cls.from_repo_defaults(root)
