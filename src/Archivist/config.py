"""Settings loader for Archivist."""

from pathlib import Path
from typing import Any

import tomllib
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from Archivist import __version__


def _toml_settings_source() -> dict[str, Any]:
    """Load settings from config.toml with keys mapped to Settings fields.

    This source has LOWER priority than env/.env so those can override TOML.
    """
    cfg_path = Path("config.toml")
    if not cfg_path.exists():
        return {}
    with cfg_path.open("rb") as f:
        t = tomllib.load(f)

    content_cfg = t.get("content", {}) or {}
    importer_cfg = t.get("importer", {}) or {}
    deriv_cfg = t.get("derivatives", {}) or {}
    log_cfg = t.get("logging", {}) or {}

    out: dict[str, Any] = {}
    if "root" in content_cfg:
        out["content_root"] = content_cfg["root"]
    if "app_version" in importer_cfg:
        out["app_version"] = importer_cfg["app_version"]
    # [importer] verify = true makes signature checks the default for import-pack
    if "verify" in importer_cfg:
        out["require_signature"] = bool(importer_cfg["verify"])
    if importer_cfg.get("public_key"):
        out["public_key_path"] = importer_cfg["public_key"]
    if "lock_timeout_seconds" in importer_cfg:
        out["lock_timeout_seconds"] = float(importer_cfg["lock_timeout_seconds"])
    if "skip" in deriv_cfg:
        out["skip_derivatives"] = bool(deriv_cfg["skip"])
    if "thumb_size" in deriv_cfg:
        out["thumb_size"] = int(deriv_cfg["thumb_size"])
    if "screen_size" in deriv_cfg:
        out["screen_size"] = int(deriv_cfg["screen_size"])

    overall = str(log_cfg.get("level", "INFO")).upper()
    out["logging_level"] = overall

    def _norm_level(v, default):
        if isinstance(v, str):
            return v.upper()
        if isinstance(v, bool):
            return default if v else "NONE"
        return default

    out["logging_console"] = _norm_level(log_cfg.get("console"), overall)
    out["logging_file"] = _norm_level(log_cfg.get("to_file"), "NONE")
    if log_cfg.get("file_path"):
        out["logging_file_path"] = log_cfg["file_path"]
    if "max_bytes" in log_cfg:
        out["logging_max_bytes"] = int(log_cfg["max_bytes"])
    if "backup_count" in log_cfg:
        out["logging_backup_count"] = int(log_cfg["backup_count"])
    return out


class Settings(BaseSettings):
    # --- Content ---
    content_root: Path = Field(default=Path("content"))
    app_version: str = Field(
        default=__version__,
        description="Running application version compared against compat.min_app_semver.",
    )

    # --- Importer ---
    require_signature: bool = False
    public_key_path: Path | None = None
    lock_timeout_seconds: float = 0.0

    # --- Derivatives ---
    skip_derivatives: bool = False
    thumb_size: int = Field(default=256, ge=16)
    screen_size: int = Field(default=1600, ge=64)

    # --- Logging ---
    # Per-handler levels: INFO|DEBUG|WARNING|ERROR|CRITICAL|NONE
    logging_level: str = "INFO"
    logging_console: str = "INFO"
    logging_file: str = "NONE"
    logging_file_path: str = "logs/archivist.jsonl"
    logging_max_bytes: int = 5_000_000
    logging_backup_count: int = 5

    model_config = SettingsConfigDict(
        env_prefix="ARCHIVIST_",
        case_sensitive=False,
        env_file=".env",
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # Precedence (highest to lowest):
        # 1) init_settings (CLI options and tests)
        # 2) dotenv (.env in cwd)
        # 3) env_settings (OS env)
        # 4) TOML (config.toml)
        # 5) file_secret_settings
        return (
            init_settings,
            dotenv_settings,
            env_settings,
            _toml_settings_source,
            file_secret_settings,
        )


def load_settings(**overrides: Any) -> Settings:
    # Drop unset CLI options so lower-priority sources still apply
    return Settings(**{k: v for k, v in overrides.items() if v is not None})
