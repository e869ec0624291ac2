"""Configuration management for the application"""

import os
from pathlib import Path

import yaml
from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load .env file at the top level of the module
load_dotenv()


def _default_cleanup_stale_handles() -> bool:
    # Windows endpoints are loopback TCP ports: no socket file can be left
    # behind, so a refused connection there never means "stale".
    return os.name != "nt"


def _default_instance_lock_enabled() -> bool:
    return os.name == "nt"


class IpcConfig(BaseSettings):
    """Single-instance endpoint configuration"""

    model_config = SettingsConfigDict(env_prefix="WORKBENCH_IPC_")

    product_id: str = Field(
        default="workbench",
        description="Fixed product identifier all instances derive the endpoint from",
    )
    cleanup_stale_handles: bool = Field(
        default_factory=_default_cleanup_stale_handles,
        description=(
            "When true, a refused connection to an existing endpoint is treated "
            "as a stale handle: it is removed and binding is retried once."
        ),
    )
    request_timeout: float = Field(
        default=10.0, description="Client request timeout in seconds"
    )
    ready_timeout: float = Field(
        default=10.0,
        description="Seconds to wait for the bound server to start serving",
    )
    backlog: int = Field(default=16, description="Listen backlog for the endpoint")


class LoggingConfig(BaseSettings):
    """Logging configuration"""

    model_config = SettingsConfigDict(env_prefix="WORKBENCH_LOG_")

    level: str = Field(default="INFO", description="Logging level")
    format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log format string",
    )


class HelperConfig(BaseSettings):
    """Shared helper process configuration"""

    model_config = SettingsConfigDict(env_prefix="WORKBENCH_HELPER_")

    enabled: bool = Field(
        default=True, description="Spawn the shared helper process after binding"
    )
    terminate_timeout: float = Field(
        default=5.0, description="Graceful termination timeout in seconds"
    )


class InstanceLockConfig(BaseSettings):
    """Secondary single-instance lock configuration"""

    model_config = SettingsConfigDict(env_prefix="WORKBENCH_LOCK_")

    enabled: bool = Field(
        default_factory=_default_instance_lock_enabled,
        description="Hold a per-user OS file lock as an extra single-instance hint",
    )


class AppConfig(BaseSettings):
    """Main application configuration"""

    ipc: IpcConfig = Field(default_factory=IpcConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    helper: HelperConfig = Field(default_factory=HelperConfig)
    instance_lock: InstanceLockConfig = Field(default_factory=InstanceLockConfig)


def get_user_config_dir() -> Path:
    """
    Return the per-user configuration directory.

    On Windows this resolves to %APPDATA%\\Workbench.
    On other platforms it follows the XDG base directory spec or falls back
    to ~/.config/Workbench.
    """
    if os.name == "nt":
        appdata = os.environ.get("APPDATA")
        if appdata:
            base = Path(appdata)
        else:
            base = Path.home() / "AppData" / "Roaming"
    else:
        xdg = os.environ.get("XDG_CONFIG_HOME")
        if xdg:
            base = Path(xdg)
        else:
            base = Path.home() / ".config"

    return base / "Workbench"


def get_config_path() -> Path:
    """Location of config.yaml, overridable through WORKBENCH_CONFIG."""
    override = os.environ.get("WORKBENCH_CONFIG")
    if override:
        return Path(override)
    return get_user_config_dir() / "config.yaml"


def load_config(config_path: Path | None = None) -> AppConfig:
    """Build an AppConfig from config.yaml (if present) and the environment."""
    path = config_path if config_path is not None else get_config_path()

    config_dict: dict = {}
    if path.exists():
        with open(path, "r", encoding="utf-8") as f:
            config_dict = yaml.safe_load(f) or {}

    return AppConfig(
        ipc=IpcConfig(**config_dict.get("ipc", {})),
        logging=LoggingConfig(**config_dict.get("logging", {})),
        helper=HelperConfig(**config_dict.get("helper", {})),
        instance_lock=InstanceLockConfig(**config_dict.get("instance_lock", {})),
    )


# Global config instance
_config: AppConfig | None = None


def get_config() -> AppConfig:
    """Get the global configuration instance"""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def set_config(config: AppConfig | None) -> None:
    """Set the global configuration instance (mainly for testing)"""
    global _config
    _config = config
