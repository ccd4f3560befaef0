"""Configuration schema using Pydantic.

Persisted to ~/.mubus/config.json; every field can be overridden with
MUBUS_<SECTION>__<FIELD> environment variables.
"""

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BusConfig(BaseModel):
    """Message bus registration."""
    base_name: str = "nl.djcbsoftware.Mu.Maildir"
    suffix: str | None = None  # Alphanumeric; lets several servers run side by side
    transport: Literal["socket", "memory"] = "socket"
    socket_dir: str = "~/.mubus/run"
    object_path: str = "/mu/cache"


class StoreConfig(BaseModel):
    """Mail store location."""
    maildir: str = "~/Maildir"
    db_path: str = "~/.mubus/store.json"


class ServerConfig(BaseModel):
    """Command defaults."""
    max_matches: int = 500  # Default :maxnum for find; negative means unlimited
    progress_every: int = 100  # Messages between out-of-band index progress updates


class LoggingConfig(BaseModel):
    """Log sink settings."""
    level: str = "INFO"


class Config(BaseSettings):
    """Root configuration for mubus."""
    bus: BusConfig = Field(default_factory=BusConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @property
    def socket_dir_path(self) -> Path:
        return Path(self.bus.socket_dir).expanduser()

    @property
    def maildir_path(self) -> Path:
        return Path(self.store.maildir).expanduser()

    @property
    def db_path(self) -> Path:
        return Path(self.store.db_path).expanduser()

    model_config = SettingsConfigDict(
        env_prefix="MUBUS_",
        env_nested_delimiter="__",
    )
