"""Configuration management for Subspace."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from subspace.errors import ConfigurationError, NoSignerError

if TYPE_CHECKING:
    from subspace.substrate import Signer

DEFAULT_READ_IDENTITY = "placeholder-read-only-address"


class Settings(BaseSettings):
    """Client settings."""

    model_config = SettingsConfigDict(
        env_prefix="SUBSPACE_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    # Endpoints
    cu_url: str = Field(default="https://cu.arnode.asia", description="Compute unit used for reads and results")
    mu_url: str = Field(default="https://mu.ao-testnet.xyz", description="Messenger unit that accepts signed messages")
    gateway_url: str = Field(default="https://arweave.net", description="Gateway URL")
    hyperbeam_url: str = Field(default="https://hb.arweave.net", description="Base URL of the cache read path")

    # Identity
    owner: str = Field(default="", description="Wallet address of the caller")
    read_identity: str = Field(
        default=DEFAULT_READ_IDENTITY,
        description="Identity sent with anonymous reads when no owner is set",
    )

    # Processes
    subspace_process: str = Field(
        default="ZrIAe6d6waj7ClOtDgOVH5XFSruDL8u3yCG6lrKYS68",
        description="Registry process id",
    )
    scheduler: str = Field(default="_GQ33BkPtZrqxA84vM8Zk-N2aO0toNNu_C-l-rawrBA", description="Scheduler for spawns")
    module: str = Field(default="33d-3X8mpv6xYBlVB-eXMrPfH5Kzf6Hiwhcv0UA10sw", description="Module for spawns")
    authority: str = Field(default="fcoN_xJeisVsPXA-trzVAuIiqO3ydLQxM-L4XbrQKzY", description="Authority tag on spawns")

    # Calls
    default_retries: int = Field(default=3, ge=1, description="Attempts per remote primitive")
    http_timeout_seconds: float = Field(default=30.0, gt=0, description="Per-request HTTP timeout")

    # Logging Configuration
    log_level: str = Field(default="INFO", description="Log level")


@dataclass(frozen=True)
class ClientConfig:
    """Immutable configuration snapshot seen by one call from start to end."""

    settings: Settings = field(default_factory=Settings)
    signer: Signer | None = field(default=None, repr=False)

    def identity(self, owner: str | None = None) -> str:
        return owner or self.settings.owner or self.settings.read_identity

    def require_signer(self, signer: Signer | None = None) -> Signer:
        resolved = signer or self.signer
        if resolved is None:
            raise NoSignerError("No signer available. Provide a signer on the request or configure one.")
        return resolved


class ConfigStore:
    """Holds the current snapshot and swaps it atomically on reconfiguration."""

    def __init__(self, config: ClientConfig | None = None) -> None:
        self._snapshot = config or ClientConfig()
        self._write_lock = threading.Lock()

    def snapshot(self) -> ClientConfig:
        return self._snapshot

    @property
    def settings(self) -> Settings:
        return self._snapshot.settings

    def reconfigure(self, *, signer: Signer | None = None, **changes: Any) -> ClientConfig:
        """Publish a new snapshot built from the current one.

        Unknown setting names are rejected; ``None`` values leave the current
        value in place.
        """

        unknown = set(changes) - set(Settings.model_fields)
        if unknown:
            raise ConfigurationError(f"Unknown settings: {', '.join(sorted(unknown))}")
        updates = {name: value for name, value in changes.items() if value is not None}

        with self._write_lock:
            current = self._snapshot
            settings = Settings.model_validate({**current.settings.model_dump(), **updates})
            self._snapshot = ClientConfig(settings=settings, signer=signer or current.signer)
            return self._snapshot

    def connection_info(self) -> dict[str, Any]:
        config = self._snapshot
        return {
            "cu_url": config.settings.cu_url,
            "mu_url": config.settings.mu_url,
            "hyperbeam_url": config.settings.hyperbeam_url,
            "owner": config.settings.owner,
            "has_signer": config.signer is not None,
        }


def get_settings(**overrides: Any) -> Settings:
    """Load settings from the environment and ``.env``, applying ``overrides``."""

    return Settings(**overrides)
