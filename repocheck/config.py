"""Runtime configuration loaded from environment variables."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """repocheck settings.

    Every field can be overridden with a ``REPOCHECK_`` prefixed environment
    variable or an entry in ``.env``.
    """

    model_config = SettingsConfigDict(
        env_prefix="REPOCHECK_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Mirror layout
    root_manifest: str = "repodata/repomd.xml"
    source_marker: str = ".url"
    backup_suffix: str = ".bak"

    # Descriptor kinds
    primary_kind: str = "primary"
    package_kind: str = "rpm"

    # Verification
    check_hash: bool = True
    buffer_size: int = Field(default=1 << 20, ge=1)
    workers: int = Field(default=1, ge=1, le=64)

    # Fetching
    fetch_timeout: float = Field(default=60.0, gt=0)

    debug: bool = False

    @property
    def backup_manifest(self) -> str:
        """Relative path of the root manifest backup."""
        return self.root_manifest + self.backup_suffix
