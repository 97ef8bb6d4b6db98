"""Configuration models describing cmsync settings."""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class CMSyncBaseModel(BaseModel):
    """Shared configuration for cmsync Pydantic models."""

    model_config = ConfigDict(extra="forbid")


class ServerSettings(CMSyncBaseModel):
    """Connection settings for the CM server.

    Attributes:
        host: Host name of the CM server.
        port: Port the CM server listens on.
        secure: Whether the session uses TLS.
        user: User connecting to the CM server.
        password: Clear-text password for ``user``.
        ip_host: Optional integration point host used to broker the session.
        ip_port: Integration point port; ``0`` means no integration point.
    """

    model_config = ConfigDict(extra="forbid", coerce_numbers_to_str=True)

    host: str = "localhost"
    port: int = Field(default=7001, ge=1, le=65535)
    secure: bool = False
    user: str = ""
    password: Optional[str] = None
    ip_host: str = ""
    ip_port: int = Field(default=0, ge=0, le=65535)

    @property
    def url(self) -> str:
        """Return the browsable URL for the server."""
        scheme = "https" if self.secure else "http"
        return f"{scheme}://{self.host}:{self.port}"


class ProjectOptions(CMSyncBaseModel):
    """Per-job options describing which project to build and how.

    Attributes:
        config_path: Configuration path of the CM project.
        clean_copy: Whether every build should start from an empty workspace.
        line_terminator: Line ending applied to fetched text files.
        restore_timestamp: Whether fetched files receive the server timestamp.
        skip_author_info: Whether author lookups for changed members are skipped.
        checkpoint_before_build: Whether to checkpoint the project before building.
        alternate_workspace: Optional directory used instead of the workspace.
        fetch_changed_workspace_files: Whether locally modified files are re-fetched.
    """

    config_path: str = ""
    clean_copy: bool = False
    line_terminator: Literal["native", "unix", "windows"] = "native"
    restore_timestamp: bool = True
    skip_author_info: bool = False
    checkpoint_before_build: bool = False
    alternate_workspace: str = ""
    fetch_changed_workspace_files: bool = False


class SyncSettings(CMSyncBaseModel):
    """Tuning knobs for synchronization.

    Attributes:
        max_workers: Upper bound on concurrent file fetches.
        history_depth: Number of earlier builds inspected for a baseline.
    """

    max_workers: int = Field(default=4, ge=1)
    history_depth: int = Field(default=50, ge=1)


class SessionSettings(CMSyncBaseModel):
    """Remote session wiring.

    Attributes:
        transport: Import path (``package.module:factory``) of the transport factory.
    """

    transport: Optional[str] = None


class LoggingSettings(CMSyncBaseModel):
    """Runtime logging configuration.

    Attributes:
        level: Logging verbosity level.
    """

    level: str = "WARNING"


class CLIOptions(CMSyncBaseModel):
    """CLI behavior defaults and presentation preferences.

    Attributes:
        quiet_default: Whether commands suppress non-error output by default.
        summary_default: Whether commands only print summary lines by default.
    """

    quiet_default: bool = False
    summary_default: bool = False


class CMSyncConfig(CMSyncBaseModel):
    """Top-level configuration struct for cmsync.

    Attributes:
        server: CM server connection settings.
        project: Project and workspace options.
        sync: Synchronization tuning.
        session: Remote session wiring.
        logging: Logging configuration.
        cli: CLI presentation defaults.
    """

    server: ServerSettings = Field(default_factory=ServerSettings)
    project: ProjectOptions = Field(default_factory=ProjectOptions)
    sync: SyncSettings = Field(default_factory=SyncSettings)
    session: SessionSettings = Field(default_factory=SessionSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    cli: CLIOptions = Field(default_factory=CLIOptions)


__all__ = [
    "CMSyncBaseModel",
    "ServerSettings",
    "ProjectOptions",
    "SyncSettings",
    "SessionSettings",
    "LoggingSettings",
    "CLIOptions",
    "CMSyncConfig",
]
