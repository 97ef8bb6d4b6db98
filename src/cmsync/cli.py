"""Command line interface for cmsync."""

from __future__ import annotations

import difflib
import logging
from pathlib import Path
from typing import Any

import click
import yaml
from click.core import ParameterSource
from rich.console import Console
from rich.logging import RichHandler
from rich.syntax import Syntax
from rich.table import Table

from cmsync.build import BuildHistory, CheckoutResult, IntegrationService, PollingResult
from cmsync.changelog import ChangeLogEncoder, ChangeLogError, ChangeLogParser
from cmsync.comparison import BaselineComparator, ChangeSet
from cmsync.config import CMSyncConfig, ConfigError, ConfigManager, resolve_with_precedence
from cmsync.session import TransportError, load_transport_factory
from cmsync.state import MissingSnapshotError, SnapshotStore, SnapshotStoreError

console = Console()


def _handle_cli_error(
    message: str,
    *,
    code: str,
    json_output: bool,
    details: Any | None = None,
    original: Exception | None = None,
) -> None:
    """Emit a standardized error and terminate the command appropriately.

    Args:
        message: Human-readable error message.
        code: Machine-readable error identifier.
        json_output: Indicates whether JSON mode is active.
        details: Optional structured details to include in the payload.
        original: Original exception for chaining when not using JSON.

    Raises:
        SystemExit: When emitting JSON output to terminate the command.
        click.ClickException: For non-JSON flows to surface the error.
    """

    if json_output:
        payload: dict[str, Any] = {"error": {"code": code, "message": message}}
        if details is not None:
            payload["error"]["details"] = details
        console.print_json(data=payload)
        raise SystemExit(1)

    if isinstance(original, click.ClickException):
        raise original

    raise click.ClickException(message) from original


def _emit_message(message: Any, *, mode: str, quiet: bool, summary_only: bool) -> None:
    """Print ``message`` unless quiet or summary-only mode filters it out.

    Args:
        message: Renderable or string to emit.
        mode: One of ``detail``, ``summary``, ``warning`` or ``error``.
        quiet: Whether quiet mode is active.
        summary_only: Whether only summary lines should be emitted.
    """

    if quiet and mode != "error":
        return
    if summary_only and mode not in {"summary", "warning", "error"}:
        return
    console.print(message)


def _format_summary_line(command: str, subject: Path | str, metrics: dict[str, Any]) -> str:
    parts = ", ".join(f"{key}={value}" for key, value in metrics.items())
    return f"[green]{command} summary for {subject}: {parts}.[/green]"


def _configure_logging(level: str) -> None:
    numeric = logging.getLevelName(level.upper())
    if not isinstance(numeric, int):
        numeric = logging.WARNING
    logging.basicConfig(
        level=numeric,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _load_config(cli_overrides: dict[str, Any] | None = None) -> CMSyncConfig:
    manager = ConfigManager()
    manager.ensure_exists()
    config = manager.load(cli_overrides=cli_overrides or None)
    _configure_logging(config.logging.level)
    return config


def _resolve_modes(
    ctx: click.Context,
    config: CMSyncConfig,
    *,
    json_output: bool,
    quiet: bool,
    summary_mode: bool,
) -> tuple[bool, bool]:
    """Return ``(quiet, summary_only)`` after applying defaults and flag conflicts.

    Raises:
        click.ClickException: If the requested output modes conflict.
    """
    explicit_quiet = ctx.get_parameter_source("quiet") == ParameterSource.COMMANDLINE
    explicit_summary = ctx.get_parameter_source("summary_mode") == ParameterSource.COMMANDLINE

    quiet_enabled = quiet if explicit_quiet else config.cli.quiet_default
    summary_only = summary_mode if explicit_summary else config.cli.summary_default

    if json_output:
        if explicit_quiet and quiet_enabled:
            raise click.ClickException("--json cannot be combined with --quiet.")
        if explicit_summary and summary_only:
            raise click.ClickException("--json cannot be combined with --summary.")
        return False, False

    if quiet_enabled and summary_only:
        raise click.ClickException(
            "Quiet and summary modes cannot both be enabled. Adjust CLI defaults or flags."
        )
    return quiet_enabled, summary_only


def _build_service(config: CMSyncConfig) -> IntegrationService:
    if not config.session.transport:
        raise ConfigError(
            "No CM transport configured. Set session.transport to 'package.module:factory'."
        )
    return IntegrationService(config, load_transport_factory(config.session.transport))


def _changes_payload(change_set: ChangeSet) -> list[dict[str, Any]]:
    document = ChangeLogEncoder().build_document("", change_set)
    return [entry.model_dump(mode="json") for entry in document.entries]


def _changes_table(title: str, change_set: ChangeSet) -> Table:
    table = Table(title=title)
    table.add_column("Action")
    table.add_column("Path")
    table.add_column("Revision")
    table.add_column("Author")
    styles = {"added": "green", "updated": "cyan", "deleted": "red"}
    for change in change_set:
        revision = change.new.revision if change.new is not None else change.record.revision
        style = styles[change.kind.value]
        table.add_row(
            f"[{style}]{change.kind.value}[/{style}]",
            change.path,
            revision,
            change.record.author,
        )
    return table


def _assign_nested(target: dict[str, Any], path: list[str], value: Any) -> None:
    """Assign ``value`` at the dotted ``path`` inside ``target``.

    Raises:
        ConfigError: If a non-mapping value is encountered along the path.
    """

    node = target
    for segment in path[:-1]:
        existing = node.get(segment)
        if existing is None:
            existing = {}
            node[segment] = existing
        elif not isinstance(existing, dict):
            raise ConfigError(f"Cannot assign into '{segment}'; it is not a mapping.")
        node = existing
    node[path[-1]] = value


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(package_name="cmsync")
def cli() -> None:
    """Synchronize build workspaces with projects on a CM server."""


@cli.command()
@click.argument("job_dir", type=click.Path(file_okay=False, path_type=str))
@click.option("--build", "build_number", type=int, help="Build number (defaults to the next one).")
@click.option(
    "--workspace",
    required=True,
    type=click.Path(file_okay=False, path_type=str),
    help="Workspace directory to synchronize.",
)
@click.option(
    "--changelog",
    type=click.Path(dir_okay=False, path_type=str),
    help="Write the build change log to this file.",
)
@click.option("--project", "config_path", type=str, help="Override the project configuration path.")
@click.option("--clean", is_flag=True, help="Clear the workspace and copy every member.")
@click.option("--json", "json_output", is_flag=True, help="Emit JSON describing the checkout.")
@click.option("--summary", "summary_mode", is_flag=True, help="Only emit summary lines.")
@click.option("--quiet", is_flag=True, help="Suppress non-error output.")
@click.pass_context
def checkout(
    ctx: click.Context,
    job_dir: str,
    build_number: int | None,
    workspace: str,
    changelog: str | None,
    config_path: str | None,
    clean: bool,
    json_output: bool,
    summary_mode: bool,
    quiet: bool,
) -> None:
    """Check out the CM project into WORKSPACE for a build of JOB_DIR.

    Args:
        ctx: Click context used for parameter source inspection.
        job_dir: Job directory holding the ``builds`` history.
        build_number: Build to check out; defaults to the next build number.
        workspace: Workspace directory to synchronize.
        changelog: Optional change log destination.
        config_path: Optional project configuration path override.
        clean: Whether to force a full copy.
        json_output: If True, emit JSON describing the checkout.
        summary_mode: When True, limit output to summary lines and warnings.
        quiet: When True, suppress non-error CLI output entirely.
    """

    json_enabled = json_output
    try:
        overrides: dict[str, Any] = {}
        if config_path:
            overrides["project.config_path"] = config_path
        if clean:
            overrides["project.clean_copy"] = True
        config = _load_config(overrides)
        quiet_enabled, summary_only = _resolve_modes(
            ctx, config, json_output=json_output, quiet=quiet, summary_mode=summary_mode
        )

        history = BuildHistory(Path(job_dir).expanduser().resolve())
        number = build_number if build_number is not None else history.next_number()
        build = history.build(number, create=True)
        workspace_root = Path(workspace).expanduser().resolve()
        change_log_path = Path(changelog).expanduser().resolve() if changelog else None

        service = _build_service(config)
        result: CheckoutResult = service.checkout(build, history, workspace_root, change_log_path)

        if not result.success:
            _handle_cli_error(
                f"Checkout of build {build.number} failed: {result.error}",
                code="checkout_failed",
                json_output=json_enabled,
                details={"build": build.number},
            )

        counts = result.counts()
        if json_output:
            payload: dict[str, Any] = {
                "build": build.number,
                "revision": result.revision,
                "first_build": result.first_build,
                "full_copy": result.sync.full_copy if result.sync is not None else True,
                "workspace": str(result.sync.target if result.sync is not None else workspace_root),
                "change_log": str(result.change_log) if result.change_log else None,
                "counts": counts,
                "changes": _changes_payload(result.change_set),
                "environment": service.build_environment(),
            }
            console.print_json(data=payload)
            return

        if result.first_build:
            _emit_message(
                "[yellow]No previous project state found; performed a full checkout.[/yellow]",
                mode="warning",
                quiet=quiet_enabled,
                summary_only=summary_only,
            )
        if result.change_set:
            _emit_message(
                _changes_table(f"Changes for build {build.number}", result.change_set),
                mode="detail",
                quiet=quiet_enabled,
                summary_only=summary_only,
            )
        _emit_message(
            _format_summary_line(
                "Checkout",
                workspace_root,
                {"build": build.number, "revision": result.revision or "head", **counts},
            ),
            mode="summary",
            quiet=quiet_enabled,
            summary_only=summary_only,
        )
    except ConfigError as exc:
        _handle_cli_error(str(exc), code="config_error", json_output=json_enabled, original=exc)
    except TransportError as exc:
        _handle_cli_error(str(exc), code="transport_error", json_output=json_enabled, original=exc)
    except click.ClickException as exc:
        _handle_cli_error(str(exc), code="cli_error", json_output=json_enabled, original=exc)
    except Exception as exc:
        _handle_cli_error(
            f"Unexpected error during checkout: {exc}",
            code="internal_error",
            json_output=json_enabled,
            details={"exception": type(exc).__name__},
            original=exc,
        )


@cli.command()
@click.argument("job_dir", type=click.Path(file_okay=False, path_type=str))
@click.option("--project", "config_path", type=str, help="Override the project configuration path.")
@click.option("--json", "json_output", is_flag=True, help="Emit the polling decision as JSON.")
@click.option("--summary", "summary_mode", is_flag=True, help="Only emit summary lines.")
@click.option("--quiet", is_flag=True, help="Suppress non-error output.")
@click.pass_context
def poll(
    ctx: click.Context,
    job_dir: str,
    config_path: str | None,
    json_output: bool,
    summary_mode: bool,
    quiet: bool,
) -> None:
    """Report whether the CM project changed since the last build of JOB_DIR."""

    json_enabled = json_output
    try:
        config = _load_config({"project.config_path": config_path} if config_path else None)
        quiet_enabled, summary_only = _resolve_modes(
            ctx, config, json_output=json_output, quiet=quiet, summary_mode=summary_mode
        )
        history = BuildHistory(Path(job_dir).expanduser().resolve())
        outcome = _build_service(config).poll(history)

        if json_output:
            console.print_json(
                data={
                    "result": outcome.result.value,
                    "change_count": outcome.change_count,
                    "message": outcome.message,
                }
            )
            return

        colour = "yellow" if outcome.result is PollingResult.NO_CHANGES else "green"
        _emit_message(
            f"[{colour}]{outcome.message}[/{colour}]",
            mode="detail",
            quiet=quiet_enabled,
            summary_only=summary_only,
        )
        _emit_message(
            _format_summary_line(
                "Poll",
                history.job_dir,
                {"result": outcome.result.value, "changes": outcome.change_count},
            ),
            mode="summary",
            quiet=quiet_enabled,
            summary_only=summary_only,
        )
    except ConfigError as exc:
        _handle_cli_error(str(exc), code="config_error", json_output=json_enabled, original=exc)
    except TransportError as exc:
        _handle_cli_error(str(exc), code="transport_error", json_output=json_enabled, original=exc)
    except click.ClickException as exc:
        _handle_cli_error(str(exc), code="cli_error", json_output=json_enabled, original=exc)


@cli.command()
@click.argument("job_dir", type=click.Path(exists=True, file_okay=False, path_type=str))
@click.option("--from", "from_build", type=int, required=True, help="Baseline build number.")
@click.option("--to", "to_build", type=int, required=True, help="Build number to compare.")
@click.option("--json", "json_output", is_flag=True, help="Emit the change set as JSON.")
def diff(job_dir: str, from_build: int, to_build: int, json_output: bool) -> None:
    """Compare the recorded project state of two builds of JOB_DIR."""

    history = BuildHistory(Path(job_dir).expanduser().resolve())
    try:
        snapshots = []
        for number in (from_build, to_build):
            root = history.build(number).root_dir
            if not SnapshotStore.is_complete(root):
                raise MissingSnapshotError(f"Build {number} has no recorded project state")
            with SnapshotStore(root, read_only=True) as store:
                snapshots.append(store.load())
    except MissingSnapshotError as exc:
        _handle_cli_error(str(exc), code="missing_state", json_output=json_output, original=exc)
        return
    except (SnapshotStoreError, ValueError) as exc:
        _handle_cli_error(str(exc), code="state_error", json_output=json_output, original=exc)
        return

    previous, current = snapshots
    change_set = BaselineComparator().compare(current, previous)
    if json_output:
        console.print_json(
            data={
                "from": from_build,
                "to": to_build,
                "change_count": change_set.change_count,
                "changes": _changes_payload(change_set),
            }
        )
        return

    if change_set:
        console.print(_changes_table(f"Changes from build {from_build} to {to_build}", change_set))
    console.print(
        _format_summary_line("Diff", history.job_dir, {"from": from_build, "to": to_build, **change_set.counts()})
    )


@cli.command()
@click.argument("changelog", type=click.Path(exists=True, dir_okay=False, path_type=str))
@click.option("--json", "json_output", is_flag=True, help="Emit the parsed change log as JSON.")
def changes(changelog: str, json_output: bool) -> None:
    """Display the change log written by a checkout."""

    try:
        document = ChangeLogParser().parse_file(Path(changelog))
    except (ChangeLogError, OSError) as exc:
        _handle_cli_error(str(exc), code="changelog_error", json_output=json_output, original=exc)
        return

    if json_output:
        console.print_json(data=document.model_dump(mode="json"))
        return

    table = Table(title=f"Change log for build {document.build or 'unknown'}")
    table.add_column("Action")
    table.add_column("Path")
    table.add_column("Author")
    table.add_column("Timestamp")
    for entry in document.entries:
        table.add_row(entry.action, entry.path, entry.author, entry.timestamp.isoformat())
    console.print(table)
    console.print(f"[green]{document.change_count} changes recorded.[/green]")


@cli.group()
def config() -> None:
    """Manage cmsync configuration files and overrides."""


@config.command("view")
@click.option("--no-env", is_flag=True, help="Ignore environment overrides when displaying output.")
def config_view(no_env: bool) -> None:
    """Display the effective configuration after applying precedence rules."""
    manager = ConfigManager()
    try:
        manager.ensure_exists()
        config = manager.load(include_env=not no_env)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    data = config.model_dump(mode="python")
    if data["server"].get("password"):
        data["server"]["password"] = "********"
    yaml_text = yaml.safe_dump(data, sort_keys=False)
    console.print(Syntax(yaml_text, "yaml", word_wrap=True))


@config.command("set")
@click.argument("key")
@click.option("--value", required=True, help="Value to assign to KEY.")
def config_set(key: str, value: str) -> None:
    """Persist a configuration value expressed as a dotted KEY."""
    manager = ConfigManager()
    manager.ensure_exists()

    before = manager.read_text().splitlines()
    segments = [segment.strip() for segment in key.split(".") if segment.strip()]
    if not segments:
        raise click.ClickException("KEY must specify a dotted path such as 'server.host'.")

    try:
        parsed_value = yaml.safe_load(value)
    except yaml.YAMLError as exc:
        raise click.ClickException(f"Unable to parse value: {exc}") from exc

    file_data = manager.load_file_overrides()
    try:
        _assign_nested(file_data, segments, parsed_value)
        resolve_with_precedence(defaults=CMSyncConfig(), file_overrides=file_data)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    manager.save(file_data)
    after = manager.read_text().splitlines()

    delta = list(
        difflib.unified_diff(
            before,
            after,
            fromfile="config.yaml (before)",
            tofile="config.yaml (after)",
            lineterm="",
        )
    )
    # The "Last updated" stamp always changes; only report real edits.
    if not any(
        line.startswith(("+", "-"))
        and not line.startswith(("+++", "---"))
        and "Last updated" not in line
        for line in delta
    ):
        console.print("[yellow]No changes applied; value already up to date.[/yellow]")
        return

    console.print(Syntax("\n".join(delta), "diff", word_wrap=False))
    console.print(f"[green]Updated {'.'.join(segments)}.[/green]")


def main() -> None:
    """Invoke the Click CLI as the console script entry point."""
    cli()


if __name__ == "__main__":
    main()
