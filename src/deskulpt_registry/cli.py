"""deskulpt-registry CLI entry point."""

import sys
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from deskulpt_registry import __version__, cli_logger, exit_codes
from deskulpt_registry.config import DEFAULT_ENV_FILE, load_config
from deskulpt_registry.errors import PublishError, handle_cli_error
from deskulpt_registry.git import is_git_available
from deskulpt_registry.publish import run_publish
from deskulpt_registry.schema import (
    REGISTRY_INDEX_FILE,
    parse_publish_plan,
    parse_registry_index,
    parse_widget_manifest,
)

app = typer.Typer(
    name="deskulpt-registry",
    help="Publish Deskulpt widgets as OCI artifacts and maintain the registry index.",
    no_args_is_help=True,
)

console = Console()


def require_git() -> None:
    """Verify git is available on the system.

    Raises:
        typer.Exit: With GIT_ERROR if git is not available.
    """
    if not is_git_available():
        cli_logger.error("Git is not available")
        cli_logger.dim("  • Widget sources are checked out with git")
        raise typer.Exit(exit_codes.GIT_ERROR)


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        console.print(f"deskulpt-registry {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
) -> None:
    """Publish Deskulpt widgets as OCI artifacts and maintain the registry index."""


@app.command()
def publish(
    dry_run: Annotated[
        bool,
        typer.Option(
            "--dry-run",
            help="Push to a local OCI image layout instead of the remote registry.",
        ),
    ] = False,
    staging_dir: Annotated[
        Path | None,
        typer.Option(
            "--staging-dir",
            help="Scratch directory for widget sources. Wiped before every widget. Defaults to ./temp",
        ),
    ] = None,
    env_file: Annotated[
        Path,
        typer.Option(
            "--env-file",
            help="Optional .env file with fallback values for the required variables.",
        ),
    ] = DEFAULT_ENV_FILE,
) -> None:
    """Publish every widget in the plan and update the registry index.

    Reads GHCR_REPO_PREFIX, PUBLISH_PLAN_PATH and REGISTRY_DIR from the
    environment. The index is only written after every widget was pushed.
    """
    try:
        config = load_config(env_file=env_file, staging_dir=staging_dir, dry_run=dry_run)
        require_git()
        result = run_publish(config)
    except (PublishError, OSError) as e:
        raise typer.Exit(handle_cli_error(e)) from e

    cli_logger.success(
        f"Published {len(result.updates)} widget(s); index written to {result.index_path}"
    )
    raise typer.Exit(exit_codes.SUCCESS)


@app.command("check-plan")
def check_plan(
    plan: Annotated[
        Path,
        typer.Argument(help="Newline-delimited JSON publish plan."),
    ],
) -> None:
    """Validate a publish plan without publishing anything."""
    try:
        entries = parse_publish_plan(plan)
    except (PublishError, OSError) as e:
        raise typer.Exit(handle_cli_error(e)) from e

    if not entries:
        cli_logger.warning(f"Publish plan '{plan}' is empty")
        raise typer.Exit(exit_codes.SUCCESS)

    table = Table(title=f"Publish plan ({len(entries)} widget(s))")
    table.add_column("Widget", style="cyan")
    table.add_column("Version")
    table.add_column("Repository")
    table.add_column("Commit", style="dim")
    table.add_column("Path")

    for entry in entries:
        table.add_row(
            f"{entry.handle}/{entry.id}",
            entry.widget.version,
            entry.widget.repo,
            entry.widget.commit[:12],
            entry.widget.path or "-",
        )

    console.print(table)
    cli_logger.success(f"Publish plan '{plan}' is valid")
    raise typer.Exit(exit_codes.SUCCESS)


@app.command("check-manifest")
def check_manifest(
    widget_dir: Annotated[
        Path,
        typer.Argument(help="Widget directory containing deskulpt.widget.json."),
    ],
) -> None:
    """Validate a widget manifest against the publishing rules."""
    try:
        manifest = parse_widget_manifest(widget_dir)
    except (PublishError, OSError) as e:
        raise typer.Exit(handle_cli_error(e)) from e

    cli_logger.success(f"{manifest.name} v{manifest.version} is ready to publish")
    raise typer.Exit(exit_codes.SUCCESS)


@app.command("show-index")
def show_index(
    registry_dir: Annotated[
        Path,
        typer.Argument(help=f"Registry directory containing {REGISTRY_INDEX_FILE}."),
    ],
) -> None:
    """Validate and summarize a registry index."""
    if not (registry_dir / REGISTRY_INDEX_FILE).exists():
        cli_logger.error(f"{REGISTRY_INDEX_FILE} not found in {registry_dir}")
        raise typer.Exit(exit_codes.GENERAL_ERROR)

    try:
        index = parse_registry_index(registry_dir)
    except PublishError as e:
        raise typer.Exit(handle_cli_error(e)) from e

    table = Table(title=f"Registry index (api {index.api})")
    table.add_column("Widget", style="cyan")
    table.add_column("Name")
    table.add_column("Latest")
    table.add_column("Releases", justify="right")

    for entry in index.widgets:
        table.add_row(
            f"{entry.handle}/{entry.id}",
            entry.name,
            entry.releases[0].version,
            str(len(entry.releases)),
        )

    console.print(table)
    cli_logger.dim(f"Generated at {index.generated_at}")
    raise typer.Exit(exit_codes.SUCCESS)


def main_cli() -> None:
    """Console script entry point.

    Wraps the typer app so that unexpected errors are reported
    as clean error messages instead of raw tracebacks.
    """
    try:
        app()
    except Exception as e:
        sys.exit(handle_cli_error(e))


if __name__ == "__main__":
    main_cli()
