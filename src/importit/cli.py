"""
Command-line interface for the pull request import tool.
"""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
import os
import sys
from pathlib import Path
from typing import List, Optional, Tuple

import click
from rich.console import Console
from rich.logging import RichHandler

from .filters import compose, directory_filter, submodule_text_file_filter
from .import_phase import ImportSyncPhase
from .models import ImportConfigBuilder, ImportItError, SyncManifest
from . import __version__ as PACKAGE_VERSION


console = Console()
logger = logging.getLogger(__name__)


def _print_version(ctx, param, value):
    """Eager option callback to print version and exit."""
    if not value or ctx.resilient_parsing:
        return
    click.echo(f"importit {PACKAGE_VERSION}")
    ctx.exit()


def _parse_pairs(ctx, param, values) -> List[Tuple[str, str]]:
    """Parse repeatable KEY=VALUE options into ordered pairs."""
    pairs: List[Tuple[str, str]] = []
    for item in values:
        key, sep, value = item.partition("=")
        key, value = key.strip(), value.strip()
        if not sep or not key or not value:
            raise click.BadParameter(f"expected KEY=VALUE, got '{item}'", ctx=ctx, param=param)
        pairs.append((key, value))
    return pairs


def _default_log_path() -> Path:
    """Determine default log file path (~/.importit/importit.log)."""
    env_path = os.environ.get("IMPORTIT_LOG")
    if env_path:
        p = Path(env_path).expanduser()
        p.parent.mkdir(parents=True, exist_ok=True)
        return p
    base = Path.home() / ".importit"
    base.mkdir(parents=True, exist_ok=True)
    return base / "importit.log"


def setup_logging(
    verbose: bool = False, console_level: Optional[str] = None, log_file: Optional[Path] = None
) -> Path:
    """Log everything to a rotating file; mirror to the console only on request.

    Returns the log file path.
    """
    log_path = Path(log_file) if log_file else _default_log_path()

    root = logging.getLogger()
    # Clear existing handlers to avoid duplication in tests / repeated invocations
    root.handlers.clear()
    root.setLevel(logging.DEBUG)

    file_handler = RotatingFileHandler(
        str(log_path), maxBytes=1_000_000, backupCount=3, encoding="utf-8"
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s %(levelname)s [%(name)s] %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    root.addHandler(file_handler)

    if verbose or console_level:
        level_map = {
            "debug": logging.DEBUG,
            "info": logging.INFO,
            "warning": logging.WARNING,
            "error": logging.ERROR,
        }
        console_handler = RichHandler(console=Console(stderr=True), rich_tracebacks=True)
        console_handler.setLevel(level_map.get((console_level or "info").lower(), logging.INFO))
        console_handler.setFormatter(logging.Formatter("%(message)s"))
        root.addHandler(console_handler)

    return log_path


@click.group()
@click.option(
    "--version",
    "-V",
    is_flag=True,
    callback=_print_version,
    expose_value=False,
    is_eager=True,
    help="Show version and exit.",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose console logging (INFO)")
@click.option(
    "--log-level",
    type=click.Choice(["debug", "info", "warning", "error"], case_sensitive=False),
    default=None,
    help="Console log level. By default, console logging is disabled.",
)
@click.pass_context
def cli(ctx: click.Context, verbose: bool, log_level: Optional[str]) -> None:
    """ImportIt - Import pull requests into an internal repository."""
    log_path = setup_logging(verbose, console_level=log_level)

    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["log_path"] = log_path


@cli.command("import-pr")
@click.option(
    "--source-path",
    required=True,
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    help="Repository the pull request was opened against",
)
@click.option("--source-branch", default="main", show_default=True, help="Source default branch")
@click.option(
    "--destination-path",
    required=True,
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    help="Repository to import the pull request into",
)
@click.option(
    "--destination-branch", default="main", show_default=True, help="Destination working branch"
)
@click.option(
    "--expected-head-revision",
    default=None,
    help="The expected revision at the HEAD of the PR",
)
@click.option("--pull-request-number", default=None, help="The number of the Pull Request to import")
@click.option(
    "--save-patches-to",
    "patches_directory",
    default=None,
    help="Directory to copy created patches to. Useful for debugging",
)
@click.option(
    "--skip-pull-request",
    is_flag=True,
    help="Dont fetch a PR, instead just use the local expected-head-revision",
)
@click.option(
    "--apply-to-latest",
    is_flag=True,
    help="Apply the PR patch to the latest internal revision, instead of on the "
    "internal commit that matches the PR base.",
)
@click.option("--skip-submodules", is_flag=True, help="Don't sync submodules")
@click.option(
    "--submodule-text-file",
    "submodule_text_files",
    multiple=True,
    callback=_parse_pairs,
    help="Record submodule commits in a text file: SUBMODULE=TEXTFILE. Repeatable.",
)
@click.option(
    "--map-directory",
    "directory_map",
    multiple=True,
    callback=_parse_pairs,
    help="Move paths between layouts: SRC=DST, applied after submodule rewrites. Repeatable.",
)
@click.pass_context
def import_pr(
    ctx: click.Context,
    source_path: Path,
    source_branch: str,
    destination_path: Path,
    destination_branch: str,
    expected_head_revision: Optional[str],
    pull_request_number: Optional[str],
    patches_directory: Optional[str],
    skip_pull_request: bool,
    apply_to_latest: bool,
    skip_submodules: bool,
    submodule_text_files: List[Tuple[str, str]],
    directory_map: List[Tuple[str, str]],
) -> None:
    """
    Import a single pull request into the destination repository.

    Example: importit import-pr --source-path ../oss --destination-path . \\
    --pull-request-number 42 --expected-head-revision deadbeef
    """
    try:
        builder = (
            ImportConfigBuilder()
            .set_expected_head_revision(expected_head_revision)
            .set_pull_request_number(pull_request_number)
            .set_patches_directory(patches_directory)
        )
        if skip_pull_request:
            builder.skip_pull_request_fetch()
        if apply_to_latest:
            builder.apply_to_latest_revision()
        if skip_submodules:
            builder.skip_submodules()
        config = builder.build()

        filters = [submodule_text_file_filter(sub, text) for sub, text in submodule_text_files]
        if directory_map:
            filters.append(directory_filter(directory_map))

        manifest = SyncManifest(
            source_path=str(source_path.resolve()),
            destination_path=str(destination_path.resolve()),
            source_branch=source_branch,
            destination_branch=destination_branch,
            verbose=bool(ctx.obj.get("verbose")),
        )

        phase = ImportSyncPhase(config, filter_fn=compose(*filters), console=console)
        console.print(f"\n📥 **{phase.readable_name}**")
        phase.run(manifest)
    except ImportItError as e:
        console.print(f"\n❌ **Import Error:** {e}", style="bold red", markup=False)
        logger.debug("Import aborted due to ImportItError", exc_info=True)
        sys.exit(1)
    except Exception as e:
        console.print(f"\n💥 **Unexpected Error:** {e}", style="bold red", markup=False)
        logger.debug("Unexpected error during import", exc_info=True)
        sys.exit(1)


@cli.command()
def version() -> None:
    """Print the current importit version."""
    console.print(f"importit {PACKAGE_VERSION}")


def main() -> None:
    """Main entry point for the CLI."""
    try:
        cli()
    except KeyboardInterrupt:
        console.print("\n\n🚫 **Operation cancelled by user**", style="bold yellow")
        logger.debug("Top-level cancellation (KeyboardInterrupt)", exc_info=True)
        sys.exit(130)


if __name__ == "__main__":
    main()
