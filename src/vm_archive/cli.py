#!/usr/bin/env python3
"""
Command-line interface for VM archive operations.

Every operation takes one selector out of ``--vm-id``, ``--vm-name``,
``--archived-vm-name`` or ``--sr-id`` with ``--xva-file``. Exit code 0 is
success, 1 is a usage error, anything else names the failure class.
"""

import asyncio
import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import click
import yaml

from vm_archive import __version__
from vm_archive.client import VMArchiveClient
from vm_archive.config import AppConfig, config_loader
from vm_archive.exceptions import VMArchiveError
from vm_archive.logging import logger
from vm_archive.models import Operation, build_selector


UNEXPECTED_EXIT_CODE = 16

OPERATION_HELP = {
    Operation.EXPORT: "Export a VM image and its metadata into the staging area.",
    Operation.PUSH: "Upload a staging directory to the bucket, then remove it locally.",
    Operation.PULL: "Download an archive from the bucket and check its metadata.",
    Operation.DELETE: "Delete a VM and its disks.",
    Operation.ARCHIVE: "Export, prove restorable, push, then delete a VM.",
    Operation.IMPORT: "Import a staged or given image into its storage repository.",
    Operation.TEMPORARILY_RESTORE_XVA: "Import an image and delete it again to prove it restores.",
    Operation.RESTORE: "Pull an archive, import it, then clean the staging area.",
    Operation.GET_METADATA_FROM_LOCAL_FILES: "Check the staged SR id, metadata and image.",
    Operation.CLEAN: "Remove the staging directory of a VM or archive.",
}


def setup_logging(
    verbose: bool = False, quiet: bool = False, log_level: Optional[str] = None
) -> None:
    """Setup logging configuration."""
    if quiet:
        level = logging.ERROR
    elif verbose:
        level = logging.DEBUG
    else:
        level = getattr(logging, (log_level or "INFO").upper(), logging.INFO)

    logger.set_level(level)


def diagnostic(message: str) -> None:
    """Print a timestamped single-line message on stderr."""
    line = " ".join(str(message).split())
    click.echo(f"[{datetime.now(timezone.utc).isoformat()}] {line}", err=True)


def get_config(ctx: Any) -> AppConfig:
    """Load configuration once per invocation."""
    if ctx.obj.get("config") is None:
        app_config = config_loader.load_config(ctx.obj["config_path"])
        if not ctx.obj["log_level"] and not ctx.obj["verbose"] and not ctx.obj["quiet"]:
            setup_logging(log_level=app_config.log_level)
        ctx.obj["config"] = app_config
    return ctx.obj["config"]


def emit(ctx: Any, data: Any, text: str) -> None:
    if ctx.obj["quiet"]:
        return
    output_format = ctx.obj.get("output_format", "text")
    if output_format == "json":
        click.echo(json.dumps(data, indent=2, default=str))
    elif output_format == "yaml":
        click.echo(yaml.safe_dump(json.loads(json.dumps(data, default=str)), default_flow_style=False))
    else:
        click.echo(text)


def run_operation(ctx: Any, operation: Operation, selector: Any) -> None:
    """Run one orchestrated operation and exit with its status."""
    try:
        client = VMArchiveClient(config=get_config(ctx))
        log = asyncio.run(client.run(operation, selector))
    except VMArchiveError as e:
        # failures are logged where they are raised
        diagnostic(f"Error: {e}")
        sys.exit(e.exit_code)
    except Exception as e:
        logger.critical(f"Unexpected error: {e}", operation=operation.value)
        diagnostic(f"Unexpected error: {e}")
        sys.exit(UNEXPECTED_EXIT_CODE)

    target = log.identity or "given image"
    lines = [f"✓ {operation.value} completed for {target}"]
    for step in log.steps:
        lines.append(f"  {step.name}: {step.status.value} ({step.duration:.1f}s)")
    emit(ctx, log.to_dict(), "\n".join(lines))


def selector_options(func: Any) -> Any:
    """Attach the selector options shared by every operation."""
    options = [
        click.option("--vm-id", help="Id of a VM in the control plane"),
        click.option("--vm-name", help="Name of a VM in the control plane"),
        click.option("--archived-vm-name", help="Name of an archived VM in the bucket"),
        click.option("--sr-id", help="Storage repository to import into"),
        click.option(
            "--xva-file", type=click.Path(dir_okay=False), help="Image file to import"
        ),
    ]
    for option in reversed(options):
        func = option(func)
    return func


@click.group(invoke_without_command=True)
@click.option("--config", "-c", "config_path", default=None, help="Configuration file path")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-error output")
@click.option(
    "--output",
    "-o",
    type=click.Choice(["text", "json", "yaml"]),
    default="text",
    help="Output format",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARN", "ERROR"]),
    default=None,
    help="Log level (defaults to the configured one)",
)
@click.version_option(version=__version__)
@click.pass_context
def cli(
    ctx: Any,
    config_path: Optional[str],
    verbose: bool,
    quiet: bool,
    output: str,
    log_level: Optional[str],
) -> None:
    """Archive Xen Orchestra VMs to S3 and restore them."""
    setup_logging(verbose, quiet, log_level)

    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["config"] = None
    ctx.obj["output_format"] = output
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["log_level"] = log_level

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())
        ctx.exit(1)


def register_operation(operation: Operation) -> None:
    @cli.command(operation.value, help=OPERATION_HELP[operation])
    @selector_options
    @click.pass_context
    def command(
        ctx: Any,
        vm_id: Optional[str],
        vm_name: Optional[str],
        archived_vm_name: Optional[str],
        sr_id: Optional[str],
        xva_file: Optional[str],
    ) -> None:
        selector = build_selector(vm_id, vm_name, archived_vm_name, sr_id, xva_file)
        run_operation(ctx, operation, selector)


for _operation in Operation:
    register_operation(_operation)


@cli.command("list-archives")
@click.pass_context
def list_archives(ctx: Any) -> None:
    """List the archives present in the bucket."""
    try:
        client = VMArchiveClient(config=get_config(ctx))
        names = asyncio.run(client.list_archives())
    except VMArchiveError as e:
        logger.error(e.message, error_code=e.error_code)
        diagnostic(f"Error: {e}")
        sys.exit(e.exit_code)

    text = "\n".join(names) if names else "No archives found"
    emit(ctx, {"bucket": client.config.s3_bucket, "archives": names}, text)


@cli.group()
def config() -> None:
    """Manage configuration settings."""
    pass


@config.command("show")
@click.pass_context
def config_show(ctx: Any) -> None:
    """Display current configuration."""
    try:
        app_config = get_config(ctx)
    except VMArchiveError as e:
        diagnostic(f"Error: {e}")
        sys.exit(e.exit_code)

    data = app_config.model_dump()
    if data.get("xo_password"):
        data["xo_password"] = "********"
    click.echo(yaml.safe_dump(data, default_flow_style=False))


@config.command("init")
@click.option("--config-dir", default="~/.config/vm-archive", help="Configuration directory")
@click.option("--force", "-f", is_flag=True, help="Overwrite an existing file")
def config_init(config_dir: str, force: bool) -> None:
    """Initialize default configuration."""
    config_path = Path(config_dir).expanduser()
    config_file = config_path / "config.yaml"
    if config_file.exists() and not force:
        diagnostic(f"Configuration already exists at {config_file}, use --force to overwrite")
        sys.exit(1)

    config_path.mkdir(parents=True, exist_ok=True)
    default_config = AppConfig().model_dump(exclude={"xo_password"})

    with open(config_file, "w") as f:
        yaml.safe_dump(default_config, f, default_flow_style=False)

    click.echo(f"Configuration initialized at {config_file}")


@config.command("path")
def config_path() -> None:
    """Show the configuration file search path."""
    search_paths = config_loader.search_paths()

    click.echo("Configuration search paths (in order):")
    for i, path in enumerate(search_paths, 1):
        exists = "✓" if Path(path).exists() else "✗"
        click.echo(f"  {i}. {exists} {path}")

    for path in search_paths:
        if Path(path).exists():
            click.echo(f"\nCurrently using: {path}")
            return

    click.echo("\nNo configuration file found. Run 'vm-archive config init' to create one.")


def main(argv: Optional[list] = None) -> None:
    """Console entry point; usage errors exit with status 1."""
    try:
        code = cli.main(args=argv, prog_name="vm-archive", standalone_mode=False)
    except click.UsageError as e:
        e.show()
        sys.exit(1)
    except click.ClickException as e:
        e.show()
        sys.exit(e.exit_code)
    except click.Abort:
        diagnostic("Aborted")
        sys.exit(1)
    sys.exit(code or 0)


if __name__ == "__main__":
    main()
