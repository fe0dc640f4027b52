"""
Command-line interface for RAM Profile.

This module provides the command-line entry point that loads a profile into
RAM, saves it back, and manages its archive backups.
"""

import getpass
import logging
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Annotated, Iterator, Optional

import orjson
import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    TextColumn,
    TimeRemainingColumn,
)
from rich.table import Table

from ramprofile import __version__
from ramprofile.catalog import BackupEntry
from ramprofile.config import Settings
from ramprofile.exceptions import (
    AlreadyInState,
    Busy,
    Cancelled,
    InvalidSelection,
    RamProfileError,
)
from ramprofile.mirror import ProgressCallback
from ramprofile.platform import format_bytes
from ramprofile.profile import ProfileManager
from ramprofile.retention import RetentionPolicy
from ramprofile.service import ServiceManager, sudoers_line

# Set up the console and logger
console = Console()
logging.basicConfig(
    level=logging.INFO,
    format="%(message)s",
    datefmt="[%X]",
    handlers=[RichHandler(console=console, rich_tracebacks=True)],
)
logger = logging.getLogger("ramprofile")

# Create the Typer app
app = typer.Typer(
    help="Keep an application profile in RAM and safely persist it to disk.",
    add_completion=False,
)


def log_error(message: str) -> None:
    """Log an error message to both logger and console."""
    logger.error(message)
    console.print(f"[red]{message}[/red]")
    return None


def get_settings(ctx: typer.Context) -> Settings:
    """Return the settings loaded by the app callback."""
    if isinstance(ctx.obj, Settings):
        return ctx.obj
    return Settings.load()


def get_manager(ctx: typer.Context) -> ProfileManager:
    return ProfileManager(get_settings(ctx))


@contextmanager
def handle_errors() -> Iterator[None]:
    """Turn core errors into a console message and a non-zero exit."""
    try:
        yield
    except AlreadyInState as e:
        logger.info(e.message)
        console.print(f"[yellow]{e.message}[/yellow]")
    except Busy as e:
        log_error(e.message)
        console.print("Close the application using the profile and try again.")
        raise typer.Exit(1) from None
    except RamProfileError as e:
        log_error(str(e))
        raise typer.Exit(1) from None


@contextmanager
def transfer_progress(description: str) -> Iterator[ProgressCallback]:
    """Render byte progress with a rich progress bar."""
    with Progress(
        TextColumn("[bold blue]{task.description}"),
        BarColumn(),
        "[progress.percentage]{task.percentage:>3.0f}%",
        DownloadColumn(),
        TimeRemainingColumn(),
        console=console,
        transient=True,
    ) as progress:
        task = progress.add_task(description, total=None)

        def update(done: int, total: int) -> None:
            progress.update(task, completed=done, total=max(total, 1))

        yield update


def confirm_or_exit(message: str, yes: bool) -> None:
    """Ask for confirmation unless *yes* is set; exit 1 on refusal."""
    if yes:
        return
    if not typer.confirm(message, default=False):
        console.print("Aborted.")
        raise typer.Exit(1)


def guard_running_process(manager: ProfileManager, yes: bool) -> None:
    if manager.is_process_running():
        name = manager.settings.process_name
        console.print(f"[yellow]{name} is currently running.[/yellow]")
        confirm_or_exit("Continue anyway?", yes)


def version_callback(value: bool) -> None:
    """Print the version and exit before any subcommand is required."""
    if value:
        console.print(f"ramprofile version: {__version__}")
        raise typer.Exit()


@app.callback()
def callback(
    ctx: typer.Context,
    config: Annotated[
        Optional[Path],
        typer.Option(
            "--config",
            "-c",
            help="Path to the config file. Uses RAMPROFILE_CONFIG or "
            "~/.config/ramprofile/config.yaml if not set.",
        ),
    ] = None,
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable verbose output."
    ),
    json: bool = typer.Option(False, "--json", help="Output logs in JSON format."),
    version: bool = typer.Option(
        False,
        "--version",
        callback=version_callback,
        is_eager=True,
        help="Show the application version and exit.",
    ),
) -> None:
    """
    RAM Profile: run a profile directory from RAM, keep the disk copy safe.
    """
    # Configure logging level based on verbosity
    if verbose:
        logger.setLevel(logging.DEBUG)
        logger.debug("Verbose logging enabled")

    # Configure JSON logging if requested
    if json:
        for handler in list(logging.root.handlers):
            logging.root.removeHandler(handler)
        logging.basicConfig(
            level=logging.INFO if not verbose else logging.DEBUG,
            format='{"timestamp": "%(asctime)s", "level": "%(levelname)s", '
            '"message": "%(message)s"}',
            datefmt="%Y-%m-%dT%H:%M:%S",
            stream=sys.stdout,
        )
        logger.debug("JSON logging enabled")

    ctx.obj = Settings.load(config.expanduser() if config else None)


@app.command()
def load(
    ctx: typer.Context,
    yes: Annotated[
        bool, typer.Option("--yes", "-y", help="Do not ask for confirmation.")
    ] = False,
    force: Annotated[
        bool, typer.Option("--force", help="Skip the available RAM check.")
    ] = False,
) -> None:
    """
    Copy the profile into RAM and bind-mount it over the original path.
    """
    manager = get_manager(ctx)
    console.print("=== Profile RAM Loader ===")
    with handle_errors():
        if manager.is_loaded():
            console.print("[yellow]Profile is already mounted in RAM.[/yellow]")
            return
        guard_running_process(manager, yes)
        with transfer_progress("Copying profile to RAM") as update:
            stats = manager.load(progress=update, force=force)
        console.print(
            f"[green]Profile is now running from RAM[/green] "
            f"({stats.files_copied} files, {format_bytes(stats.bytes_copied)})."
        )
        console.print(
            f"Do NOT delete {manager.location.ram_path} while mounted. "
            "Run 'ramprofile save' before shutdown to persist changes."
        )


@app.command()
def save(
    ctx: typer.Context,
    yes: Annotated[
        bool, typer.Option("--yes", "-y", help="Do not ask for confirmation.")
    ] = False,
) -> None:
    """
    Unmount the RAM profile, write it back to disk and free the RAM copy.
    """
    manager = get_manager(ctx)
    with handle_errors():
        if not manager.is_loaded():
            console.print("Profile is not loaded in RAM, nothing to save.")
            return
        guard_running_process(manager, yes)
        confirm_or_exit(
            f"Save profile to disk and remove RAM copy "
            f"{manager.location.ram_path}?",
            yes,
        )
        with transfer_progress("Saving profile to disk") as update:
            stats = manager.save(progress=update)
        console.print(
            f"[green]Profile saved.[/green] {stats.files_copied} copied, "
            f"{stats.files_deleted} deleted, {stats.files_unchanged} unchanged."
        )


@app.command()
def backup(ctx: typer.Context) -> None:
    """
    Create a ZIP backup of the RAM-resident profile.
    """
    manager = get_manager(ctx)
    console.print("=== Creating Backup ===")
    with handle_errors():
        with transfer_progress("Archiving profile") as update:
            entry, result = manager.backup(progress=update)
        if result.partial:
            console.print(
                f"[yellow]Backup is missing {len(result.errors)} entries:[/yellow]"
            )
            for error in result.errors:
                console.print(f"  - {error}")
        console.print(
            f"[green]Backup completed:[/green] {entry.path} "
            f"({result.entries} entries, {format_bytes(entry.size)})"
        )


def _restore(manager: ProfileManager, entry: Optional[BackupEntry]) -> None:
    with transfer_progress("Restoring backup") as update:
        restored, result = manager.restore(entry, progress=update)
    if result.partial:
        log_error(
            f"Partial restore from {restored.name}: {len(result.errors)} "
            "entries failed"
        )
        for error in result.errors:
            console.print(f"  - {error}")
        raise typer.Exit(1)
    console.print(f"[green]Backup {restored.name} restored.[/green]")


@app.command()
def restore(
    ctx: typer.Context,
    yes: Annotated[
        bool, typer.Option("--yes", "-y", help="Do not ask for confirmation.")
    ] = False,
) -> None:
    """
    Restore the latest backup over the live profile.
    """
    manager = get_manager(ctx)
    with handle_errors():
        if not manager.is_loaded():
            log_error("RAM profile not active.")
            raise typer.Exit(1)
        latest = manager.catalog().latest()
        if latest is None:
            log_error(f"No backups found in {manager.location.backup_dir}")
            raise typer.Exit(1)
        confirm_or_exit(f"Restore latest backup {latest.name}?", yes)
        _restore(manager, latest)


@app.command(name="restore-select")
def restore_select(
    ctx: typer.Context,
    yes: Annotated[
        bool, typer.Option("--yes", "-y", help="Do not ask for confirmation.")
    ] = False,
) -> None:
    """
    Choose a backup interactively and restore it.
    """
    manager = get_manager(ctx)
    with handle_errors():
        if not manager.is_loaded():
            log_error("RAM profile not active.")
            raise typer.Exit(1)
        catalog = manager.catalog()
        if not len(catalog):
            log_error(f"No backups found in {manager.location.backup_dir}")
            raise typer.Exit(1)

        table = Table(title="Available Backups")
        table.add_column("#", justify="right")
        table.add_column("Backup")
        table.add_column("Taken")
        table.add_column("Size", justify="right")
        prefix = manager.location.archive_prefix
        ordered = catalog.newest_first()
        for index, entry in enumerate(ordered, start=1):
            table.add_row(
                str(index),
                entry.name,
                catalog.timestamp_of(entry, prefix).strftime("%Y-%m-%d %H:%M:%S"),
                format_bytes(entry.size),
            )
        table.add_row(str(len(ordered) + 1), "Cancel", "", "")
        console.print(table)

        while True:
            choice = typer.prompt("Select a backup")
            try:
                entry = catalog.select_interactive(choice)
                break
            except Cancelled:
                console.print("Restore cancelled.")
                return
            except InvalidSelection as e:
                console.print(f"[yellow]{e.message}[/yellow]")

        confirm_or_exit(f"Restore selected backup {entry.name}?", yes)
        _restore(manager, entry)


@app.command(name="clean-backup")
def clean_backup(
    ctx: typer.Context,
    keep: Annotated[
        Optional[int],
        typer.Option(
            "--keep", "-k", min=1, help="Number of newest backups to keep."
        ),
    ] = None,
    policy: Annotated[
        Optional[Path],
        typer.Option(
            "--policy", "-p", help="YAML retention policy file (keep_last)."
        ),
    ] = None,
    yes: Annotated[
        bool, typer.Option("--yes", "-y", help="Do not ask for confirmation.")
    ] = False,
) -> None:
    """
    Delete all backups except the latest.
    """
    manager = get_manager(ctx)
    count = manager.settings.retention.keep_last
    if policy is not None:
        count = RetentionPolicy.from_file(str(policy)).keep_last
    if keep is not None:
        count = keep
    with handle_errors():
        if len(manager.catalog()) <= count:
            console.print("Nothing to clean.")
            return
        confirm_or_exit(f"Delete all backups except the newest {count}?", yes)
        deleted = manager.clean_backups(count)
        console.print(f"[green]Deleted {deleted} old backups.[/green]")


@app.command(name="purge-backup")
def purge_backup(
    ctx: typer.Context,
    yes: Annotated[
        bool, typer.Option("--yes", "-y", help="Do not ask for confirmation.")
    ] = False,
) -> None:
    """
    Delete ALL backup files.
    """
    manager = get_manager(ctx)
    with handle_errors():
        confirm_or_exit("Delete ALL backups?", yes)
        deleted = manager.purge_backups()
        console.print(f"[green]All backups deleted ({deleted} files).[/green]")


@app.command()
def status(
    ctx: typer.Context,
    json_output: bool = typer.Option(
        False, "--json", help="Output status in JSON format."
    ),
) -> None:
    """
    Show RAM, process and backup status.
    """
    manager = get_manager(ctx)
    info = manager.status()

    if json_output:
        typer.echo(orjson.dumps(info.to_dict(), option=orjson.OPT_INDENT_2).decode())
        return

    console.print("=== RAM status ===")
    console.print(f"  RAM active    : {'yes' if info.mounted else 'no'}")
    console.print()
    console.print("=== Process status ===")
    console.print(f"  Running       : {'yes' if info.process_running else 'no'}")
    console.print()
    console.print("=== Backup status ===")
    console.print(f"  Backup path   : {info.backup_dir}")
    if not info.backup_dir_exists:
        console.print("  Backup dir    : not created")
        return
    if not info.backup_count:
        console.print("  Backups found : none")
        return
    console.print(f"  Backups found : {info.backup_count}")
    console.print(f"  Latest backup : {info.latest_backup}")
    console.print(f"  Latest size   : {format_bytes(info.latest_size or 0)}")
    console.print(f"  Age (days)    : {info.latest_age_days}")
    if info.stale:
        console.print(
            f"  [yellow]WARNING: last backup is older than "
            f"{manager.settings.stale_backup_days} days[/yellow]"
        )


@app.command(name="check-ram")
def check_ram(ctx: typer.Context) -> None:
    """
    Check the profile size against available RAM.
    """
    manager = get_manager(ctx)
    with handle_errors():
        check = manager.check_ram()
        available = (
            format_bytes(check.available_bytes)
            if check.available_bytes is not None
            else "unknown"
        )
        console.print(f"Profile size     : {format_bytes(check.profile_bytes)}")
        console.print(f"Available RAM    : {available}")
        console.print(
            f"Required RAM     : {format_bytes(check.required_bytes)} "
            f"({manager.settings.ram_factor}x rule)"
        )
        if check.fits:
            console.print("[green]RAM OK[/green]")
        else:
            console.print("[yellow]RAM insufficient[/yellow]")


@app.command()
def install(
    ctx: typer.Context,
    config: Annotated[
        Optional[Path],
        typer.Option("--unit-config", help="Config file passed to the service."),
    ] = None,
) -> None:
    """
    Install and enable the RAM profile user service.
    """
    services = ServiceManager()
    if not services.install(config_path=config):
        log_error(f"Failed to enable service from {services.unit_path}")
        raise typer.Exit(1)
    console.print(
        f"[green]Service installed and enabled[/green] ({services.unit_path})."
    )
    if typer.confirm("Show OPTIONAL password-less sudo instructions?", default=False):
        sudo_help(ctx)


@app.command()
def disable() -> None:
    """
    Disable the user service, keeping its files.
    """
    if not ServiceManager().disable():
        log_error("Failed to disable service")
        raise typer.Exit(1)
    console.print("[green]Service disabled.[/green]")


@app.command()
def remove(ctx: typer.Context) -> None:
    """
    Disable the user service and remove its files.
    """
    ServiceManager().remove()
    manager = get_manager(ctx)
    if manager.location.backup_dir.exists() and typer.confirm(
        f"Delete backup directory {manager.location.backup_dir}?", default=False
    ):
        with handle_errors():
            deleted = manager.purge_backups()
            console.print(f"Deleted {deleted} backups.")
    console.print("[green]Service and files removed.[/green]")


@app.command(name="sudo-help")
def sudo_help(ctx: typer.Context) -> None:
    """
    Show optional password-less sudo mount instructions.
    """
    location = get_settings(ctx).location
    try:
        user = getpass.getuser()
    except (KeyError, OSError):
        user = "USERNAME"
    console.print("OPTIONAL: password-less mount/umount configuration", style="bold")
    console.print("1) Open sudoers safely:  sudo visudo")
    console.print("2) Add this line at the end:")
    console.print(sudoers_line(user, location), markup=False, soft_wrap=True)
    console.print(
        "3) Save and exit. 'load' and 'save' will no longer ask for a password."
    )


@app.command()
def version() -> None:
    """Show the application version and exit."""
    console.print(f"ramprofile version: {__version__}")


if __name__ == "__main__":
    app()
