"""Main CLI application for rns."""

import logging
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from rns import __version__
from rns.config.parser import load_settings
from rns.config.schemas import RnsSettings
from rns.core.backup import list_backup_directories, restore_backup
from rns.core.doctor import plugin_status, run_doctor
from rns.core.errors import ExitCode, RnsError
from rns.core.modulator import BatchSummary, Modulator, ModulatorResult
from rns.core.project import Project
from rns.core.registry import PluginRegistry

app = typer.Typer(
    name="rns",
    help="Compose capability plugins into a React Native project",
    add_completion=False,
    no_args_is_help=True,
)
plugin_app = typer.Typer(help="Add, remove and inspect plugins", no_args_is_help=True)
app.add_typer(plugin_app, name="plugin")

console = Console()
error_console = Console(stderr=True)

logger = logging.getLogger("rns")

PathOption = Annotated[
    Path | None,
    typer.Option("--path", "-p", help="Project directory (defaults to current directory)"),
]
CatalogOption = Annotated[
    Path | None,
    typer.Option("--catalog", "-c", help="Plugin catalog directory (overrides RNS_CATALOG_DIR)"),
]
DryRunOption = Annotated[
    bool,
    typer.Option("--dry-run", help="Show what would change without writing anything"),
]
YesOption = Annotated[
    bool,
    typer.Option("--yes", "-y", help="Do not ask for confirmation"),
]
VerboseOption = Annotated[
    int,
    typer.Option("--verbose", "-v", count=True, help="Increase verbosity (-v info, -vv debug)"),
]


def setup_logging(verbosity: int) -> None:
    """Configure logging based on verbosity level.

    Args:
        verbosity: 0=WARNING, 1=INFO, 2+=DEBUG
    """
    if verbosity <= 0:
        level = logging.WARNING
    elif verbosity == 1:
        level = logging.INFO
    else:
        level = logging.DEBUG

    logger.setLevel(level)

    if not logger.handlers:
        handler = RichHandler(
            console=error_console,
            show_time=verbosity >= 2,
            show_path=verbosity >= 3,
            rich_tracebacks=True,
        )
        handler.setLevel(level)
        logger.addHandler(handler)
    else:
        for h in logger.handlers:
            h.setLevel(level)


def print_error(message: str) -> None:
    """Print an error message to stderr."""
    error_console.print(f"[red]Error:[/red] {message}")


def print_success(message: str) -> None:
    """Print a success message."""
    console.print(f"[green]✓[/green] {message}")


def print_warning(message: str) -> None:
    """Print a warning message."""
    console.print(f"[yellow]⚠[/yellow] {message}")


def get_project(path: Path | None = None, persist_migration: bool = True) -> Project:
    """Get the current project, exiting with the error's code if not found."""
    try:
        return Project.load(path, persist_migration=persist_migration)
    except RnsError as e:
        print_error(str(e))
        raise typer.Exit(e.exit_code) from e


def get_settings(project: Project | None, catalog: Path | None, skip_install: bool = False) -> RnsSettings:
    overrides = {
        "catalog_dir": str(catalog) if catalog else None,
        "install_dependencies": False if skip_install else None,
    }
    try:
        return load_settings(project.root if project else None, overrides)
    except RnsError as e:
        print_error(str(e))
        raise typer.Exit(e.exit_code) from e


def get_registry(settings: RnsSettings) -> PluginRegistry:
    return PluginRegistry(Path(settings.catalog_dir) if settings.catalog_dir else None)


def print_result(result: ModulatorResult) -> None:
    """Print the outcome of one add/remove run."""
    if result.success:
        print_success(result.message)
    else:
        phase = result.failed_phase or "preflight"
        print_error(f"{result.capability_id} failed during {phase}")
        for error in result.errors:
            error_console.print(f"  {error}")
        committed = [p for p in result.committed_phases if p not in ("preflight", "plan")]
        if committed:
            error_console.print(f"  Completed phases: {', '.join(committed)}")
        if result.backups:
            error_console.print(
                f"  {len(result.backups)} file(s) backed up; run 'rns backups' to list or restore them"
            )

    for warning in result.warnings:
        print_warning(f"  {warning}")


def print_plan(result: ModulatorResult) -> None:
    """Print the changes a dry run would make."""
    plan = result.plan
    if plan is None:
        return

    table = Table(title=f"Plan for {plan.capability_id}")
    table.add_column("Change", style="cyan")
    table.add_column("Target")
    table.add_column("Detail", style="dim")

    for planned in plan.files:
        table.add_row("file", planned.dest, "")
    for op in plan.wiring:
        table.add_row(op.kind, op.file, op.operation_id)
    for patch in plan.text_patches:
        table.add_row("text", patch.file, f"{patch.marker} ({patch.mode})")
    for op in plan.patches:
        table.add_row(op.type, op.file, op.patch_id)
    for name, spec in sorted(plan.dependencies.runtime.items()):
        table.add_row("dependency", name, spec)
    for name, spec in sorted(plan.dependencies.dev.items()):
        table.add_row("devDependency", name, spec)
    for requirement in plan.permissions:
        table.add_row("permission", requirement.id, "mandatory" if requirement.mandatory else "optional")

    console.print(table)


def finish(summary: BatchSummary) -> None:
    """Exit with the first failure's code."""
    if not summary.all_successful:
        raise typer.Exit(summary.exit_code)


@app.callback()
def callback(verbose: VerboseOption = 0) -> None:
    """rns - capability composition for React Native projects."""
    setup_logging(verbose)


@app.command()
def version() -> None:
    """Show the rns version."""
    console.print(f"rns {__version__}")


@app.command()
def init(
    project_name: Annotated[
        str | None,
        typer.Option("--name", "-n", help="Project name (defaults to directory name)"),
    ] = None,
    target: Annotated[str, typer.Option("--target", "-t", help="Project target: expo or bare")] = "expo",
    package_manager: Annotated[
        str,
        typer.Option("--package-manager", "-m", help="npm, pnpm or yarn"),
    ] = "npm",
    language: Annotated[str, typer.Option("--language", "-l", help="ts or js")] = "ts",
    platforms: Annotated[
        list[str] | None,
        typer.Option("--platform", help="Target platform (repeatable; defaults to ios and android)"),
    ] = None,
    path: PathOption = None,
) -> None:
    """Initialize rns in a React Native project.

    Creates the .rns/rn-init.json manifest and the runtime composition package
    under packages/@rns/runtime.
    """
    path = Path.cwd() if path is None else path.resolve()

    if not path.exists():
        print_error(f"Directory does not exist: {path}")
        raise typer.Exit(ExitCode.VALIDATION_FAILURE)

    choices = {
        "target": (target, ("expo", "bare")),
        "package manager": (package_manager, ("npm", "pnpm", "yarn")),
        "language": (language, ("ts", "js")),
    }
    for label, (value, allowed) in choices.items():
        if value not in allowed:
            print_error(f"Unknown {label}: {value} (expected one of {', '.join(allowed)})")
            raise typer.Exit(ExitCode.VALIDATION_FAILURE)
    for platform in platforms or []:
        if platform not in ("ios", "android", "web"):
            print_error(f"Unknown platform: {platform}")
            raise typer.Exit(ExitCode.VALIDATION_FAILURE)

    try:
        project = Project.init(
            path,
            name=project_name,
            target=target,  # type: ignore[arg-type]
            package_manager=package_manager,  # type: ignore[arg-type]
            language=language,  # type: ignore[arg-type]
            platforms=platforms,  # type: ignore[arg-type]
        )
    except FileExistsError as e:
        print_error(str(e))
        raise typer.Exit(ExitCode.VALIDATION_FAILURE) from e
    except RnsError as e:
        print_error(f"Failed to initialize project: {e}")
        raise typer.Exit(e.exit_code) from e

    print_success(f"Initialized rns project {project.name}")
    console.print(f"  Created: {project.store.manifest_path}")


@plugin_app.command("add")
def plugin_add(
    plugins: Annotated[list[str], typer.Argument(help="Plugin ids to install")],
    dry_run: DryRunOption = False,
    yes: YesOption = False,
    skip_install: Annotated[
        bool,
        typer.Option("--skip-install", help="Do not run the package manager after linking"),
    ] = False,
    catalog: CatalogOption = None,
    verbose: VerboseOption = 0,
    path: PathOption = None,
) -> None:
    """Install plugins into the project.

    Each plugin is planned and applied on its own; a failure is reported and
    the remaining plugins are still attempted. With --dry-run the plan is
    printed and nothing is written.
    """
    if verbose:
        setup_logging(verbose)
    project = get_project(path, persist_migration=not dry_run)
    settings = get_settings(project, catalog, skip_install)
    modulator = Modulator(project, get_registry(settings), settings)

    if not dry_run and not yes:
        for capability_id in plugins:
            try:
                plan = modulator.plan(capability_id)
            except RnsError:
                continue
            for warning in plan.warnings:
                print_warning(f"{capability_id}: {warning}")
            if plan.warnings:
                typer.confirm(f"Install {capability_id} anyway?", abort=True)

    console.print(f"{'Planning' if dry_run else 'Installing'} {len(plugins)} plugin(s)...")
    try:
        summary = modulator.add(plugins, dry_run=dry_run)
    except RnsError as e:
        print_error(str(e))
        raise typer.Exit(e.exit_code) from e

    for result in summary.results:
        if dry_run and result.success:
            print_plan(result)
        print_result(result)

    finish(summary)


@plugin_app.command("remove")
def plugin_remove(
    plugins: Annotated[list[str], typer.Argument(help="Plugin ids to remove")],
    dry_run: DryRunOption = False,
    yes: YesOption = False,
    catalog: CatalogOption = None,
    verbose: VerboseOption = 0,
    path: PathOption = None,
) -> None:
    """Remove plugins from the project.

    Deletes the plugin's files and unwires its providers, init steps and
    registrations. Imports, root replacements and platform patches are left
    in place and reported.
    """
    if verbose:
        setup_logging(verbose)
    project = get_project(path, persist_migration=not dry_run)
    settings = get_settings(project, catalog)

    if not dry_run and not yes:
        typer.confirm(f"Remove {', '.join(plugins)}?", abort=True)

    try:
        summary = Modulator(project, get_registry(settings), settings).remove(plugins, dry_run=dry_run)
    except RnsError as e:
        print_error(str(e))
        raise typer.Exit(e.exit_code) from e
    for result in summary.results:
        print_result(result)

    finish(summary)


@plugin_app.command("list")
def plugin_list(catalog: CatalogOption = None, path: PathOption = None) -> None:
    """List plugins available in the catalog."""
    project = None
    if path is not None or (Path.cwd() / ".rns").exists():
        project = get_project(path, persist_migration=False)
    settings = get_settings(project, catalog)

    try:
        descriptors = get_registry(settings).list()
    except RnsError as e:
        print_error(str(e))
        raise typer.Exit(e.exit_code) from e

    if not descriptors:
        console.print("No plugins in catalog")
        return

    table = Table(title="Available Plugins")
    table.add_column("Plugin", style="cyan")
    table.add_column("Version", style="green")
    table.add_column("Category")
    table.add_column("Description", style="dim")
    for descriptor in descriptors:
        installed = project is not None and project.manifest.is_installed(descriptor.id)
        name = f"{descriptor.id} (installed)" if installed else descriptor.id
        table.add_row(name, descriptor.version, descriptor.category, descriptor.description)
    console.print(table)


@plugin_app.command("status")
def plugin_status_command(
    catalog: CatalogOption = None, verbose: VerboseOption = 0, path: PathOption = None
) -> None:
    """Show installed, available and orphaned plugins."""
    if verbose:
        setup_logging(verbose)
    project = get_project(path, persist_migration=False)
    settings = get_settings(project, catalog)

    try:
        status = plugin_status(project.manifest, get_registry(settings))
    except RnsError as e:
        print_error(str(e))
        raise typer.Exit(e.exit_code) from e

    if status.installed:
        table = Table(title="Installed Plugins")
        table.add_column("Plugin", style="cyan")
        table.add_column("Version", style="green")
        table.add_column("Installed", style="dim")
        table.add_column("Files")
        for cap_id, record in status.installed.items():
            label = f"{cap_id} [red](orphaned)[/red]" if cap_id in status.orphaned else cap_id
            table.add_row(label, record.version, record.installed_at, str(len(record.effects.owned_files)))
        console.print(table)
    else:
        console.print("No plugins installed")

    if status.available:
        console.print(f"\nAvailable: {', '.join(d.id for d in status.available)}")

    permissions = project.manifest.permissions
    if permissions:
        console.print("\n[bold]Permissions[/bold]")
        for permission_id, trace in permissions.items():
            kind = "mandatory" if trace.mandatory else "optional"
            console.print(f"  {permission_id} ({kind}) required by {', '.join(trace.required_by)}")


@plugin_app.command("doctor")
def plugin_doctor(catalog: CatalogOption = None, verbose: VerboseOption = 0, path: PathOption = None) -> None:
    """Check the project for missing markers, duplicate fingerprints and missing files."""
    if verbose:
        setup_logging(verbose)
    root = Path.cwd() if path is None else path.resolve()
    settings = get_settings(None, catalog)
    registry = get_registry(settings) if settings.catalog_dir else None

    report = run_doctor(root, registry)
    for check in report.checks:
        if check.status == "ok":
            print_success(f"{check.name}: {check.message}")
        elif check.status == "warning":
            print_warning(f"{check.name}: {check.message}")
        else:
            print_error(f"{check.name}: {check.message}")

    if not report.healthy:
        raise typer.Exit(ExitCode.VALIDATION_FAILURE)


@app.command()
def backups(
    restore: Annotated[
        str | None,
        typer.Option("--restore", "-r", help="Backup directory name to copy back into the project"),
    ] = None,
    yes: YesOption = False,
    path: PathOption = None,
) -> None:
    """List backups, or restore one with --restore."""
    project = get_project(path, persist_migration=False)
    directories = list_backup_directories(project.root)

    if restore is None:
        if not directories:
            console.print("No backups")
            return
        for directory in directories:
            count = sum(1 for p in directory.rglob("*") if p.is_file())
            console.print(f"  {directory.name} [dim]({count} file(s))[/dim]")
        return

    match = next((d for d in directories if d.name == restore), None)
    if match is None:
        print_error(f"Backup not found: {restore}")
        raise typer.Exit(ExitCode.VALIDATION_FAILURE)

    if not yes:
        typer.confirm(f"Overwrite project files with backup {restore}?", abort=True)
    for rel in restore_backup(project.root, match):
        console.print(f"  Restored: {rel}")
    print_success(f"Restored backup {restore}")


if __name__ == "__main__":
    app()
