"""Command-line interface for keeping a Mac awake."""
import logging
import threading
from functools import partial

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from . import __version__
from .core.assertion import CAFFEINATE_PATH, spawn_assertion
from .core.errors import CaffeinatorError, SpawnFailure
from .core.events import EventBus, EventType
from .core.models import DEVELOPER_PRESETS, Duration, SleepMode, TimerPreset, parse_duration, sorted_modes
from .core.power import get_power_profile
from .core.process_watch import ProcessWatchMonitor
from .core.processes import PsutilProcessSource, find_pids, find_process_by_name, pid_exists, terminate_all
from .core.session import SessionManager
from .database import DEFAULT_DB_PATH, Database

console = Console()
err_console = Console(stderr=True)


def setup_logging(verbose: bool = False):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False)],
    )


def print_error(message: str):
    err_console.print(f"[red]Error:[/] {message}")


@click.group()
@click.option("--db", envvar="CAFFEINATOR_DB", default=str(DEFAULT_DB_PATH),
              show_default=True, help="Settings database path")
@click.option("--caffeinate", "caffeinate_path", envvar="CAFFEINATOR_CAFFEINATE",
              default=CAFFEINATE_PATH, show_default=True, help="caffeinate binary")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.version_option(__version__, prog_name="caffeinator")
@click.pass_context
def main(ctx, db, caffeinate_path, verbose):
    """Caffeinator - Keep your Mac awake."""
    ctx.ensure_object(dict)
    setup_logging(verbose)
    ctx.obj["db_path"] = db
    ctx.obj["caffeinate"] = caffeinate_path


def _database(ctx) -> Database:
    if "db" not in ctx.obj:
        ctx.obj["db"] = Database(ctx.obj["db_path"])
    return ctx.obj["db"]


def _spawner(ctx):
    return partial(spawn_assertion, executable=ctx.obj["caffeinate"])


def _monitor(ctx) -> ProcessWatchMonitor:
    return ProcessWatchMonitor(PsutilProcessSource(), EventBus(), store=_database(ctx))


# ==================== SESSION COMMANDS ====================

@main.command()
@click.argument("duration", required=False)
@click.option("-d", "--display", is_flag=True, help="Prevent display sleep")
@click.option("-i", "--idle", is_flag=True, help="Prevent idle sleep (default)")
@click.option("-s", "--system", is_flag=True, help="Prevent system sleep (AC only)")
@click.option("-m", "--disk", is_flag=True, help="Prevent disk idle sleep")
@click.option("--preset", type=click.Choice([p.id for p in DEVELOPER_PRESETS]),
              help="Use a developer preset's duration and modes")
@click.pass_context
def on(ctx, duration, display, idle, system, disk, preset):
    """Keep Mac awake for DURATION (90, 30m, 2h, 45s, 1h30m; omit for indefinitely)."""
    modes = {
        mode for mode, selected in (
            (SleepMode.DISPLAY, display),
            (SleepMode.IDLE, idle),
            (SleepMode.SYSTEM, system),
            (SleepMode.DISK, disk),
        ) if selected
    }

    if preset:
        chosen = next(p for p in DEVELOPER_PRESETS if p.id == preset)
        session_duration = chosen.duration
        modes = modes or set(chosen.modes)
    else:
        session_duration = Duration.indefinite()

    if duration:
        try:
            session_duration = parse_duration(duration)
        except ValueError as e:
            raise click.BadParameter(str(e), param_hint="DURATION")

    modes = modes or {SleepMode.IDLE}

    manager = SessionManager(spawner=_spawner(ctx))
    finished = threading.Event()
    manager.events.subscribe(EventType.SESSION_EXPIRED, lambda event: finished.set())

    try:
        manager.activate(session_duration, modes)
    except SpawnFailure as e:
        print_error(str(e))
        ctx.exit(1)

    mode_names = ", ".join(m.label for m in sorted_modes(modes))
    if session_duration.is_indefinite:
        console.print(f"[green]Keeping Mac awake indefinitely[/] [dim]({mode_names})[/]")
    else:
        console.print(
            f"[green]Keeping Mac awake for {session_duration.display_name}[/] [dim]({mode_names})[/]"
        )
    console.print("[dim]Press Ctrl+C to stop.[/]")

    try:
        while not finished.wait(0.5):
            pass
    except KeyboardInterrupt:
        console.print()
    finally:
        manager.shutdown()

    console.print("Caffeinate stopped.")


@main.command()
def off():
    """Stop keeping Mac awake."""
    stopped = terminate_all("caffeinate")
    if stopped:
        console.print(f"[green]Caffeinate stopped.[/] [dim](PID: {', '.join(map(str, stopped))})[/]")
    else:
        console.print("[yellow]No caffeinate process running.[/]")


@main.command()
def status():
    """Check whether caffeinate is running."""
    pids = find_pids("caffeinate", exact=True)
    if pids:
        console.print(f"[green]Caffeinate is active[/] (PID: {', '.join(map(str, pids))})")
    else:
        console.print("Caffeinate is not active.")


@main.command()
@click.argument("target", required=False)
@click.option("--pid", type=int, help="Watch a process by PID")
@click.pass_context
def watch(ctx, target, pid):
    """Keep Mac awake until TARGET (a process name) or --pid exits."""
    if pid is None and not target:
        print_error("Usage: caffeinator watch <process-name|--pid PID>")
        ctx.exit(1)

    label = target or str(pid)
    if pid is None:
        pid = find_process_by_name(target)
    elif not pid_exists(pid):
        pid = None

    if pid is None:
        print_error(f"Process '{label}' not found")
        ctx.exit(1)

    try:
        process = _spawner(ctx)({SleepMode.IDLE}, watch_pid=pid)
    except SpawnFailure as e:
        print_error(str(e))
        ctx.exit(1)

    console.print(f"Watching process [bold]{label}[/] (PID: {pid})...")
    console.print("Mac will stay awake until the process ends.")
    console.print("[dim]Press Ctrl+C to stop watching.[/]")

    try:
        process.wait()
        console.print("[green]Process ended. Mac can now sleep.[/]")
    except KeyboardInterrupt:
        process.terminate()
        console.print("\nStopped watching.")


@main.command(name="help")
@click.pass_context
def help_command(ctx):
    """Show this help message."""
    click.echo(ctx.parent.get_help())


@main.command()
def version():
    """Show version."""
    console.print(f"caffeinator version {__version__}")


# ==================== SETTINGS COMMANDS ====================

@main.group()
def watchlist():
    """Manage the applications sessions can be bound to."""
    pass


@watchlist.command(name="list")
@click.option("--running", is_flag=True, help="Only show watched apps that are running")
@click.pass_context
def watchlist_list(ctx, running):
    """Show built-in and custom watch-list entries."""
    monitor = _monitor(ctx)

    if running:
        monitor.refresh()
        table = Table(title="Running Watched Apps")
        table.add_column("PID", style="cyan")
        table.add_column("Name", style="green")
        table.add_column("Bundle ID", style="dim")
        for process in monitor.running_watched():
            table.add_row(str(process.pid), process.display_name, process.bundle_identifier or "")
        console.print(table)
        return

    table = Table(title="Watch List")
    table.add_column("Name", style="green")
    table.add_column("Bundle ID", style="dim")
    table.add_column("Type", style="cyan")
    for entry in monitor.watch_list:
        table.add_row(entry.name, entry.bundle_identifier or "", "built-in" if entry.is_built_in else "custom")
    console.print(table)


@watchlist.command(name="add")
@click.argument("name")
@click.option("--bundle-id", help="Application bundle identifier")
@click.pass_context
def watchlist_add(ctx, name, bundle_id):
    """Add a custom entry."""
    entry = _monitor(ctx).add_to_list(name, bundle_id)
    if entry is None:
        print_error(f"'{name}' is blank or already in the watch list")
        ctx.exit(1)
    console.print(f"[green]Added {entry.name} to the watch list[/]")


@watchlist.command(name="remove")
@click.argument("name")
@click.pass_context
def watchlist_remove(ctx, name):
    """Remove a custom entry (built-in entries cannot be removed)."""
    monitor = _monitor(ctx)
    entry = next((e for e in monitor.watch_list if e.name.lower() == name.strip().lower()), None)

    if entry is None:
        print_error(f"'{name}' is not in the watch list")
        ctx.exit(1)
    if entry.is_built_in:
        print_error(f"'{entry.name}' is built in and cannot be removed")
        ctx.exit(1)

    monitor.remove_from_list(entry)
    console.print(f"[green]Removed {entry.name} from the watch list[/]")


@main.group(invoke_without_command=True)
@click.pass_context
def presets(ctx):
    """Show or edit timer and developer presets."""
    if ctx.invoked_subcommand is not None:
        return

    db = _database(ctx)

    table = Table(title="Timer Presets")
    table.add_column("Name", style="green")
    table.add_column("Duration", style="cyan")
    for preset in db.get_timer_presets():
        table.add_row(preset.name, preset.short_name)
    console.print(table)

    table = Table(title="Developer Presets")
    table.add_column("ID", style="cyan")
    table.add_column("Name", style="green")
    table.add_column("Duration")
    table.add_column("Modes")
    table.add_column("Description", style="dim")
    for preset in DEVELOPER_PRESETS:
        table.add_row(
            preset.id,
            preset.name,
            preset.duration.short_name,
            ", ".join(m.label for m in sorted_modes(preset.modes)),
            preset.description,
        )
    console.print(table)


def _find_timer_preset(db: Database, name: str):
    return next((p for p in db.get_timer_presets() if p.name.lower() == name.strip().lower()), None)


@presets.command(name="add")
@click.argument("name")
@click.argument("minutes", type=click.IntRange(min=0))
@click.pass_context
def presets_add(ctx, name, minutes):
    """Add a timer preset (0 minutes = indefinite)."""
    if not name.strip():
        raise click.BadParameter("Name must not be blank", param_hint="NAME")

    preset = TimerPreset(name=name.strip(), minutes=minutes)
    _database(ctx).add_timer_preset(preset)
    console.print(f"[green]Added timer preset {preset.name} ({preset.short_name})[/]")


@presets.command(name="edit")
@click.argument("name")
@click.option("--minutes", type=click.IntRange(min=0), help="New length in minutes (0 = indefinite)")
@click.option("--rename", help="New name")
@click.pass_context
def presets_edit(ctx, name, minutes, rename):
    """Change a timer preset's length or name."""
    db = _database(ctx)
    preset = _find_timer_preset(db, name)
    if preset is None:
        print_error(f"No timer preset named '{name}'")
        ctx.exit(1)

    if minutes is not None:
        preset.minutes = minutes
    if rename and rename.strip():
        preset.name = rename.strip()
    db.update_timer_preset(preset)
    console.print(f"[green]Updated timer preset {preset.name} ({preset.short_name})[/]")


@presets.command(name="remove")
@click.argument("name")
@click.pass_context
def presets_remove(ctx, name):
    """Remove a timer preset."""
    db = _database(ctx)
    preset = _find_timer_preset(db, name)
    if preset is None:
        print_error(f"No timer preset named '{name}'")
        ctx.exit(1)

    db.delete_timer_preset(preset.id)
    console.print(f"[green]Removed timer preset {preset.name}[/]")


@presets.command(name="reset")
@click.pass_context
def presets_reset(ctx):
    """Restore the default timer presets."""
    restored = _database(ctx).reset_timer_presets()
    console.print(f"[green]Restored {len(restored)} default timer presets[/]")


@main.command()
@click.option("--duration", "duration_id", help="Default duration id (30m, 1h, 2h, 4h, indefinite, custom-<s>)")
@click.option("--mode", "mode_names", multiple=True,
              type=click.Choice([m.value for m in SleepMode]), help="Default mode (repeatable)")
@click.option("--menu-bar-timer/--no-menu-bar-timer", default=None, help="Show the countdown in the menu bar")
@click.option("--notifications/--no-notifications", default=None, help="Notify when a session ends")
@click.pass_context
def defaults(ctx, duration_id, mode_names, menu_bar_timer, notifications):
    """Show or change the default duration, modes and display options."""
    db = _database(ctx)

    if duration_id:
        duration = Duration.from_id(duration_id)
        if duration is None:
            raise click.BadParameter(f"Unknown duration: {duration_id}", param_hint="--duration")
        db.set_default_duration(duration)

    if mode_names:
        db.set_default_modes(SleepMode.parse_set(mode_names))

    if menu_bar_timer is not None:
        db.set_setting("show_timer_in_menu_bar", menu_bar_timer)
    if notifications is not None:
        db.set_setting("notifications_enabled", notifications)

    settings = db.load_settings()
    console.print(f"Default duration: [cyan]{settings.default_duration.display_name}[/]")
    console.print(
        f"Default modes: [cyan]{', '.join(m.label for m in sorted_modes(settings.default_modes))}[/]"
    )
    console.print(f"Menu bar timer: [cyan]{'on' if settings.show_timer_in_menu_bar else 'off'}[/]")
    console.print(f"Notifications: [cyan]{'on' if settings.notifications_enabled else 'off'}[/]")


@main.command()
@click.pass_context
def power(ctx):
    """Show power source, sleep settings and active assertions."""
    try:
        profile = get_power_profile()
    except CaffeinatorError as e:
        print_error(str(e))
        ctx.exit(1)

    table = Table(title=f"Power Profile ({profile.source})")
    table.add_column("Setting", style="cyan")
    table.add_column("Minutes", style="green")
    for label, value in (
        ("Display sleep", profile.display_sleep),
        ("Disk sleep", profile.disk_sleep),
        ("System sleep", profile.system_sleep),
    ):
        table.add_row(label, "-" if value is None else str(value))
    console.print(table)

    if profile.assertions:
        console.print("\n[bold]Active assertions:[/]")
        for assertion in profile.assertions:
            console.print(f"  {assertion}")


# ==================== SERVER ====================

@main.command()
@click.option("--host", default="127.0.0.1", help="Host to bind to")
@click.option("--port", default=8765, help="Port to run server on")
@click.pass_context
def serve(ctx, host, port):
    """Start the HTTP/WebSocket status bridge."""
    import uvicorn

    from .web.app import create_app

    db = _database(ctx)
    events = EventBus()
    monitor = ProcessWatchMonitor(PsutilProcessSource(), events, store=db)
    manager = SessionManager(spawner=_spawner(ctx), events=events, monitor=monitor)
    app = create_app(manager, monitor=monitor, database=db)

    console.print(Panel.fit(
        f"[bold]Caffeinator status bridge[/]\n"
        f"[dim]Starting server at http://{host}:{port}[/]",
        border_style="green"
    ))

    monitor.start()
    try:
        uvicorn.run(app, host=host, port=port)
    finally:
        manager.shutdown()
        monitor.stop()


if __name__ == "__main__":
    main()
