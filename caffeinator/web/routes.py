"""REST API routes for out-of-process front ends."""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field

from ..core.errors import CaffeinatorError, ProcessNotFound, SpawnFailure
from ..core.models import DEVELOPER_PRESETS, Duration, SleepMode, TimerPreset
from ..core.power import get_power_profile
from ..core.process_watch import ProcessWatchMonitor
from ..core.session import SessionManager
from ..database import Database

router = APIRouter(prefix="/api")


# ==================== DEPENDENCIES ====================

def get_manager(request: Request) -> SessionManager:
    return request.app.state.manager


def get_monitor(request: Request) -> ProcessWatchMonitor:
    monitor = request.app.state.monitor
    if monitor is None:
        raise HTTPException(status_code=503, detail="Process watching is not available")
    return monitor


def get_database(request: Request) -> Optional[Database]:
    return request.app.state.database


def require_database(request: Request) -> Database:
    database = request.app.state.database
    if database is None:
        raise HTTPException(status_code=503, detail="Settings storage is not available")
    return database


# ==================== REQUEST BODIES ====================

class ActivateRequest(BaseModel):
    """Request body for activate/toggle.

    Omitted duration and modes fall back to the saved defaults; set
    `indefinite` to keep awake until stopped regardless of the default.
    """
    duration_seconds: Optional[int] = Field(default=None, gt=0)
    indefinite: bool = False
    modes: Optional[list[str]] = None


class ActivateForProcessRequest(BaseModel):
    """Request body for keeping awake until a process exits."""
    process_name: str
    modes: Optional[list[str]] = None


class WatchEntryRequest(BaseModel):
    """Request body for adding a custom watch-list entry."""
    name: str
    bundle_identifier: Optional[str] = None


class SettingsUpdateRequest(BaseModel):
    """Partial update of user defaults."""
    default_duration_id: Optional[str] = None
    default_modes: Optional[list[str]] = None
    show_timer_in_menu_bar: Optional[bool] = None
    notifications_enabled: Optional[bool] = None


class TimerPresetRequest(BaseModel):
    """A timer preset; 0 minutes means indefinite."""
    name: str
    minutes: int = Field(ge=0)


def _resolve_modes(modes: Optional[list[str]], database: Optional[Database]) -> frozenset:
    if modes is None:
        if database is not None:
            return database.get_default_modes()
        return frozenset({SleepMode.IDLE})
    try:
        return SleepMode.parse_set(modes)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))


def _resolve_duration(request: ActivateRequest, database: Optional[Database]) -> Duration:
    if request.indefinite:
        if request.duration_seconds is not None:
            raise HTTPException(status_code=422, detail="Give either duration_seconds or indefinite, not both")
        return Duration.indefinite()
    if request.duration_seconds is not None:
        return Duration.fixed(request.duration_seconds)
    if database is not None:
        return database.get_default_duration()
    return Duration.indefinite()


# ==================== SESSION ENDPOINTS ====================

@router.get("/status")
async def get_status(manager: SessionManager = Depends(get_manager)):
    """Current session snapshot; remaining time is computed per request."""
    return manager.status().to_dict()


@router.post("/activate")
async def activate(
    request: ActivateRequest,
    manager: SessionManager = Depends(get_manager),
    database: Optional[Database] = Depends(get_database),
):
    """Start a new session, replacing any current one."""
    modes = _resolve_modes(request.modes, database)
    try:
        return manager.activate(_resolve_duration(request, database), modes).to_dict()
    except SpawnFailure as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/activate/process")
async def activate_for_process(
    request: ActivateForProcessRequest,
    manager: SessionManager = Depends(get_manager),
    database: Optional[Database] = Depends(get_database),
):
    """Keep awake until a running watch-listed process exits."""
    modes = _resolve_modes(request.modes, database)
    try:
        return manager.activate_for_process(modes, request.process_name).to_dict()
    except ProcessNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except SpawnFailure as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/deactivate")
async def deactivate(manager: SessionManager = Depends(get_manager)):
    """Stop the current session (no-op when inactive)."""
    return manager.deactivate().to_dict()


@router.post("/toggle")
async def toggle(
    request: ActivateRequest,
    manager: SessionManager = Depends(get_manager),
    database: Optional[Database] = Depends(get_database),
):
    """Deactivate if active, otherwise activate."""
    modes = _resolve_modes(request.modes, database)
    try:
        return manager.toggle(_resolve_duration(request, database), modes).to_dict()
    except SpawnFailure as e:
        raise HTTPException(status_code=500, detail=str(e))


# ==================== PROCESS ENDPOINTS ====================

@router.get("/processes")
async def get_processes(monitor: ProcessWatchMonitor = Depends(get_monitor)):
    """Running watch-listed processes, sorted by display name."""
    watched = monitor.watched
    return {
        "processes": [p.to_dict() for p in monitor.running_watched()],
        "watched": watched.to_dict() if watched else None,
    }


@router.get("/watchlist")
async def get_watchlist(monitor: ProcessWatchMonitor = Depends(get_monitor)):
    return {
        "built_in": [e.to_dict() for e in monitor.built_in_entries],
        "custom": [e.to_dict() for e in monitor.custom_entries],
    }


@router.post("/watchlist", status_code=201)
async def add_watch_entry(
    request: WatchEntryRequest,
    monitor: ProcessWatchMonitor = Depends(get_monitor),
):
    if not request.name.strip():
        raise HTTPException(status_code=400, detail="Name must not be blank")

    entry = monitor.add_to_list(request.name, request.bundle_identifier)
    if entry is None:
        raise HTTPException(status_code=409, detail="Entry already in watch list")
    return entry.to_dict()


@router.delete("/watchlist/{entry_id}")
async def remove_watch_entry(
    entry_id: str,
    monitor: ProcessWatchMonitor = Depends(get_monitor),
):
    entry = monitor.get_entry(entry_id)
    if entry is None:
        raise HTTPException(status_code=404, detail="Entry not found")
    if entry.is_built_in:
        raise HTTPException(status_code=400, detail="Built-in entries cannot be removed")

    monitor.remove_from_list(entry)
    return {"status": "removed"}


# ==================== SETTINGS ENDPOINTS ====================

@router.get("/presets")
async def get_presets(database: Optional[Database] = Depends(get_database)):
    timer_presets = database.get_timer_presets() if database is not None else []
    return {
        "durations": [
            {"id": d.id, "seconds": d.seconds, "label": d.short_name}
            for d in Duration.presets()
        ],
        "timer_presets": [p.to_dict() for p in timer_presets],
        "developer_presets": [p.to_dict() for p in DEVELOPER_PRESETS],
    }


@router.post("/presets/timers", status_code=201)
async def add_timer_preset(
    request: TimerPresetRequest,
    database: Database = Depends(require_database),
):
    name = request.name.strip()
    if not name:
        raise HTTPException(status_code=400, detail="Name must not be blank")

    preset = TimerPreset(name=name, minutes=request.minutes)
    database.add_timer_preset(preset)
    return preset.to_dict()


@router.put("/presets/timers/{preset_id}")
async def update_timer_preset(
    preset_id: str,
    request: TimerPresetRequest,
    database: Database = Depends(require_database),
):
    preset = database.get_timer_preset(preset_id)
    if preset is None:
        raise HTTPException(status_code=404, detail="Preset not found")

    name = request.name.strip()
    if not name:
        raise HTTPException(status_code=400, detail="Name must not be blank")

    preset.name = name
    preset.minutes = request.minutes
    database.update_timer_preset(preset)
    return preset.to_dict()


@router.delete("/presets/timers/{preset_id}")
async def delete_timer_preset(
    preset_id: str,
    database: Database = Depends(require_database),
):
    if not database.delete_timer_preset(preset_id):
        raise HTTPException(status_code=404, detail="Preset not found")
    return {"status": "removed"}


@router.post("/presets/timers/reset")
async def reset_timer_presets(database: Database = Depends(require_database)):
    """Restore the default timer presets."""
    return {"timer_presets": [p.to_dict() for p in database.reset_timer_presets()]}


@router.get("/settings")
async def get_settings(database: Database = Depends(require_database)):
    return database.load_settings().to_dict()


@router.put("/settings")
async def update_settings(
    request: SettingsUpdateRequest,
    database: Database = Depends(require_database),
):
    if request.default_duration_id is not None:
        duration = Duration.from_id(request.default_duration_id)
        if duration is None:
            raise HTTPException(status_code=422, detail=f"Unknown duration: {request.default_duration_id}")
        database.set_default_duration(duration)

    if request.default_modes is not None:
        modes = _resolve_modes(request.default_modes, database)
        if not modes:
            raise HTTPException(status_code=422, detail="At least one mode is required")
        database.set_default_modes(modes)

    for key in ("show_timer_in_menu_bar", "notifications_enabled"):
        value = getattr(request, key)
        if value is not None:
            database.set_setting(key, value)

    return database.load_settings().to_dict()


# ==================== POWER ENDPOINTS ====================

@router.get("/power")
async def get_power():
    """Power source, sleep timers and system-wide assertions (pmset)."""
    try:
        return get_power_profile().to_dict()
    except CaffeinatorError as e:
        raise HTTPException(status_code=503, detail=str(e))
