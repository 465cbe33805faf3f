"""Settings database: user defaults, timer presets and custom watch entries."""
import json
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from ..core.models import (
    Duration,
    SleepMode,
    TimerPreset,
    WatchedProcessEntry,
    default_timer_presets,
)


DEFAULT_DB_PATH = Path.home() / "Library" / "Application Support" / "Caffeinator" / "settings.db"

DEFAULT_DURATION_ID = "1h"
DEFAULT_MODES = frozenset({SleepMode.IDLE})


@dataclass
class Settings:
    """User preferences consumed by the front ends when issuing commands."""
    default_duration: Duration = field(default_factory=lambda: Duration.from_id(DEFAULT_DURATION_ID))
    default_modes: frozenset = DEFAULT_MODES
    timer_presets: list = field(default_factory=default_timer_presets)
    show_timer_in_menu_bar: bool = True
    notifications_enabled: bool = True

    def to_dict(self) -> dict:
        return {
            "default_duration_id": self.default_duration.id,
            "default_duration_seconds": self.default_duration.seconds,
            "default_modes": sorted(m.value for m in self.default_modes),
            "timer_presets": [p.to_dict() for p in self.timer_presets],
            "show_timer_in_menu_bar": self.show_timer_in_menu_bar,
            "notifications_enabled": self.notifications_enabled,
        }


class Database:
    """SQLite store for caffeinator settings."""

    def __init__(self, db_path=DEFAULT_DB_PATH):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    @contextmanager
    def _get_connection(self):
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    def _init_db(self):
        """Initialize database schema."""
        with self._get_connection() as conn:
            cursor = conn.cursor()

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS settings (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS timer_presets (
                    id TEXT PRIMARY KEY,
                    position INTEGER NOT NULL,
                    name TEXT NOT NULL,
                    minutes INTEGER NOT NULL,
                    is_default BOOLEAN NOT NULL DEFAULT 0
                )
            """)

            # Custom entries only; built-ins are rebuilt from seed data at startup
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS watch_entries (
                    id TEXT PRIMARY KEY,
                    position INTEGER NOT NULL,
                    name TEXT NOT NULL,
                    bundle_identifier TEXT
                )
            """)

            conn.commit()

    # ==================== KEY/VALUE SETTINGS ====================

    def get_setting(self, key: str, default=None):
        with self._get_connection() as conn:
            row = conn.execute("SELECT value FROM settings WHERE key = ?", (key,)).fetchone()
        if row is None:
            return default
        return json.loads(row["value"])

    def set_setting(self, key: str, value):
        with self._get_connection() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO settings (key, value) VALUES (?, ?)",
                (key, json.dumps(value)),
            )
            conn.commit()

    def get_default_duration(self) -> Duration:
        duration_id = self.get_setting("default_duration_id", DEFAULT_DURATION_ID)
        return Duration.from_id(duration_id) or Duration.from_id(DEFAULT_DURATION_ID)

    def set_default_duration(self, duration: Duration):
        self.set_setting("default_duration_id", duration.id)

    def get_default_modes(self) -> frozenset:
        names = self.get_setting("default_modes")
        if not names:
            return DEFAULT_MODES
        try:
            return SleepMode.parse_set(names)
        except ValueError:
            return DEFAULT_MODES

    def set_default_modes(self, modes):
        self.set_setting("default_modes", sorted(m.value for m in modes))

    def load_settings(self) -> Settings:
        return Settings(
            default_duration=self.get_default_duration(),
            default_modes=self.get_default_modes(),
            timer_presets=self.get_timer_presets(),
            show_timer_in_menu_bar=self.get_setting("show_timer_in_menu_bar", True),
            notifications_enabled=self.get_setting("notifications_enabled", True),
        )

    # ==================== TIMER PRESETS ====================

    def get_timer_presets(self) -> list[TimerPreset]:
        """Saved presets, seeding the defaults on first use."""
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT id, name, minutes, is_default FROM timer_presets ORDER BY position"
            ).fetchall()

        if not rows and not self.get_setting("timer_presets_saved", False):
            presets = default_timer_presets()
            self.save_timer_presets(presets)
            return presets

        return [
            TimerPreset(
                id=row["id"],
                name=row["name"],
                minutes=row["minutes"],
                is_default=bool(row["is_default"]),
            )
            for row in rows
        ]

    def save_timer_presets(self, presets: list[TimerPreset]):
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("DELETE FROM timer_presets")
            cursor.executemany(
                "INSERT INTO timer_presets (id, position, name, minutes, is_default) VALUES (?, ?, ?, ?, ?)",
                [
                    (p.id, position, p.name, p.minutes, p.is_default)
                    for position, p in enumerate(presets)
                ],
            )
            conn.commit()
        self.set_setting("timer_presets_saved", True)

    def add_timer_preset(self, preset: TimerPreset):
        presets = self.get_timer_presets()
        presets.append(preset)
        self.save_timer_presets(presets)

    def update_timer_preset(self, preset: TimerPreset) -> bool:
        presets = self.get_timer_presets()
        for index, existing in enumerate(presets):
            if existing.id == preset.id:
                presets[index] = preset
                self.save_timer_presets(presets)
                return True
        return False

    def delete_timer_preset(self, preset_id: str) -> bool:
        presets = self.get_timer_presets()
        remaining = [p for p in presets if p.id != preset_id]
        if len(remaining) == len(presets):
            return False
        self.save_timer_presets(remaining)
        return True

    def reset_timer_presets(self) -> list[TimerPreset]:
        presets = default_timer_presets()
        self.save_timer_presets(presets)
        return presets

    def get_timer_preset(self, preset_id: str) -> Optional[TimerPreset]:
        for preset in self.get_timer_presets():
            if preset.id == preset_id:
                return preset
        return None

    # ==================== WATCH LIST ====================

    def load_watch_entries(self) -> list[WatchedProcessEntry]:
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT id, name, bundle_identifier FROM watch_entries ORDER BY position"
            ).fetchall()
        return [
            WatchedProcessEntry(
                id=row["id"],
                name=row["name"],
                bundle_identifier=row["bundle_identifier"],
                is_built_in=False,
            )
            for row in rows
        ]

    def save_watch_entries(self, entries: list[WatchedProcessEntry]):
        """Replace the stored custom entries. Built-in entries are skipped."""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("DELETE FROM watch_entries")
            cursor.executemany(
                "INSERT INTO watch_entries (id, position, name, bundle_identifier) VALUES (?, ?, ?, ?)",
                [
                    (e.id, position, e.name, e.bundle_identifier)
                    for position, e in enumerate(entries)
                    if not e.is_built_in
                ],
            )
            conn.commit()
