"""Tests for the settings database."""
import pytest

from caffeinator.core.models import Duration, SleepMode, TimerPreset, WatchedProcessEntry
from caffeinator.database import Database


@pytest.fixture
def database(tmp_path):
    return Database(tmp_path / "nested" / "settings.db")


class TestSettings:

    def test_defaults(self, database):
        settings = database.load_settings()

        assert settings.default_duration == Duration.fixed(3600)
        assert settings.default_modes == frozenset({SleepMode.IDLE})
        assert settings.show_timer_in_menu_bar is True

    def test_creates_parent_directory(self, tmp_path, database):
        assert (tmp_path / "nested" / "settings.db").exists()

    def test_default_duration_persists(self, database, tmp_path):
        database.set_default_duration(Duration.indefinite())

        reopened = Database(tmp_path / "nested" / "settings.db")
        assert reopened.get_default_duration().is_indefinite

    def test_custom_default_duration(self, database):
        database.set_default_duration(Duration.fixed(600))

        assert database.get_default_duration() == Duration.fixed(600)

    def test_unknown_stored_duration_falls_back(self, database):
        database.set_setting("default_duration_id", "fortnight")

        assert database.get_default_duration() == Duration.fixed(3600)

    def test_default_modes(self, database):
        database.set_default_modes({SleepMode.DISPLAY, SleepMode.SYSTEM})

        assert database.get_default_modes() == frozenset({SleepMode.DISPLAY, SleepMode.SYSTEM})
        assert database.load_settings().to_dict()["default_modes"] == ["display", "system"]

    def test_corrupt_modes_fall_back(self, database):
        database.set_setting("default_modes", ["hibernate"])

        assert database.get_default_modes() == frozenset({SleepMode.IDLE})


class TestTimerPresets:

    def test_seeded_on_first_use(self, database):
        presets = database.get_timer_presets()

        assert [p.minutes for p in presets] == [30, 60, 120, 240, 0]
        assert [p.id for p in database.get_timer_presets()] == [p.id for p in presets]

    def test_add_update_delete(self, database):
        preset = TimerPreset(name="Lunch", minutes=45)
        database.add_timer_preset(preset)

        preset.minutes = 50
        assert database.update_timer_preset(preset) is True
        assert database.get_timer_preset(preset.id).minutes == 50

        assert database.delete_timer_preset(preset.id) is True
        assert database.get_timer_preset(preset.id) is None
        assert database.delete_timer_preset(preset.id) is False

    def test_update_unknown(self, database):
        assert database.update_timer_preset(TimerPreset(name="Ghost", minutes=5)) is False

    def test_deleting_everything_is_remembered(self, database):
        for preset in database.get_timer_presets():
            database.delete_timer_preset(preset.id)

        assert database.get_timer_presets() == []

    def test_reset(self, database):
        for preset in database.get_timer_presets():
            database.delete_timer_preset(preset.id)

        presets = database.reset_timer_presets()

        assert len(presets) == 5
        assert len(database.get_timer_presets()) == 5


class TestWatchEntries:

    def test_built_ins_are_not_persisted(self, database):
        custom = WatchedProcessEntry(name="MyTool", bundle_identifier="com.example.mytool")
        built_in = WatchedProcessEntry(name="Xcode", bundle_identifier="com.apple.dt.Xcode", is_built_in=True)

        database.save_watch_entries([built_in, custom])

        loaded = database.load_watch_entries()
        assert [(e.id, e.name, e.bundle_identifier) for e in loaded] == [
            (custom.id, "MyTool", "com.example.mytool"),
        ]
        assert not loaded[0].is_built_in

    def test_save_replaces(self, database):
        database.save_watch_entries([WatchedProcessEntry(name="One")])
        database.save_watch_entries([WatchedProcessEntry(name="Two")])

        assert [e.name for e in database.load_watch_entries()] == ["Two"]
