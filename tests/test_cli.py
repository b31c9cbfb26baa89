"""
Tests for configuration loading and the typer command-line interface.
"""

from datetime import datetime
from datetime import timedelta
from datetime import timezone

import pytest
from typer.testing import CliRunner

from calmirror import cli
from calmirror.cache import CacheManager
from calmirror.models import ConfigError
from calmirror.models import Event
from calmirror.store import CalendarData
from tests.conftest import WORK_URL
from tests.conftest import make_vevent
from tests.conftest import wrap
from tests.fake_client import FakeCalDAVTransport

runner = CliRunner()


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("CALDAV_SERVER", "CALDAV_USERNAME", "CALDAV_PASSWORD"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def config_file(tmp_path):
    return tmp_path / "calmirror.conf"


@pytest.fixture
def base_args(config_file, cache_dir):
    return ["--config", str(config_file), "--cache-dir", str(cache_dir)]


@pytest.fixture
def fake_transport(monkeypatch, work_collection):
    fake = FakeCalDAVTransport()
    fake.add_collection(work_collection)
    fake.put(WORK_URL, "a.ics", wrap(make_vevent("a", "Standup")))
    monkeypatch.setattr(cli, "_make_transport", lambda cfg: fake)
    return fake


def _seed_cache(cache_dir, start):
    CacheManager(cache_dir).save(
        CalendarData(
            events=[
                Event(
                    uid="a",
                    summary="Standup",
                    start=start,
                    end=start + timedelta(hours=1),
                    calendar_name="Work",
                    calendar_url=WORK_URL,
                )
            ],
            last_sync=start,
        )
    )


# ---------------------------------------------------------------------------
# Credential helpers
# ---------------------------------------------------------------------------


class TestLoadValueOrFile:
    def test_plain_value(self):
        assert cli.load_value_or_file("hunter2") == "hunter2"

    def test_file_contents_stripped(self, tmp_path):
        secret = tmp_path / "pw"
        secret.write_text("  s3cret\n")
        assert cli.load_value_or_file(str(secret)) == "s3cret"

    def test_none(self):
        assert cli.load_value_or_file(None) is None


class TestValidateCredentials:
    def test_valid(self):
        cli.validate_credentials("https://dav.example.com", "alice", "pw")

    @pytest.mark.parametrize(
        "args",
        [
            ("", "alice", "pw"),
            ("https://dav.example.com", "", "pw"),
            ("https://dav.example.com", "alice", None),
        ],
    )
    def test_missing(self, args):
        with pytest.raises(ConfigError, match="Missing"):
            cli.validate_credentials(*args)

    def test_bad_scheme(self):
        with pytest.raises(ConfigError, match="http"):
            cli.validate_credentials("dav.example.com", "alice", "pw")


class TestBuildConfig:
    def test_reads_config_file(self, config_file, monkeypatch):
        config_file.write_text(
            "[calmirror]\n"
            "server_url = https://dav.example.com/\n"
            "username = alice\n"
            "password = pw\n"
            "sync_interval_minutes = 5\n"
            "expand_forward_days = 30\n"
        )
        monkeypatch.setattr(cli.state, "config_path", config_file)
        monkeypatch.setattr(cli.state, "cache_dir", None)
        cfg = cli.build_config()
        assert cfg.server_url == "https://dav.example.com/"
        assert cfg.sync_interval_minutes == 5
        assert cfg.recurrence.expand_forward_days == 30
        assert cfg.recurrence.expand_backward_days == 365

    def test_env_overrides_file_and_option_overrides_env(self, config_file, monkeypatch):
        config_file.write_text("[calmirror]\nserver_url = https://file/\nusername = f\npassword = f\n")
        monkeypatch.setattr(cli.state, "config_path", config_file)
        monkeypatch.setenv("CALDAV_USERNAME", "env-user")
        cfg = cli.build_config(password="opt-pw")
        assert cfg.server_url == "https://file/"
        assert cfg.username == "env-user"
        assert cfg.password == "opt-pw"

    def test_bad_integer(self, config_file, monkeypatch):
        config_file.write_text(
            "[calmirror]\nserver_url = https://x/\nusername = u\npassword = p\nmax_workers = lots\n"
        )
        monkeypatch.setattr(cli.state, "config_path", config_file)
        with pytest.raises(ConfigError, match="max_workers"):
            cli.build_config()


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


class TestCommands:
    def test_sync_without_credentials_fails(self, base_args):
        result = runner.invoke(cli.app, [*base_args, "sync"])
        assert result.exit_code == 1
        assert "Configuration error" in result.output

    def test_sync_writes_cache(self, base_args, cache_dir, fake_transport):
        result = runner.invoke(
            cli.app,
            [*base_args, "sync", "-s", "https://dav.example.com/", "-u", "alice", "-p", "pw"],
        )
        assert result.exit_code == 0, result.output
        assert "Results" in result.output
        restored = CacheManager(cache_dir).load()
        assert [e.uid for e in restored.events] == ["a"]

    def test_sync_unreachable_server_fails_preflight(self, base_args, fake_transport, monkeypatch):
        fake_transport.fail_connection = True
        monkeypatch.setenv("CALDAV_SERVER", "https://dav.example.com/")
        monkeypatch.setenv("CALDAV_USERNAME", "alice")
        monkeypatch.setenv("CALDAV_PASSWORD", "pw")
        result = runner.invoke(cli.app, [*base_args, "sync"])
        assert result.exit_code == 1
        assert "Preflight checks failed" in result.output

    def test_serve_unreachable_server_fails_preflight(
        self, base_args, fake_transport, monkeypatch
    ):
        fake_transport.fail_connection = True
        monkeypatch.setenv("CALDAV_SERVER", "https://dav.example.com/")
        monkeypatch.setenv("CALDAV_USERNAME", "alice")
        monkeypatch.setenv("CALDAV_PASSWORD", "pw")
        result = runner.invoke(cli.app, [*base_args, "serve"])
        assert result.exit_code == 1
        assert "Preflight checks failed" in result.output
        assert fake_transport.fetch_all_calls == []

    def test_sync_discovery_failure(self, base_args, fake_transport, monkeypatch):
        fake_transport.fail_discovery = True
        monkeypatch.setenv("CALDAV_SERVER", "https://dav.example.com/")
        monkeypatch.setenv("CALDAV_USERNAME", "alice")
        monkeypatch.setenv("CALDAV_PASSWORD", "pw")
        result = runner.invoke(cli.app, [*base_args, "sync"])
        assert result.exit_code == 1
        assert "Sync failed" in result.output

    def test_sync_corrupt_cache_needs_fresh(self, base_args, cache_dir, fake_transport, monkeypatch):
        cache_dir.mkdir(parents=True)
        (cache_dir / "calendar_data.json").write_text("{broken")
        monkeypatch.setenv("CALDAV_SERVER", "https://dav.example.com/")
        monkeypatch.setenv("CALDAV_USERNAME", "alice")
        monkeypatch.setenv("CALDAV_PASSWORD", "pw")

        result = runner.invoke(cli.app, [*base_args, "sync"])
        assert result.exit_code == 1

        result = runner.invoke(cli.app, [*base_args, "sync", "--fresh"])
        assert result.exit_code == 0, result.output
        assert CacheManager(cache_dir).load() is not None

    def test_show_lists_cached_events(self, base_args, cache_dir):
        _seed_cache(cache_dir, datetime(2026, 3, 1, 10, tzinfo=timezone.utc))
        result = runner.invoke(cli.app, [*base_args, "show", "2026-03-01"])
        assert result.exit_code == 0, result.output
        assert "Standup" in result.output

    def test_show_other_day_is_empty(self, base_args, cache_dir):
        _seed_cache(cache_dir, datetime(2026, 3, 1, 10, tzinfo=timezone.utc))
        result = runner.invoke(cli.app, [*base_args, "show", "2026-03-02"])
        assert result.exit_code == 0
        assert "Standup" not in result.output

    def test_show_bad_range(self, base_args):
        result = runner.invoke(cli.app, [*base_args, "show", "someday"])
        assert result.exit_code == 1

    def test_show_without_cache(self, base_args):
        result = runner.invoke(cli.app, [*base_args, "show"])
        assert result.exit_code == 0
        assert "No cache yet" in result.output

    def test_status(self, base_args, cache_dir):
        _seed_cache(cache_dir, datetime(2026, 3, 1, 10, tzinfo=timezone.utc))
        result = runner.invoke(cli.app, [*base_args, "status"])
        assert result.exit_code == 0, result.output
        assert "Work" in result.output
        assert "never synced" in result.output

    def test_calendars(self, base_args, fake_transport, monkeypatch):
        monkeypatch.setenv("CALDAV_SERVER", "https://dav.example.com/")
        monkeypatch.setenv("CALDAV_USERNAME", "alice")
        monkeypatch.setenv("CALDAV_PASSWORD", "pw")
        result = runner.invoke(cli.app, [*base_args, "calendars"])
        assert result.exit_code == 0, result.output
        assert "Work" in result.output

    def test_clear_cache(self, base_args, cache_dir):
        _seed_cache(cache_dir, datetime(2026, 3, 1, 10, tzinfo=timezone.utc))
        result = runner.invoke(cli.app, [*base_args, "clear-cache", "--yes"])
        assert result.exit_code == 0
        assert not CacheManager(cache_dir).exists()

    def test_clear_cache_declined(self, base_args, cache_dir):
        _seed_cache(cache_dir, datetime(2026, 3, 1, 10, tzinfo=timezone.utc))
        result = runner.invoke(cli.app, [*base_args, "clear-cache"], input="n\n")
        assert result.exit_code == 1
        assert CacheManager(cache_dir).exists()
