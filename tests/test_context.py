"""Tests for mirror_sync.context: configuration loading and object wiring.

Tests the app_context() async context manager which:
- Loads .env, YAML fallbacks and env vars into a Config
- Builds the state store, audit trail, media cache and engine
- Fails fast with RuntimeError on configuration errors
"""

from unittest.mock import patch

import pytest
from conftest import FakeDestination, FakeSource, make_document

from mirror_sync.context import app_context, create_app_context
from mirror_sync.source import HttpSourceAdapter
from mirror_sync.sync.models import SyncAction

# -------------------------------------------------------------------------
# create_app_context()
# -------------------------------------------------------------------------


class TestCreateAppContext:
    def test_wires_components(self, mock_config):
        destination = FakeDestination()
        source = FakeSource()

        ctx = create_app_context(mock_config, destination, source)

        assert ctx.data_dir == mock_config.data_dir
        assert ctx.data_dir.is_dir()
        assert ctx.source is source
        assert ctx.engine.destination is destination
        assert ctx.engine.state is ctx.state
        assert ctx.state.path == mock_config.data_dir / "state" / "mirror_state.json"
        assert ctx.audit.path == mock_config.data_dir / "logs" / "audit.log"

    def test_settings_from_config(self, mock_config):
        mock_config.create_target = "db-1"
        mock_config.include_media = False

        ctx = create_app_context(mock_config, FakeDestination(), FakeSource())

        assert ctx.engine.settings.create_target == "db-1"
        assert ctx.engine.settings.include_media is False
        assert ctx.engine.settings.delay_ms == 0

    def test_default_source_is_http(self, mock_config):
        ctx = create_app_context(mock_config, FakeDestination())

        assert isinstance(ctx.source, HttpSourceAdapter)


# -------------------------------------------------------------------------
# app_context()
# -------------------------------------------------------------------------


@pytest.fixture
def env(monkeypatch, tmp_path):
    """Minimal env-var configuration with no config files or .env."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    monkeypatch.delenv("MIRROR_SYNC_CONFIG", raising=False)
    monkeypatch.delenv("XDG_CONFIG_HOME", raising=False)
    monkeypatch.setenv("MIRROR_SOURCE_URL", "https://source.example.com")
    monkeypatch.setenv("MIRROR_SOURCE_TOKEN", "token")
    monkeypatch.setenv("MIRROR_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("MIRROR_SYNC_DELAY_MS", "0")
    return tmp_path


class TestAppContext:
    async def test_yields_working_engine(self, env):
        source = FakeSource([make_document("d1")])

        async with app_context(
            FakeDestination(), source, {"create_target": "db-1"}
        ) as ctx:
            report = await ctx.engine.preview()

        assert ctx.config.source_url == "https://source.example.com"
        assert ctx.config.data_dir == (env / "data").resolve()
        assert [i.action for i in report.items] == [SyncAction.CREATE]

    async def test_yaml_fallbacks_used(self, env, monkeypatch):
        config_dir = env / ".mirror_sync"
        config_dir.mkdir()
        (config_dir / "config.yml").write_text(
            "sync:\n  create_target: yaml-target\n  list_limit: 7\n",
            encoding="utf-8",
        )
        monkeypatch.delenv("MIRROR_CREATE_TARGET", raising=False)

        async with app_context(FakeDestination(), FakeSource()) as ctx:
            assert ctx.config.create_target == "yaml-target"
            assert ctx.engine.settings.list_limit == 7

    async def test_missing_url_raises_runtime_error(self, env, monkeypatch):
        monkeypatch.delenv("MIRROR_SOURCE_URL")

        with patch("mirror_sync.context.load_dotenv"):
            with pytest.raises(RuntimeError, match="Configuration error"):
                async with app_context(FakeDestination(), FakeSource()):
                    pass

    async def test_invalid_url_raises_runtime_error(self, env, monkeypatch):
        monkeypatch.setenv("MIRROR_SOURCE_URL", "source.example.com")

        with pytest.raises(RuntimeError, match="http:// or https://"):
            async with app_context(FakeDestination(), FakeSource()):
                pass


class TestAppContextLogging:
    """app_context configures logging only when asked to."""

    async def test_no_log_mode_leaves_logging_alone(self, env):
        with patch("mirror_sync.context.setup_logging") as mock_setup:
            async with app_context(FakeDestination(), FakeSource()):
                pass

        mock_setup.assert_not_called()

    async def test_yaml_logging_section_and_debug_flag(self, env, monkeypatch):
        config_dir = env / ".mirror_sync"
        config_dir.mkdir()
        (config_dir / "config.yml").write_text(
            "logging:\n  level: WARNING\n  file: /tmp/mirror-test.log\n",
            encoding="utf-8",
        )
        monkeypatch.setenv("MIRROR_DEBUG", "true")

        with patch("mirror_sync.context.setup_logging") as mock_setup:
            async with app_context(
                FakeDestination(), FakeSource(), log_mode="service"
            ):
                pass

        mock_setup.assert_called_once_with(
            mode="service",
            debug=True,
            log_file="/tmp/mirror-test.log",
            level="WARNING",
        )

    async def test_defaults_without_config_file(self, env, monkeypatch):
        monkeypatch.delenv("MIRROR_DEBUG", raising=False)

        with patch("mirror_sync.context.setup_logging") as mock_setup:
            async with app_context(FakeDestination(), FakeSource(), log_mode="cli"):
                pass

        mock_setup.assert_called_once_with(
            mode="cli", debug=False, log_file=None, level="INFO"
        )
