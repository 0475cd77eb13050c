"""
Unit tests for CLI functionality.

Tests the firesearch command-line interface commands: run, references, status, cleanup.
"""

import json
import logging
from unittest.mock import AsyncMock, Mock, patch

import pytest
from click.testing import CliRunner

from firesearch.cli import main, setup_logging, _run_engine


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "firesearch.json"
    path.write_text(json.dumps({"elasticsearch": {"url": "http://es.test:9200"}}))
    return path


@pytest.fixture
def healthy_sink():
    with patch('firesearch.cli.ElasticsearchSink') as sink_cls:
        sink = sink_cls.return_value
        sink.health_check = AsyncMock(return_value={
            "status": "healthy", "cluster_status": "green", "url": "http://es.test:9200"
        })
        sink.close = AsyncMock()
        yield sink


class TestMain:

    def test_help(self, runner):
        result = runner.invoke(main, ['--help'])

        assert result.exit_code == 0
        for command in ("run", "references", "status", "cleanup"):
            assert command in result.output

    def test_version(self, runner):
        result = runner.invoke(main, ['--version'])

        assert result.exit_code == 0
        assert "1.0.0" in result.output


class TestReferencesCommand:

    def test_lists_default_catalog(self, runner, config_file):
        result = runner.invoke(main, ['references', '--config', str(config_file)])

        assert result.exit_code == 0
        assert "emails" in result.output
        assert "transform" in result.output

    def test_bad_catalog(self, runner, tmp_path):
        config_file = tmp_path / "firesearch.json"
        config_file.write_text(json.dumps({"references": "no_such_catalog:REFERENCES"}))

        result = runner.invoke(main, ['references', '--config', str(config_file)])

        assert result.exit_code == 1
        assert "Cannot import reference catalog" in result.output

    def test_bad_config(self, runner, tmp_path):
        config_file = tmp_path / "firesearch.json"
        config_file.write_text("{broken")

        result = runner.invoke(main, ['references', '--config', str(config_file)])

        assert result.exit_code == 1
        assert "Failed to load config" in result.output


class TestStatusCommand:

    def test_healthy(self, runner, config_file, healthy_sink):
        result = runner.invoke(main, ['status', '--config', str(config_file)])

        assert result.exit_code == 0
        assert "Connected" in result.output
        assert "Query Bridge" in result.output
        healthy_sink.close.assert_awaited_once()

    def test_unhealthy(self, runner, config_file, healthy_sink):
        healthy_sink.health_check.return_value = {
            "status": "unhealthy", "error": "Connection refused", "url": "http://es.test:9200"
        }

        result = runner.invoke(main, ['status', '--config', str(config_file)])

        assert result.exit_code == 1
        assert "Not available" in result.output


class TestRunCommand:

    def test_run_starts_engine(self, runner, config_file):
        with patch('firesearch.cli._run_engine', new_callable=AsyncMock) as run_engine, \
             patch('firesearch.cli.setup_logging'):
            result = runner.invoke(main, ['run', '--config', str(config_file)])

        assert result.exit_code == 0
        config, references, enable_bridge = run_engine.await_args.args
        assert config.elasticsearch.url == "http://es.test:9200"
        assert [r.collection for r in references] == ["emails"]
        assert enable_bridge is True

    def test_run_without_query_bridge(self, runner, config_file):
        with patch('firesearch.cli._run_engine', new_callable=AsyncMock) as run_engine, \
             patch('firesearch.cli.setup_logging'):
            result = runner.invoke(main, ['run', '--config', str(config_file), '--no-query-bridge'])

        assert result.exit_code == 0
        assert run_engine.await_args.args[2] is False

    def test_run_failure(self, runner, config_file):
        with patch('firesearch.cli._run_engine', new_callable=AsyncMock, side_effect=RuntimeError("boom")), \
             patch('firesearch.cli.setup_logging'):
            result = runner.invoke(main, ['run', '--config', str(config_file)])

        assert result.exit_code == 1
        assert "Replication failed: boom" in result.output


class TestCleanupCommand:

    def test_cleanup(self, runner, config_file):
        with patch('firesearch.cli.FirestoreChangeFeed') as feed_cls, \
             patch('firesearch.cli.ElasticsearchSink') as sink_cls, \
             patch('firesearch.cli.QueryBridge') as bridge_cls, \
             patch('firesearch.cli.setup_logging'):
            sink_cls.return_value.close = AsyncMock()
            bridge_cls.return_value.cleanup = AsyncMock(return_value=3)

            result = runner.invoke(main, ['cleanup', '--config', str(config_file)])

        assert result.exit_code == 0
        assert "Removed 3 answered requests" in result.output
        feed_cls.return_value.close.assert_called_once_with()

    def test_cleanup_failure(self, runner, config_file):
        with patch('firesearch.cli.FirestoreChangeFeed'), \
             patch('firesearch.cli.ElasticsearchSink') as sink_cls, \
             patch('firesearch.cli.QueryBridge') as bridge_cls, \
             patch('firesearch.cli.setup_logging'):
            sink_cls.return_value.close = AsyncMock()
            bridge_cls.return_value.cleanup = AsyncMock(side_effect=RuntimeError("permission denied"))

            result = runner.invoke(main, ['cleanup', '--config', str(config_file)])

        assert result.exit_code == 1
        assert "Cleanup failed" in result.output


class TestRunEngine:

    @pytest.mark.asyncio
    async def test_engine_stopped_and_clients_closed(self):
        from core.models.config import ReplicationConfig

        engine = Mock()
        engine.start = AsyncMock(side_effect=RuntimeError("start failed"))
        engine.stop = AsyncMock()

        with patch('firesearch.cli.FirestoreChangeFeed') as feed_cls, \
             patch('firesearch.cli.ElasticsearchSink') as sink_cls, \
             patch('firesearch.cli.ReplicationEngine', return_value=engine):
            sink_cls.return_value.close = AsyncMock()

            with pytest.raises(RuntimeError, match="start failed"):
                await _run_engine(ReplicationConfig(), [], True)

        engine.stop.assert_awaited_once()
        sink_cls.return_value.close.assert_awaited_once()
        feed_cls.return_value.close.assert_called_once_with()


class TestSetupLogging:

    def test_console_handler(self):
        with patch('logging.basicConfig') as basic_config:
            setup_logging("DEBUG")

        kwargs = basic_config.call_args.kwargs
        assert kwargs["level"] == "DEBUG"
        assert kwargs["force"] is True
        assert [type(h).__name__ for h in kwargs["handlers"]] == ["RichHandler"]

    def test_file_handler(self, tmp_path):
        log_file = tmp_path / "firesearch.log"

        with patch('logging.basicConfig') as basic_config:
            setup_logging("INFO", log_file)

        handlers = basic_config.call_args.kwargs["handlers"]
        assert isinstance(handlers[1], logging.FileHandler)
        assert handlers[1].baseFilename == str(log_file)
        handlers[1].close()
