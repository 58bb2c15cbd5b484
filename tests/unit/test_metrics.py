"""Unit tests for metrics, configuration and structured logging."""

import logging

import pytest
from pydantic import ValidationError

from server.config import SurroundSyncConfig
from server.logging_config import StructuredFormatter
from server.metrics import LatencyHistogram, RelayMetrics


def test_latency_histogram_percentiles():
    histogram = LatencyHistogram(window=100)
    for value in range(1, 101):
        histogram.record(float(value))

    stats = histogram.get_stats()
    assert stats["samples"] == 100
    assert stats["avg"] == pytest.approx(50.5)
    assert stats["p50"] == pytest.approx(50.5)
    assert stats["p99"] > stats["p95"] > stats["p50"]


def test_latency_histogram_is_bounded():
    histogram = LatencyHistogram(window=10)
    for value in range(50):
        histogram.record(float(value))
    stats = histogram.get_stats()
    assert stats["samples"] == 10
    assert stats["max"] == 49.0
    assert histogram.total_recorded == 50


def test_empty_histogram():
    assert LatencyHistogram().get_stats()["samples"] == 0


def test_relay_metrics_snapshot():
    metrics = RelayMetrics()
    metrics.increment_relayed(3)
    metrics.increment_relayed(2)
    metrics.increment_malformed_message()
    metrics.increment_send_failure()
    metrics.increment_buffer_underrun()
    metrics.increment_disconnect()
    metrics.record_stream_latency(42.0)

    snapshot = metrics.get_snapshot()

    assert snapshot["messages_relayed"] == 2
    assert snapshot["deliveries"] == 5
    assert snapshot["malformed_messages"] == 1
    assert snapshot["send_failures"] == 1
    assert snapshot["buffer_underruns"] == 1
    assert snapshot["disconnects"] == 1
    assert snapshot["stream_latency_ms"]["avg"] == pytest.approx(42.0)
    assert snapshot["memory_usage_mb"] > 0


def test_structured_formatter_renders_context():
    record = logging.LogRecord("server.relay", logging.INFO, __file__, 1, "joined", None, None)
    record.room_id = "room-1"
    record.session_id = "session_0"

    line = StructuredFormatter().format(record)

    assert "level=INFO" in line
    assert "message=joined" in line
    assert "room_id=room-1" in line
    assert "session_id=session_0" in line
    assert "device_id" not in line


class TestConfig:
    """Test environment-driven configuration."""

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("SURROUND_ROOM_TTL_HOURS", raising=False)
        config = SurroundSyncConfig(_env_file=None)

        assert config.room_ttl_hours == 24
        assert config.sync_lead_ms == 100.0
        assert config.jitter_lookahead_ms == 50.0
        assert config.default_volume == 75

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("SURROUND_ROOM_TTL_HOURS", "2")
        monkeypatch.setenv("SURROUND_SYNC_LEAD_MS", "250")

        config = SurroundSyncConfig(_env_file=None)

        assert config.room_ttl_hours == 2
        assert config.sync_lead_ms == 250.0

    def test_invalid_values_rejected(self, monkeypatch):
        monkeypatch.setenv("SURROUND_PORT", "80")
        with pytest.raises(ValidationError):
            SurroundSyncConfig(_env_file=None)
