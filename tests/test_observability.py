"""Tests for logging bootstrap, tracing helpers and metrics wiring."""

from __future__ import annotations

import json
import logging

import pytest
from prometheus_client import REGISTRY
from pythonjsonlogger.json import JsonFormatter

from chatgate.configs.system import LoggingConfig, SuppressionConfig, TracingConfig
from chatgate.core.admission import EchoSuppressor, InboundMessageEvent
from chatgate.infra.logging import setup_logging
from chatgate.infra.telemetry import get_current_trace_id, init_telemetry
from chatgate.infra.tokens import estimate_prompt_tokens, estimate_tokens


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield root
    root.handlers = handlers
    root.setLevel(level)


# =========================================================================
# Logging
# =========================================================================


class TestSetupLogging:
    def test_json_output(self, restore_root_logger):
        setup_logging(LoggingConfig(level="debug", json_output=True))
        handler = restore_root_logger.handlers[0]
        assert isinstance(handler.formatter, JsonFormatter)
        assert restore_root_logger.level == logging.DEBUG

        record = logging.LogRecord(
            "chatgate.test", logging.INFO, __file__, 1, "hello %s", ("world",), None
        )
        handler.filter(record)
        payload = json.loads(handler.format(record))
        assert payload["message"] == "hello world"
        assert payload["level"] == "INFO"
        assert payload["logger"] == "chatgate.test"
        assert payload["trace_id"] == ""

    def test_plain_output(self, restore_root_logger):
        setup_logging(LoggingConfig(json_output=False))
        handler = restore_root_logger.handlers[0]
        assert not isinstance(handler.formatter, JsonFormatter)
        assert logging.getLogger("httpx").level == logging.WARNING


# =========================================================================
# Tracing
# =========================================================================


class TestTelemetry:
    def test_disabled_is_noop(self, caplog):
        caplog.set_level(logging.INFO, logger="chatgate.infra.telemetry")
        init_telemetry(TracingConfig(enabled=False))
        assert "tracing disabled" in caplog.text

    def test_enabled_without_endpoint_skips(self, caplog):
        init_telemetry(TracingConfig(enabled=True, endpoint=""))
        assert "no endpoint configured" in caplog.text

    def test_no_trace_id_outside_span(self):
        assert get_current_trace_id() is None


# =========================================================================
# Metrics and tokens
# =========================================================================


class TestMetrics:
    @pytest.mark.asyncio
    async def test_admission_counter_incremented(self):
        labels = {"verdict": "self_echo"}
        before = (
            REGISTRY.get_sample_value("chatgate_admission_decisions_total", labels) or 0
        )
        suppressor = EchoSuppressor(SuppressionConfig(startup_grace=0))
        await suppressor.classify(
            InboundMessageEvent(id="m1", conversation_key="c1", is_self_originated=True)
        )
        after = REGISTRY.get_sample_value("chatgate_admission_decisions_total", labels)
        assert after == before + 1


class TestTokens:
    def test_estimate_tokens(self):
        assert estimate_tokens("") == 1
        assert estimate_tokens("a" * 300) == 100

    def test_estimate_prompt_tokens_skips_empty(self):
        assert estimate_prompt_tokens(["a" * 30, "", "b" * 3]) == 11
