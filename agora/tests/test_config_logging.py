"""Tests for configuration, structured logging, errors, counters and tracing."""

import json
import logging
from types import SimpleNamespace

import pytest

from agora.core import tracing
from agora.core.config import Settings, validate_config
from agora.core.errors import ContentRejected, StructuralInputError, ValidationFailed
from agora.core.logging import JsonFormatter, RequestIdFilter, log_event, request_id_ctx_var
from agora.core.metrics import METRICS, validation_rejections_total
from agora.features.community.scoring import rank_feed
from agora.models.community import UserContext, ValidationIssue


def make_settings(**overrides):
    defaults = dict(
        CONFIG_STRICT=False,
        GROQ_API_KEY="gsk_test",
        POST_MIN_CHARS=1,
        POST_MAX_CHARS=2000,
        DISPLAY_NAME_MIN_CHARS=2,
        DISPLAY_NAME_MAX_CHARS=40,
        FEED_RECENCY_BIAS_SECONDS=21600,
    )
    defaults.update(overrides)
    return SimpleNamespace(**defaults)


class TestConfig:
    """Settings defaults and validation."""

    def test_documented_defaults(self):
        cfg = Settings(_env_file=None)
        assert cfg.POST_MAX_CHARS == 2000
        assert cfg.EXCERPT_MAX_CHARS == 280
        assert cfg.FEED_RECENCY_BIAS_SECONDS == 21600
        assert cfg.FEED_ENGAGEMENT_CAP == 100

    def test_valid_config_passes(self):
        assert validate_config(settings_obj=make_settings())

    def test_missing_key_warns_without_leaking(self, caplog):
        with caplog.at_level(logging.WARNING, logger="agora"):
            assert validate_config(settings_obj=make_settings(GROQ_API_KEY=None))
        assert "GROQ_API_KEY" in caplog.text

    def test_missing_key_strict_fails(self):
        with pytest.raises(RuntimeError):
            validate_config(strict=True, settings_obj=make_settings(GROQ_API_KEY=None))

    def test_invalid_ranges_fail(self):
        with pytest.raises(RuntimeError):
            validate_config(settings_obj=make_settings(POST_MAX_CHARS=0))
        with pytest.raises(RuntimeError):
            validate_config(settings_obj=make_settings(FEED_RECENCY_BIAS_SECONDS=0))


class TestStructuredLogging:
    """log_event produces route/metadata records correlated by request id."""

    def test_log_event_fields(self, caplog):
        token = request_id_ctx_var.set("req-123")
        try:
            with caplog.at_level(logging.INFO, logger="agora"):
                log_event(
                    "info",
                    "community.test_event",
                    route="community/test",
                    event_type="test",
                    error_code="too_long",
                    extra={"count": 3},
                )
        finally:
            request_id_ctx_var.reset(token)
        record = next(r for r in caplog.records if r.getMessage() == "community.test_event")
        assert record.route == "community/test"
        assert record.request_id == "req-123"
        assert record.metadata == {"count": "3"}

    def test_metadata_values_truncated(self, caplog):
        with caplog.at_level(logging.INFO, logger="agora"):
            log_event("info", "community.long", route="community/test", extra={"blob": "x" * 500})
        record = next(r for r in caplog.records if r.getMessage() == "community.long")
        assert record.metadata["blob"].endswith("...<truncated>")
        assert len(record.metadata["blob"]) < 250

    def test_json_formatter(self):
        record = logging.LogRecord("agora.community", logging.INFO, __file__, 1, "community.x", None, None)
        record.route = "community/scoring"
        record.metadata = {"ranked": "4"}
        RequestIdFilter().filter(record)
        payload = json.loads(JsonFormatter().format(record))
        assert payload["route"] == "community/scoring"
        assert payload["metadata"] == {"ranked": "4"}
        assert payload["level"] == "INFO"


class TestErrors:
    """Error payloads for the transport layer."""

    def test_content_rejected_payload(self):
        err = ContentRejected("Content cannot be shared", reasons=[ValidationIssue(code="profanity", message="m")])
        assert isinstance(err, ValidationFailed)
        assert err.status_code == 422
        assert err.to_dict() == {
            "code": "content_rejected",
            "message": "Content cannot be shared",
            "reasons": [{"code": "profanity", "message": "m"}],
        }

    def test_structural_error_is_value_error(self):
        err = StructuralInputError("bad record")
        assert isinstance(err, ValueError)
        assert err.to_dict()["code"] == "structural_input_error"


class TestCountersAndTracing:
    """Counters export in Prometheus text; ranking emits a span when enabled."""

    def test_prometheus_export(self):
        validation_rejections_total.inc({"reason": "pii_email"})
        text = METRICS.export_prometheus()
        assert "# TYPE community_validation_rejections_total counter" in text
        assert 'community_validation_rejections_total{reason="pii_email"} 1.0' in text

    def test_rank_feed_span(self, make_post, now):
        tracing.setup_tracing(enabled=True, exporter_name="memory")
        try:
            rank_feed([make_post("p1")], UserContext(viewer_id="v"), now)
            names = [span.name for span in tracing.get_exported_spans()]
            assert "community.rank_feed" in names
        finally:
            tracing.reset_exported_spans()
            tracing.setup_tracing(enabled=False)
