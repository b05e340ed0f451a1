"""
Tracing Module Tests
====================
Tests for tracer setup and the span helpers used by the controller.
"""

from dataclasses import replace
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from opentelemetry.trace import StatusCode


class TestTracerSetup:
    @pytest.mark.unit
    def test_service_name_default(self):
        from formatbot.config import TRACING

        assert TRACING.SERVICE_NAME == "formatbot"

    @pytest.mark.unit
    @patch("formatbot.tracing.atexit")
    @patch("formatbot.tracing.TracerProvider")
    @patch("formatbot.tracing.OTLPSpanExporter")
    @patch("formatbot.tracing.BatchSpanProcessor")
    def test_build_tracer_provider_exports_to_endpoint(self, mock_processor, mock_exporter, mock_provider, mock_atexit):
        from formatbot.config import TRACING
        from formatbot.tracing import build_tracer_provider

        config = replace(TRACING, OTLP_ENDPOINT="http://collector:4318/v1/traces")
        provider = build_tracer_provider(config)

        assert provider is mock_provider.return_value
        mock_exporter.assert_called_once_with(endpoint="http://collector:4318/v1/traces")
        mock_processor.assert_called_once_with(mock_exporter.return_value)
        provider.add_span_processor.assert_called_once_with(mock_processor.return_value)
        mock_atexit.register.assert_called_once_with(provider.shutdown)

    @pytest.mark.unit
    def test_get_tracer_is_cached(self):
        import formatbot.tracing as tracing

        with patch.object(tracing, "_tracer", None):
            assert tracing.get_tracer() is tracing.get_tracer()

    @pytest.mark.unit
    def test_disabled_tracing_installs_no_provider(self):
        import formatbot.tracing as tracing
        from formatbot.config import TRACING

        config = replace(TRACING, ENABLED=False)
        with patch.object(tracing, "_tracer", None), patch.object(tracing, "build_tracer_provider") as build:
            tracing.get_tracer(config)

        build.assert_not_called()


class TestStepSpan:
    @pytest.mark.unit
    def test_step_span_names_and_tags_span(self):
        import formatbot.tracing as tracing

        tracer = MagicMock()
        span = MagicMock()
        tracer.start_as_current_span.return_value.__enter__.return_value = span

        with patch.object(tracing, "get_tracer", return_value=tracer):
            with tracing.step_span("publish", {"formatbot.branch": "develop"}) as got:
                assert got is span

        tracer.start_as_current_span.assert_called_once_with("formatbot.publish")
        span.set_attribute.assert_called_once_with("formatbot.branch", "develop")

    @pytest.mark.unit
    def test_step_span_propagates_errors(self):
        from formatbot.tracing import step_span

        with pytest.raises(RuntimeError):
            with step_span("normalize"):
                raise RuntimeError("boom")


class TestSpanAnnotation:
    @pytest.mark.unit
    def test_spans_without_setter_are_ignored(self):
        from formatbot.tracing import annotate_span

        class BareSpan:
            pass

        annotate_span(BareSpan(), {"k": "v"})
        annotate_span(None, {"k": "v"})

    @pytest.mark.unit
    def test_current_span_annotation_outside_a_span(self):
        from formatbot.tracing import annotate_current_span

        annotate_current_span({"k": "v", "n": 1, "flag": True})

    @pytest.mark.unit
    def test_none_values_are_skipped(self):
        from formatbot.tracing import annotate_span

        span = MagicMock()
        annotate_span(span, {"formatbot.failure_kind": None, "formatbot.status": "succeeded"})

        span.set_attribute.assert_called_once_with("formatbot.status", "succeeded")

    @pytest.mark.unit
    def test_long_strings_are_truncated(self):
        from formatbot.tracing import MAX_STRING_ATTRIBUTE, annotate_span

        span = MagicMock()
        annotate_span(span, {"long": "x" * 5000})

        args, _kwargs = span.set_attribute.call_args
        assert args[0] == "long"
        assert len(args[1]) == MAX_STRING_ATTRIBUTE

    @pytest.mark.unit
    def test_values_are_coerced_to_attribute_types(self):
        from formatbot.tracing import MAX_SEQUENCE_ITEMS, annotate_span

        span = MagicMock()
        annotate_span(
            span,
            {
                "path": Path("foo"),
                "nested": {"b": 1, "a": 2},
                "opaque": {"x": object()},
                "seq": [str(i) for i in range(40)],
                123: "ignored",
            },
        )

        got = {c.args[0]: c.args[1] for c in span.set_attribute.call_args_list}
        assert got["path"] == "foo"
        assert got["nested"] == '{"a": 2, "b": 1}'
        assert isinstance(got["opaque"], str)
        assert len(got["seq"]) == MAX_SEQUENCE_ITEMS
        assert 123 not in got

    @pytest.mark.unit
    def test_setter_errors_do_not_escape(self):
        from formatbot.tracing import annotate_span

        span = MagicMock()
        span.set_attribute.side_effect = [RuntimeError("exporter gone"), None]
        annotate_span(span, {"a": "1", "b": "2"})

        assert span.set_attribute.call_count == 2

    @pytest.mark.unit
    def test_mark_span_failed_sets_error_status(self):
        from formatbot.tracing import mark_span_failed

        span = MagicMock()
        mark_span_failed(span, "publish_rejected", "remote moved")

        span.set_attribute.assert_any_call("formatbot.failure_kind", "publish_rejected")
        span.set_attribute.assert_any_call("formatbot.error", "remote moved")
        (status,), _kwargs = span.set_status.call_args
        assert status.status_code == StatusCode.ERROR
        assert status.description == "publish_rejected: remote moved"
