"""OpenTelemetry wiring for CopilotDash scans and analytics."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any

from copilotdash import config

logger = logging.getLogger("copilotdash.observability")


_initialized = False
_enabled = False
_tracer: Any | None = None
_trace_provider: Any | None = None
_meter_provider: Any | None = None

_scan_counter: Any | None = None
_scan_latency_hist: Any | None = None
_scanned_files_counter: Any | None = None
_ingestion_counter: Any | None = None
_parser_failure_counter: Any | None = None


def _normalize_otlp_endpoint(base_endpoint: str, signal_path: str) -> str:
    endpoint = (base_endpoint or "").strip()
    if not endpoint:
        return ""
    if endpoint.endswith(signal_path):
        return endpoint
    if endpoint.endswith("/"):
        endpoint = endpoint[:-1]
    if endpoint.endswith("/v1"):
        return f"{endpoint}{signal_path[3:]}"
    return f"{endpoint}{signal_path}"


def is_enabled() -> bool:
    return _enabled


def initialize() -> None:
    global _initialized, _enabled, _tracer, _trace_provider, _meter_provider
    global _scan_counter, _scan_latency_hist, _scanned_files_counter
    global _ingestion_counter, _parser_failure_counter

    if _initialized:
        return

    _initialized = True

    if not config.OTEL_ENABLED:
        logger.info("OpenTelemetry disabled (COPILOTDASH_OTEL_ENABLED=false)")
        return

    try:
        from opentelemetry import metrics, trace
        from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
        from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
        from opentelemetry.sdk.metrics import MeterProvider
        from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor
    except ImportError as exc:
        logger.warning("OpenTelemetry dependencies unavailable: %s", exc)
        return

    traces_endpoint = _normalize_otlp_endpoint(config.OTEL_ENDPOINT, "/v1/traces")
    metrics_endpoint = _normalize_otlp_endpoint(config.OTEL_ENDPOINT, "/v1/metrics")
    service_name = config.OTEL_SERVICE_NAME or "copilotdash"

    resource = Resource.create(
        {
            "service.name": service_name,
            "service.namespace": "copilotdash",
        }
    )

    trace_provider = TracerProvider(resource=resource)
    trace_provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=traces_endpoint or None)))
    trace.set_tracer_provider(trace_provider)

    metric_reader = PeriodicExportingMetricReader(
        OTLPMetricExporter(endpoint=metrics_endpoint or None)
    )
    meter_provider = MeterProvider(resource=resource, metric_readers=[metric_reader])
    metrics.set_meter_provider(meter_provider)
    meter = metrics.get_meter("copilotdash")

    _scan_counter = meter.create_counter(
        "copilotdash_scans_total",
        unit="1",
        description="Full transcript scans by outcome",
    )
    _scan_latency_hist = meter.create_histogram(
        "copilotdash_scan_duration_ms",
        unit="ms",
        description="Wall time of full transcript scans",
    )
    _scanned_files_counter = meter.create_counter(
        "copilotdash_scanned_files_total",
        unit="1",
        description="Transcript files parsed by full scans",
    )
    _ingestion_counter = meter.create_counter(
        "copilotdash_ingested_events_total",
        unit="1",
        description="Usage events produced from transcripts",
    )
    _parser_failure_counter = meter.create_counter(
        "copilotdash_parser_failures_total",
        unit="1",
        description="Transcript files rejected by the parser",
    )

    _trace_provider = trace_provider
    _meter_provider = meter_provider
    _tracer = trace.get_tracer("copilotdash")
    _enabled = True

    logger.info(
        "OpenTelemetry initialized (service=%s endpoint=%s)",
        service_name,
        config.OTEL_ENDPOINT,
    )


def shutdown() -> None:
    global _enabled
    if not _initialized:
        return
    for provider in (_meter_provider, _trace_provider):
        if provider is None:
            continue
        try:
            provider.shutdown()
        except Exception as exc:  # noqa: BLE001
            logger.debug("OpenTelemetry provider shutdown failed: %s", exc)
    _enabled = False


@contextmanager
def start_span(name: str, attributes: dict[str, Any] | None = None):
    if not _enabled or _tracer is None:
        yield None
        return
    with _tracer.start_as_current_span(name) as span:
        if attributes:
            for key, value in attributes.items():
                if value is not None:
                    span.set_attribute(key, value)
        yield span


def record_scan(result: str, duration_ms: float, file_count: int) -> None:
    labels = {"result": result or "unknown"}
    if _enabled and _scan_counter is not None:
        _scan_counter.add(1, labels)
    if _enabled and _scan_latency_hist is not None:
        _scan_latency_hist.record(max(0.0, float(duration_ms)), labels)
    if _enabled and _scanned_files_counter is not None and file_count > 0:
        _scanned_files_counter.add(int(file_count), labels)


def record_ingestion(source: str, event_count: int) -> None:
    if not _enabled or _ingestion_counter is None or event_count <= 0:
        return
    _ingestion_counter.add(int(event_count), {"source": source or "unknown"})


def record_parser_failure(parser: str) -> None:
    if _enabled and _parser_failure_counter is not None:
        _parser_failure_counter.add(1, {"parser": parser or "unknown"})
