"""OpenTelemetry traces and metrics for forge.

OTLP export is enabled with ``OTLP_ENABLED=true`` plus an endpoint; otherwise
in-process SDK providers are installed and nothing leaves the process.
"""

import logging
import os

from opentelemetry import metrics, trace
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.trace import TracerProvider

from forge.config import ForgeConfig

logger = logging.getLogger(__name__)

# Keep collector connection noise out of CLI output
logging.getLogger("opentelemetry.exporter.otlp.proto.grpc").setLevel(logging.ERROR)

# Set by create_metrics; None until then so recording is a no-op in tests
tasks_counter: metrics.Counter | None = None
executions_counter: metrics.Counter | None = None
git_hooks_counter: metrics.Counter | None = None
task_duration: metrics.Histogram | None = None


def setup_telemetry(config: ForgeConfig) -> tuple[trace.Tracer, metrics.Meter]:
    """Install tracer and meter providers.

    Args:
        config: Configuration carrying the OTLP endpoint and service name

    Returns:
        Tuple of (tracer, meter)
    """
    otlp_enabled = os.getenv("OTLP_ENABLED", "false").lower() == "true"

    if otlp_enabled and config.otlp_endpoint:
        from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import (
            OTLPMetricExporter,
        )
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import (
            OTLPSpanExporter,
        )
        from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
        from opentelemetry.sdk.trace.export import BatchSpanProcessor

        trace_provider = TracerProvider()
        trace_provider.add_span_processor(
            BatchSpanProcessor(OTLPSpanExporter(endpoint=config.otlp_endpoint))
        )
        trace.set_tracer_provider(trace_provider)

        reader = PeriodicExportingMetricReader(
            OTLPMetricExporter(endpoint=config.otlp_endpoint)
        )
        metrics.set_meter_provider(MeterProvider(metric_readers=[reader]))
        logger.debug(f"OTLP export enabled: {config.otlp_endpoint}")
    else:
        trace.set_tracer_provider(TracerProvider())
        metrics.set_meter_provider(MeterProvider())

    return trace.get_tracer(config.service_name), metrics.get_meter(
        config.service_name
    )


def create_metrics(meter: metrics.Meter) -> None:
    """Create the forge metric instruments on *meter*."""
    global tasks_counter, executions_counter, git_hooks_counter, task_duration

    tasks_counter = meter.create_counter(
        "forge_tasks_total",
        description="Tasks run by the execution runner, by status",
    )
    executions_counter = meter.create_counter(
        "forge_executions_total",
        description="Executions reaching a final or paused state, by status",
    )
    git_hooks_counter = meter.create_counter(
        "forge_git_hooks_total",
        description="Git hook runs, by result",
    )
    task_duration = meter.create_histogram(
        "forge_task_duration_seconds",
        description="Agent task duration",
        unit="s",
    )


def record_task(status: str, duration_seconds: float | None = None) -> None:
    if tasks_counter is not None:
        tasks_counter.add(1, {"status": status})
    if task_duration is not None and duration_seconds is not None:
        task_duration.record(duration_seconds, {"status": status})


def record_execution(status: str) -> None:
    if executions_counter is not None:
        executions_counter.add(1, {"status": status})


def record_git_hook(hook_name: str, result: str) -> None:
    if git_hooks_counter is not None:
        git_hooks_counter.add(1, {"hook": hook_name, "result": result})
