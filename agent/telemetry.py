"""Telemetry and metrics logging for agent runs."""

from __future__ import annotations

from dataclasses import dataclass, asdict
from datetime import datetime, timezone
import json
import os
import threading
import time
from typing import Any

from agent.config import TelemetryConfig


@dataclass
class ProviderCallMetric:
    """Metrics for a single provider call."""
    provider: str
    model: str
    flavor: str
    latency_ms: float
    tool_calls: int
    error: str | None = None


@dataclass
class ToolCallMetric:
    """Metrics for a single tool call."""
    tool_name: str
    args: dict
    duration_ms: float
    success: bool
    result_summary: str
    error: str | None = None


@dataclass
class LoopIterationMetric:
    """Metrics for a single agent loop round."""
    iteration: int
    decision: str
    duration_ms: float


@dataclass
class RunMetrics:
    """Session-level metrics summary."""
    session_id: str
    total_iterations: int
    tool_calls: list[ToolCallMetric]
    provider_calls: list[ProviderCallMetric]
    total_duration_ms: float
    outcome: str


class Telemetry:
    """Capture structured telemetry for a session."""

    def __init__(self, config: TelemetryConfig, session_id: str):
        self.config = config
        self.session_id = session_id
        self._lock = threading.Lock()
        self._start_time = time.monotonic()
        self._provider_calls: list[ProviderCallMetric] = []
        self._tool_calls: list[ToolCallMetric] = []
        self._loop_iterations: list[LoopIterationMetric] = []
        self._total_iterations = 0
        self._outcome = ""
        self._log_path: str | None = None
        self._tracer = None

        if self.config.enabled:
            os.makedirs(self.config.log_dir, exist_ok=True)
            self._log_path = os.path.join(self.config.log_dir, f"{session_id}.jsonl")
            if self.config.otel_enabled:
                self._setup_otel()

    def record_provider_call(
        self,
        provider: str,
        model: str,
        flavor: str,
        latency_ms: float,
        tool_calls: int,
        error: str | None = None,
    ) -> None:
        """Record a provider call metric."""
        if not self.config.enabled:
            return
        metric = ProviderCallMetric(
            provider=provider,
            model=model,
            flavor=flavor,
            latency_ms=latency_ms,
            tool_calls=tool_calls,
            error=error,
        )
        self._provider_calls.append(metric)
        self._log_event("provider_call", asdict(metric))
        self._emit_span("provider_call", asdict(metric))

    def record_tool_call(
        self,
        tool_name: str,
        args: dict,
        duration_ms: float,
        success: bool,
        result_summary: str,
        error: str | None = None,
    ) -> None:
        """Record a tool call metric."""
        if not self.config.enabled:
            return
        metric = ToolCallMetric(
            tool_name=tool_name,
            args=args,
            duration_ms=duration_ms,
            success=success,
            result_summary=result_summary,
            error=error,
        )
        self._tool_calls.append(metric)
        self._log_event("tool_call", asdict(metric))
        self._emit_span("tool_call", {**asdict(metric), "args": json.dumps(args, default=str)})

    def record_iteration(self, iteration: int, decision: str, duration_ms: float) -> None:
        """Record an agent loop round."""
        if not self.config.enabled:
            return
        metric = LoopIterationMetric(
            iteration=iteration,
            decision=decision,
            duration_ms=duration_ms,
        )
        self._total_iterations += 1
        self._loop_iterations.append(metric)
        self._log_event("loop_iteration", asdict(metric))

    def finalize(self, outcome: str) -> None:
        """Finalize run metrics with how the run ended."""
        if not self.config.enabled:
            return
        self._outcome = outcome
        self._log_event("run_summary", self.summary_dict())

    def summary(self) -> RunMetrics:
        """Return a session-level metrics summary."""
        total_duration_ms = (time.monotonic() - self._start_time) * 1000
        return RunMetrics(
            session_id=self.session_id,
            total_iterations=self._total_iterations,
            tool_calls=list(self._tool_calls),
            provider_calls=list(self._provider_calls),
            total_duration_ms=total_duration_ms,
            outcome=self._outcome,
        )

    def summary_dict(self) -> dict[str, Any]:
        """Return a JSON-serializable summary."""
        summary = self.summary()
        return {
            "session_id": summary.session_id,
            "total_iterations": summary.total_iterations,
            "tool_calls": [asdict(m) for m in summary.tool_calls],
            "provider_calls": [asdict(m) for m in summary.provider_calls],
            "total_duration_ms": summary.total_duration_ms,
            "outcome": summary.outcome,
        }

    def _log_event(self, event_type: str, payload: dict[str, Any]) -> None:
        if not self.config.enabled or not self._log_path:
            return
        record = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "session_id": self.session_id,
            "event": event_type,
            **payload,
        }
        line = json.dumps(record, default=str)
        with self._lock:
            with open(self._log_path, "a", encoding="utf-8") as f:
                f.write(line + "\n")

    def _emit_span(self, name: str, attributes: dict[str, Any]) -> None:
        if not self._tracer:
            return
        try:
            with self._tracer.start_as_current_span(name) as span:
                for key, value in attributes.items():
                    if value is None:
                        continue
                    span.set_attribute(key, value)
        except Exception:
            return

    def _setup_otel(self) -> None:
        try:
            from opentelemetry import trace
            from opentelemetry.sdk.resources import Resource
            from opentelemetry.sdk.trace import TracerProvider
            from opentelemetry.sdk.trace.export import BatchSpanProcessor
            try:
                from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
            except Exception:
                OTLPSpanExporter = None

            resource = Resource.create({"service.name": self.config.otel_service_name})
            provider = TracerProvider(resource=resource)
            if OTLPSpanExporter and self.config.otel_endpoint:
                exporter = OTLPSpanExporter(endpoint=self.config.otel_endpoint)
                provider.add_span_processor(BatchSpanProcessor(exporter))

            trace.set_tracer_provider(provider)
            self._tracer = trace.get_tracer(__name__)
        except Exception:
            self._tracer = None
            self._log_event(
                "telemetry_warning",
                {"message": "OpenTelemetry not available or failed to initialize."},
            )
