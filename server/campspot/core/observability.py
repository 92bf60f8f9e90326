"""Observability setup for OpenTelemetry, metrics, and structured logging."""

import logging

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest
import structlog

from .config import settings

# Prometheus metrics
REGISTRY = CollectorRegistry()

# Request metrics
REQUEST_COUNT = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'status_code'],
    registry=REGISTRY
)

REQUEST_DURATION = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint'],
    registry=REGISTRY
)

# Reservation metrics
RESERVATION_QUOTES = Counter(
    'reservation_quotes_total',
    'Candidate reservations validated',
    ['resource_type', 'outcome'],
    registry=REGISTRY
)

BOOKING_TRANSITIONS = Counter(
    'booking_transitions_total',
    'Booking status transitions applied',
    ['resource_type', 'status'],
    registry=REGISTRY
)

BOOKING_TRANSITIONS_REJECTED = Counter(
    'booking_transitions_rejected_total',
    'Booking status transitions refused by the lifecycle',
    ['resource_type', 'reason'],
    registry=REGISTRY
)

# Notification metrics
NOTIFICATION_DELIVERIES = Counter(
    'notification_deliveries_total',
    'Notification delivery attempts by channel and outcome',
    ['channel', 'outcome'],
    registry=REGISTRY
)

NOTIFICATION_HISTORY_SIZE = Gauge(
    'notification_history_size',
    'Events held in the bounded notification history',
    registry=REGISTRY
)

# Sync metrics
SYNC_REFRESHES = Counter(
    'sync_refreshes_total',
    'Snapshot refreshes by outcome',
    ['outcome'],
    registry=REGISTRY
)

SYNC_COALESCED = Counter(
    'sync_refresh_triggers_coalesced_total',
    'Refresh triggers folded into an in-flight refresh',
    registry=REGISTRY
)

OPTIMISTIC_ROLLBACKS = Counter(
    'sync_optimistic_rollbacks_total',
    'Optimistic booking updates rolled back',
    ['reason'],
    registry=REGISTRY
)


def setup_structured_logging():
    """Configure structured logging with structlog."""

    def add_trace_context(logger, method_name, event_dict):
        """Add trace context to log events."""
        span = trace.get_current_span()
        if span and span.is_recording():
            ctx = span.get_span_context()
            event_dict['trace_id'] = format(ctx.trace_id, '032x')
            event_dict['span_id'] = format(ctx.span_id, '016x')
        return event_dict

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            add_trace_context,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.ConsoleRenderer() if settings.debug else structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, settings.log_level)
        ),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def setup_tracing(app_name: str = "campspot-reservations"):
    """Setup OpenTelemetry tracing."""

    resource = Resource.create({
        "service.name": app_name,
        "service.version": "1.0.0",
        "environment": settings.environment,
    })

    provider = TracerProvider(resource=resource)

    # Export only when an OTLP endpoint is configured
    if settings.otlp_endpoint:
        otlp_exporter = OTLPSpanExporter(endpoint=settings.otlp_endpoint)
        provider.add_span_processor(BatchSpanProcessor(otlp_exporter))

    trace.set_tracer_provider(provider)
    return trace.get_tracer(__name__)


def instrument_fastapi(app):
    """Instrument FastAPI with OpenTelemetry."""
    FastAPIInstrumentor.instrument_app(app)


def instrument_sqlalchemy(engine):
    """Instrument SQLAlchemy with OpenTelemetry."""
    SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine)


def get_tracer(name: str):
    """Return a tracer; spans are no-ops until setup_tracing() runs."""
    return trace.get_tracer(name)


class MetricsCollector:
    """Collector for reservation-core metrics."""

    @staticmethod
    def record_quote(resource_type: str, conflicted: bool):
        """Record a validated candidate reservation."""
        outcome = "conflict" if conflicted else "clear"
        RESERVATION_QUOTES.labels(resource_type=resource_type, outcome=outcome).inc()

    @staticmethod
    def record_transition(resource_type: str, status: str):
        """Record an applied booking transition."""
        BOOKING_TRANSITIONS.labels(resource_type=resource_type, status=status).inc()

    @staticmethod
    def record_transition_rejected(resource_type: str, reason: str):
        """Record a transition refused as illegal or already in flight."""
        BOOKING_TRANSITIONS_REJECTED.labels(resource_type=resource_type, reason=reason).inc()

    @staticmethod
    def record_delivery(channel: str, success: bool):
        """Record one channel delivery attempt."""
        outcome = "delivered" if success else "failed"
        NOTIFICATION_DELIVERIES.labels(channel=channel, outcome=outcome).inc()

    @staticmethod
    def set_history_size(size: int):
        """Set the current notification history size."""
        NOTIFICATION_HISTORY_SIZE.set(size)

    @staticmethod
    def record_refresh(outcome: str):
        """Record a snapshot refresh outcome (applied, stale, failed, degraded, discarded)."""
        SYNC_REFRESHES.labels(outcome=outcome).inc()

    @staticmethod
    def record_coalesced():
        """Record a refresh trigger folded into an in-flight refresh."""
        SYNC_COALESCED.inc()

    @staticmethod
    def record_rollback(reason: str):
        """Record an optimistic update rollback."""
        OPTIMISTIC_ROLLBACKS.labels(reason=reason).inc()


def get_prometheus_metrics():
    """Get Prometheus metrics for the /metrics endpoint."""
    return generate_latest(REGISTRY)


# Stateless, safe to share
metrics_collector = MetricsCollector()


class StructuredLogger:
    """Structured logger with business context."""

    def __init__(self, name_or_logger):
        if isinstance(name_or_logger, str):
            self.logger = structlog.get_logger(name_or_logger)
        else:
            self.logger = name_or_logger

    def info(self, message: str, **kwargs):
        """Log info message with context."""
        self.logger.info(message, **kwargs)

    def warning(self, message: str, **kwargs):
        """Log warning message with context."""
        self.logger.warning(message, **kwargs)

    def error(self, message: str, **kwargs):
        """Log error message with context."""
        self.logger.error(message, **kwargs)

    def debug(self, message: str, **kwargs):
        """Log debug message with context."""
        self.logger.debug(message, **kwargs)

    def with_context(self, **kwargs):
        """Add context to logger."""
        return StructuredLogger(self.logger.bind(**kwargs))


def get_logger(name: str) -> StructuredLogger:
    """Get a structured logger instance."""
    return StructuredLogger(name)
