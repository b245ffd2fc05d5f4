import logging

from opentelemetry import trace

from .config import ServiceSettings


_TRACE_PLACEHOLDER = "-"
_LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | trace_id=%(trace_id)s span_id=%(span_id)s | %(message)s"


class TraceContextFilter(logging.Filter):
    """Stamp records with the active OpenTelemetry trace/span ids."""

    def filter(self, record: logging.LogRecord) -> bool:
        span_context = trace.get_current_span().get_span_context()
        if span_context.is_valid:
            record.trace_id = format(span_context.trace_id, "032x")
            record.span_id = format(span_context.span_id, "016x")
        else:
            record.trace_id = _TRACE_PLACEHOLDER
            record.span_id = _TRACE_PLACEHOLDER
        return True


def _has_trace_filter(filterer: logging.Filterer) -> bool:
    return any(isinstance(f, TraceContextFilter) for f in filterer.filters)


def configure_logging(settings: ServiceSettings) -> None:
    """Configure root logging level, format and trace correlation."""

    logging.basicConfig(level=settings.log_level, format=_LOG_FORMAT)
    root_logger = logging.getLogger()
    root_logger.setLevel(settings.log_level)
    context_filter = next(
        (f for f in root_logger.filters if isinstance(f, TraceContextFilter)),
        None,
    )
    if context_filter is None:
        context_filter = TraceContextFilter()
        root_logger.addFilter(context_filter)
    for handler in root_logger.handlers:
        if not _has_trace_filter(handler):
            handler.addFilter(context_filter)


def mask_endpoint(value: str, *, keep: int = 24) -> str:
    """Shorten a push endpoint or token for log output."""

    if len(value) <= keep:
        return value
    return f"{value[:keep]}..."
