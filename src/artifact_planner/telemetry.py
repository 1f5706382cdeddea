# telemetry.py
# Best-effort tracing around model calls.
#
# Tracers are notified, never relied on. Every call into a tracer goes
# through notify(); a tracer that raises is logged and ignored so it can
# never change the outcome of propose/refine.

import contextlib
import json
import logging
import os
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Iterator, Protocol

logger = logging.getLogger(__name__)


@dataclass
class GenerationRecord:
    name: str
    model: str
    input: dict[str, Any]
    output: str
    start_time: float
    end_time: float
    usage: dict[str, Any] | None = None
    model_parameters: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)


class Tracer(Protocol):
    def span_start(self, name: str, attributes: dict[str, Any]) -> None:
        ...

    def span_end(self, name: str, attributes: dict[str, Any]) -> None:
        ...

    def record_generation(self, record: GenerationRecord) -> None:
        ...


class NoopTracer:
    def span_start(self, name: str, attributes: dict[str, Any]) -> None:
        return None

    def span_end(self, name: str, attributes: dict[str, Any]) -> None:
        return None

    def record_generation(self, record: GenerationRecord) -> None:
        return None


class LoggingTracer:
    def __init__(self, logger_name: str = "artifact_planner.trace") -> None:
        self._log = logging.getLogger(logger_name)

    def span_start(self, name: str, attributes: dict[str, Any]) -> None:
        self._log.info("span_start %s %s", name, attributes)

    def span_end(self, name: str, attributes: dict[str, Any]) -> None:
        self._log.info(
            "span_end %s status=%s duration=%.3fs",
            name,
            attributes.get("status", "ok"),
            attributes.get("duration_s", 0.0),
        )

    def record_generation(self, record: GenerationRecord) -> None:
        self._log.info(
            "generation %s model=%s latency=%.3fs usage=%s",
            record.name,
            record.model,
            record.end_time - record.start_time,
            record.usage,
        )


class JsonlTracer:
    """Appends one JSON object per event to `path`."""

    def __init__(self, path: str) -> None:
        self.path = path
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

    def _write(self, event: dict[str, Any]) -> None:
        with open(self.path, "a", encoding="utf-8") as handle:
            handle.write(json.dumps(event, ensure_ascii=True, default=str) + "\n")

    def span_start(self, name: str, attributes: dict[str, Any]) -> None:
        self._write({"event": "span_start", "name": name, "attributes": attributes, "timestamp": time.time()})

    def span_end(self, name: str, attributes: dict[str, Any]) -> None:
        self._write({"event": "span_end", "name": name, "attributes": attributes, "timestamp": time.time()})

    def record_generation(self, record: GenerationRecord) -> None:
        self._write({"event": "generation", **asdict(record)})


def tracer_from_config(config: Any) -> Tracer:
    """Pick a tracer from a config exposing `trace_mode` and `trace_path`."""
    mode = (config.trace_mode or "noop").lower()
    if mode == "jsonl":
        return JsonlTracer(config.trace_path)
    if mode == "log":
        return LoggingTracer()
    return NoopTracer()


# ---------------------------------------------------------------------------
# Guarded notification
# ---------------------------------------------------------------------------


def notify(callback: Callable[..., Any], *args: Any) -> None:
    try:
        callback(*args)
    except Exception:
        logger.warning("Telemetry callback %r failed", getattr(callback, "__name__", callback), exc_info=True)


@contextlib.contextmanager
def traced_span(tracer: Tracer, name: str, attributes: dict[str, Any] | None = None) -> Iterator[None]:
    """
    Wrap a block in span_start/span_end notifications.

    The block's own exceptions propagate unchanged; the closing span is
    marked status=error when that happens.
    """
    attributes = dict(attributes or {})
    start = time.monotonic()
    notify(tracer.span_start, name, attributes)
    status = "ok"
    try:
        yield
    except BaseException:
        status = "error"
        raise
    finally:
        notify(
            tracer.span_end,
            name,
            {**attributes, "status": status, "duration_s": round(time.monotonic() - start, 3)},
        )
