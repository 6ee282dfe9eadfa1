import logging
import os
import uuid
from contextlib import contextmanager
from contextvars import ContextVar, Token
from typing import Iterator, Optional


TRACE_HEADER = "X-Request-Id"
MAX_TRACE_ID_LEN = 128
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s trace_id=%(trace_id)s %(message)s"

_trace_id_var: ContextVar[str] = ContextVar("chatsift_trace_id", default="-")

access_logger = logging.getLogger("chatsift.access")
search_logger = logging.getLogger("chatsift.search")


def get_trace_id() -> str:
    return _trace_id_var.get()


def set_trace_id(trace_id: str) -> Token[str]:
    return _trace_id_var.set(trace_id)


def reset_trace_id(token: Token[str]) -> None:
    _trace_id_var.reset(token)


def new_trace_id() -> str:
    return uuid.uuid4().hex


def sanitize_trace_id(raw: Optional[str]) -> str:
    """Accepts a caller-supplied id only if it is short and printable."""
    if raw and len(raw) <= MAX_TRACE_ID_LEN and raw.isprintable() and " " not in raw:
        return raw
    return new_trace_id()


@contextmanager
def request_trace(raw: Optional[str]) -> Iterator[str]:
    """Binds a trace id for the duration of one request and yields it."""
    trace_id = sanitize_trace_id(raw)
    token = set_trace_id(trace_id)
    try:
        yield trace_id
    finally:
        reset_trace_id(token)


class TraceIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.trace_id = get_trace_id()
        return True


def _level_from_env() -> int:
    name = (os.getenv("CHATSIFT_LOG_LEVEL") or os.getenv("LOG_LEVEL") or "INFO").upper()
    return getattr(logging, name, logging.INFO)


def setup_logging(level: Optional[int] = None) -> None:
    """
    Stamps every record with the current trace id.

    Existing stream handlers (uvicorn installs its own) get the filter added
    once; otherwise a single stream handler with ``LOG_FORMAT`` is installed.
    """
    root = logging.getLogger()
    root.setLevel(level if level is not None else _level_from_env())

    stream_handlers = [h for h in root.handlers if isinstance(h, logging.StreamHandler)]
    if stream_handlers:
        for handler in stream_handlers:
            if not any(isinstance(f, TraceIdFilter) for f in handler.filters):
                handler.addFilter(TraceIdFilter())
        return

    handler = logging.StreamHandler()
    handler.addFilter(TraceIdFilter())
    handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT))
    root.addHandler(handler)


def log_request(method: str, path: str, status_code: int, duration_ms: float) -> None:
    access_logger.info("%s %s -> %d (%.1f ms)", method, path, status_code, duration_ms)


def log_search(
    query: str,
    backend: str,
    total_matches: int,
    scanned_documents: int,
    duration_ms: float,
    timed_out: bool = False,
) -> None:
    # query text stays out of the log line, only its length
    level = logging.WARNING if timed_out else logging.INFO
    search_logger.log(
        level,
        "context search q_len=%d backend=%s matches=%d scanned=%d%s (%.1f ms)",
        len(query),
        backend,
        total_matches,
        scanned_documents,
        " timed_out" if timed_out else "",
        duration_ms,
    )
