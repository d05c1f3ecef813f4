# ======================================================================
# FILE: logs/logging_config.py
# DESCRIPTION: Unified logging setup for the ShopSupport session server.
# Rotating file handlers per area (chat, transport, ai, data), secret
# redaction, context loggers and operation timing helpers.
# ======================================================================
from __future__ import annotations

import logging, logging.handlers, os, json, traceback, re
from time import perf_counter
from pathlib import Path
from typing import Sequence, Optional, Dict, Any
from datetime import datetime, timezone
from contextlib import contextmanager

# ----------------------------------------------------------------------
# Directory & file paths
# ----------------------------------------------------------------------
# LOGS_BASE_DIR lets Docker and local runs point logs at an absolute path.
_env_logs_base = os.getenv("LOGS_BASE_DIR")
if _env_logs_base:
    LOGS_DIR = Path(_env_logs_base)
else:
    LOGS_DIR = Path(__file__).parent / "logs"
LOGS_DIR.mkdir(parents=True, exist_ok=True)

# When true, file contents are JSON lines; otherwise human-readable text.
LOGS_AS_JSON = os.getenv("LOGS_AS_JSON", "").lower() in ("1", "true", "yes", "on")

CHAT_LOG_FILE        = LOGS_DIR / "chat.log"
TRANSPORT_LOG_FILE   = LOGS_DIR / "transport.log"
AI_LOG_FILE          = LOGS_DIR / "ai.log"
DATA_LOG_FILE        = LOGS_DIR / "data.log"
ALL_APP_LOG_FILE     = LOGS_DIR / "all_shopsupport.log"
ERRORS_LOG_FILE      = LOGS_DIR / "errors.log"

ALL_LOG_FILES = (
    CHAT_LOG_FILE, TRANSPORT_LOG_FILE, AI_LOG_FILE,
    DATA_LOG_FILE, ALL_APP_LOG_FILE, ERRORS_LOG_FILE,
)

# Sensitive key substrings for redaction
_SENSITIVE_KEYS = {"api_key", "apikey", "authorization", "auth", "secret", "password", "token"}

def _redact(value: Any) -> Any:
    if value is None:
        return value
    if isinstance(value, str):
        if len(value) <= 8:
            return "***" if any(k in value.lower() for k in ["sk-", "key", "tok"]) else value
        return value[:4] + "***" + value[-4:]
    return value

def _maybe_redact_mapping(data: Dict[str, Any]) -> Dict[str, Any]:
    if not data:
        return data
    redacted = {}
    for k, v in data.items():
        if any(sens in k.lower() for sens in _SENSITIVE_KEYS):
            redacted[k] = _redact(v)
        elif isinstance(v, dict):
            redacted[k] = _maybe_redact_mapping(v)
        else:
            redacted[k] = v
    return redacted

_STANDARD_RECORD_KEYS = {
    "name", "msg", "args", "levelname", "levelno", "pathname", "filename", "module",
    "exc_info", "exc_text", "stack_info", "lineno", "funcName", "created", "msecs",
    "relativeCreated", "thread", "threadName", "processName", "process", "message",
    "taskName",
}

# ----------------------------------------------------------------------
# Production JSON Formatter
# ----------------------------------------------------------------------
class ProductionJSONFormatter(logging.Formatter):
    """Structured JSON logging for production systems"""

    def format(self, record: logging.LogRecord) -> str:
        raw_msg = _sanitize_log_message(record.getMessage())
        base = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": raw_msg,
            "mod": record.module,
            "fn": record.funcName,
            "line": record.lineno,
            "source": f"{getattr(record, 'filename', '')}:{record.lineno} {record.funcName}",
            "emoji": _pick_emoji(record),
        }
        if record.exc_info:
            base["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "trace": traceback.format_exception(*record.exc_info)
            }
        extras: Dict[str, Any] = {}
        for k, v in record.__dict__.items():
            if k not in _STANDARD_RECORD_KEYS:
                extras[k] = v
        if extras:
            base["extra"] = _maybe_redact_mapping(extras)
        return json.dumps(base, ensure_ascii=False, default=str)

# ----------------------------------------------------------------------
# Pretty, emoji-enhanced console formatter for developers
# ----------------------------------------------------------------------
_LEVEL_COLORS = {
    "DEBUG": "\x1b[38;5;244m",   # gray
    "INFO": "\x1b[38;5;39m",    # blue
    "WARNING": "\x1b[38;5;214m", # orange
    "ERROR": "\x1b[38;5;196m",   # red
    "CRITICAL": "\x1b[48;5;196m\x1b[97m", # white on red
}
_RESET = "\x1b[0m"

def _pick_emoji(record: logging.LogRecord) -> str:
    name = (record.name or "").lower()
    msg = (record.getMessage() or "").lower()
    level = record.levelname.upper()
    if name.startswith("chat.") or "conversation" in msg:
        return "💬"
    if ".ai." in name or "suggestion" in msg or "auto-response" in msg:
        return "🤖"
    if "presence" in msg or "online" in msg:
        return "🟢"
    if "websocket" in name or "transport" in name:
        return "🔌"
    if ".data." in name or "mongo" in msg:
        return "🗄️"
    if ".auth." in name or "token" in msg:
        return "🔐"
    return {"DEBUG": "🐛", "INFO": "ℹ️", "WARNING": "⚠️", "ERROR": "❌", "CRITICAL": "🚨"}.get(level, "•")

# ----------------------------------------------------------------------
# Message sanitization helper
# ----------------------------------------------------------------------
_JWT_RE = re.compile(r"eyJ[A-Za-z0-9_-]{5,}\.[A-Za-z0-9_-]{5,}\.[A-Za-z0-9_-]{5,}")

def _sanitize_log_message(message: str) -> str:
    if not isinstance(message, str) or not message:
        return message
    # Bearer tokens sometimes end up in exception text
    msg = _JWT_RE.sub(lambda m: m.group(0)[:6] + "***REDACTED***", message)
    if len(msg) > 2000:
        msg = msg[:2000] + "...<truncated>"
    return msg

class PrettyConsoleFormatter(logging.Formatter):
    """Human-friendly console formatter with emojis, colors, and file context.

    Format:  HH:MM:SS.mmm [LEVEL] EMOJI logger - msg | extras  (file.py:123 func)
    Includes select extras (conversation_id, user_id, session, role) inline.
    """
    def __init__(self, no_color: Optional[bool] = None):
        super().__init__(datefmt="%H:%M:%S")
        env_no_color = os.getenv("NO_COLOR", "0").lower() in ("1", "true", "yes")
        self.no_color = env_no_color if no_color is None else bool(no_color)

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S.%f")[:-3]
        level = record.levelname
        emoji = _pick_emoji(record)
        color = _LEVEL_COLORS.get(level, "") if not self.no_color else ""
        reset = _RESET if color else ""
        msg = _sanitize_log_message(record.getMessage())
        extras = []
        for k in ("conversation_id", "user_id", "session", "role", "frame_type"):
            v = getattr(record, k, None)
            if v is not None:
                extras.append(f"{k}={v}")
        extra_str = f" | {' '.join(extras)}" if extras else ""
        base = f"{ts} [{color}{level:>5}{reset}] {emoji} {record.name} - {msg}{extra_str}  ({record.filename}:{record.lineno} {record.funcName})"
        if record.exc_info:
            base += "\n" + "".join(traceback.format_exception(*record.exc_info)).rstrip()
        return base

# ----------------------------------------------------------------------
# Generic keyword / level filter
# ----------------------------------------------------------------------
class KeywordFilter(logging.Filter):
    """
    Keep the record if it contains *any* of the supplied keywords
    (case-insensitive) and optionally satisfies a minimum level.
    Can also exclude records containing certain keywords.
    """
    def __init__(
        self,
        keywords: Sequence[str] = (),
        exclude_keywords: Sequence[str] = (),
        *,
        min_level: int | None = None,
    ):
        super().__init__(); self.kw = tuple(k.lower() for k in keywords); self.ex = tuple(k.lower() for k in exclude_keywords); self.min = min_level

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: D401
        if self.min and record.levelno < self.min: return False
        msg = record.getMessage().lower(); name = record.name.lower()
        if self.ex and any(k in msg or k in name for k in self.ex): return False
        if not self.kw: return True
        return any(k in msg or k in name for k in self.kw)

# Domain-specific filters
_chat_kw        = ['chat.', 'conversation', 'new_message', 'customer_message', 'typing', 'joined', 'left']

ChatLogFilter      = lambda: KeywordFilter(_chat_kw)
TransportFilter    = lambda: KeywordFilter(['shopsupport.transport', 'websocket', 'presence', 'heartbeat', 'broadcast'])
AIFilter           = lambda: KeywordFilter(['shopsupport.ai', 'suggestion', 'auto-response', 'openai'])
DataFilter         = lambda: KeywordFilter(['shopsupport.data', 'mongo', 'persist'])
AllAppFilter       = lambda: KeywordFilter(['shopsupport.', 'chat.'])

# ----------------------------------------------------------------------
# Handler factory
# ----------------------------------------------------------------------
def _make_handler(
    path: Path,
    level: int,
    formatter: logging.Formatter,
    *,
    log_filter: Optional[logging.Filter],
    max_bytes: int,
    backup_count: int,
) -> logging.Handler:
    """Return a RotatingFileHandler with common defaults pre-applied."""
    h = logging.handlers.RotatingFileHandler(
        path,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding='utf-8',
    )
    h.setLevel(level)
    h.setFormatter(formatter)
    if log_filter:
        h.addFilter(log_filter)
    return h

# Global flag to prevent duplicate logging setup
_logging_initialized = False

# ----------------------------------------------------------------------
# Public configuration function
# ----------------------------------------------------------------------
def setup_logging(
    *,
    chat_level: str = "INFO",
    console_level: str = "INFO",
    max_file_size: int = 10*1024*1024,      # 10 MB
    backup_count: int  = 5,
) -> None:
    """
    Configure the root logger with per-area rotating file handlers + console.
    Prevents duplicate initialization with a global flag.
    """
    global _logging_initialized
    if _logging_initialized: return
    _logging_initialized = True

    cleared_files: list[str] = []
    clear_flag = os.getenv("CLEAR_LOGS_ON_START", "0").lower() in ("1","true","yes","on")
    if clear_flag:
        for f in ALL_LOG_FILES:
            if not f.exists():
                continue
            try:
                f.unlink()
            except OSError:
                # Locked on Windows: truncate instead
                with open(f, 'w', encoding='utf-8') as fp:
                    fp.truncate(0)
            cleared_files.append(str(f))

    root = logging.getLogger(); root.handlers.clear(); root.setLevel(logging.DEBUG)
    file_fmt = ProductionJSONFormatter() if LOGS_AS_JSON else PrettyConsoleFormatter(no_color=True)
    console_fmt = PrettyConsoleFormatter()

    handler_specs = [
        (CHAT_LOG_FILE,      getattr(logging, chat_level.upper()), ChatLogFilter()),
        (TRANSPORT_LOG_FILE, logging.DEBUG,                        TransportFilter()),
        (AI_LOG_FILE,        logging.DEBUG,                        AIFilter()),
        (DATA_LOG_FILE,      logging.DEBUG,                        DataFilter()),
        (ALL_APP_LOG_FILE,   logging.DEBUG,                        AllAppFilter()),
        (ERRORS_LOG_FILE,    logging.ERROR,                        None),
    ]
    for path, lvl, flt in handler_specs:
        root.addHandler(_make_handler(path, lvl, file_fmt, log_filter=flt, max_bytes=max_file_size, backup_count=backup_count))

    ch = logging.StreamHandler(); ch.setLevel(getattr(logging, console_level.upper())); ch.setFormatter(console_fmt); root.addHandler(ch)
    for noisy in ("openai", "httpx", "httpcore", "urllib3", "azure", "motor", "pymongo", "uvicorn.access", "websockets"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
    logging.getLogger(__name__).info(
        "Logging initialized",
        extra={
            "logs_dir": str(LOGS_DIR),
            "files_as_json": LOGS_AS_JSON,
            "file_format": "jsonl" if LOGS_AS_JSON else "pretty",
            "cleared_on_start": clear_flag,
            "cleared_files_count": len(cleared_files),
        },
    )

# Public getters -----------------------------------------------------
_MODULE_PACKAGES = {
    "session_registry": "transport",
    "membership": "transport",
    "broadcast": "transport",
    "connection_handler": "transport",
    "suggestion_coordinator": "transport",
    "support_transport": "transport",
    "protocol": "transport",
    "store": "data",
    "models": "data",
    "suggestions": "ai",
    "tokens": "auth",
    "dependencies": "auth",
    "session_events": "events",
}

def get_core_logger(module_name: str) -> logging.Logger:
    """Get a logger for a specific application module.

    Args:
        module_name: Short module name (e.g. 'session_registry', 'store')
                     or a full dotted name starting with 'shopsupport.'

    Returns:
        Logger named ``shopsupport.<package>.<module>``
    """
    if module_name.startswith('shopsupport.'):
        return logging.getLogger(module_name)
    package = _MODULE_PACKAGES.get(module_name)
    if package:
        return logging.getLogger(f"shopsupport.{package}.{module_name}")
    return logging.getLogger(f"shopsupport.{module_name}")

# Context logger -----------------------------------------------------
class ContextLogger:
    def __init__(self, base: logging.Logger, ctx: Dict[str, Any]): self._base = base; self._ctx = ctx
    def _log(self, lvl, msg, exc_info=False, **extra): merged = {**self._ctx, **extra}; self._base.log(lvl, msg, exc_info=exc_info, extra=_maybe_redact_mapping(merged))
    def info(self, msg, **extra): self._log(logging.INFO, msg, **extra)
    def debug(self, msg, **extra): self._log(logging.DEBUG, msg, **extra)
    def warning(self, msg, **extra): self._log(logging.WARNING, msg, **extra)
    def error(self, msg, exc_info=False, **extra): self._log(logging.ERROR, msg, exc_info=exc_info, **extra)

def get_session_logger(conversation_id: Any = None, user_id: Any = None, **context) -> ContextLogger:
    ctx = {k: v for k, v in {"conversation_id": conversation_id, "user_id": user_id}.items() if v is not None}
    ctx.update(context)
    return ContextLogger(logging.getLogger("chat.session"), ctx)

# Operation timing ---------------------------------------------------
@contextmanager
def log_operation(logger: ContextLogger | logging.Logger, operation_name: str, **context):
    start = perf_counter()
    op_ctx = {"operation": operation_name, **context}
    if isinstance(logger, ContextLogger):
        logger.debug(f"Starting {operation_name}", **op_ctx)
    else:
        logger.debug(f"Starting {operation_name}", extra=op_ctx)
    try:
        yield logger
        dur = perf_counter() - start
        op_ctx_done = {**op_ctx, "duration_seconds": dur, "status": "success"}
        if isinstance(logger, ContextLogger):
            logger.info(f"Completed {operation_name}", **op_ctx_done)
        else:
            logger.info(f"Completed {operation_name}", extra=op_ctx_done)
    except Exception as e:
        dur = perf_counter() - start
        op_ctx_err = {**op_ctx, "duration_seconds": dur, "status": "error", "error_type": type(e).__name__}
        if isinstance(logger, ContextLogger):
            logger.error(f"Failed {operation_name}: {e}", **op_ctx_err)
        else:
            logger.error(f"Failed {operation_name}: {e}", extra=op_ctx_err)
        raise

# Environment presets ------------------------------------------------
def setup_production_logging(): setup_logging(chat_level="INFO", console_level="WARNING", max_file_size=50*1024*1024, backup_count=10)

def setup_development_logging(): setup_logging(chat_level="DEBUG", console_level="INFO")
