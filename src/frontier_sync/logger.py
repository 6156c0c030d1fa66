import json
import logging
import os
import sys

DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
DEFAULT_LOG_FILE = "/tmp/frontier-sync.log"

# Chatty transports, kept at WARNING unless debugging
_NOISY_LOGGERS = ("urllib3", "requests", "dulwich")


class JsonFormatter(logging.Formatter):
    """One JSON object per line with ``ts``, ``level``, ``logger``, ``msg``
    and, when an exception is attached, ``exc``.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def _formatter(debug_format: str, with_name: bool) -> logging.Formatter:
    if debug_format == "json":
        return JsonFormatter(datefmt=DATE_FORMAT)
    name = " %(name)s" if with_name else ""
    return logging.Formatter(
        f"[%(asctime)s] [%(levelname)s]{name} %(message)s", datefmt=DATE_FORMAT
    )


def _resolve_level(mode: str, debug: bool) -> int:
    if debug:
        return logging.DEBUG
    default = "WARNING" if mode == "background" else "INFO"
    name = os.getenv("LOG_LEVEL", default).upper()
    return getattr(logging, name, logging.INFO)


def setup_logging(
    mode: str = "cli",
    debug: bool = False,
    log_file: str | None = None,
    debug_format: str = "text",
) -> None:
    """
    Configure the root logger for a command run.

    Args:
        mode: "cli" logs to stderr (and to *log_file* when given).
            "background" logs only to a file, for editor-driven auto sync
            where nobody watches stderr.
        debug: Force DEBUG, ignoring LOG_LEVEL.
        log_file: Log file path; in background mode it overrides LOG_FILE.
        debug_format: "text" or "json".

    Environment variables:
        LOG_LEVEL: DEBUG, INFO, WARNING or ERROR.
                   Default: WARNING in background mode, INFO otherwise.
        LOG_FILE: Background-mode log file. Default: /tmp/frontier-sync.log
    """
    level = _resolve_level(mode, debug)

    if mode == "background":
        logging.basicConfig(
            level=level,
            format="[%(asctime)s] [%(levelname)s] %(name)s %(message)s",
            datefmt=DATE_FORMAT,
            filename=log_file or os.getenv("LOG_FILE", DEFAULT_LOG_FILE),
            filemode="a",
        )
    else:
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(_formatter(debug_format, with_name=False))
        handlers: list[logging.Handler] = [stderr_handler]

        if log_file:
            file_handler = logging.FileHandler(log_file, mode="a")
            file_handler.setFormatter(_formatter(debug_format, with_name=True))
            handlers.append(file_handler)

        logging.basicConfig(level=level, handlers=handlers)

    if level != logging.DEBUG:
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)
