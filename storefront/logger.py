# storefront/logger.py
import logging
import os
import sys
from logging.handlers import RotatingFileHandler

DEFAULT_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

# Loggers of the HTTP stack; chatty at DEBUG, silenced unless LOG_HTTP=true
HTTP_LOGGERS = ("urllib3", "requests")

_configured = False


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes")


def _file_handler(path: str, level: int, formatter: logging.Formatter) -> logging.Handler:
    log_dir = os.path.dirname(path)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
    handler = RotatingFileHandler(
        path,
        maxBytes=int(os.getenv("LOG_MAX_BYTES", str(2 * 1024 * 1024))),
        backupCount=int(os.getenv("LOG_BACKUPS", "3")),
        encoding="utf-8",
    )
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_logging():
    """
    Configure the root logger once per process from the environment:
      LOG_LEVEL      root level (INFO)
      LOG_TO_STDOUT  stream handler on stdout (true)
      LOG_TO_FILE    rotating file handler (false)
      LOG_FILE       file path (logs/storefront.log)
      LOG_FORMAT     logging.Formatter format string
      LOG_HTTP       keep urllib3/requests records below WARNING (false)
    Handlers are left alone when the host application already installed some.
    """
    global _configured
    if _configured:
        return

    level = getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO)
    root = logging.getLogger()
    root.setLevel(level)
    formatter = logging.Formatter(os.getenv("LOG_FORMAT", DEFAULT_FORMAT))

    if not root.handlers:
        if _env_flag("LOG_TO_STDOUT", "true"):
            ch = logging.StreamHandler(sys.stdout)
            ch.setLevel(level)
            ch.setFormatter(formatter)
            root.addHandler(ch)

        if _env_flag("LOG_TO_FILE", "false"):
            log_file = os.getenv("LOG_FILE", "logs/storefront.log")
            try:
                root.addHandler(_file_handler(log_file, level, formatter))
            except OSError as e:
                root.warning("File logging to %s disabled: %s", log_file, e)

    if not _env_flag("LOG_HTTP", "false"):
        for name in HTTP_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    _configured = True


def get_logger(name: str | None = None) -> logging.Logger:
    setup_logging()
    return logging.getLogger(name)
