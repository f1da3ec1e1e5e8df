import os
from typing import Any
from pathlib import Path

# Paths
PROJECT_ROOT_DIR = Path(__file__).parent.parent.parent.resolve()

DEFAULT_CONFIG_PATH = Path(os.getenv("CDR_EXTRACT_CONFIG", PROJECT_ROOT_DIR / "config" / "cdr_extract.yaml"))
DEFAULT_OUTPUT_DIR = PROJECT_ROOT_DIR / "output"

STAGING_DIRNAME = "_tmp"
STAGING_SUFFIX = ".tsv"

# Window defaults
PROBE_INTERVAL_SECONDS = 900
SECONDS_PER_DAY = 86400
SECONDS_PER_HOUR = 3600

# Exit codes
EXIT_FAILURE = 1
EXIT_USAGE = 64  # sysexits EX_USAGE


# Logging Configuration

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def build_logging_config(verbose: bool = False, log_file: Path | None = None) -> dict[str, Any]:
    """
    Console handler writes to stderr so a successful scheduled run stays silent
    on stdout. The rotating file handler is only attached when a log file is given.
    """
    handlers: dict[str, Any] = {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "standard",
            "level": "DEBUG" if verbose else "WARNING",
            "stream": "ext://sys.stderr",
        },
    }
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers["rotating_file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "formatter": "standard",
            "level": "DEBUG",
            "filename": str(log_file),
            "maxBytes": 10485760,  # 10MB
            "backupCount": 5,
            "encoding": "utf8",
        }

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {
                "format": LOG_FORMAT
            },
        },
        "handlers": handlers,
        "loggers": {
            "": {  # root logger
                "handlers": list(handlers),
                "level": "DEBUG",
                "propagate": True
            },
        }
    }
