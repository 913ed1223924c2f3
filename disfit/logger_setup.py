"""
Logging Setup for the size-constrained transcoder
Initializes logging configuration from YAML file
"""

import os
import copy
import glob
import logging
import logging.config
from datetime import datetime
from typing import Optional

import yaml
from colorama import init, Fore, Style

# Initialize colorama for Windows compatibility
init(autoreset=True)

ROOT_LOGGER_NAME = 'disfit'
PACKAGED_LOGGING_CONFIG = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'config', 'logging.yaml')

DEFAULT_LOGGING_CONFIG = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'detailed': {
            'format': '[%(asctime)s] %(levelname)s [%(name)s.%(funcName)s:%(lineno)d] %(message)s',
            'datefmt': '%Y-%m-%d %H:%M:%S'
        },
        'console': {
            'format': '%(asctime)s | %(levelname)-8s | %(message)s',
            'datefmt': '%H:%M:%S'
        }
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'level': 'INFO',
            'formatter': 'console',
            'stream': 'ext://sys.stdout'
        },
        'file': {
            'class': 'logging.FileHandler',
            'level': 'DEBUG',
            'formatter': 'detailed',
            'filename': 'logs/disfit.log',
            'mode': 'a'
        },
        'error_file': {
            'class': 'logging.FileHandler',
            'level': 'ERROR',
            'formatter': 'detailed',
            'filename': 'logs/errors.log',
            'mode': 'a'
        }
    },
    'root': {
        'level': 'DEBUG',
        'handlers': ['console', 'file', 'error_file']
    }
}


class ColoredFormatter(logging.Formatter):
    """Custom formatter to add colors to console output"""

    COLORS = {
        'DEBUG': Fore.CYAN,
        'INFO': Fore.GREEN,
        'WARNING': Fore.YELLOW,
        'ERROR': Fore.RED,
        'CRITICAL': Fore.MAGENTA + Style.BRIGHT,
    }

    def format(self, record):
        # Color a copy so file handlers sharing the record keep plain level names
        record = logging.makeLogRecord(record.__dict__)
        if record.levelname in self.COLORS:
            record.levelname = f"{self.COLORS[record.levelname]}{record.levelname}{Style.RESET_ALL}"
        return super().format(record)


def _cleanup_old_logs(logs_dir: str = "logs", keep_count: int = 5):
    """
    Remove per-run log files, keeping only the most recent ones

    Args:
        logs_dir: Directory containing log files
        keep_count: Number of most recent per-run log files to keep
    """
    rotated = glob.glob(os.path.join(logs_dir, "disfit_*.log"))
    if len(rotated) <= keep_count:
        return
    rotated.sort(key=os.path.getmtime, reverse=True)
    for old_log in rotated[keep_count:]:
        try:
            os.remove(old_log)
        except OSError as e:
            logging.getLogger(ROOT_LOGGER_NAME).warning(
                f"Log cleanup: could not remove {os.path.basename(old_log)}: {e}")


def _load_logging_config(config_path: Optional[str]) -> dict:
    candidates = []
    if config_path:
        candidates.append(config_path)
    candidates.append(PACKAGED_LOGGING_CONFIG)

    for path in candidates:
        if os.path.exists(path):
            with open(path, 'r', encoding='utf-8') as file:
                config_data = yaml.safe_load(file) or {}
            if 'logging' in config_data:
                return copy.deepcopy(config_data['logging'])
    return copy.deepcopy(DEFAULT_LOGGING_CONFIG)


def setup_logging(config_path: Optional[str] = "config/logging.yaml", log_level: Optional[str] = None,
                  logs_dir: str = "logs") -> logging.Logger:
    """
    Setup logging configuration from YAML file

    Args:
        config_path: Path to logging configuration file
        log_level: Override console level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        logs_dir: Directory the file handlers write into
    """
    os.makedirs(logs_dir, exist_ok=True)

    logging_config = _load_logging_config(config_path)
    timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')

    # File handlers always land in logs_dir; the main log gets one file per run
    for handler in logging_config.get('handlers', {}).values():
        if 'filename' in handler:
            stem, ext = os.path.splitext(os.path.basename(handler['filename']))
            if stem == ROOT_LOGGER_NAME:
                stem = f"{stem}_{timestamp}"
            handler['filename'] = os.path.join(logs_dir, stem + ext)

    if log_level:
        log_level = log_level.upper()
        console = logging_config.get('handlers', {}).get('console')
        if console:
            console['level'] = log_level

    try:
        logging.config.dictConfig(logging_config)
    except (ValueError, TypeError, AttributeError, ImportError) as config_error:
        logging.basicConfig(
            level=logging.INFO,
            format='%(asctime)s | %(levelname)-8s | %(message)s',
            datefmt='%H:%M:%S'
        )
        logger = logging.getLogger(ROOT_LOGGER_NAME)
        logger.error(f"Failed to apply logging configuration: {config_error}")
        logger.info("Using basic logging configuration as fallback")
        return logger

    _cleanup_old_logs(logs_dir, keep_count=5)

    for handler in logging.getLogger().handlers:
        if isinstance(handler, logging.StreamHandler) and not isinstance(handler, logging.FileHandler):
            handler.setFormatter(ColoredFormatter(
                fmt='%(asctime)s | %(levelname)-8s | %(message)s',
                datefmt='%H:%M:%S'
            ))

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.debug("Logging initialized")
    return logger

