"""
Logging Setup for vidshrink
Initializes logging configuration from YAML file
"""

import os
import copy
import logging
import logging.config
import yaml
from colorama import init, Fore, Style
from typing import Optional

# Initialize colorama for Windows compatibility
init(autoreset=True)

LOGGER_NAME = 'vidshrink'

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
            'level': 'WARNING',
            'formatter': 'console',
            'stream': 'ext://sys.stdout'
        },
        'file': {
            'class': 'logging.FileHandler',
            'level': 'DEBUG',
            'formatter': 'detailed',
            'filename': 'logs/vidshrink.log',
            'mode': 'a',
            'encoding': 'utf-8'
        },
        'error_file': {
            'class': 'logging.FileHandler',
            'level': 'ERROR',
            'formatter': 'detailed',
            'filename': 'logs/errors.log',
            'mode': 'a',
            'encoding': 'utf-8'
        }
    },
    'loggers': {
        LOGGER_NAME: {
            'level': 'DEBUG',
            'handlers': ['console', 'file', 'error_file'],
            'propagate': False
        }
    },
    'root': {
        'level': 'WARNING',
        'handlers': ['console']
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
        record = copy.copy(record)
        if record.levelname in self.COLORS:
            record.levelname = f"{self.COLORS[record.levelname]}{record.levelname}{Style.RESET_ALL}"

        return super().format(record)


def _ensure_log_dirs(logging_config: dict):
    for handler in logging_config.get('handlers', {}).values():
        filename = handler.get('filename')
        if filename:
            directory = os.path.dirname(filename)
            if directory:
                os.makedirs(directory, exist_ok=True)


def setup_logging(config_path: Optional[str] = None, log_level: Optional[str] = None) -> logging.Logger:
    """
    Setup logging configuration from YAML file

    Args:
        config_path: Path to logging configuration file (a top-level 'logging' key)
        log_level: Override console level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logging_config = copy.deepcopy(DEFAULT_LOGGING_CONFIG)
    if config_path and os.path.exists(config_path):
        with open(config_path, 'r', encoding='utf-8') as file:
            config_data = yaml.safe_load(file) or {}
        logging_config = config_data.get('logging', logging_config)
    elif config_path:
        print(f"Warning: Logging config file not found at {config_path}, using default configuration")

    # Override levels if an explicit log_level was provided (e.g., --debug)
    if log_level:
        log_level = log_level.upper()
        console_handler = logging_config.get('handlers', {}).get('console')
        if console_handler:
            console_handler['level'] = log_level

    try:
        _ensure_log_dirs(logging_config)
        logging.config.dictConfig(logging_config)
    except (ValueError, TypeError, AttributeError, ImportError, OSError) as config_error:
        # If dictConfig fails, fall back to basic configuration
        logging.basicConfig(
            level=logging.INFO,
            format='%(asctime)s | %(levelname)-8s | %(message)s',
            datefmt='%H:%M:%S'
        )
        logger = logging.getLogger(LOGGER_NAME)
        logger.error(f"Failed to apply logging configuration: {config_error}")
        logger.info("Using basic logging configuration as fallback")
        return logger

    logger = logging.getLogger(LOGGER_NAME)

    # Find console handler and apply colored formatter
    for handler in logger.handlers:
        if isinstance(handler, logging.StreamHandler) and not isinstance(handler, logging.FileHandler):
            handler.setFormatter(ColoredFormatter(
                fmt='%(asctime)s | %(levelname)-8s | %(message)s',
                datefmt='%H:%M:%S'
            ))

    logger.info("Logging initialized")
    return logger


def get_logger(name: str = None) -> logging.Logger:
    """Get a logger instance"""
    if name:
        return logging.getLogger(f'{LOGGER_NAME}.{name}')
    return logging.getLogger(LOGGER_NAME)
