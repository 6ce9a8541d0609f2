# Copyright 2024 inuex35
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Logging setup for the spoofguard package.

All modules log through ``logging.getLogger(__name__)`` below the
``spoofguard`` package logger, so handlers are attached once here.
"""

import logging
import sys
from enum import Enum
from typing import Dict, Optional, Union

ROOT_LOGGER_NAME = "spoofguard"

RECORD_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class LogLevel(Enum):
    """Log levels, with TRACE below DEBUG for per-iteration solver output"""
    TRACE = 5
    DEBUG = logging.DEBUG
    INFO = logging.INFO
    WARNING = logging.WARNING
    ERROR = logging.ERROR
    CRITICAL = logging.CRITICAL


logging.addLevelName(LogLevel.TRACE.value, "TRACE")


def _level_value(level: Union[str, int]) -> int:
    if isinstance(level, int):
        return level
    return getattr(LogLevel, level.upper()).value


class ColoredFormatter(logging.Formatter):
    """Console formatter coloring the level name"""

    LEVEL_COLORS = {
        'TRACE': '\033[36m',
        'DEBUG': '\033[34m',
        'INFO': '\033[32m',
        'WARNING': '\033[33m',
        'ERROR': '\033[31m',
        'CRITICAL': '\033[35m',
    }
    RESET = '\033[0m'

    def format(self, record):
        # Copy so that file handlers sharing the record see the plain name
        colored = logging.makeLogRecord(record.__dict__)
        color = self.LEVEL_COLORS.get(colored.levelname, self.RESET)
        colored.levelname = f"{color}{colored.levelname}{self.RESET}"
        return super().format(colored)


def _make_handler(handler: logging.Handler, formatter: logging.Formatter,
                  level: int) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_logger(name: str = ROOT_LOGGER_NAME,
                 level: str = "INFO",
                 log_file: Optional[str] = None,
                 console: bool = True) -> logging.Logger:
    """
    Attach console and/or file handlers to a logger, replacing existing ones

    Parameters:
    -----------
    name : str
        Logger name; the package loggers are children of "spoofguard"
    level : str
        TRACE, DEBUG, INFO, WARNING, ERROR or CRITICAL
    log_file : Optional[str]
        Plain-text log file, no file output when None
    console : bool
        Colored output on stdout

    Returns:
    --------
    logging.Logger
        The configured logger
    """
    value = _level_value(level)
    logger = logging.getLogger(name)
    logger.setLevel(value)
    logger.handlers = []

    if console:
        logger.addHandler(_make_handler(
            logging.StreamHandler(sys.stdout),
            ColoredFormatter(RECORD_FORMAT, datefmt='%H:%M:%S'), value))
    if log_file:
        logger.addHandler(_make_handler(
            logging.FileHandler(log_file),
            logging.Formatter(RECORD_FORMAT, datefmt='%Y-%m-%d %H:%M:%S'), value))
    return logger


def trace(logger: logging.Logger, msg, *args, **kwargs):
    """Log at TRACE level on the given logger"""
    if logger.isEnabledFor(LogLevel.TRACE.value):
        logger.log(LogLevel.TRACE.value, msg, *args, **kwargs)


class LogContext:
    """Temporarily run a logger at another level::

        with LogContext(logging.getLogger('spoofguard.gnss.wls'), 'TRACE'):
            solver.solve(epoch, provider, state)
    """

    def __init__(self, logger: logging.Logger, level: Union[str, int]):
        self.logger = logger
        self.level = _level_value(level)
        self._saved = None

    def __enter__(self):
        self._saved = self.logger.level
        self.logger.setLevel(self.level)
        return self.logger

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.logger.setLevel(self._saved)


class LoggerConfig:
    """Package level plus per-module overrides.

    Example config::

        {
            'default_level': 'INFO',
            'log_file': 'positioning.log',
            'console': True,
            'module_levels': {
                'spoofguard.gnss.wls': 'TRACE',
                'spoofguard.gnss.spoofing': 'DEBUG',
            }
        }
    """

    def __init__(self):
        self.default_level = "INFO"
        self.log_file = None
        self.console = True
        self.module_levels: Dict[str, str] = {}

    def configure_from_dict(self, config: dict):
        """Merge a config dict; unknown level names raise AttributeError"""
        self.default_level = config.get('default_level', self.default_level)
        self.log_file = config.get('log_file', self.log_file)
        self.console = config.get('console', self.console)
        for module, level in config.get('module_levels', {}).items():
            _level_value(level)
            self.module_levels[module] = level

    def setup_all_loggers(self) -> logging.Logger:
        """Configure the package logger and the module overrides.

        Module loggers only get a level; records still propagate to the
        package logger's handlers.
        """
        root = setup_logger(ROOT_LOGGER_NAME, self.default_level, self.log_file, self.console)
        for module, level in self.module_levels.items():
            logging.getLogger(module).setLevel(_level_value(level))

        # Handlers must let through the most verbose override
        lowest = min(_level_value(level)
                     for level in [self.default_level, *self.module_levels.values()])
        for handler in root.handlers:
            handler.setLevel(lowest)
        return root


def setup_logger_from_config(config: dict) -> logging.Logger:
    """Setup loggers from a configuration dictionary, see LoggerConfig"""
    logger_config = LoggerConfig()
    logger_config.configure_from_dict(config)
    return logger_config.setup_all_loggers()
