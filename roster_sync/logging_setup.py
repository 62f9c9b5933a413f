"""
Logging setup for Roster Sync.

Every sync decision is a log line, so the console defaults to INFO. A
rotating sync.log in the configured directory keeps the last
``retention_days`` days, and credentials are scrubbed from every message
before it reaches a handler.
"""

import os
import re
import glob
import logging
import logging.handlers
from typing import Dict, Any, List

LOG_FILE_NAME = 'sync.log'


class SensitiveDataFilter(logging.Filter):
    """Mask credentials that end up in log messages."""

    SENSITIVE_KEYWORDS = ('password', 'client_secret', 'secret', 'access_token', 'token', 'api_key')

    def __init__(self, name: str = ''):
        super().__init__(name)
        self.patterns = []
        for keyword in self.SENSITIVE_KEYWORDS:
            # key=value
            self.patterns.append((re.compile(rf'({keyword}\s*=\s*)[^\s,}}\]]+', re.IGNORECASE), r'\1****'))
            # "key": "value" and 'key': 'value'
            self.patterns.append((re.compile(rf'(["\']{keyword}["\']\s*:\s*["\'])[^"\']*(["\'])', re.IGNORECASE),
                                  r'\1****\2'))
        self.patterns.append((re.compile(r'(Authorization:\s*(?:Bearer|Basic)\s+)[^\s,}\]]+', re.IGNORECASE),
                              r'\1****'))

    def filter(self, record):
        msg = str(record.msg)
        for pattern, replacement in self.patterns:
            msg = pattern.sub(replacement, msg)
        record.msg = msg
        return True


class LoggingManager:
    """Installs the file and console handlers on the root logger once per process."""

    def __init__(self):
        self.configured = False
        self.log_dir = None

    def setup_logging(self, config: Dict[str, Any]) -> None:
        """
        Set up logging from the ``logging`` config section.

        Args:
            config: Keys level, log_dir, rotation (daily or none),
                    retention_days, console_output, console_level
        """
        if self.configured:
            return

        config = config or {}
        log_level = getattr(logging, str(config.get('level', 'INFO')).upper(), logging.INFO)
        console_level = getattr(logging, str(config.get('console_level', 'INFO')).upper(), logging.INFO)
        self.log_dir = config.get('log_dir', 'logs')
        os.makedirs(self.log_dir, exist_ok=True)

        root_logger = logging.getLogger()
        root_logger.setLevel(min(log_level, console_level))
        root_logger.handlers.clear()

        sensitive_filter = SensitiveDataFilter()

        file_handler = self._create_file_handler(config.get('rotation', 'daily'),
                                                 config.get('retention_days', 7))
        file_handler.setLevel(log_level)
        file_handler.setFormatter(logging.Formatter(
            '%(asctime)s [%(levelname)s] %(name)s:%(lineno)d - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        ))
        file_handler.addFilter(sensitive_filter)
        root_logger.addHandler(file_handler)

        if config.get('console_output', True):
            console_handler = logging.StreamHandler()
            console_handler.setLevel(console_level)
            console_handler.setFormatter(logging.Formatter('%(asctime)s [%(levelname)s] %(message)s',
                                                           datefmt='%H:%M:%S'))
            console_handler.addFilter(sensitive_filter)
            root_logger.addHandler(console_handler)

        self.configured = True
        logging.getLogger(__name__).info(f"Logging to {os.path.join(self.log_dir, LOG_FILE_NAME)} "
                                         f"at {logging.getLevelName(log_level)}")

    def _create_file_handler(self, rotation: str, retention_days: int) -> logging.Handler:
        log_file = os.path.join(self.log_dir, LOG_FILE_NAME)

        if str(rotation).lower() in ('daily', 'midnight'):
            # backupCount prunes rotated files past the retention window
            handler = logging.handlers.TimedRotatingFileHandler(
                filename=log_file,
                when='midnight',
                backupCount=max(int(retention_days), 0),
                encoding='utf-8'
            )
            handler.suffix = '%Y-%m-%d'
            return handler

        return logging.FileHandler(log_file, encoding='utf-8')

    def get_log_files(self) -> List[str]:
        if not self.log_dir:
            return []
        return sorted(glob.glob(os.path.join(self.log_dir, LOG_FILE_NAME + '*')))

    def reset(self) -> None:
        """Remove installed handlers so logging can be configured again."""
        root_logger = logging.getLogger()
        for handler in list(root_logger.handlers):
            root_logger.removeHandler(handler)
            handler.close()
        self.configured = False


_logging_manager = LoggingManager()


def setup_logging(config: Dict[str, Any]) -> None:
    _logging_manager.setup_logging(config)


def reset_logging() -> None:
    _logging_manager.reset()
