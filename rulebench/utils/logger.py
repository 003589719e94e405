"""
RuleBench Logging System
Process-wide logger shared by the bridge, the loader and the replay workers.

Output goes to stdout. An audit file is added only when RULEBENCH_LOG_FILE
names one (or configure(log_file=...) is called); the library writes no
files on its own.
Records carry the thread name so lines from ReplayWorker threads can be told
apart from the combiner.
"""
import logging
import os
import sys
from typing import Optional

LOGGER_NAME = "rulebench"
LOG_FORMAT = '%(asctime)s [%(levelname)s] (%(threadName)s) %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


class Logger:
    """Singleton facade over the 'rulebench' stdlib logger."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(Logger, cls).__new__(cls)
            cls._instance.configure()
        return cls._instance

    def configure(self, level: Optional[str] = None, log_file: Optional[str] = None) -> None:
        """(Re)build handlers. Arguments default to RULEBENCH_LOG_LEVEL / RULEBENCH_LOG_FILE."""
        self.logger = logging.getLogger(LOGGER_NAME)
        level = (level or os.getenv("RULEBENCH_LOG_LEVEL", "INFO")).upper()
        self.logger.setLevel(getattr(logging, level, logging.INFO))

        for handler in list(self.logger.handlers):
            self.logger.removeHandler(handler)
            handler.close()

        formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

        if sys.platform == "win32":
            try:
                sys.stdout.reconfigure(encoding='utf-8')
            except AttributeError:
                pass

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(formatter)
        self.logger.addHandler(console_handler)

        self.log_file = os.getenv("RULEBENCH_LOG_FILE", "") if log_file is None else log_file
        if self.log_file:
            try:
                file_handler = logging.FileHandler(self.log_file, encoding='utf-8')
                file_handler.setFormatter(formatter)
                self.logger.addHandler(file_handler)
            except PermissionError:
                # Read-only working directory: console output only
                self.log_file = ""

    def debug(self, msg: str) -> None:
        self.logger.debug(msg)

    def info(self, msg: str) -> None:
        self.logger.info(msg)

    def warning(self, msg: str) -> None:
        self.logger.warning(msg)

    def error(self, msg: str) -> None:
        self.logger.error(msg)

    def success(self, msg: str) -> None:
        self.logger.info(f"[SUCCESS] {msg}")
