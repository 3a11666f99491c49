import os
import sys
import logging
from datetime import date


__version__ = '1.1.0'

LOG_FORMAT = '[%(asctime)s] [%(levelname)s] %(message)s'
LOG_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


class DailyFileHandler(logging.FileHandler):
    """
    File handler that appends to one log file per calendar day.

    Files are named backup_<YYYY-MM-DD>.log inside log_dir. The handler
    switches files on the first record emitted after midnight, so a
    long-running scheduler keeps writing to the right day's file.
    """

    def __init__(self, log_dir, today=None):
        self.log_dir = log_dir
        self._today = today or date.today
        self.current_date = self._today()
        os.makedirs(log_dir, exist_ok=True)
        super().__init__(self._path_for(self.current_date), mode='a', encoding='utf-8', delay=True)

    def _path_for(self, day: date) -> str:
        return os.path.join(self.log_dir, f"backup_{day.isoformat()}.log")

    def emit(self, record):
        day = self._today()
        if day != self.current_date:
            self.acquire()
            try:
                self.close()
                self.current_date = day
                self.baseFilename = os.path.abspath(self._path_for(day))
            finally:
                self.release()
        super().emit(record)


def configure_logging(config=None, level=logging.INFO):
    """
    Configure process logging.

    Every record goes to stdout. When a configuration is available, records are
    also appended to <work_dir>/logs/backup_<date>.log.

    Args:
        config: BackupConfig, or None before configuration has been loaded
        level: Log level for all handlers

    Returns:
        The configured root logger
    """
    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    # Console handler
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    handlers = [console_handler]

    # File handler
    if config is not None:
        file_handler = DailyFileHandler(config.log_dir)
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    # Replace handlers from any earlier call (e.g. before config was loaded)
    logging.basicConfig(level=level, handlers=handlers, force=True)

    root = logging.getLogger()
    root.debug(f"Logging configured (level: {logging.getLevelName(level)})")
    return root
