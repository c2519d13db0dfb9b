import datetime
import logging
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .settings import Settings, settings as default_settings

APP_LOGGER_NAME = "relaybot"
LOG_FILE_PREFIX = "relay"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"

_LOGGING_CONFIGURED = False


class LocalTimezoneFormatter(logging.Formatter):
    """
    Formatter that renders timestamps in LOG_TIMEZONE, or the host's local
    timezone when the setting is empty or unknown.
    """

    def __init__(self, *args, timezone_name: str | None = None, **kwargs):
        super().__init__(*args, **kwargs)
        self._tzinfo = self._resolve_tzinfo(timezone_name)

    @staticmethod
    def _resolve_tzinfo(timezone_name: str | None) -> datetime.tzinfo:
        if timezone_name:
            try:
                return ZoneInfo(timezone_name)
            except ZoneInfoNotFoundError:
                pass
        return datetime.datetime.now().astimezone().tzinfo or datetime.timezone.utc

    def formatTime(self, record: logging.LogRecord, datefmt: str | None = None) -> str:
        dt = datetime.datetime.fromtimestamp(record.created, tz=self._tzinfo)
        if datefmt:
            return dt.strftime(datefmt)
        return dt.isoformat(timespec="milliseconds")


class DailyFileHandler(logging.Handler):
    """
    Writes records to <log_dir>/<prefix>-YYYY-MM-DD.log, switching file at
    midnight and keeping the newest `backup_count` files.
    """

    def __init__(
        self,
        log_dir: Path,
        filename_prefix: str = LOG_FILE_PREFIX,
        backup_count: int = 7,
        encoding: str = "utf-8",
    ) -> None:
        super().__init__()
        self.log_dir = log_dir
        self.filename_prefix = filename_prefix
        self.backup_count = backup_count
        self.encoding = encoding
        self._day: datetime.date | None = None
        self._stream = None

    def path_for(self, day: datetime.date) -> Path:
        return self.log_dir / f"{self.filename_prefix}-{day.isoformat()}.log"

    def _prune(self) -> None:
        if self.backup_count <= 0:
            return
        files = sorted(self.log_dir.glob(f"{self.filename_prefix}-*.log"))
        for stale in files[: max(0, len(files) - self.backup_count)]:
            try:
                stale.unlink()
            except OSError:
                pass

    def _open_for_today(self):
        today = datetime.date.today()
        if self._stream is not None and self._day == today:
            return self._stream
        self._close_stream()
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self._stream = open(self.path_for(today), "a", encoding=self.encoding)
        self._day = today
        self._prune()
        return self._stream

    def _close_stream(self) -> None:
        if self._stream is not None:
            try:
                self._stream.close()
            except OSError:
                pass
            self._stream = None

    def emit(self, record: logging.LogRecord) -> None:
        try:
            line = self.format(record)
            stream = self._open_for_today()
            stream.write(line + "\n")
            stream.flush()
        except Exception:
            self.handleError(record)

    def close(self) -> None:
        try:
            self._close_stream()
        finally:
            super().close()


def _level_from(config: Settings) -> int:
    name = config.log_level if isinstance(config.log_level, str) else "INFO"
    return getattr(logging, name.upper(), logging.INFO)


def setup_logging(config: Settings | None = None, *, log_dir: Path | None = None) -> None:
    """
    Configure process logging once.

    Application records (logger "relaybot" and children) go to a daily file
    under ./logs/ and propagate to the console handler on the root logger,
    which also shows uvicorn's output.
    """
    global _LOGGING_CONFIGURED
    if _LOGGING_CONFIGURED:
        return

    config = config or default_settings
    level = _level_from(config)
    formatter = LocalTimezoneFormatter(LOG_FORMAT, timezone_name=config.log_timezone)

    file_handler = DailyFileHandler(log_dir=log_dir or Path("logs"))
    file_handler.setFormatter(formatter)
    file_handler.addFilter(lambda record: record.name.startswith(APP_LOGGER_NAME))

    app_logger = logging.getLogger(APP_LOGGER_NAME)
    app_logger.setLevel(level)
    app_logger.propagate = True
    app_logger.addHandler(file_handler)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    has_console = any(
        isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler)
        for h in root_logger.handlers
    )
    if not has_console:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

    _LOGGING_CONFIGURED = True


def preview(text: str | None, limit: int = 80) -> str:
    """Shorten user text for log lines."""
    if not text:
        return ""
    text = text.replace("\n", " ")
    return text if len(text) <= limit else text[: limit - 3] + "..."


logger = logging.getLogger(APP_LOGGER_NAME)


__all__ = [
    "DailyFileHandler",
    "LocalTimezoneFormatter",
    "logger",
    "preview",
    "setup_logging",
]
