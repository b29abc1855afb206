"""
Structured logging for the responder navigation client.
Every component logs through one session-scoped logger so that GPS, routing,
tile and navigation events can be correlated after a shift.
"""
import logging
import logging.handlers
import time
import json
import traceback
from pathlib import Path
from typing import Optional, Dict, Any, Union
from enum import Enum, auto
from contextlib import contextmanager
from datetime import datetime
import uuid
class LogLevel(Enum):
    """Log levels, including a TRACE level below DEBUG."""
    TRACE = 5
    DEBUG = 10
    INFO = 20
    WARNING = 30
    ERROR = 40
    CRITICAL = 50
class LogCategory(Enum):
    """Categories used to tag navigation subsystem events."""
    SYSTEM = auto()
    GPS = auto()
    ROUTING = auto()
    TILES = auto()
    NAVIGATION = auto()
    SPEECH = auto()
    NETWORK = auto()
    USER_ACTION = auto()
CategoryLike = Union[LogCategory, str, None]
def _category_name(category: CategoryLike) -> str:
    if category is None:
        return 'GENERAL'
    if isinstance(category, LogCategory):
        return category.name
    return str(category).upper()
class StructuredFormatter(logging.Formatter):
    """Formatter that appends a JSON blob with structured fields."""
    def __init__(self, include_json=True):
        super().__init__()
        self.include_json = include_json
    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created).isoformat()
        basic_line = f"[{timestamp}] {record.levelname:8} {record.name}: {record.getMessage()}"
        structured_data = {}
        for key, value in record.__dict__.items():
            if key.startswith('field_') or key in ['category', 'session_id']:
                structured_data[key] = value
        if record.exc_info:
            structured_data['exception'] = {
                'type': record.exc_info[0].__name__,
                'message': str(record.exc_info[1]),
                'traceback': traceback.format_exception(*record.exc_info)
            }
        structured_data['location'] = {
            'filename': record.filename,
            'line': record.lineno,
            'function': record.funcName
        }
        if structured_data and self.include_json:
            json_data = json.dumps(structured_data, default=str, ensure_ascii=False)
            return f"{basic_line} | {json_data}"
        return basic_line
class DispatchNavLogger:
    """Session logger with console, rotating file and navigation-event outputs."""
    def __init__(self, name: str = "dispatchnav", log_dir: Optional[Path] = None,
                 console_level: int = logging.INFO):
        self.name = name
        self.session_id = str(uuid.uuid4())[:8]
        if log_dir is None:
            log_dir = Path.home() / ".dispatch_nav" / "logs"
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.console_level = console_level
        self._setup_loggers()
        self.info("Navigation logging initialized",
                  category=LogCategory.SYSTEM,
                  session_id=self.session_id,
                  log_dir=str(self.log_dir))
    def _setup_loggers(self):
        self.logger = logging.getLogger(self.name)
        self.logger.setLevel(logging.DEBUG)
        self.logger.propagate = False
        for handler in list(self.logger.handlers):
            handler.close()
        self.logger.handlers.clear()
        console_handler = logging.StreamHandler()
        console_handler.setLevel(self.console_level)
        console_handler.setFormatter(StructuredFormatter(include_json=False))
        self.logger.addHandler(console_handler)
        file_handler = logging.handlers.RotatingFileHandler(
            self.log_dir / f"{self.name}.log", maxBytes=10*1024*1024, backupCount=5,
            encoding="utf-8"
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(StructuredFormatter(include_json=True))
        self.logger.addHandler(file_handler)
        # Navigation events also go to their own file, written explicitly.
        self.navigation_handler = logging.handlers.RotatingFileHandler(
            self.log_dir / f"{self.name}_navigation.log", maxBytes=5*1024*1024, backupCount=3,
            encoding="utf-8"
        )
        self.navigation_handler.setLevel(logging.INFO)
        self.navigation_handler.setFormatter(StructuredFormatter(include_json=True))
        error_handler = logging.handlers.RotatingFileHandler(
            self.log_dir / f"{self.name}_errors.log", maxBytes=5*1024*1024, backupCount=5,
            encoding="utf-8"
        )
        error_handler.setLevel(logging.ERROR)
        error_handler.setFormatter(StructuredFormatter(include_json=True))
        self.logger.addHandler(error_handler)
    def _extra(self, category: CategoryLike, fields: Dict[str, Any]) -> Dict[str, Any]:
        extra = {
            'session_id': self.session_id,
            'category': _category_name(category)
        }
        for key, value in fields.items():
            if not key.startswith('_'):
                extra[f'field_{key}'] = value
        return extra
    def _log(self, level: int, message: str, category: CategoryLike = None,
             exception: Optional[BaseException] = None, **kwargs):
        extra = self._extra(category, kwargs)
        if exception is not None:
            self.logger.log(level, message,
                            exc_info=(type(exception), exception, exception.__traceback__),
                            extra=extra)
        else:
            self.logger.log(level, message, extra=extra)
    def trace(self, message: str, category: CategoryLike = None, **kwargs):
        self._log(LogLevel.TRACE.value, message, category, **kwargs)
    def debug(self, message: str, category: CategoryLike = None, **kwargs):
        self._log(LogLevel.DEBUG.value, message, category, **kwargs)
    def info(self, message: str, category: CategoryLike = None, **kwargs):
        self._log(LogLevel.INFO.value, message, category, **kwargs)
    def warning(self, message: str, category: CategoryLike = None,
                exception: Optional[BaseException] = None, **kwargs):
        self._log(LogLevel.WARNING.value, message, category, exception, **kwargs)
    def error(self, message: str, exception: Optional[BaseException] = None,
              category: CategoryLike = None, **kwargs):
        self._log(LogLevel.ERROR.value, message, category, exception, **kwargs)
    def critical(self, message: str, exception: Optional[BaseException] = None,
                 category: CategoryLike = None, **kwargs):
        self._log(LogLevel.CRITICAL.value, message, category, exception, **kwargs)
    def navigation_event(self, message: str, **kwargs):
        """Log a navigation lifecycle event to the main and navigation logs."""
        text = f"NAVIGATION: {message}"
        self._log(LogLevel.INFO.value, text, LogCategory.NAVIGATION, **kwargs)
        record = self.logger.makeRecord(
            self.name, LogLevel.INFO.value, __file__, 0, text, (), None,
            extra=self._extra(LogCategory.NAVIGATION, kwargs)
        )
        self.navigation_handler.handle(record)
    def log_user_action(self, action: str, details: Optional[Dict[str, Any]] = None):
        log_data = {'action': action, 'timestamp': time.time()}
        if details:
            log_data.update(details)
        self._log(LogLevel.INFO.value, f"USER ACTION: {action}",
                  LogCategory.USER_ACTION, **log_data)
    def log_gps_event(self, event_type: str, latitude: Optional[float] = None,
                      longitude: Optional[float] = None, accuracy: Optional[float] = None,
                      **kwargs):
        """Log a positioning event at debug level (fixes arrive often)."""
        gps_data = {'event_type': event_type}
        if latitude is not None:
            gps_data['latitude'] = latitude
        if longitude is not None:
            gps_data['longitude'] = longitude
        if accuracy is not None:
            gps_data['accuracy'] = accuracy
        gps_data.update(kwargs)
        self._log(LogLevel.DEBUG.value, f"GPS: {event_type}", LogCategory.GPS, **gps_data)
    def log_network_event(self, event_type: str, url: Optional[str] = None,
                          status_code: Optional[int] = None, **kwargs):
        network_data = {'event_type': event_type}
        if url:
            network_data['url'] = url
        if status_code:
            network_data['status_code'] = status_code
        network_data.update(kwargs)
        self._log(LogLevel.DEBUG.value, f"NETWORK: {event_type}",
                  LogCategory.NETWORK, **network_data)
    @contextmanager
    def timer(self, operation: str, category: CategoryLike = LogCategory.SYSTEM):
        """Context manager that logs how long an operation took."""
        start_time = time.monotonic()
        operation_id = str(uuid.uuid4())[:8]
        try:
            yield operation_id
        finally:
            duration = time.monotonic() - start_time
            self.debug(f"Completed operation: {operation} in {duration:.3f}s",
                       category=category, operation_id=operation_id, duration=duration)
    def get_session_id(self) -> str:
        return self.session_id
    def set_log_level(self, level: Union[str, int, LogLevel]):
        """Set the console logging level."""
        if isinstance(level, LogLevel):
            level = level.value
        elif isinstance(level, str):
            level = getattr(logging, level.upper())
        for handler in self.logger.handlers:
            if not isinstance(handler, logging.handlers.RotatingFileHandler):
                handler.setLevel(level)
        self.info(f"Console log level set to: {logging.getLevelName(level)}")
    def flush(self):
        for handler in self.logger.handlers:
            handler.flush()
        self.navigation_handler.flush()
# Global logger instance
_global_logger: Optional[DispatchNavLogger] = None
def get_logger() -> DispatchNavLogger:
    """Get the global logger instance."""
    global _global_logger
    if _global_logger is None:
        _global_logger = DispatchNavLogger()
    return _global_logger
def setup_logger(name: str = "dispatchnav", log_dir: Optional[Path] = None,
                 console_level: int = logging.INFO) -> DispatchNavLogger:
    """Set up and return the global logger."""
    global _global_logger
    _global_logger = DispatchNavLogger(name, log_dir, console_level)
    return _global_logger
def info(message: str, **kwargs):
    get_logger().info(message, **kwargs)
def warning(message: str, **kwargs):
    get_logger().warning(message, **kwargs)
def error(message: str, exception: Optional[BaseException] = None, **kwargs):
    get_logger().error(message, exception=exception, **kwargs)
class LoggableMixin:
    """Mixin class to add logging capabilities to other classes."""
    log_category: CategoryLike = None
    def __init__(self):
        self._module_name = self.__class__.__name__
    @property
    def _logger(self) -> DispatchNavLogger:
        # Resolved lazily so objects created before setup_logger() follow it.
        return get_logger()
    def _with_category(self, kwargs: Dict[str, Any]) -> Dict[str, Any]:
        if 'category' not in kwargs and self.log_category is not None:
            kwargs['category'] = self.log_category
        return kwargs
    def _prefixed(self, message: str) -> str:
        name = getattr(self, '_module_name', self.__class__.__name__)
        return f"[{name}] {message}"
    def log_debug(self, message: str, **kwargs):
        self._logger.debug(self._prefixed(message), **self._with_category(kwargs))
    def log_info(self, message: str, **kwargs):
        self._logger.info(self._prefixed(message), **self._with_category(kwargs))
    def log_warning(self, message: str, **kwargs):
        self._logger.warning(self._prefixed(message), **self._with_category(kwargs))
    def log_error(self, message: str, exception: Optional[BaseException] = None, **kwargs):
        self._logger.error(self._prefixed(message), exception=exception,
                           **self._with_category(kwargs))
    def log_navigation_event(self, message: str, **kwargs):
        self._logger.navigation_event(self._prefixed(message), **kwargs)
    def log_user_action(self, action: str, details: Optional[Dict[str, Any]] = None):
        action_details = {'module': getattr(self, '_module_name', self.__class__.__name__)}
        if details:
            action_details.update(details)
        self._logger.log_user_action(action, action_details)
