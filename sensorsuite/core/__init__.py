from .buffered_log import BufferedLog, FlushPolicy, LogSession, format_csv_row, generate_subject_id
from .dispatcher import CrossThreadDispatcher
from .errors import (
    BackgroundSaveError,
    ConfigurationError,
    LogIOError,
    SensorSuiteError,
    SensorUnavailable,
    TransientReadError,
)
from .logging_utils import get_module_logger
from .shutdown import ShutdownCoordinator, ShutdownState
from .task_manager import AsyncTaskManager

__all__ = [
    'AsyncTaskManager',
    'BackgroundSaveError',
    'BufferedLog',
    'ConfigurationError',
    'CrossThreadDispatcher',
    'FlushPolicy',
    'LogIOError',
    'LogSession',
    'SensorSuiteError',
    'SensorUnavailable',
    'ShutdownCoordinator',
    'ShutdownState',
    'TransientReadError',
    'format_csv_row',
    'generate_subject_id',
    'get_module_logger',
]
