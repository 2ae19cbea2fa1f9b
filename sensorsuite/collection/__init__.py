from .captures import AudioSegmentRecorder, FrameCapture, write_wav
from .scheduler import Category, CollectionState, PeriodicTimer, SamplingScheduler
from .schema import FIXED_COLUMNS, NA, RowKind, build_row, header
from .snapshot import SensorSnapshot, SessionContext, SnapshotCollector

__all__ = [
    'AudioSegmentRecorder',
    'Category',
    'CollectionState',
    'FIXED_COLUMNS',
    'FrameCapture',
    'NA',
    'PeriodicTimer',
    'RowKind',
    'SamplingScheduler',
    'SensorSnapshot',
    'SessionContext',
    'SnapshotCollector',
    'build_row',
    'header',
    'write_wav',
]
