from .config import build_scheduler, build_sources, load_config
from .scheduler import FeedScheduler
from .schemas import Indicator, IndicatorType, Severity, Snapshot, SourceConfig

__version__ = "0.1.0"

__all__ = [
    "FeedScheduler",
    "Indicator",
    "IndicatorType",
    "Severity",
    "Snapshot",
    "SourceConfig",
    "build_scheduler",
    "build_sources",
    "load_config",
]
