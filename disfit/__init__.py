"""
disfit - fit a video under a size limit by re-encoding it with an adaptive bitrate
"""

from .bitrate_allocator import BitrateAllocator
from .config_manager import ConfigManager, TranscodeSettings
from .error_handler import (
    TranscodeError,
    BudgetInfeasibleError,
    TargetNotMetError,
)
from .pass_controller import PassController

__version__ = "0.1.0"

__all__ = [
    'BitrateAllocator',
    'ConfigManager',
    'TranscodeSettings',
    'TranscodeError',
    'BudgetInfeasibleError',
    'TargetNotMetError',
    'PassController',
]
