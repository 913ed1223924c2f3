"""
Error Handling Module
Defines the transcode error taxonomy and turns failures into stage-aware diagnostics
for the command line layer.
"""

import logging
from typing import Dict, Any, List, Optional
from dataclasses import dataclass
from enum import Enum

logger = logging.getLogger(__name__)


class TranscodeError(Exception):
    """Base class for every failure raised by the transcode controller"""

    stage = "transcode"

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = str(path) if path is not None else None


class ContainerOpenError(TranscodeError):
    """Source or output container could not be opened or probed"""
    stage = "container open"


class DecodeError(TranscodeError):
    stage = "decode"


class EncoderNotFoundError(TranscodeError):
    stage = "encoder lookup"


class EncodeError(TranscodeError):
    stage = "encode"


class MuxError(TranscodeError):
    """Writing the container header, a packet or the trailer failed"""
    stage = "mux"


class MetadataReadError(TranscodeError):
    """The produced artifact's size could not be read"""
    stage = "metadata read"


class PipelineStateError(TranscodeError):
    stage = "pipeline"


class BudgetInfeasibleError(TranscodeError):
    """The size budget leaves no usable bitrate for a track"""

    stage = "bitrate allocation"

    def __init__(self, message: str, target_bytes: float = 0.0, other_track_bytes: float = 0.0,
                 bitrate: float = 0.0, minimum_bitrate: float = 0.0):
        super().__init__(message)
        self.target_bytes = target_bytes
        self.other_track_bytes = other_track_bytes
        self.bitrate = bitrate
        self.minimum_bitrate = minimum_bitrate

    def get_detailed_message(self) -> str:
        """Get detailed error message with the numbers that made the budget infeasible"""
        base_msg = f"{self}"
        base_msg += (f"\nTarget: {self.target_bytes / (1024 * 1024):.2f}MB, "
                     f"companion tracks: {self.other_track_bytes / (1024 * 1024):.2f}MB")
        if self.minimum_bitrate:
            base_msg += f"\nComputed {self.bitrate:.0f}bps < {self.minimum_bitrate:.0f}bps floor"
        return base_msg


class TargetNotMetError(TranscodeError):
    """Every allowed attempt produced an artifact over the size budget"""

    stage = "size convergence"

    def __init__(self, message: str, attempts: int = 0, best_size_bytes: Optional[int] = None,
                 target_bytes: int = 0):
        super().__init__(message)
        self.attempts = attempts
        self.best_size_bytes = best_size_bytes
        self.target_bytes = target_bytes


class ErrorCategory(Enum):
    """Categories of processing errors for reporting"""
    CONTAINER = "container"
    DECODE = "decode"
    ENCODER = "encoder"
    MUX = "mux"
    METADATA = "metadata"
    BUDGET = "budget"
    CONVERGENCE = "convergence"
    PERMISSION = "permission"
    GENERAL = "general"


@dataclass
class ProcessingError:
    """Structured representation of a processing error"""
    category: ErrorCategory
    stage: str
    message: str
    file_path: str
    exception_type: str
    suggestions: List[str]
    retryable: bool = False

    def get_short_description(self) -> str:
        return f"{self.stage}: {self.message}"

    def get_detailed_description(self) -> str:
        """Get detailed error description with suggestions"""
        base = f"Error during {self.stage} for {self.file_path}: {self.message}"
        if self.suggestions:
            base += "\nSuggestions:\n" + "\n".join(f"  • {s}" for s in self.suggestions)
        return base


_CATEGORY_BY_TYPE = [
    (ContainerOpenError, ErrorCategory.CONTAINER),
    (DecodeError, ErrorCategory.DECODE),
    (EncoderNotFoundError, ErrorCategory.ENCODER),
    (EncodeError, ErrorCategory.ENCODER),
    (MuxError, ErrorCategory.MUX),
    (MetadataReadError, ErrorCategory.METADATA),
    (BudgetInfeasibleError, ErrorCategory.BUDGET),
    (TargetNotMetError, ErrorCategory.CONVERGENCE),
]

_SUGGESTIONS = {
    ErrorCategory.CONTAINER: [
        "Check that the input file exists and is a readable media container",
        "Check that the output directory is writable",
    ],
    ErrorCategory.DECODE: [
        "Check video file integrity",
        "Try remuxing the source with ffmpeg before compressing",
    ],
    ErrorCategory.ENCODER: [
        "Check that your FFmpeg/PyAV build ships the configured encoder",
        "Review size_fit.video.encoder_options for malformed entries",
    ],
    ErrorCategory.MUX: [
        "Check free disk space",
        "Drop unsupported tracks via size_fit.container.copy_mediums",
    ],
    ErrorCategory.METADATA: [
        "Check that nothing else removed or locked the output file",
    ],
    ErrorCategory.BUDGET: [
        "Increase target size",
        "Lower size_fit.video.min_bitrate_kbps",
    ],
    ErrorCategory.CONVERGENCE: [
        "Increase size_fit.max_attempts",
        "Increase target size if possible",
    ],
    ErrorCategory.PERMISSION: [
        "Check file permissions",
        "Ensure output directory is writable",
    ],
    ErrorCategory.GENERAL: [],
}


class ErrorHandler:
    """Centralized categorization of transcode failures"""

    def __init__(self):
        self.error_counts = {category: 0 for category in ErrorCategory}
        self.processed_errors: List[ProcessingError] = []

    def categorize_error(self, exception: Exception, file_path: str) -> ProcessingError:
        """Categorize an exception into a structured ProcessingError"""
        category = ErrorCategory.GENERAL
        for exc_type, candidate in _CATEGORY_BY_TYPE:
            if isinstance(exception, exc_type):
                category = candidate
                break
        else:
            if isinstance(exception, PermissionError):
                category = ErrorCategory.PERMISSION

        if isinstance(exception, TranscodeError):
            stage = exception.stage
        elif category == ErrorCategory.PERMISSION:
            stage = "file access"
        else:
            stage = "unexpected"

        if isinstance(exception, BudgetInfeasibleError):
            message = exception.get_detailed_message()
        else:
            message = str(exception)

        return ProcessingError(
            category=category,
            stage=stage,
            message=message,
            file_path=file_path,
            exception_type=type(exception).__name__,
            suggestions=list(_SUGGESTIONS[category]),
            retryable=category == ErrorCategory.CONVERGENCE,
        )

    def handle_error(self, exception: Exception, file_path: str) -> ProcessingError:
        """Categorize, record and log an error"""
        error = self.categorize_error(exception, file_path)
        self.error_counts[error.category] += 1
        self.processed_errors.append(error)
        logger.error(error.get_short_description())
        logger.debug(error.get_detailed_description())
        return error

    def get_error_summary(self) -> Dict[str, Any]:
        """Get summary of all handled errors"""
        return {
            'total_errors': len(self.processed_errors),
            'by_category': {
                category.value: count for category, count in self.error_counts.items() if count
            },
            'retryable_errors': sum(1 for e in self.processed_errors if e.retryable),
            'non_retryable_errors': sum(1 for e in self.processed_errors if not e.retryable),
        }
