"""
Progress Reporting
Rate-limited status lines for a running track pipeline
"""

import logging
import time
from typing import Optional

from tqdm import tqdm

logger = logging.getLogger('disfit.progress')


class ProgressReporter:
    """Emits a status line at most once per interval or once per N frames, whichever comes first"""

    def __init__(self, label: str, duration_seconds: Optional[float] = None,
                 interval_seconds: float = 1.0, interval_frames: int = 100,
                 show_bar: bool = False, clock=time.monotonic):
        self.label = label.upper()
        self.duration_seconds = duration_seconds
        self.interval_seconds = interval_seconds
        self.interval_frames = interval_frames
        self._clock = clock
        self.started_at = clock()
        self.last_report_at = self.started_at
        self.last_report_frame = 0
        self.frame_count = 0
        self.reports = 0
        self._bar = None
        if show_bar and duration_seconds:
            self._bar = tqdm(total=100, desc=f"Compressing {label.lower()}", unit="%",
                             bar_format="{l_bar}{bar}| {n:.1f}%")

    def frame(self, timestamp_seconds: Optional[float] = None) -> bool:
        """Count a frame; returns True if a status line was emitted."""
        self.frame_count += 1
        now = self._clock()
        if (self.frame_count - self.last_report_frame < self.interval_frames
                and now - self.last_report_at < self.interval_seconds):
            return False

        elapsed = now - self.started_at
        logger.info(f"{self.label} ELAPSED: {elapsed:8.2f}s\tFRAMES: {self.frame_count:8}\t"
                    f"TIMESTAMP: {format_timestamp(timestamp_seconds)}")
        if self._bar is not None and timestamp_seconds is not None:
            self._bar.n = min(timestamp_seconds / self.duration_seconds * 100, 100)
            self._bar.refresh()

        self.last_report_frame = self.frame_count
        self.last_report_at = now
        self.reports += 1
        return True

    def close(self):
        if self._bar is not None:
            self._bar.close()
            self._bar = None
        logger.debug(f"{self.label} finished: {self.frame_count} frames in "
                     f"{self._clock() - self.started_at:.2f}s")


def format_timestamp(seconds: Optional[float]) -> str:
    """Format media time as HH:MM:SS."""
    if seconds is None or seconds < 0:
        return "--:--:--"
    total = int(seconds)
    return f"{total // 3600:02}:{(total % 3600) // 60:02}:{total % 60:02}"
