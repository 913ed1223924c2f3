"""
Size Budget Monitor
Watches the growing output artifact of an in-progress pass and trips once it is over budget
"""

import os
import logging
from pathlib import Path
from typing import Optional, Union

from .error_handler import MetadataReadError

logger = logging.getLogger(__name__)


class SizeBudgetMonitor:
    """Samples the on-disk size of the active output artifact between frames.

    The monitor only stats the file; it never opens it. Once tripped it stays
    tripped for the rest of the pass.
    """

    def __init__(self, artifact_path: Union[str, Path], target_size_bytes: int, enabled: bool = True):
        self.artifact_path = Path(artifact_path)
        self.target_size_bytes = int(target_size_bytes)
        self.enabled = enabled
        self.exceeded = False
        self.samples = 0
        self.last_size: Optional[int] = None

    def sample(self) -> Optional[int]:
        """Return the artifact's current size, or None if it has not been created yet."""
        try:
            size = os.path.getsize(self.artifact_path)
        except FileNotFoundError:
            return None
        except OSError as e:
            raise MetadataReadError(f"Could not stat in-progress artifact: {e}",
                                    path=self.artifact_path) from e
        self.samples += 1
        self.last_size = size
        return size

    def check(self) -> bool:
        """Sample once and report whether the pass is over its target."""
        if self.exceeded:
            return True
        if not self.enabled:
            return False

        size = self.sample()
        if size is not None and size > self.target_size_bytes:
            self.exceeded = True
            logger.warning(f"Output already {size / (1024 * 1024):.2f}MB, over the "
                           f"{self.target_size_bytes / (1024 * 1024):.2f}MB pass target; "
                           f"stopping video feed early")
        return self.exceeded
