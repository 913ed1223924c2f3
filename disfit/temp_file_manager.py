# temp_file_manager.py
import logging
from pathlib import Path

logger = logging.getLogger(__name__)


class TempFileManager:
    """Tracks intermediate artifacts and ensures cleanup."""
    _temp_files = set()

    @classmethod
    def register(cls, file_path):
        """Register an intermediate file for cleanup."""
        cls._temp_files.add(Path(file_path))

    @classmethod
    def unregister(cls, file_path):
        """Unregister a file (if it was moved or already cleaned)."""
        cls._temp_files.discard(Path(file_path))

    @classmethod
    def discard(cls, file_path):
        """Remove a single file now and stop tracking it."""
        path = Path(file_path)
        try:
            path.unlink()
            logger.debug(f"Removed intermediate file: {path}")
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.error(f"Failed to remove intermediate file {path}: {e}")
        cls.unregister(path)

    @classmethod
    def cleanup(cls):
        """Clean up all registered files."""
        for file_path in cls._temp_files.copy():
            cls.discard(file_path)

    @classmethod
    def list_temp_files(cls):
        return list(cls._temp_files)
