"""Atomic file I/O operations."""

import os
import logging
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


def atomic_write_text(
    file_path: Path,
    content: str,
    max_retries: int = 3,
    mode: Optional[int] = None,
) -> None:
    """
    Atomically write content to a file using temp file + rename.

    The temp file lives next to the target so the final ``os.replace`` never
    crosses a filesystem boundary. Readers see either the old file or the new
    one, never a partial write.

    Args:
        file_path: Target file path
        content: Text content to write
        max_retries: Maximum number of retry attempts on failure
        mode: Permission bits to apply to the new file (keeps the target's
            existing bits when omitted)

    Raises:
        OSError: If write fails after all retries
    """
    file_path = Path(file_path)
    file_path.parent.mkdir(parents=True, exist_ok=True)

    if mode is None and file_path.exists():
        mode = file_path.stat().st_mode & 0o7777

    # Use PID to avoid temp file collisions between processes
    tmp_file = file_path.with_name(f".{file_path.name}.tmp.{os.getpid()}")

    last_error = None
    for attempt in range(max_retries):
        try:
            tmp_file.write_text(content)
            if mode is not None:
                os.chmod(tmp_file, mode)
            os.replace(tmp_file, file_path)
            return
        except OSError as e:
            last_error = e
            if attempt < max_retries - 1:
                logger.warning(
                    f"Failed to write {file_path} (attempt {attempt + 1}/{max_retries}): {e}"
                )
            continue
        finally:
            # Clean up temp file if it still exists
            if tmp_file.exists():
                try:
                    tmp_file.unlink()
                except OSError:
                    pass

    # All retries failed
    logger.error(f"Failed to write {file_path} after {max_retries} attempts: {last_error}")
    raise last_error


def write_if_changed(file_path: Path, original: str, updated: str) -> bool:
    """Write ``updated`` only when it differs from ``original``.

    Returns True when the file was rewritten.
    """
    if updated == original:
        return False
    atomic_write_text(file_path, updated)
    return True
