"""
Helper Utilities Module.

This module provides common utility functions used throughout the
work order classifier. Functions here should be generic and reusable
across different modules.

Functions:
    - ensure_directory: Create directory if it doesn't exist
    - get_file_extension: Extract file extension safely
    - safe_filename: Sanitize filenames for filesystem
    - format_file_size: Human-readable byte counts
    - elapsed_ms: Milliseconds since a time.monotonic() mark
    - run_with_deadline: Run a callable with a wall-clock deadline
"""

import re
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, Callable, Optional, Union


# Stage work that must honour a deadline runs here; a timed-out call keeps
# running in the background, its result is discarded.
_DEADLINE_POOL = ThreadPoolExecutor(max_workers=8, thread_name_prefix="deadline")


def ensure_directory(path: Union[str, Path]) -> Path:
    """
    Ensure a directory exists, creating it if necessary.

    Args:
        path: Directory path to ensure exists.

    Returns:
        Path object pointing to the directory.

    Example:
        >>> ensure_directory("storage/work_orders/2026/10")
        PosixPath('storage/work_orders/2026/10')
    """
    dir_path = Path(path)
    dir_path.mkdir(parents=True, exist_ok=True)
    return dir_path


def get_file_extension(filepath: Union[str, Path]) -> str:
    """
    Extract the file extension from a filepath.

    Returns the extension in lowercase, including the dot.
    Returns empty string if no extension exists.

    Example:
        >>> get_file_extension("scan.JPG")
        ".jpg"
    """
    return Path(filepath).suffix.lower()


def safe_filename(filename: str, replacement: str = "_") -> str:
    """
    Sanitize a filename by removing or replacing invalid characters.

    Args:
        filename: Original filename.
        replacement: Character to replace invalid characters with.

    Returns:
        Sanitized filename safe for filesystem.

    Example:
        >>> safe_filename("order:123/test.jpg")
        "order_123_test.jpg"
    """
    invalid_chars = r'[<>:"/\\|?*\x00-\x1f]'
    sanitized = re.sub(invalid_chars, replacement, filename)
    sanitized = sanitized.strip('. ')

    if not sanitized:
        sanitized = "unnamed"

    return sanitized


def format_file_size(size_bytes: float) -> str:
    """
    Format file size in human-readable format.

    Example:
        >>> format_file_size(1536)
        "1.5 KB"
    """
    for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
        if size_bytes < 1024.0:
            return f"{size_bytes:.1f} {unit}"
        size_bytes /= 1024.0
    return f"{size_bytes:.1f} PB"


def elapsed_ms(started: float) -> int:
    """Milliseconds elapsed since a time.monotonic() reading."""
    return int((time.monotonic() - started) * 1000)


def run_with_deadline(
    func: Callable[..., Any],
    timeout: Optional[float],
    *args: Any,
    **kwargs: Any
) -> Any:
    """
    Run a callable and wait at most `timeout` seconds for its result.

    Args:
        func: Callable to run.
        timeout: Deadline in seconds. None or <= 0 runs inline without one.
        *args: Positional arguments for func.
        **kwargs: Keyword arguments for func.

    Returns:
        Whatever func returns.

    Raises:
        concurrent.futures.TimeoutError: If the deadline passes first.
        Exception: Anything func raises is re-raised unchanged.
    """
    if not timeout or timeout <= 0:
        return func(*args, **kwargs)

    future = _DEADLINE_POOL.submit(func, *args, **kwargs)
    return future.result(timeout=timeout)
