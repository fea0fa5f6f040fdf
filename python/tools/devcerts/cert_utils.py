#!/usr/bin/env python3
"""
Certificate utility functions.

This module provides utility functions for certificate operations, such as
directory handling, scoped temporary files and logging decorators.
"""

import base64
import os
import secrets
import tempfile
from contextlib import contextmanager
from functools import wraps
from pathlib import Path
from typing import Any, Callable, Iterator, Optional

from loguru import logger


def ensure_directory_exists(path: Path) -> None:
    """
    Ensure the specified directory exists, creating it if necessary.

    Args:
        path: The directory path to check/create

    Raises:
        OSError: If directory creation fails
    """
    try:
        path.mkdir(exist_ok=True, parents=True)
    except OSError as e:
        logger.error(f"Failed to create directory {path}: {e}")
        raise


def log_operation(func: Callable) -> Callable:
    """
    Decorator to log function calls and their results.

    Args:
        func: The function to decorate

    Returns:
        The decorated function
    """
    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        logger.debug(f"Calling {func.__name__}")
        try:
            result = func(*args, **kwargs)
            logger.debug(f"{func.__name__} completed successfully")
            return result
        except Exception as e:
            logger.error(f"Error in {func.__name__}: {str(e)}")
            raise
    return wrapper


@contextmanager
def temporary_file(data: Optional[bytes] = None, suffix: str = "") -> Iterator[Path]:
    """
    Yield the path of a private temporary file that is deleted on exit.

    The file is removed on every exit path, including exceptions raised by
    the caller. A failure to remove it is logged and otherwise ignored.

    Args:
        data: Optional content written to the file before it is yielded
        suffix: File name suffix, useful for tools that sniff extensions
    """
    fd, name = tempfile.mkstemp(suffix=suffix)
    path = Path(name)
    try:
        with os.fdopen(fd, "wb") as handle:
            if data is not None:
                handle.write(data)
        yield path
    finally:
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Failed to delete temporary file {path}: {e}")


def generate_transit_password() -> str:
    """Random password protecting key material while it is handed to a platform tool."""
    return base64.b64encode(secrets.token_bytes(36)).decode("ascii")
