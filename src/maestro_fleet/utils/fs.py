"""
maestro-fleet — filesystem utilities

File: src/maestro_fleet/utils/fs.py

Purpose
- Provide atomic writes for host-side replicas and scratch files for credential extraction.

Functional requirements
- Atomic writes use temp files in the destination directory and replace in a single step.
- Scratch files are always removed on exit, whether or not the body raised.

Non-functional requirements
- Standard library only.
"""

from __future__ import annotations

import contextlib
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator

PathLike = str | os.PathLike[str]

__all__ = [
    "atomic_write",
    "scratch_file",
]


def atomic_write(
    path: PathLike,
    data: bytes | str,
    *,
    encoding: str = "utf-8",
    mode: int | None = None,
    make_parents: bool = False,
) -> None:
    """
    Atomically write ``data`` to ``path``.

    The write strategy is:
    1. create temp file in the same directory,
    2. write + flush + fsync file data,
    3. apply ``mode`` if given,
    4. replace target via ``os.replace``.
    """

    target = Path(path)
    if make_parents:
        target.parent.mkdir(parents=True, exist_ok=True)
    target_parent = target.parent.resolve(strict=True)
    if not target_parent.is_dir():
        raise NotADirectoryError(f"{target_parent!s} is not a directory")

    fd, temp_name = tempfile.mkstemp(
        prefix=f".{target.name}.",
        suffix=".tmp",
        dir=str(target_parent),
    )
    temp_path = Path(temp_name)

    try:
        if isinstance(data, bytes):
            with os.fdopen(fd, "wb") as file_handle:
                file_handle.write(data)
                file_handle.flush()
                os.fsync(file_handle.fileno())
        else:
            with os.fdopen(fd, "w", encoding=encoding) as file_handle:
                file_handle.write(data)
                file_handle.flush()
                os.fsync(file_handle.fileno())

        if mode is not None:
            os.chmod(temp_path, mode)
        os.replace(temp_path, target)
    except Exception:
        with contextlib.suppress(OSError):
            temp_path.unlink(missing_ok=True)
        raise


@contextmanager
def scratch_file(
    *,
    prefix: str = "maestro-",
    suffix: str = "",
    directory: PathLike | None = None,
    content: bytes | None = None,
) -> Iterator[Path]:
    """Yield a private temp file path and delete it unconditionally on exit.

    The file is created with mode 0600. When ``content`` is given it is written
    before the path is yielded.
    """

    fd, name = tempfile.mkstemp(
        prefix=prefix,
        suffix=suffix,
        dir=None if directory is None else str(directory),
    )
    path = Path(name)
    try:
        with os.fdopen(fd, "wb") as handle:
            if content is not None:
                handle.write(content)
        yield path
    finally:
        with contextlib.suppress(OSError):
            path.unlink(missing_ok=True)
