import os
from pathlib import Path, PurePosixPath
from typing import Union
from vidx.domain.errors import InvalidPath


def resolve_safe_path(root: Union[str, Path], rel_path: str) -> Path:
    """Resolve ``rel_path`` against ``root`` without touching the filesystem.

    Raises InvalidPath for absolute paths, NUL bytes, or anything that
    normalizes to a location outside ``root``. An empty path is the root.
    """
    if "\x00" in rel_path or os.path.isabs(rel_path) or PurePosixPath(rel_path).is_absolute():
        raise InvalidPath(rel_path)

    root_abs = os.path.normpath(os.path.abspath(str(root)))
    candidate = os.path.normpath(os.path.join(root_abs, rel_path))
    try:
        common = os.path.commonpath([root_abs, candidate])
    except ValueError:
        # Different drives on Windows
        raise InvalidPath(rel_path) from None
    if common != root_abs:
        raise InvalidPath(rel_path)
    return Path(candidate)
