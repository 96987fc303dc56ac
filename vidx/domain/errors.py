"""Typed failures raised across the indexing and delivery layers."""


class VidxError(Exception):
    """Base class for all vidx errors."""


class ConfigError(VidxError):
    """Configuration is missing or invalid; fatal at startup."""


class InvalidPath(VidxError):
    """A caller-supplied path escapes the configured root."""

    def __init__(self, rel_path: str):
        super().__init__(f"Invalid path: {rel_path!r}")
        self.rel_path = rel_path


class NotFound(VidxError):
    """Resolved path does not exist or the index has no usable record."""


class ProbeFailure(VidxError):
    """Duration extraction failed or returned a non-finite value."""


class ThumbnailFailure(VidxError):
    """Every frame-extraction attempt for a thumbnail failed."""


class RangeUnsatisfiable(VidxError):
    """Malformed or out-of-bounds Range header."""

    def __init__(self, size: int, header: str = ""):
        super().__init__(f"Range not satisfiable: {header!r} (size={size})")
        self.size = size
        self.header = header
