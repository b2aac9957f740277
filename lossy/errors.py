from typing import Optional


class LossyError(Exception):
    """Base class for every error raised by the lossy package."""


class ValidationError(LossyError, ValueError):
    """A caller-supplied parameter is malformed or out of range."""


class UnknownOptionError(ValidationError):
    def __init__(self, kind: str, name: str, choices):
        self.kind = kind
        self.name = name
        self.choices = tuple(choices)
        super().__init__(
            f"Unknown {kind} '{name}'. Expected one of: {', '.join(self.choices)}."
        )


class CodecError(LossyError):
    """Decoding or encoding a raster failed."""

    def __init__(self, operation: str, message: str, path: Optional[str] = None):
        self.operation = operation
        self.path = path
        where = f" {path}" if path else ""
        super().__init__(f"Failed to {operation}{where}: {message}")


class ClusteringError(LossyError):
    """The palette-clustering engine failed; the search for this image is aborted."""


class CompressionError(LossyError):
    """The lossless optimizer rejected the input or failed to write output."""
