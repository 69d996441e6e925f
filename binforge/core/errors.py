"""Error taxonomy for resolution, builds, cache transport and manifests.

Every error raised on purpose by binforge derives from ``BinforgeError`` so
the CLI can report it uniformly and exit non-zero. Nothing here is retried
automatically.
"""

from __future__ import annotations


class BinforgeError(RuntimeError):
    """Base class for all binforge errors."""


class ConfigurationError(BinforgeError):
    """Raised for an unusable configuration.

    Covers a missing or malformed project file, zero or several configured
    cache backends, and a remote manifest entry whose checksum cannot be
    derived.
    """


class ResolutionError(BinforgeError):
    """Raised when a dependency kind's resolve step fails."""

    def __init__(self, kind: str, message: str) -> None:
        self.kind = kind
        super().__init__(f"Failed to resolve {kind} dependencies: {message}")


class BuildError(BinforgeError):
    """Raised when building or fetching a product fails."""

    def __init__(self, product: str, message: str) -> None:
        self.product = product
        super().__init__(f"Failed to build {product}: {message}")


class CacheTransportError(BinforgeError):
    """Raised when an existence check, download or upload fails unexpectedly."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        body: str | None = None,
    ) -> None:
        self.status_code = status_code
        self.body = body
        if status_code is not None:
            message = f"{message} (status {status_code})"
        super().__init__(message)


class CacheNotFoundError(BinforgeError):
    """Raised by ``get`` when the cache key is absent."""

    def __init__(self, product: str, version: str) -> None:
        self.product = product
        self.version = version
        super().__init__(f"{product}-{version} not found in cache")


class CacheWriteError(BinforgeError):
    """Raised when a local cache write or copy fails."""


class ChecksumMismatchError(BinforgeError):
    """Raised when a payload's SHA-256 does not match the expected digest.

    Always fatal: it indicates cache or content corruption.
    """

    def __init__(self, product: str, expected: str, actual: str) -> None:
        self.product = product
        self.expected = expected
        self.actual = actual
        super().__init__(
            f'Checksum does not match for "{product}" '
            f"(expected {expected}, got {actual})"
        )


class CompressionError(BinforgeError):
    """Raised when zipping an artifact fails."""

    def __init__(self, name: str, path: object, reason: str = "") -> None:
        self.name = name
        self.path = path
        detail = f": {reason}" if reason else ""
        super().__init__(f"Failed to zip artifact ({name}) at {path}{detail}")


class CommandError(BinforgeError):
    """Raised when an external command exits with a non-zero status."""

    def __init__(self, command: str, status: int, stderr: str = "") -> None:
        self.command = command
        self.status = status
        self.stderr = stderr
        detail = f": {stderr.strip()}" if stderr.strip() else ""
        super().__init__(f"Command `{command}` failed with status {status}{detail}")
