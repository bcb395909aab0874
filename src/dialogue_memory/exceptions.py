"""
Dialogue memory exceptions.

Hot paths (append, enqueue, retrieve) never raise for missing entities or
empty text; these exceptions cover I/O, persistence and backend failures.
"""


class MemorySystemError(Exception):
    """Base exception for the memory system."""

    pass


class StorageError(MemorySystemError):
    """Persisted blob could not be read or written."""

    def __init__(self, message: str, path: str | None = None):
        self.path = path
        super().__init__(message)


class VersionMismatchError(StorageError):
    """Persisted blob carries a format version other than the current one."""

    def __init__(self, path: str, found: int, expected: int):
        self.found = found
        self.expected = expected
        super().__init__(
            f"Version mismatch in {path}: found v{found}, expected v{expected}",
            path=path,
        )


class EmbeddingError(MemorySystemError):
    """Local embedding inference failed."""

    pass


class RemoteEmbeddingError(EmbeddingError):
    """Remote embedding API call failed."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class QuotaExceededError(RemoteEmbeddingError):
    """Remote embedding API rejected the call for quota or rate reasons."""

    pass


class SummarizerError(MemorySystemError):
    """Summarizer produced no usable output."""

    pass
