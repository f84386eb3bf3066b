"""Error taxonomy shared by every DepRadar component.

``ValidationError`` is local and never retried.  ``TransientIOError`` is
retried by the caller with backoff.  ``IntegrityError`` is never retried
within a run; the affected shard keeps its previous sync state.
``PartialDataWarning`` is logged and the offending record skipped.
"""


class DepRadarError(Exception):
    """Base class for all DepRadar errors.

    Attributes:
        message: Human-readable description.
        code: Machine-readable error code (e.g. ``LOCK_TIMEOUT``).
    """

    retryable = False

    def __init__(self, message: str, code: str = "DEPRADAR_ERROR"):
        super().__init__(message)
        self.message = message
        self.code = code


# ─────────────────────────────────────────────────────────────────────────────
# Validation
# ─────────────────────────────────────────────────────────────────────────────


class ValidationError(DepRadarError):
    """Malformed input supplied by the caller (query, identifier, record)."""

    @classmethod
    def malformed_identifier(cls, text: str, reason: str) -> "ValidationError":
        return cls(f"Malformed identifier '{text}': {reason}", "MALFORMED_IDENTIFIER")


class QuerySyntaxError(ValidationError):
    """A search string could not be parsed into a query."""

    def __init__(self, message: str, query: str = "", position: int | None = None):
        super().__init__(message, "QUERY_SYNTAX")
        self.query = query
        self.position = position


class SyncStateError(ValidationError):
    """A persisted sync state record is missing keys or has bad values."""

    @classmethod
    def missing_keys(cls, shard: str, keys: list[str]) -> "SyncStateError":
        return cls(
            f"Sync state for shard '{shard}' is missing required key(s): {', '.join(sorted(keys))}",
            "SYNC_STATE_MISSING_KEYS",
        )

    @classmethod
    def invalid_value(cls, key: str, value: str, reason: str) -> "SyncStateError":
        return cls(f"Sync state key '{key}' has invalid value '{value}': {reason}", "SYNC_STATE_INVALID")


class InvalidDirectoryError(ValidationError):
    """The directory to lock does not exist or is not a directory."""


# ─────────────────────────────────────────────────────────────────────────────
# Transient I/O
# ─────────────────────────────────────────────────────────────────────────────


class TransientIOError(DepRadarError):
    """Network or lock failure that may succeed on a later attempt."""

    retryable = True


class FeedFetchError(TransientIOError):
    """An HTTP fetch of a feed descriptor or payload failed.

    Attributes:
        url: URL that was requested.
        status: HTTP status code, if a response was received.
    """

    def __init__(self, message: str, url: str = "", status: int | None = None, code: str = "FEED_FETCH_FAILED"):
        super().__init__(message, code)
        self.url = url
        self.status = status

    @classmethod
    def bad_status(cls, url: str, status: int) -> "FeedFetchError":
        return cls(f"GET {url} returned HTTP {status}", url=url, status=status)


class RateLimitedError(FeedFetchError):
    """The remote answered 429; must not be retried immediately.

    Attributes:
        retry_after: Seconds the server asked us to wait, if provided.
    """

    retryable = False

    def __init__(self, url: str, retry_after: float | None = None):
        super().__init__(f"Rate limited by {url}", url=url, status=429, code="RATE_LIMITED")
        self.retry_after = retry_after


class LockTimeoutError(TransientIOError):
    """The directory lock was not obtained within the maximum wait."""

    @classmethod
    def not_obtained(cls, directory: str, mode: str, waited: float) -> "LockTimeoutError":
        return cls(
            f"Unable to obtain {mode} lock on '{directory}' after {waited:.1f}s",
            "LOCK_TIMEOUT",
        )


# ─────────────────────────────────────────────────────────────────────────────
# Integrity and data quality
# ─────────────────────────────────────────────────────────────────────────────


class IntegrityError(DepRadarError):
    """Downloaded payload failed its hash/size check or is structurally bad."""

    @classmethod
    def hash_mismatch(cls, shard: str, expected: str, actual: str) -> "IntegrityError":
        return cls(
            f"Shard '{shard}' sha256 mismatch: descriptor {expected}, payload {actual}",
            "HASH_MISMATCH",
        )

    @classmethod
    def size_mismatch(cls, shard: str, what: str, expected: int, actual: int) -> "IntegrityError":
        return cls(
            f"Shard '{shard}' {what} mismatch: descriptor {expected}, payload {actual}",
            "SIZE_MISMATCH",
        )

    @classmethod
    def unrecognized_structure(cls, shard: str, reason: str) -> "IntegrityError":
        return cls(f"Shard '{shard}' has an unrecognized structure: {reason}", "BAD_STRUCTURE")


class PartialDataWarning(UserWarning):
    """One malformed record inside an otherwise valid shard.

    Attributes:
        shard: Shard the record came from.
        record_id: Identifier of the record, when one could be read.
        reason: Why the record was skipped.
    """

    def __init__(self, shard: str, record_id: str | None, reason: str):
        super().__init__(f"Skipped record {record_id or '<unknown>'} in shard '{shard}': {reason}")
        self.shard = shard
        self.record_id = record_id
        self.reason = reason


# ─────────────────────────────────────────────────────────────────────────────
# Run-level
# ─────────────────────────────────────────────────────────────────────────────


class IndexClosedError(DepRadarError):
    """The CPE index was used before ``open()`` or after ``close()``."""

    def __init__(self, message: str = "The CPE index is not open"):
        super().__init__(message, "INDEX_CLOSED")


class AnalysisError(DepRadarError):
    """Evidence extraction, identification, or matching failed for one dependency."""


class UpdateError(DepRadarError):
    """The synchronization run as a whole could not complete."""
