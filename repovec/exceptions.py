"""Error taxonomy shared by the ingestion pipeline and the query-time store"""


class RepovecError(Exception):
    """Base class for all repovec errors"""

    pass


class ConfigurationError(RepovecError):
    """Raised when required credentials or paths are missing or invalid

    Always raised before the pipeline mutates any state.
    """

    pass


class ProviderError(RepovecError):
    """Raised when a call to an external provider (embedding, listing) fails"""

    def __init__(self, message: str, cause: Exception | None = None):
        self.message = message
        self.cause = cause
        super().__init__(message)


class TokenizationError(RepovecError):
    """Raised when text cannot be split into tokens without loss"""

    pass


class PartialFailure(RepovecError):
    """Isolated failure of one concurrent unit of work

    Recorded in stage reports; never aborts sibling units.
    """

    def __init__(self, unit: str, cause: Exception):
        self.unit = unit
        self.cause = cause
        super().__init__(f"{unit}: {cause}")

    def describe(self) -> str:
        return f"{self.unit}: {type(self.cause).__name__}: {self.cause}"


class SnapshotError(RepovecError):
    """Raised when exporting or loading a snapshot fails"""

    pass


class SnapshotNotFoundError(SnapshotError):
    """Snapshot is missing, misconfigured, or has an unsupported schema version"""

    pass


class SnapshotFormatError(SnapshotError):
    """Snapshot exists but is malformed"""

    pass
