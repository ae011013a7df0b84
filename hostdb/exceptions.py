"""Exception hierarchy for hostdb.

Per-platform failures are counted by the pipeline and the run moves on to the
next platform. Errors marked ``fatal_to_run`` stop the whole invocation.
"""


class HostdbError(Exception):
    """Base exception for all hostdb errors."""

    fatal_to_run: bool = False


class InvalidArgument(HostdbError):
    """Raised for a malformed version, platform or database name."""

    fatal_to_run = True


class ConfigurationError(HostdbError):
    """Raised when a database config or sources.json cannot be loaded."""

    fatal_to_run = True


class SourceNotFound(HostdbError):
    """Raised when sources.json has no entry for the requested version."""

    fatal_to_run = True


class PlatformUnavailable(HostdbError):
    """Raised when a version has no source entry for a platform."""


class DownloadError(HostdbError):
    """Raised on HTTP errors, network failures or an expired download deadline."""


class ChecksumMismatch(HostdbError):
    """Raised when a file hash does not match the recorded checksum.

    Treated as a tampering or corruption signal, so the run halts.
    """

    fatal_to_run = True

    def __init__(self, label: str, expected: str, actual: str):
        super().__init__(
            f"Checksum mismatch for {label}. Expected: {expected}, Got: {actual}"
        )
        self.label = label
        self.expected = expected
        self.actual = actual


class ExtractionFailure(HostdbError):
    """Raised when the expected payload is missing after extraction."""


class BuildFailure(HostdbError):
    """Raised when a source build or cross-compilation fails."""


class ToolMissing(HostdbError):
    """Raised when a required external command is not installed."""

    def __init__(self, command: str):
        super().__init__(f"Required command not found: {command}")
        self.command = command
