"""Exceptions related to harbor-resource.

Every terminal failure of the `out` pipeline is a subclass of
`ResourceException` and carries the process exit code that the command line
tool reports for it.
"""

__all__ = [
    "ResourceException",
    "InputException",
    "CommandException",
    "HelmException",
    "GpgException",
    "VersionMissingError",
    "VersionRangeError",
    "ChartNotFoundError",
    "ChartDescriptorError",
    "PackagingError",
    "InspectionError",
    "PackageMissingError",
    "SigningConfigError",
    "SigningImportError",
    "SigningKeyIdNotFoundError",
    "RegistryException",
    "RegistryTransportError",
    "UploadStatusError",
    "UploadRejectedError",
    "UploadNotSavedError",
    "VersionMismatchError",
    "FetchRetryExhaustedError",
]


class ResourceException(Exception):
    """Generic base exception used for this library."""

    exit_code: int = 1


class InputException(ResourceException):
    """Raised when the request envelope is not formatted as expected."""

    exit_code = 502


class CommandException(ResourceException):
    """Raised when there is a failure running a subcommand."""

    def __init__(self, message: str, returncode: int | None = None) -> None:
        super().__init__(message)
        self.returncode = returncode


class HelmException(CommandException):
    """Raised when there is a failure running a helm command."""

    exit_code = 150


class GpgException(CommandException):
    """Raised when there is a failure running a gpg command."""

    exit_code = 333


class VersionMissingError(ResourceException):
    """Raised when no chart version can be determined from any source."""

    exit_code = 103


class VersionRangeError(ResourceException):
    """Raised when the requested version does not satisfy `source.version_range`."""

    exit_code = 104

    def __init__(self, version: str, version_range: str) -> None:
        super().__init__(
            f"params.version ({version}) does not satisfy contents of "
            f"source.version_range ({version_range})"
        )
        self.version = version
        self.version_range = version_range


class ChartNotFoundError(ResourceException):
    """Raised when the chart directory does not exist."""

    exit_code = 110


class ChartDescriptorError(ResourceException):
    """Raised when the Chart.yaml of a chart cannot be read or parsed."""

    exit_code = 111


class PackagingError(HelmException):
    """Raised when adding repositories, building dependencies or packaging fails."""


class InspectionError(HelmException):
    """Raised when the packaged chart cannot be inspected."""

    exit_code = 121


class PackageMissingError(ResourceException):
    """Raised when helm did not produce the expected chart archive."""

    exit_code = 160


class SigningConfigError(ResourceException):
    """Raised when signing is requested without any key material."""

    exit_code = 332


class SigningImportError(GpgException):
    """Raised when the gpg key import exits with a non-zero return code."""

    def __init__(self, returncode: int, transcript: str = "") -> None:
        message = f"gpg import returned exit code {returncode}"
        if transcript:
            message = f"{message}\n{transcript}"
        super().__init__(message, returncode)


class SigningKeyIdNotFoundError(ResourceException):
    """Raised when gpg succeeded but the imported key id can't be determined.

    The `line` attribute holds the transcript line mentioning the imported
    secret key when one existed but did not match the expected format, and
    is None when no such line was present at all.
    """

    exit_code = 334

    def __init__(self, line: str | None = None) -> None:
        if line is None:
            reason = "Line with key ID not found"
        else:
            reason = f"Unexpected format of line {line!r}"
        super().__init__(
            f"Unable to determine Key ID after successful import: {reason}"
        )
        self.line = line


class RegistryException(ResourceException):
    """Base class for failures talking to the chart registry."""


class RegistryTransportError(RegistryException):
    """Raised when a request to the registry could not be completed."""

    exit_code = 601


class UploadStatusError(RegistryException):
    """Raised when the registry answers an upload with a status other than 201."""

    exit_code = 600

    def __init__(self, status: int, reason: str | None) -> None:
        super().__init__(
            f'An error occured while uploading the chart: "{status} - {reason or ""}"'
        )
        self.status = status
        self.reason = reason


class UploadRejectedError(RegistryException):
    """Raised when the upload response contains an error message."""

    exit_code = 602

    def __init__(self, error: str) -> None:
        super().__init__(f'An error occured while uploading the chart: "{error}"')
        self.error = error


class UploadNotSavedError(RegistryException):
    """Raised when the registry accepted the upload but did not persist it."""

    exit_code = 603

    def __init__(self, saved: object) -> None:
        super().__init__(
            f"Helm chart has not been saved. (Return value from server: saved={saved})"
        )
        self.saved = saved


class VersionMismatchError(RegistryException):
    """Raised when the registry reports a different version than was uploaded."""

    exit_code = 203

    def __init__(self, expected: str, actual: str | None) -> None:
        super().__init__(
            f"Version mismatch in uploaded Helm Chart. Got: {actual}, expected: {expected}"
        )
        self.expected = expected
        self.actual = actual


class FetchRetryExhaustedError(RegistryException):
    """Raised when the uploaded chart never became visible in the registry."""

    exit_code = 710

    def __init__(self, url: str, attempts: int, last_status: int | None) -> None:
        super().__init__(
            f"Download of chart information from {url} failed after {attempts} "
            f"attempts (last status: {last_status})"
        )
        self.url = url
        self.attempts = attempts
        self.last_status = last_status
