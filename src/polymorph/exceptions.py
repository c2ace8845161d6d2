"""
Custom exceptions for polymorph.

This module defines domain-specific exceptions that separate configuration
mistakes, template expansion failures, download and archive problems, and the
exec failures the launcher has to tell apart.
"""


class PolymorphError(Exception):
    """
    Base exception for all polymorph errors.

    All custom exceptions in polymorph inherit from this class so the CLI can
    catch every application-specific error in one place.
    """

    def __init__(self, message: str, details: str | None = None) -> None:
        """
        Initialize the exception.

        Args:
            message: The primary error message.
            details: Optional additional context about the error.
        """
        self.message = message
        self.details = details
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} - {self.details}"
        return self.message


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigurationError(PolymorphError):
    """
    Exception raised when a template is invalid or incomplete.

    This includes:
    - Unreadable or unparsable template files
    - Missing or mistyped template fields
    - Templates declaring no fetcher, or more than one
    """

    pass


class ConfigFileError(ConfigurationError):
    """Exception raised when a template file cannot be read."""

    pass


class ConfigValidationError(ConfigurationError):
    """Exception raised when template validation fails."""

    pass


# =============================================================================
# Template Expansion Errors
# =============================================================================


class TemplateExpansionError(PolymorphError):
    """
    Base exception for template string expansion failures.

    Attributes:
        pattern: The template string that failed to expand.
    """

    def __init__(
        self,
        message: str,
        pattern: str | None = None,
        details: str | None = None,
    ) -> None:
        super().__init__(message, details)
        self.pattern = pattern


class TemplateSyntaxError(TemplateExpansionError):
    """Exception raised when a template string cannot be parsed."""

    pass


class TemplateResolutionError(TemplateExpansionError):
    """
    Exception raised when a template references an unknown parameter.

    Attributes:
        key: The parameter name that was not found.
    """

    def __init__(
        self,
        message: str,
        key: str | None = None,
        pattern: str | None = None,
        details: str | None = None,
    ) -> None:
        super().__init__(message, pattern, details)
        self.key = key


# =============================================================================
# Download Errors
# =============================================================================


class DownloadError(PolymorphError):
    """
    Base exception for download-related errors.

    Attributes:
        url: The URL that was being downloaded when the error occurred.
    """

    def __init__(
        self,
        message: str,
        url: str | None = None,
        details: str | None = None,
    ) -> None:
        super().__init__(message, details)
        self.url = url


class NetworkError(DownloadError):
    """
    Exception raised for transport-level download failures.

    This includes:
    - DNS resolution failures
    - Connection refused or reset
    - Connections dropped mid-stream
    - SSL/TLS errors
    """

    pass


class HTTPError(DownloadError):
    """
    Exception raised when the server answers with a non-success status.

    Attributes:
        status_code: The HTTP status code returned by the server.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        url: str | None = None,
        details: str | None = None,
    ) -> None:
        super().__init__(message, url, details)
        self.status_code = status_code


# =============================================================================
# Archive Errors
# =============================================================================


class ArchiveError(PolymorphError):
    """
    Exception raised for archive-related errors.

    Attributes:
        archive_path: The archive entry being processed, when known.
    """

    def __init__(
        self,
        message: str,
        archive_path: str | None = None,
        details: str | None = None,
    ) -> None:
        super().__init__(message, details)
        self.archive_path = archive_path


class DecodeError(ArchiveError):
    """Exception raised when a compressed tar stream cannot be decoded."""

    pass


# =============================================================================
# File System Errors
# =============================================================================


class FileSystemError(PolymorphError):
    """
    Exception raised for file system-related errors.

    This includes:
    - Cache directories that cannot be created
    - Files that cannot be written
    - Publish renames failing for reasons other than a lost race
    """

    def __init__(
        self,
        message: str,
        path: str | None = None,
        details: str | None = None,
    ) -> None:
        super().__init__(message, details)
        self.path = path


# =============================================================================
# Fetch and Exec Errors
# =============================================================================


class FetchError(PolymorphError):
    """Exception raised when populating a version directory fails."""

    pass


class ExecError(PolymorphError):
    """
    Base exception for failures to execute a cached executable.

    Attributes:
        path: The executable path that was being executed.
    """

    def __init__(
        self,
        message: str,
        path: str | None = None,
        details: str | None = None,
    ) -> None:
        super().__init__(message, details)
        self.path = path


class ExecNotFoundError(ExecError):
    """Exception raised when the executable does not exist (ENOENT)."""

    pass


class ExecFailedError(ExecError):
    """Exception raised for any other exec failure (permission, format, ...)."""

    pass
