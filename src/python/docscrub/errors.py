"""
Failure taxonomy for the anonymization pipeline.

Every failure aborts the whole operation; callers get either a complete
anonymized buffer or one of these exceptions, never a partial result.
"""


class AnonymizationError(Exception):
    """Base error carrying a stable code for reports and exit statuses."""

    error_code = "ANONYMIZATION_FAILED"
    exit_code = 1

    def __init__(self, message: str, technical_details: str = "", original_error: Exception = None):
        super().__init__(message)
        self.technical_details = technical_details
        self.original_error = original_error


class InvalidPackage(AnonymizationError):
    """The buffer is not a DOCX container, or a required part holds malformed XML."""

    error_code = "INVALID_PACKAGE"
    exit_code = 2


class MissingRequiredPart(AnonymizationError):
    """The main document part is absent."""

    error_code = "MISSING_REQUIRED_PART"
    exit_code = 3


class MutationFailure(AnonymizationError):
    """A stage found data it cannot safely transform."""

    error_code = "MUTATION_FAILURE"
    exit_code = 4


class ResourceLimitExceeded(AnonymizationError):
    error_code = "RESOURCE_LIMIT"
    exit_code = 5


class FileAccessError(AnonymizationError):
    """Input could not be read or output could not be written (file front end only)."""

    error_code = "IO_ERROR"
    exit_code = 1
