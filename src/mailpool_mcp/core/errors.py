"""Custom exception types for the Mailpool MCP server.

Error messages should say:
- What failed (operation or component)
- Why it failed (the specific condition)
- How to fix it (actionable guidance), where there is any
"""


class MailpoolError(Exception):
    """Base exception for all Mailpool MCP server errors."""

    pass


class ConfigLoadError(MailpoolError):
    """Raised when the config file cannot be loaded (file not found, YAML parse error)."""

    pass


class ConfigValidationError(MailpoolError):
    """Raised when the config file fails Pydantic validation.

    Includes specific field errors with actionable messages.
    """

    pass


class ConfigurationError(MailpoolError):
    """Raised when a required credential or setting is missing.

    Always raised before any network I/O is attempted.
    """

    pass


class FilterSyntaxError(MailpoolError):
    """Raised when a tag-filter expression cannot be parsed.

    Attributes:
        expression: The filter string that failed to parse
        position: Index of the offending token (None at end of input)
        token: The offending token text (None at end of input)
    """

    def __init__(
        self,
        message: str,
        expression: str = "",
        position: int | None = None,
        token: str | None = None,
    ):
        super().__init__(message)
        self.expression = expression
        self.position = position
        self.token = token


class DirectoryError(MailpoolError):
    """Raised when the Mailpool directory API returns an error.

    Attributes:
        status_code: HTTP status code from the API, 404 for lookups that
            found nothing, None for network errors
    """

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class TransportError(MailpoolError):
    """Raised when an IMAP or SMTP operation fails.

    Attributes:
        operation: The mailbox operation that failed (e.g. 'select', 'store')
        folder: Folder involved in the operation, if any
    """

    def __init__(self, message: str, operation: str | None = None, folder: str | None = None):
        super().__init__(message)
        self.operation = operation
        self.folder = folder


class ClassificationError(MailpoolError):
    """Raised when the reply classifier call fails.

    Attributes:
        subject: Subject of the message being classified
    """

    def __init__(self, message: str, subject: str | None = None):
        super().__init__(message)
        self.subject = subject
