"""
Bootstrap error hierarchy with categorization.

This module defines the error types raised while virt-api establishes its
identity, trust configuration and control-plane registrations. Every error
raised before the serving loop starts is fatal; only InternalError can occur
while requests are served.
"""


class BootstrapError(Exception):
    """
    Base error class for all virt-api bootstrap exceptions.

    Provides categorization and user guidance for resolution.
    """

    def __init__(
        self,
        message: str,
        category: str,
        user_action: str | None = None,
        cause: Exception | None = None,
    ):
        """
        Initialize bootstrap error.

        Args:
            message: Human-readable error description
            category: Error category (configuration, storage, control_plane,
                encoding, internal)
            user_action: What the user should do to resolve the issue
            cause: Underlying exception that caused this error
        """
        super().__init__(message)
        self.category = category
        self.user_action = user_action
        self.cause = cause

    def __str__(self) -> str:
        """Enhanced string representation with user guidance."""
        base_msg = super().__str__()
        if self.user_action:
            return f"{base_msg}\nAction required: {self.user_action}"
        return base_msg


class ConfigurationError(BootstrapError):
    """A mandatory field is missing or a setting is unusable."""

    def __init__(
        self, message: str, field: str | None = None, user_action: str | None = None
    ):
        if field:
            message = f"Configuration error in field '{field}': {message}"
        super().__init__(
            message=message,
            category="configuration",
            user_action=user_action or "Review and correct configuration",
        )
        self.field = field


class StorageError(BootstrapError):
    """Reading or writing the persisted identity record failed."""

    def __init__(
        self,
        message: str,
        reason: str | None = None,
        cause: Exception | None = None,
    ):
        if reason:
            message = f"{message} (reason: {reason})"
        super().__init__(
            message=message,
            category="storage",
            user_action="Check RBAC permissions on secrets and cluster connectivity",
            cause=cause,
        )


class ControlPlaneError(BootstrapError):
    """A get, create or update of a control-plane declaration failed."""

    def __init__(
        self,
        message: str,
        reason: str | None = None,
        cause: Exception | None = None,
    ):
        if reason:
            message = f"{message} (reason: {reason})"
        super().__init__(
            message=message,
            category="control_plane",
            user_action="Check RBAC permissions and cluster connectivity",
            cause=cause,
        )


class EncodingError(BootstrapError):
    """PEM or JSON content could not be decoded."""

    def __init__(self, message: str, cause: Exception | None = None):
        super().__init__(
            message=message,
            category="encoding",
            user_action="Inspect the referenced record for corrupted content",
            cause=cause,
        )


class InternalError(BootstrapError):
    """Unexpected failure while deciding whether a request is authorized."""

    def __init__(self, message: str, cause: Exception | None = None):
        super().__init__(message=message, category="internal", cause=cause)
