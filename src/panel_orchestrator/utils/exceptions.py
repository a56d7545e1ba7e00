"""Custom exceptions for the panel orchestrator."""


class OrchestratorError(Exception):
    """Base exception for orchestrator errors."""

    code = "ORCHESTRATOR_ERROR"


class ValidationError(OrchestratorError):
    """Malformed request, or container not in a state that permits the operation."""

    code = "VALIDATION_ERROR"


class AuthenticationError(OrchestratorError):
    """Exception raised when a connection cannot be authenticated."""

    code = "AUTHENTICATION_ERROR"

    def __init__(self, message: str = "Authentication failed") -> None:
        super().__init__(message)


class AuthorizationError(OrchestratorError):
    """Exception raised when the requester is neither owner nor administrator."""

    code = "AUTHORIZATION_ERROR"

    def __init__(self, message: str = "Access denied to this container") -> None:
        super().__init__(message)


class NotFoundError(OrchestratorError):
    """Base exception for missing containers, sessions and users."""

    code = "NOT_FOUND"


class ContainerNotFoundError(NotFoundError):
    """Exception raised when a container is not found."""

    def __init__(self, identifier: str) -> None:
        """
        Initialize ContainerNotFoundError.

        Args:
            identifier: Container ID that was not found
        """
        self.identifier = identifier
        super().__init__(f"Container not found: {identifier}")


class SessionNotFoundError(NotFoundError):
    """Exception raised when a connection has no session of the requested kind."""

    def __init__(self, connection_id: str, kind: str) -> None:
        self.connection_id = connection_id
        self.kind = kind
        super().__init__(f"No active {kind} session for connection {connection_id}")


class UserNotFoundError(NotFoundError):
    """Exception raised when a user is missing or inactive."""

    def __init__(self, user_id: str) -> None:
        self.user_id = user_id
        super().__init__(f"User not found or inactive: {user_id}")


class ConflictError(OrchestratorError):
    """Base exception for duplicate sessions, names and exhausted quotas."""

    code = "CONFLICT"


class ContainerAlreadyExistsError(ConflictError):
    """Exception raised when the owner already has a container with the same name."""

    def __init__(self, name: str) -> None:
        """
        Initialize ContainerAlreadyExistsError.

        Args:
            name: Name that already exists
        """
        self.name = name
        super().__init__(f"Container with name '{name}' already exists")


class SessionConflictError(ConflictError):
    """Exception raised when a second session of the same kind is registered."""

    def __init__(self, connection_id: str, kind: str) -> None:
        self.connection_id = connection_id
        self.kind = kind
        super().__init__(f"{kind.capitalize()} session already active for this connection")


class QuotaExceededError(ConflictError):
    """Exception raised when a member reached the container limit."""

    def __init__(self, limit: int) -> None:
        self.limit = limit
        super().__init__(f"Container limit reached. Members can only have {limit} container(s).")


class EngineError(OrchestratorError):
    """Exception raised when the container engine fails or is unreachable."""

    code = "ENGINE_ERROR"

    def __init__(self, message: str, original_error: Exception | None = None) -> None:
        """
        Initialize EngineError.

        Args:
            message: Error message
            original_error: Original exception from docker-py
        """
        self.original_error = original_error
        super().__init__(message)

    @property
    def reason(self) -> str | None:
        """Underlying engine reason, if any."""
        if self.original_error is None:
            return None
        explanation = getattr(self.original_error, "explanation", None)
        return str(explanation or self.original_error)


class EngineNotFoundError(EngineError):
    """Exception raised when the engine object behind a record is gone."""

    def __init__(self, engine_id: str, original_error: Exception | None = None) -> None:
        self.engine_id = engine_id
        super().__init__(f"Engine object not found: {engine_id}", original_error)


class ImagePullError(EngineError):
    """Exception raised when an image cannot be pulled."""

    def __init__(self, image: str, reason: str, original_error: Exception | None = None) -> None:
        self.image = image
        self.pull_reason = reason
        super().__init__(f"Failed to pull image {image}: {reason}", original_error)


class EngineUnreachableError(EngineError):
    """Exception raised when the Docker daemon cannot be reached."""

    def __init__(
        self,
        message: str = "Docker daemon is unreachable",
        original_error: Exception | None = None,
    ) -> None:
        super().__init__(message, original_error)
