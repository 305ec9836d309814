"""Exceptions related to customer-commit."""

__all__ = [
    "CommitException",
    "InputException",
    "CommandException",
    "GenerationError",
    "EngineError",
    "NameConflict",
    "ReadinessTimeout",
    "SessionError",
]


class CommitException(Exception):
    """Generic base exception used for this library."""


class InputException(CommitException):
    """Raised when the input files or values are not formatted as expected."""


class CommandException(CommitException):
    """Raised when there is a failure running a subcommand."""


class GenerationError(CommandException):
    """Raised when a generated artifact (key, cert, config fragment) can't be built."""


class EngineError(CommandException):
    """Raised when a container engine command fails."""


class NameConflict(EngineError):
    """Raised when a container name is already in use by a running instance."""

    def __init__(self, name: str, message: str | None = None) -> None:
        super().__init__(
            message or f"Container name '{name}' is already in use by a running container"
        )
        self.name = name


class ReadinessTimeout(CommitException):
    """Raised when a listener was not observed within the maximum wait."""

    def __init__(self, name: str, port: int, max_wait: float) -> None:
        super().__init__(
            f"Timed out after {max_wait:g}s waiting for port {port} listener "
            f"in container '{name}'"
        )
        self.name = name
        self.port = port
        self.max_wait = max_wait


class SessionError(CommitException):
    """Raised when a provisioning session step was rejected or timed out."""

    def __init__(self, username: str, step: str, detail: str | None = None) -> None:
        super().__init__(
            f"Session for user '{username}' failed at step '{step}': "
            f"{detail or 'Unknown error'}"
        )
        self.username = username
        self.step = step
        self.detail = detail
