"""ormconsole exception hierarchy.

All console-specific exceptions inherit from ConsoleError.
"""


class ConsoleError(Exception):
    """Base exception for all ormconsole errors."""


class ConfigurationError(ConsoleError):
    """Raised when a DataHandle cannot be constructed, located or connected.

    Fatal at bootstrap time: the CLI reports it once and exits non-zero.
    """


class CommandUsageError(ConsoleError):
    """Raised when a console command is invoked with the wrong arguments."""

    def __init__(self, usage: str) -> None:
        self.usage = usage
        super().__init__(f"Usage: {usage}")


class MalformedInputError(ConsoleError):
    """Raised when a structured-data argument cannot be parsed."""


class OperationError(ConsoleError):
    """Raised when an underlying data operation rejects.

    Wraps constraint violations, missing records, invalid ids and unknown
    fields. The message is the underlying driver or ORM message.
    """


class UnknownModelError(OperationError):
    """Raised when no resource accessor exists for a model name."""

    def __init__(self, name: str, available: list[str] | None = None) -> None:
        self.name = name
        self.available = available or []
        message = f"Unknown model: {name}"
        if self.available:
            message += f" (available: {', '.join(self.available)})"
        super().__init__(message)


class EvaluationError(ConsoleError):
    """Raised when a free-form snippet fails to compile or raises."""

    def __init__(self, message: str, original: BaseException | None = None) -> None:
        self.original = original
        super().__init__(message)
