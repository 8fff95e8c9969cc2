"""Exception hierarchy for switchboard.

Build errors are never raised by the router builders: they are stored
on the owning Route/Router and surfaced through ``err``. The transport
raises the remaining classes from Bot.start() and friends.

Every error carries an ErrorCategory so callers can decide whether a
retry is worthwhile, plus free-form keyword context for structured logs.
"""

from enum import Enum
from typing import Any, Optional, Tuple


class ErrorCategory(str, Enum):
    """Classification of errors for retry decisions."""
    TRANSIENT = "transient"            # timeouts, dropped connections
    PERMANENT = "permanent"            # bad pattern, rejected credentials
    INFRASTRUCTURE = "infrastructure"  # Signal API unreachable, bad environment


class SwitchboardError(Exception):
    """Base exception for all switchboard errors.

    Subclasses set ``default_category`` and ``default_module``, and list
    in ``fields`` the keyword arguments promoted to attributes (missing
    ones default to None). Other keyword arguments land in ``context``.

    Attributes:
        message: Human-readable error description.
        category: Error classification for retry decisions.
        module: Originating module name (e.g. "router", "bot").
        context: Extra key-value pairs for structured logging.
    """

    default_category = ErrorCategory.PERMANENT
    default_module: Optional[str] = None
    fields: Tuple[str, ...] = ()

    def __init__(
        self,
        message: str = "",
        *,
        category: Optional[ErrorCategory] = None,
        module: Optional[str] = None,
        **context: Any,
    ) -> None:
        for name in self.fields:
            setattr(self, name, context.pop(name, None))
        self.message = message
        self.category = category or self.default_category
        self.module = module or self.default_module
        self.context = context
        super().__init__(message)

    @property
    def is_retryable(self) -> bool:
        return self.category == ErrorCategory.TRANSIENT

    def __str__(self) -> str:
        details = {name: getattr(self, name) for name in self.fields}
        details.update(self.context)
        details = {k: v for k, v in details.items() if v is not None}

        text = self.message or type(self).__name__
        if self.module:
            text += f" [module={self.module}]"
        if details:
            text += " (" + ", ".join(f"{k}={v}" for k, v in details.items()) + ")"
        return text

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}({self.message!r}, "
            f"category={self.category.value!r}, module={self.module!r})"
        )


class BuildError(SwitchboardError):
    """A rule could not be built, e.g. an invalid regular expression.

    ``pattern`` holds the offending hear() pattern; the ``re.error`` is
    chained as ``__cause__``.
    """

    default_module = "router"
    fields = ("pattern",)


class AuthenticationError(SwitchboardError):
    """The Signal API did not report a usable account for the bot."""

    default_module = "bot"
    fields = ("account",)


class TransportError(SwitchboardError):
    """A Signal API request failed; ``status`` is the HTTP status if any."""

    default_category = ErrorCategory.TRANSIENT
    default_module = "transport"
    fields = ("status",)


class ConfigurationError(SwitchboardError):
    """Invalid or missing configuration.

    INFRASTRUCTURE by default: config problems are environmental and
    won't go away on retry.
    """

    default_category = ErrorCategory.INFRASTRUCTURE
    default_module = "config"
    fields = ("setting_name",)
