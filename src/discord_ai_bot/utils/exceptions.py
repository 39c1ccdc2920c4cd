"""
Custom exceptions for the Discord AI Bot.

This module defines a hierarchy of custom exceptions that provide clear
error handling and debugging information throughout the application.
All exceptions inherit from a base DiscordAIBotError class for easy
catching and handling.

Provider failures form their own branch under ProviderError so the
response orchestrator can treat every upstream failure the same way
(fall through to the next provider) while still logging what happened.
"""

from typing import Optional, Any, Dict


class DiscordAIBotError(Exception):
    """
    Base exception class for all Discord AI Bot errors.

    Attributes:
        message: Human-readable error message
        context: Additional context information about the error
        original_error: The original exception that caused this error (if any)
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_error: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}
        self.original_error = original_error

    def __str__(self) -> str:
        """Return string representation of the error."""
        error_str = self.message
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            error_str += f" (Context: {context_str})"
        if self.original_error:
            error_str += f" (Caused by: {self.original_error})"
        return error_str


class ConfigurationError(DiscordAIBotError):
    """
    Raised when there's an error in configuration.

    This exception is raised when:
    - Required environment variables are missing
    - Configuration values are invalid
    - Components cannot be created from the configuration
    """
    pass


class DatabaseError(DiscordAIBotError):
    """
    Raised when there's a database operation error.

    Example:
        ```python
        try:
            await session.commit()
        except SQLAlchemyError as e:
            raise DatabaseError(
                "Failed to save user prompt",
                context={"user_id": user_id},
                original_error=e
            )
        ```
    """
    pass


class DiscordAPIError(DiscordAIBotError):
    """Raised when sending to or reading from Discord fails."""
    pass


class ProviderError(DiscordAIBotError):
    """
    Base class for failures talking to an upstream AI provider.

    Provider clients never retry; they classify the outcome of a single
    HTTP call into one of the subclasses below and let the orchestrator
    decide what happens next.

    Attributes:
        provider: Name of the provider that failed (e.g. "groq")
        status_code: HTTP status, when the failure came from a response
    """

    #: Whether the failure points at a problem an operator must fix.
    fatal = False

    def __init__(
        self,
        message: str,
        provider: str,
        status_code: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
        original_error: Optional[BaseException] = None,
    ) -> None:
        context = dict(context or {})
        context.setdefault("provider", provider)
        if status_code is not None:
            context.setdefault("status_code", status_code)
        super().__init__(message, context=context, original_error=original_error)
        self.provider = provider
        self.status_code = status_code


class AuthenticationError(ProviderError):
    """HTTP 401: the credential was rejected. Needs operator attention."""

    fatal = True


class RateLimitedError(ProviderError):
    """HTTP 429: the provider is throttling us."""
    pass


class ModelLoadingError(ProviderError):
    """HTTP 503 from the fallback provider: the model is cold-starting."""
    pass


class ServerError(ProviderError):
    """HTTP 5xx: the provider failed on its side."""
    pass


class ApiError(ProviderError):
    """Any other non-2xx response."""
    pass


class ProviderTimeoutError(ProviderError):
    """The request did not finish within the provider's timeout."""
    pass


class UnknownProviderError(ProviderError):
    """
    Transport failure or an unusable 2xx body.

    The underlying cause is always kept in ``original_error`` when there is one.
    """
    pass


class NoProviderAvailableError(DiscordAIBotError):
    """
    Terminal outcome: neither provider produced a reply.

    Raised by the orchestrator after the fallback provider failed (or was
    the only option and failed). The gateway turns it into a generic
    "try again later" message.
    """
    pass
