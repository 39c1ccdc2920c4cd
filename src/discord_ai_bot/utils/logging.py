"""
Logging configuration and utilities for the Discord AI Bot.

This module provides centralized logging setup with support for both
structured JSON logging (for production) and human-readable text logging
(for development). It integrates with structlog for structured logging
and rich for console output.

Enhanced features:
- HTTP request/response logging for the provider APIs
- Performance timing
- Request correlation IDs for tracing
- Service-specific loggers
"""

import json
import logging
import sys
import time
import uuid
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional, Union
from urllib.parse import urlparse

import structlog
from rich.console import Console
from rich.logging import RichHandler

from discord_ai_bot.config import LoggingConfig


SENSITIVE_HEADER_MARKERS = ("authorization", "token", "key", "secret")


def setup_logging(config: LoggingConfig) -> None:
    """
    Set up application logging based on configuration.

    Args:
        config: Logging configuration settings

    Example:
        ```python
        app_config = load_config()
        setup_logging(app_config.logging)

        logger = get_logger(__name__)
        logger.info("Application started", version="0.1.0")
        ```
    """
    logging.getLogger().handlers.clear()
    logging.getLogger().setLevel(config.level)

    if config.format == "json":
        _setup_json_logging(config)
    else:
        _setup_rich_logging(config)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.CallsiteParameterAdder(
                parameters=[structlog.processors.CallsiteParameter.FILENAME,
                            structlog.processors.CallsiteParameter.LINENO]
            ),
            _structlog_processor if config.format == "json" else _rich_processor,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, config.level)
        ),
        logger_factory=structlog.WriteLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    configure_external_loggers()


def _setup_json_logging(config: LoggingConfig) -> None:
    """Set up structured JSON logging for production."""
    formatter = logging.Formatter(
        fmt='{"timestamp": "%(asctime)s", "level": "%(levelname)s", '
            '"logger": "%(name)s", "message": "%(message)s"}',
        datefmt="%Y-%m-%dT%H:%M:%SZ"
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    handler.setLevel(config.level)

    logging.getLogger().addHandler(handler)


def _setup_rich_logging(config: LoggingConfig) -> None:
    """Set up rich text logging for development."""
    console = Console(force_terminal=True, width=120)

    handler = RichHandler(
        console=console,
        show_time=True,
        show_level=True,
        show_path=True,
        markup=True,
        rich_tracebacks=True,
    )

    handler.setLevel(config.level)
    logging.getLogger().addHandler(handler)


def _structlog_processor(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> str:
    """Render structlog events as JSON."""
    return json.dumps(event_dict, default=str)


def _rich_processor(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> str:
    """Render structlog events as a single readable line."""
    message = event_dict.pop("event", "")
    level = event_dict.get("level", "")

    context_items = [
        f"{key}={value}"
        for key, value in event_dict.items()
        if key not in {"timestamp", "level", "filename", "lineno"}
    ]
    if context_items:
        message += f" ({', '.join(context_items)})"

    timestamp = event_dict.get("timestamp", "")
    return f"{timestamp} [{level.upper()}] {message}"


def get_logger(name: Optional[str] = None) -> structlog.BoundLogger:
    """
    Get a configured logger instance.

    Args:
        name: Optional logger name (defaults to calling module)

    Returns:
        Configured structlog BoundLogger instance

    Example:
        ```python
        logger = get_logger(__name__)
        logger.info("Processing message", user_id="12345", message_length=150)
        ```
    """
    return structlog.get_logger(name)


def log_function_call(func_name: str, **kwargs: Any) -> None:
    """Log a function call with its parameters at debug level."""
    logger = get_logger()
    logger.debug("Function called", function=func_name, **kwargs)


def log_error(error: BaseException, context: Optional[Dict[str, Any]] = None) -> None:
    """
    Log an error with context information.

    Args:
        error: The exception that occurred
        context: Additional context information
    """
    logger = get_logger()
    error_context = {
        "error_type": type(error).__name__,
        "error_message": str(error),
    }

    if context:
        error_context.update(context)

    logger.error("Exception occurred", **error_context)


def generate_correlation_id() -> str:
    """Generate a unique correlation ID for tracking requests."""
    return str(uuid.uuid4())[:8]


def get_service_logger(service_name: str) -> structlog.BoundLogger:
    """
    Get a service-specific logger with consistent naming.

    Args:
        service_name: Name of the service (e.g. 'groq', 'huggingface', 'discord')

    Returns:
        Logger bound with service context
    """
    logger = get_logger(f"service.{service_name}")
    return logger.bind(service=service_name)


def mask_headers(headers: Optional[Dict[str, str]]) -> Dict[str, str]:
    """Return a copy of ``headers`` with credential values masked."""
    safe_headers = {}
    for key, value in (headers or {}).items():
        if any(marker in key.lower() for marker in SENSITIVE_HEADER_MARKERS):
            safe_headers[key] = f"***{value[-4:] if len(value) > 4 else '***'}"
        else:
            safe_headers[key] = value
    return safe_headers


def log_http_request(
    method: str,
    url: str,
    headers: Optional[Dict[str, str]] = None,
    body: Optional[Union[str, Dict[str, Any]]] = None,
    service: str = "unknown",
    correlation_id: Optional[str] = None
) -> None:
    """
    Log HTTP request details.

    Args:
        method: HTTP method (GET, POST, etc.)
        url: Request URL
        headers: Request headers (sensitive headers will be masked)
        body: Request body (will be truncated if too long)
        service: Service name
        correlation_id: Optional correlation ID for request tracking
    """
    logger = get_service_logger(service)
    parsed_url = urlparse(url)

    safe_body = body
    if isinstance(body, str) and len(body) > 1000:
        safe_body = body[:1000] + "... (truncated)"
    elif isinstance(body, dict):
        safe_body = {k: (v if len(str(v)) <= 100 else f"{str(v)[:100]}... (truncated)")
                     for k, v in body.items()}

    logger.debug(
        "HTTP request initiated",
        method=method,
        host=parsed_url.netloc,
        path=parsed_url.path,
        headers=mask_headers(headers),
        body=safe_body,
        correlation_id=correlation_id or "none"
    )


def log_http_response(
    status_code: int,
    response_time_ms: float,
    response_size: Optional[int] = None,
    error: Optional[str] = None,
    service: str = "unknown",
    correlation_id: Optional[str] = None
) -> None:
    """
    Log HTTP response details.

    The level follows the status: 5xx is an error, 4xx a warning.
    A status of 0 means no response was received.
    """
    logger = get_service_logger(service)

    log_level = "info"
    if status_code >= 400:
        log_level = "error" if status_code >= 500 else "warning"
    elif status_code == 0:
        log_level = "warning"

    log_data = {
        "status_code": status_code,
        "response_time_ms": round(response_time_ms, 2),
        "correlation_id": correlation_id or "none"
    }

    if response_size is not None:
        log_data["response_size_bytes"] = response_size

    if error:
        log_data["error"] = error

    message = "HTTP request failed" if error else "HTTP response received"
    getattr(logger, log_level)(message, **log_data)


@contextmanager
def log_operation_timing(operation_name: str, **context: Any) -> Iterator[str]:
    """
    Context manager to log operation timing.

    Args:
        operation_name: Name of the operation being timed
        **context: Additional context to include in logs

    Yields:
        The correlation ID used for the operation
    """
    logger = get_logger()
    correlation_id = context.pop("correlation_id", None) or generate_correlation_id()

    start_time = time.time()
    logger.debug(
        f"Starting {operation_name}",
        operation=operation_name,
        correlation_id=correlation_id,
        **context
    )

    try:
        yield correlation_id
        duration_ms = (time.time() - start_time) * 1000
        logger.info(
            f"Completed {operation_name}",
            operation=operation_name,
            duration_ms=round(duration_ms, 2),
            correlation_id=correlation_id,
            status="success",
            **context
        )
    except Exception as e:
        duration_ms = (time.time() - start_time) * 1000
        logger.error(
            f"Failed {operation_name}",
            operation=operation_name,
            duration_ms=round(duration_ms, 2),
            correlation_id=correlation_id,
            status="error",
            error_type=type(e).__name__,
            error_message=str(e),
            **context
        )
        raise


def log_discord_event(event_type: str, **context: Any) -> None:
    """Log Discord events with consistent formatting."""
    logger = get_service_logger("discord")
    logger.info(
        f"Discord event: {event_type}",
        event_type=event_type,
        **context
    )


def log_llm_interaction(
    provider: str,
    model: str,
    prompt_tokens: Optional[int] = None,
    completion_tokens: Optional[int] = None,
    total_tokens: Optional[int] = None,
    response_time_ms: Optional[float] = None,
    **context: Any
) -> None:
    """
    Log a completed provider call with token usage and timing.

    Args:
        provider: Provider name
        model: Model name used
        prompt_tokens: Number of prompt tokens
        completion_tokens: Number of completion tokens
        total_tokens: Total tokens used
        response_time_ms: Response time in milliseconds
        **context: Additional context
    """
    logger = get_service_logger(provider)

    log_data = {
        "model": model,
        **context
    }

    if prompt_tokens is not None:
        log_data["prompt_tokens"] = prompt_tokens
    if completion_tokens is not None:
        log_data["completion_tokens"] = completion_tokens
    if total_tokens is not None:
        log_data["total_tokens"] = total_tokens
    if response_time_ms is not None:
        log_data["response_time_ms"] = round(response_time_ms, 2)

    logger.info("LLM interaction completed", **log_data)


def log_conversation_event(event_type: str, user_id: str, **context: Any) -> None:
    """Log conversation-related events."""
    logger = get_service_logger("conversation")
    logger.info(
        f"Conversation event: {event_type}",
        event_type=event_type,
        user_id=user_id,
        **context
    )


def configure_external_loggers() -> None:
    """Configure logging levels for external libraries to reduce noise."""
    logging.getLogger("discord").setLevel(logging.WARNING)
    logging.getLogger("discord.http").setLevel(logging.WARNING)
    logging.getLogger("discord.gateway").setLevel(logging.INFO)

    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)
    logging.getLogger("aiohttp.client").setLevel(logging.WARNING)

    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.pool").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
