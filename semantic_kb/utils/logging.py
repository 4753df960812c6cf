"""Structured logging setup using structlog.

Implements a **dual-renderer pattern**: the same shared processor chain
(context vars, log level, timestamps, stack info) feeds into either a
coloured ConsoleRenderer for local development or a JSONRenderer for
production.  The renderer is selected automatically based on the ``APP_ENV``
environment variable (default ``"development"``), or forced via the
``json_output`` flag.

Output goes to **stderr** so the CLIs can print results on stdout without
log lines interleaving.  Standard-library ``logging`` is rewired through the
same formatter so chromadb, onnxruntime and friends produce identically
formatted output.
"""

import logging
import os
import sys

import structlog


def configure_logging(log_level: str = "INFO", json_output: bool = False) -> structlog.BoundLogger:
    """Configure structlog with environment-appropriate rendering.

    Args:
        log_level: Logging level string (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        json_output: Force JSON output. When False, uses console rendering in
                     development and JSON in production (detected via APP_ENV).

    Returns:
        A configured structlog BoundLogger.
    """
    # APP_ENV picks the renderer unless the caller forces JSON:
    # "production" => one JSON object per line for log shippers, else console.
    app_env = os.environ.get("APP_ENV", "development")
    use_json = json_output or app_env == "production"

    # Processors shared by both renderers and by the stdlib bridge below.
    # Context vars go first so bindings such as kb_name reach every later
    # processor; the timestamp is added last, just before rendering.
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,  # kb_name bound for each ingestion run
        structlog.processors.add_log_level,        # "level" key
        structlog.processors.StackInfoRenderer(),  # stack_info=True support
        structlog.dev.set_exc_info,                # exc_info on logger.exception()
        structlog.processors.TimeStamper(fmt="iso"),  # ISO-8601 in UTC
    ]

    # Only the final renderer differs between environments.
    # Colours are dropped when stderr is redirected to a file or pipe.
    if use_json:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    structlog.configure(
        processors=[
            *shared_processors,
            renderer,
        ],
        # The filtering wrapper discards events under log_level before any
        # processor runs, so per-chunk debug events cost nothing at INFO.
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(log_level.upper())
        ),
        context_class=dict,
        # stderr keeps stdout clean for CLI results and JSON dumps.
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,  # Bound loggers are built once per module
    )

    # Route stdlib logging (chromadb, httpx, onnxruntime) through the same
    # processors so third-party records match our own events.
    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            *shared_processors,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()  # Repeat calls must not stack handlers
    root_logger.addHandler(handler)
    root_logger.setLevel(log_level.upper())

    # chromadb's telemetry and httpx chatter is noise at INFO.
    for noisy in ("chromadb", "httpx", "onnxruntime"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    return structlog.get_logger()


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a named structlog logger.

    If structlog has not been configured yet, calls configure_logging() with defaults.

    Args:
        name: Logger name, typically the module name.

    Returns:
        A structlog BoundLogger bound with the given name.
    """
    if not structlog.is_configured():
        configure_logging()

    return structlog.get_logger(logger_name=name)
