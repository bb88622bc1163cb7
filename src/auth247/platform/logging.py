"""
structlog configuration shared by the API, the Celery worker and the CLI.

Every module logs through ``structlog.get_logger(__name__)`` with dotted
event names (``mau_job.started``); this module only decides how those
events are rendered.
"""

import logging
import sys

import structlog

from auth247.platform.settings import settings

AUDIT_LOGGER_NAME = "audit"


def _processor_chain(json_output: bool, merge_context: bool) -> list[structlog.typing.Processor]:
    chain: list[structlog.typing.Processor] = []
    if merge_context:
        # tenant_id / request ids bound with bound_contextvars
        chain.append(structlog.contextvars.merge_contextvars)
    chain += [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]
    chain.append(
        structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()
    )
    return chain


def setup_logging() -> None:
    """Route structlog through stdlib logging at the configured level."""
    observability = settings.observability
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=observability.log_level.value,
    )
    structlog.configure(
        processors=_processor_chain(
            json_output=observability.log_format == "json",
            merge_context=observability.enable_correlation_ids,
        ),
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_audit_logger() -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(AUDIT_LOGGER_NAME)


def log_audit_event(
    action: str,
    category: str,
    user_id: str | None = None,
    tenant_id: str | None = None,
    resource_type: str | None = None,
    resource_id: str | None = None,
    **kwargs: object,
) -> None:
    """
    Emit a billing audit record on the ``audit`` logger.

    Plan changes, trial transitions and pricing edits land here so they can
    be shipped to a separate sink. Extra keyword arguments are logged as-is.
    """
    fields = {
        "audit_category": category,
        "audit_user_id": user_id,
        "audit_tenant_id": tenant_id,
        "audit_resource_type": resource_type,
        "audit_resource_id": resource_id,
    }
    get_audit_logger().info(action, **fields, **kwargs)
