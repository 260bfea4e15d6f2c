"""
Translation of service-layer failures into HTTP responses.

AnalyticsError subclasses carry their own status code and a JSON body
({error, message, context}); anything else becomes a generic 500 with the
stack trace logged.
"""

import logging

from fastapi import HTTPException

from funnel_analytics.core.errors import AnalyticsError

logger = logging.getLogger(__name__)


def to_http_exception(error: Exception, action: str) -> HTTPException:
    """
    Build the HTTPException a route should raise for `error`.

    Args:
        error: The exception caught by the route.
        action: Short description for the log line, e.g. "computing funnel metrics".
    """
    if isinstance(error, AnalyticsError):
        logger.warning(f"{error.kind} while {action}: {error.message}")
        return HTTPException(status_code=error.status_code, detail=error.to_dict())

    logger.error(f"Error {action}: {str(error)}", exc_info=True)
    return HTTPException(status_code=500, detail=f"Failed {action}")


__all__ = ["to_http_exception"]
