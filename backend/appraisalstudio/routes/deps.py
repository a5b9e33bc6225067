"""Shared route dependencies."""

from fastapi import HTTPException, Request
from pymongo.errors import PyMongoError
import logging

from appraisalstudio.errors import AppraisalStudioError, ExternalServiceError
from appraisalstudio.services import Services

logger = logging.getLogger(__name__)


def get_services(request: Request) -> Services:
    """Services wired in server.lifespan; tests override this dependency."""
    return request.app.state.services


def http_error(e: AppraisalStudioError) -> HTTPException:
    return HTTPException(status_code=e.status_code, detail=e.message)


def store_unavailable(e: PyMongoError) -> HTTPException:
    """Document store failures are retryable; the driver message stays in the log."""
    logger.error(f"Document store error: {e}")
    return http_error(ExternalServiceError("Service temporarily unavailable. Please try again."))
