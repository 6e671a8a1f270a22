#!/usr/bin/env python3
"""
Fetch error taxonomy for the Ops Dashboard engine

Every failed backend call is classified exactly once into one of the
FetchError subclasses below. Each carries a human-readable user_message so
views never surface raw status codes.
"""

import asyncio
import logging

import aiohttp

logger = logging.getLogger(__name__)

# Error kinds (stable strings used in logs and view snapshots)
KIND_TIMEOUT = 'timeout'
KIND_BAD_REQUEST = 'bad_request'
KIND_UNAUTHORIZED = 'unauthorized'
KIND_FORBIDDEN = 'forbidden'
KIND_GONE = 'gone'
KIND_RATE_LIMITED = 'rate_limited'
KIND_SERVER_ERROR = 'server_error'
KIND_UNKNOWN = 'unknown'

# BadRequest reasons
MISSING_CONTEXT = 'missing_context'
INVALID_INPUT = 'invalid_input'

# Backend error code meaning the organization header was not sent
MISSING_ORGANIZATION_CODE = 'MISSING_ORGANIZATION_ID'


class FetchError(Exception):
    """Base class for classified backend failures"""

    kind = KIND_UNKNOWN
    default_message = 'Something went wrong. Please try again.'

    def __init__(self, message=None, *, status_code=None, endpoint=''):
        self.user_message = message or self.default_message
        super().__init__(self.user_message)
        self.status_code = status_code
        self.endpoint = str(endpoint or '')

    def to_dict(self):
        return {
            'kind': self.kind,
            'status_code': self.status_code,
            'endpoint': self.endpoint,
            'message': self.user_message,
        }


class RequestTimeout(FetchError):
    kind = KIND_TIMEOUT
    default_message = 'Request timed out. Please check your connection and try again.'


class BadRequest(FetchError):
    kind = KIND_BAD_REQUEST
    default_message = 'Invalid request. Please check your input.'

    def __init__(self, message=None, *, reason=INVALID_INPUT, status_code=400, endpoint=''):
        if message is None and reason == MISSING_CONTEXT:
            message = 'Please select an organization to continue.'
        super().__init__(message, status_code=status_code, endpoint=endpoint)
        self.reason = reason

    def to_dict(self):
        result = super().to_dict()
        result['reason'] = self.reason
        return result


class Unauthorized(FetchError):
    kind = KIND_UNAUTHORIZED
    default_message = 'Your session has expired. Please sign in again.'


class Forbidden(FetchError):
    kind = KIND_FORBIDDEN
    default_message = "You don't have permission to perform this action."


class Gone(FetchError):
    kind = KIND_GONE
    default_message = 'This resource is no longer available.'


class RateLimited(FetchError):
    kind = KIND_RATE_LIMITED
    default_message = 'Too many requests. Please wait a moment and try again.'


class ServerError(FetchError):
    kind = KIND_SERVER_ERROR
    default_message = 'Server error. Please try again later.'


class UnknownError(FetchError):
    kind = KIND_UNKNOWN


def error_from_status(status, body=None, endpoint=''):
    """Map an HTTP error status (and parsed JSON body, if any) to a FetchError

    Args:
        status: HTTP status code
        body: Parsed JSON error body (dict) or None
        endpoint: Request path, kept for logging

    Returns:
        FetchError: The classified error instance
    """
    body = body if isinstance(body, dict) else {}
    server_message = body.get('error') if isinstance(body.get('error'), str) else None

    if status == 504:
        return RequestTimeout(status_code=status, endpoint=endpoint)
    if status == 400:
        if body.get('code') == MISSING_ORGANIZATION_CODE:
            return BadRequest(reason=MISSING_CONTEXT, status_code=status, endpoint=endpoint)
        return BadRequest(server_message, reason=INVALID_INPUT, status_code=status, endpoint=endpoint)
    if status == 401:
        return Unauthorized(status_code=status, endpoint=endpoint)
    if status == 403:
        return Forbidden(status_code=status, endpoint=endpoint)
    if status == 410:
        return Gone(server_message, status_code=status, endpoint=endpoint)
    if status == 429:
        return RateLimited(status_code=status, endpoint=endpoint)
    if status is not None and status >= 500:
        return ServerError(status_code=status, endpoint=endpoint)
    return UnknownError(status_code=status, endpoint=endpoint)


def classify_error(exc, endpoint=''):
    """Classify any exception raised by a fetch into a FetchError

    Already-classified errors are returned unchanged so classification
    happens once.

    Args:
        exc: Exception raised by a fetch coroutine
        endpoint: Request path or source name, kept for logging

    Returns:
        FetchError: The classified error instance
    """
    if isinstance(exc, FetchError):
        return exc
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        return RequestTimeout(endpoint=endpoint)
    if isinstance(exc, aiohttp.ClientResponseError):
        return error_from_status(exc.status, endpoint=endpoint)
    if isinstance(exc, aiohttp.ClientError):
        logger.debug(f"Transport error for {endpoint}: {exc}")
        return UnknownError('Unable to connect. Please check your connection and try again.', endpoint=endpoint)
    logger.debug(f"Unclassified error for {endpoint}: {exc!r}")
    return UnknownError(endpoint=endpoint)
