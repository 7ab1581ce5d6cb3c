from __future__ import annotations

import re
from typing import Optional


class QCFlowError(Exception):
    """Base class for errors raised by qcflow."""


class GatewayError(QCFlowError):
    """A call to the hosted generation service failed."""

    user_message = "The language model service failed. Please try again."

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class QuotaExceededError(GatewayError):
    user_message = "Rate limit or quota exceeded. Try again later, or check the quota for your API key."


class InvalidCredentialsError(GatewayError):
    user_message = "Invalid or missing API key. Check the credentials in your provider configuration."


class ContentBlockedError(GatewayError):
    user_message = "The response was blocked by the provider's safety filters. Try different or shorter input."


class ModelUnavailableError(GatewayError):
    user_message = "The requested model is not available for this key. Check the model name in your configuration."


class UpstreamServiceError(GatewayError):
    pass


class MalformedResponseError(GatewayError):
    user_message = "The model kept returning malformed JSON. Try again, or reduce the batch size."

    def __init__(self, message: str, raw: str = ""):
        super().__init__(message)
        self.raw = raw


class JobNotFoundError(QCFlowError, KeyError):
    def __init__(self, job_id: str):
        super().__init__(job_id)
        self.job_id = job_id

    def __str__(self) -> str:
        return f"Job not found: {self.job_id}"


_QUOTA = re.compile(r"\b429\b|quota|rate.?limit|resource.?exhausted|too many requests", re.I)
_CREDENTIALS = re.compile(r"api.?key|unauthori[sz]ed|authentication|permission denied|\b401\b|\b403\b", re.I)
_BLOCKED = re.compile(r"content.?filter|content.?policy|safety|blockreason|\bblocked\b", re.I)
_UNAVAILABLE = re.compile(r"\b404\b|model.*not found|does not exist|no such model|deployment.*not found", re.I)


def _status_code(exc: BaseException) -> Optional[int]:
    code = getattr(exc, "status_code", None)
    if code is None:
        # requests.HTTPError keeps it on the response
        response = getattr(exc, "response", None)
        code = getattr(response, "status_code", None)
    try:
        return int(code) if code is not None else None
    except (TypeError, ValueError):
        return None


def classify_provider_error(exc: BaseException) -> GatewayError:
    """Map a raw provider/SDK exception onto the gateway error taxonomy."""
    if isinstance(exc, GatewayError):
        return exc
    message = str(exc) or exc.__class__.__name__
    code = _status_code(exc)
    if code == 429:
        cls = QuotaExceededError
    elif code in (401, 403):
        cls = InvalidCredentialsError
    elif code == 404:
        cls = ModelUnavailableError
    elif _BLOCKED.search(message):
        cls = ContentBlockedError
    elif _QUOTA.search(message):
        cls = QuotaExceededError
    elif _CREDENTIALS.search(message):
        cls = InvalidCredentialsError
    elif _UNAVAILABLE.search(message):
        cls = ModelUnavailableError
    else:
        cls = UpstreamServiceError
    err = cls(message, status_code=code)
    err.__cause__ = exc
    return err


def to_user_message(exc: BaseException) -> str:
    if isinstance(exc, UpstreamServiceError):
        return f"The language model service failed: {exc}"
    if isinstance(exc, GatewayError):
        return exc.user_message
    return str(exc) or exc.__class__.__name__
