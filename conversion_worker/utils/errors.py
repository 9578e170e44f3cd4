"""Turning upload exceptions into loggable diagnostics."""

import asyncio
import logging
from typing import Any, Dict

from google.ads.googleads.errors import GoogleAdsException
from google.api_core.exceptions import GoogleAPICallError
from google.auth.exceptions import RefreshError

logger = logging.getLogger(__name__)

# Errors that will not go away on redelivery without operator action
NON_TRANSIENT_ERRORS = ['AUTHENTICATION_ERROR', 'AUTHORIZATION_ERROR', 'QUOTA_ERROR']


def _error_code_name(code) -> str:
    """ErrorCode oneof as "AUTHORIZATION_ERROR: USER_PERMISSION_DENIED"."""
    # proto-plus wraps the protobuf message; raw protobuf is used as is
    pb = type(code).pb(code) if hasattr(type(code), 'pb') else code
    field = pb.WhichOneof('error_code')
    if field is None:
        return 'UNSPECIFIED'
    number = getattr(pb, field)
    enum_value = pb.DESCRIPTOR.fields_by_name[field].enum_type.values_by_number.get(number)
    return f"{field.upper()}: {enum_value.name if enum_value else number}"


def _error_codes(e: GoogleAdsException) -> list:
    if not getattr(e, 'failure', None):
        return []
    return [_error_code_name(error.error_code) for error in e.failure.errors]


def describe_exception(e: BaseException) -> Dict[str, Any]:
    """Build the diagnostic payload for a failed upload call."""

    if isinstance(e, asyncio.TimeoutError):
        return {"kind": "timeout", "error": "Upload call timed out"}

    if isinstance(e, GoogleAdsException):
        codes = _error_codes(e)
        messages = [error.message for error in e.failure.errors] if getattr(e, 'failure', None) else []
        return {
            "kind": "google_ads",
            "request_id": getattr(e, 'request_id', None),
            "error_codes": codes,
            "messages": messages,
            "non_transient": any(code.split(':')[0] in NON_TRANSIENT_ERRORS for code in codes),
        }

    if isinstance(e, RefreshError):
        return {"kind": "credentials", "error": str(e)}

    if isinstance(e, GoogleAPICallError):
        code = getattr(e, 'code', None)
        return {"kind": "transport", "code": str(code) if code is not None else None, "error": str(e)}

    return {"kind": "unexpected", "error_type": type(e).__name__, "error": str(e)}
