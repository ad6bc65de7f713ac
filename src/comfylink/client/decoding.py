"""
Response decoding policy.

A body is decoded against whole-payload schemas, never field by field: the
first schema that accepts the payload wins, and a body no schema accepts is a
:class:`MalformedResponseError` carrying the raw text.
"""

from __future__ import annotations

import json
from typing import Any, Callable, TypeVar, Union

from comfylink.client.errors import JobRejectedError, MalformedResponseError
from comfylink.client.models import PayloadDecodeError, RejectionPayload, SubmitAccepted
from comfylink.utils.logging import LoggerFactory

logger = LoggerFactory.get_logger("client.decoding")

SuccessT = TypeVar("SuccessT")
FailureT = TypeVar("FailureT")
T = TypeVar("T")


def _parse(raw_body: str) -> Any:
    return json.loads(raw_body)


def decode_json(raw_body: str, schema: Callable[[Any], T], *, operation: str) -> T:
    """Decode ``raw_body`` with a single schema."""
    try:
        return schema(_parse(raw_body))
    except (json.JSONDecodeError, PayloadDecodeError) as exc:
        raise MalformedResponseError(
            f"{operation} response could not be decoded: {exc}",
            raw_body=raw_body,
            decode_error=exc,
            operation=operation,
        ) from exc


def decode_either(
    raw_body: str,
    success: Callable[[Any], SuccessT],
    failure: Callable[[Any], FailureT],
    *,
    operation: str,
) -> Union[SuccessT, FailureT]:
    """Try ``success`` then ``failure``; surface the success-schema error if both refuse."""
    try:
        payload = _parse(raw_body)
    except json.JSONDecodeError as exc:
        logger.error(
            "Response body is not JSON",
            extra_context={"operation": operation, "body": raw_body[:500]},
        )
        raise MalformedResponseError(
            f"{operation} response is not JSON: {exc}",
            raw_body=raw_body,
            decode_error=exc,
            operation=operation,
        ) from exc

    try:
        return success(payload)
    except PayloadDecodeError as success_error:
        try:
            return failure(payload)
        except PayloadDecodeError:
            logger.error(
                "Response matched neither success nor error schema",
                extra_context={"operation": operation, "body": raw_body[:500]},
            )
            raise MalformedResponseError(
                f"{operation} response could not be decoded: {success_error}",
                raw_body=raw_body,
                decode_error=success_error,
                operation=operation,
            ) from success_error


def decode_submission(raw_body: str) -> SubmitAccepted:
    """Accepted submission, or :class:`JobRejectedError` for a structured refusal."""
    decoded = decode_either(
        raw_body, SubmitAccepted.from_api, RejectionPayload.from_api, operation="submit"
    )
    if isinstance(decoded, RejectionPayload):
        raise JobRejectedError(
            decoded.message,
            error_type=decoded.type or None,
            details=decoded.details or None,
            node_errors=decoded.node_errors,
        )
    return decoded
