"""Graph API helpers shared by the Instagram, Facebook and Threads adapters."""

import logging
from typing import Any

import httpx

from app.integrations.platform_adapters.base_adapter import (
    AdapterAuthError,
    AdapterPermanentError,
    AdapterRetryableError,
    BasePlatformAdapter,
)

logger = logging.getLogger(__name__)

# Graph error codes: 190 expired/invalid token, 10/200-299 missing permission,
# 4/17/32/613 throttling, 1/2 transient.
META_AUTH_ERROR_CODES = {190, 102, 10}
META_RATE_LIMIT_ERROR_CODES = {4, 17, 32, 613}
META_TRANSIENT_ERROR_CODES = {1, 2}

CONTAINER_FINISHED = "FINISHED"
CONTAINER_ERROR = "ERROR"
CONTAINER_UNRESOLVED = "UNRESOLVED"


def _json_or_empty(response: httpx.Response) -> dict[str, Any]:
    if not response.headers.get("content-type", "").startswith("application/json"):
        return {}
    payload = response.json()
    return payload if isinstance(payload, dict) else {}


def parse_meta_error(payload: dict[str, Any]) -> str:
    error_obj = payload.get("error") if isinstance(payload, dict) else None
    if not isinstance(error_obj, dict):
        return "Meta API error"
    message = str(error_obj.get("message") or "Meta API error")
    code = error_obj.get("code")
    subcode = error_obj.get("error_subcode")
    parts = [message]
    if code is not None:
        parts.append(f"code={code}")
    if subcode is not None:
        parts.append(f"subcode={subcode}")
    return " | ".join(parts)


def raise_for_meta_response(adapter: BasePlatformAdapter, response: httpx.Response, *, action: str) -> dict:
    """Return the JSON body of a successful Graph call or raise the matching AdapterError."""
    payload = _json_or_empty(response)
    if response.status_code < 400 and "error" not in payload:
        return payload

    detail = parse_meta_error(payload)
    error_obj = payload.get("error") if isinstance(payload.get("error"), dict) else {}
    code = error_obj.get("code")
    if code in META_AUTH_ERROR_CODES or (isinstance(code, int) and 200 <= code < 300):
        raise AdapterAuthError(f"{adapter.platform} {action} unauthorized: {detail}")
    if code in META_RATE_LIMIT_ERROR_CODES or code in META_TRANSIENT_ERROR_CODES or error_obj.get("is_transient"):
        raise AdapterRetryableError(f"{adapter.platform} {action} temporary failure: {detail}")
    if response.status_code < 400:
        raise AdapterPermanentError(f"{adapter.platform} {action} rejected: {detail}")
    adapter.raise_for_response(response, action=action, detail=detail)
    return payload


def require_id(adapter: BasePlatformAdapter, payload: dict, *, action: str) -> str:
    object_id = str(payload.get("id") or "")
    if not object_id:
        raise AdapterPermanentError(f"{adapter.platform} {action} response missing id")
    return object_id


async def wait_for_container(
    adapter: BasePlatformAdapter,
    client: httpx.AsyncClient,
    *,
    base_url: str,
    container_id: str,
    access_token: str,
    status_field: str = "status_code",
) -> str:
    """
    Poll a media container until the platform finishes processing it.

    ERROR is logged and returned rather than raised: the publish call that
    follows is still attempted and the platform's answer there decides the
    outcome. Poll-level failures are logged and polling continues. When the
    attempts run out the container is reported as unresolved and the caller
    proceeds.
    """
    fields = status_field if status_field == "status" else f"{status_field},status"
    for attempt in range(1, adapter.poll_max_attempts + 1):
        try:
            response = await client.get(
                f"{base_url}/{container_id}",
                params={"fields": fields, "access_token": access_token},
            )
            payload = _json_or_empty(response)
            if response.status_code >= 400:
                logger.warning(
                    "meta_container_poll_failed platform=%s container_id=%s attempt=%s status=%s",
                    adapter.platform,
                    container_id,
                    attempt,
                    response.status_code,
                )
            else:
                status_value = str(payload.get(status_field) or "").upper()
                if status_value == CONTAINER_FINISHED:
                    return CONTAINER_FINISHED
                if status_value == CONTAINER_ERROR:
                    logger.warning(
                        "meta_container_error platform=%s container_id=%s detail=%s",
                        adapter.platform,
                        container_id,
                        payload.get("status"),
                    )
                    return CONTAINER_ERROR
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning(
                "meta_container_poll_exception platform=%s container_id=%s attempt=%s reason=%s",
                adapter.platform,
                container_id,
                attempt,
                exc,
            )
        if attempt < adapter.poll_max_attempts:
            await adapter.wait_between_polls()

    logger.warning(
        "meta_container_unresolved platform=%s container_id=%s attempts=%s",
        adapter.platform,
        container_id,
        adapter.poll_max_attempts,
    )
    return CONTAINER_UNRESOLVED
