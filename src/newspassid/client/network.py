"""Client → backend transport."""

from __future__ import annotations

import logging

import httpx
from pydantic import ValidationError as PydanticValidationError

from newspassid.errors import NetworkError
from newspassid.schemas import IdentityEvent, IngestionResponse

logger = logging.getLogger(__name__)


async def send_to_backend(
    client: httpx.AsyncClient,
    endpoint: str,
    event: IdentityEvent,
) -> IngestionResponse:
    """POST an identity event and return the parsed response.

    Raises:
        NetworkError: Transport failure, non-2xx status, or an unusable body.
    """
    try:
        response = await client.post(endpoint, json=event.to_wire())
    except httpx.HTTPError as e:
        logger.error("[NETWORK] POST failed: %s", e)
        raise NetworkError(f"request to {endpoint} failed: {e}") from e

    if not response.is_success:
        raise NetworkError(f"Backend responded with status: {response.status_code}")

    try:
        parsed = IngestionResponse.model_validate(response.json())
    except (ValueError, PydanticValidationError) as e:
        raise NetworkError(f"unusable backend response: {e}") from e

    if not parsed.success:
        raise NetworkError(f"backend reported failure: {parsed.error or 'unknown'}")
    return parsed
