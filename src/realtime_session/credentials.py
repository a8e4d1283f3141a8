"""
HTTP exchanges used by the WebRTC transport: ephemeral key retrieval and the
SDP offer/answer round trip. Every call is a single attempt.
"""

import json
import logging
from typing import Optional

import aiohttp

from src.realtime_session import settings
from src.realtime_session.errors import CredentialError, NegotiationError

logger = logging.getLogger(__name__)

EPHEMERAL_KEY_FIELD = "ephemeral_key"


async def fetch_ephemeral_key(url: str, session: Optional[aiohttp.ClientSession] = None) -> str:
    """
    GET ``url`` and return the ``ephemeral_key`` field of its JSON body.

    Args:
        url (str): Backend endpoint minting short-lived credentials.
        session (Optional[aiohttp.ClientSession]): Session to reuse; a private one
            is opened and closed otherwise.

    Raises:
        CredentialError: On transport failure, non-2xx status, or a body without
            the credential field.
    """
    owns_session = session is None
    session = session or aiohttp.ClientSession()
    try:
        async with session.get(url) as response:
            if not response.ok:
                raise CredentialError(
                    f"Failed to fetch ephemeral key: {response.status} {response.reason}"
                )
            try:
                data = json.loads(await response.text())
            except json.JSONDecodeError:
                data = None
    except aiohttp.ClientError as e:
        raise CredentialError(f"Failed to fetch ephemeral key: {e}") from e
    finally:
        if owns_session:
            await session.close()

    if not isinstance(data, dict) or not data.get(EPHEMERAL_KEY_FIELD):
        raise CredentialError(
            f"Failed to fetch ephemeral key: Response missing {EPHEMERAL_KEY_FIELD} field"
        )
    logger.debug(f"Ephemeral key fetched from {url}")
    return data[EPHEMERAL_KEY_FIELD]


async def exchange_sdp_offer(
    base_url: str,
    model: str,
    ephemeral_key: str,
    offer_sdp: str,
    session: Optional[aiohttp.ClientSession] = None,
) -> str:
    """
    POST the local offer and return the remote answer SDP.

    Raises:
        NegotiationError: On transport failure or a non-2xx status.
    """
    headers = {
        "Authorization": f"Bearer {ephemeral_key}",
        "Content-Type": "application/sdp",
        "OpenAI-Beta": settings.REALTIME_BETA_HEADER,
    }
    owns_session = session is None
    session = session or aiohttp.ClientSession()
    try:
        async with session.post(
            base_url, params={"model": model}, data=offer_sdp, headers=headers
        ) as response:
            if not response.ok:
                raise NegotiationError(f"Failed to connect: {response.status} {response.reason}")
            return await response.text()
    except aiohttp.ClientError as e:
        raise NegotiationError(f"Failed to connect: {e}") from e
    finally:
        if owns_session:
            await session.close()
