"""
Inbox account connection endpoints.

The consent screen itself is out of scope; these endpoints hand out the
authorization URL, exchange the returned code and disconnect the account.
"""

import asyncio
import logging

from fastapi import APIRouter, HTTPException, Request

from returnsync.errors import AuthError, DecodeError, NetworkError
from returnsync.models.task import GmailCodeExchangeRequest

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/gmail")
async def gmail_status(request: Request):
    """Connection status of the inbox account."""
    token_manager = request.app.state.services.token_manager
    session = token_manager.current_session
    return {
        "connected": token_manager.is_authenticated,
        "provider_email": session.provider_email if session else None,
    }


@router.get("/gmail/authorize")
async def gmail_authorize(request: Request, state: str | None = None):
    token_manager = request.app.state.services.token_manager
    return {"authorization_url": token_manager.authorization_url(state)}


@router.post("/gmail/exchange")
async def gmail_exchange(payload: GmailCodeExchangeRequest, request: Request):
    """
    Exchange an authorization code for tokens.

    Returns:
        dict: Connected mailbox, never the tokens themselves
    """
    token_manager = request.app.state.services.token_manager

    try:
        session = await asyncio.to_thread(token_manager.exchange_code, payload.code)
    except AuthError as e:
        raise HTTPException(status_code=400, detail=f"Authorization failed: {e}")
    except (NetworkError, DecodeError) as e:
        logger.warning("Code exchange failed: %s", e)
        raise HTTPException(status_code=502, detail="Token endpoint unavailable")

    return {"status": "connected", "provider_email": session.provider_email}


@router.delete("/gmail")
async def gmail_logout(request: Request):
    token_manager = request.app.state.services.token_manager
    await asyncio.to_thread(token_manager.logout)
    return {"status": "disconnected"}
