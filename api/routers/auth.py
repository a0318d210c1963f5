"""Gmail OAuth consent flow: redirect to Google, exchange the callback code."""

import asyncio

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import PlainTextResponse, RedirectResponse

from api.dependencies import get_service

router = APIRouter(prefix="/auth/google")


def _oauth_mailbox(service):
    mailbox = service.mailbox
    if not hasattr(mailbox, "build_auth_url") or not service.settings.gmail_configured:
        raise HTTPException(status_code=503, detail="Gmail OAuth client is not configured")
    return mailbox


@router.get("")
async def start_consent(service=Depends(get_service)):
    return RedirectResponse(_oauth_mailbox(service).build_auth_url())


@router.get("/callback")
async def consent_callback(
    code: str | None = Query(default=None),
    state: str | None = Query(default=None),
    error: str | None = Query(default=None),
    service=Depends(get_service),
):
    if error or not code or not state:
        service.log.warning("gmail_consent_failed", error=error or "missing code or state")
        return PlainTextResponse("Authentication failed", status_code=401)

    mailbox = _oauth_mailbox(service)
    try:
        refresh_token = await asyncio.to_thread(mailbox.exchange_code, code, state)
    except Exception as e:
        service.log.error("gmail_token_exchange_failed", error=str(e))
        return PlainTextResponse("Authentication failed", status_code=401)

    if refresh_token:
        service.log.info("gmail_consent_completed", hint="store the refresh token as AURALINK_GMAIL_REFRESH_TOKEN")
    return PlainTextResponse("Authentication successful! You can close this window.")
