"""Gmail mailbox collaborator: unread-message fetch plus the OAuth consent helpers."""

import asyncio
from collections import OrderedDict
from typing import Any

from google.auth.exceptions import GoogleAuthError
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import Flow
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from config import Settings, configure_logging
from enrichment.base import CollaboratorError
from processor.schemas import MailMessage

GMAIL_SCOPES = ["https://www.googleapis.com/auth/gmail.readonly"]
TOKEN_URI = "https://oauth2.googleapis.com/token"
AUTH_URI = "https://accounts.google.com/o/oauth2/auth"
MAX_PENDING_CONSENTS = 16


def _header(headers: list[dict[str, str]], name: str) -> str | None:
    for h in headers:
        if h.get("name", "").lower() == name.lower():
            return h.get("value")
    return None


def parse_message(raw: dict[str, Any]) -> MailMessage:
    headers = raw.get("payload", {}).get("headers", [])
    return MailMessage(
        id=raw.get("id", ""),
        subject=_header(headers, "Subject") or "No Subject",
        sender=_header(headers, "From") or "Unknown Sender",
        date=_header(headers, "Date"),
        snippet=raw.get("snippet", ""),
    )


class GmailMailbox:
    """
    Read-only Gmail access with a long-lived refresh token.

    Enabled only when a refresh token is configured. The Google client is
    synchronous, so every fetch runs in a worker thread.
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        refresh_token: str = "",
        redirect_uri: str = "",
        service: Any = None,
        log_level: str | None = None,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self._refresh_token = refresh_token.strip()
        self._service = service
        self._pending_flows: OrderedDict[str, Flow] = OrderedDict()
        self.log = configure_logging("gmail-mailbox", log_level)
        if not self._refresh_token:
            self.log.warning("gmail_disabled", reason="no refresh token configured")

    @classmethod
    def from_settings(cls, settings: Settings) -> "GmailMailbox":
        return cls(
            client_id=settings.gmail_client_id,
            client_secret=settings.gmail_client_secret,
            refresh_token=settings.gmail_refresh_token,
            redirect_uri=settings.gmail_redirect_uri,
            log_level=settings.log_level,
        )

    def is_enabled(self) -> bool:
        return bool(self._refresh_token)

    @property
    def service(self) -> Any:
        if self._service is None:
            credentials = Credentials(
                token=None,
                refresh_token=self._refresh_token,
                client_id=self.client_id,
                client_secret=self.client_secret,
                token_uri=TOKEN_URI,
                scopes=GMAIL_SCOPES,
            )
            self._service = build("gmail", "v1", credentials=credentials, cache_discovery=False)
        return self._service

    async def fetch_unread(self, max_count: int = 5) -> list[MailMessage]:
        if not self.is_enabled():
            raise CollaboratorError("gmail is not configured")
        try:
            messages = await asyncio.to_thread(self._fetch_unread_sync, max_count)
        except HttpError as e:
            self.log.error("gmail_fetch_failed", status=e.resp.status, error=str(e))
            raise CollaboratorError(f"gmail API error: {e}") from e
        except GoogleAuthError as e:
            # invalid_grant lands here when the refresh token is revoked
            self.log.error("gmail_auth_failed", error=str(e))
            raise CollaboratorError(f"gmail authentication failed: {e}") from e
        except OSError as e:
            self.log.error("gmail_fetch_failed", error=str(e))
            raise CollaboratorError(f"gmail unreachable: {e}") from e
        self.log.info("gmail_unread_fetched", count=len(messages))
        return messages

    def _fetch_unread_sync(self, max_count: int) -> list[MailMessage]:
        messages_api = self.service.users().messages()
        listing = messages_api.list(userId="me", q="is:unread", maxResults=max_count).execute()
        refs = listing.get("messages", [])
        results = []
        for ref in refs[:max_count]:
            raw = messages_api.get(
                userId="me",
                id=ref["id"],
                format="metadata",
                metadataHeaders=["Subject", "From", "Date"],
            ).execute()
            results.append(parse_message(raw))
        return results

    # ─── OAuth consent flow ─────────────────────────────────────────

    def _flow(self) -> Flow:
        client_config = {
            "web": {
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "auth_uri": AUTH_URI,
                "token_uri": TOKEN_URI,
                "redirect_uris": [self.redirect_uri],
            }
        }
        return Flow.from_client_config(client_config, scopes=GMAIL_SCOPES, redirect_uri=self.redirect_uri)

    def build_auth_url(self) -> str:
        """Consent URL for the Gmail scope.

        The Flow that produced the URL holds the PKCE code verifier, so it is
        kept under its `state` until the callback exchanges the code.
        """
        flow = self._flow()
        url, state = flow.authorization_url(access_type="offline", prompt="consent")
        self._pending_flows[state] = flow
        while len(self._pending_flows) > MAX_PENDING_CONSENTS:
            self._pending_flows.popitem(last=False)
        return url

    def exchange_code(self, code: str, state: str) -> str | None:
        """Trade an authorization code for tokens; returns the refresh token, if granted.

        Raises CollaboratorError when `state` does not match a consent started here.
        """
        flow = self._pending_flows.pop(state, None)
        if flow is None:
            raise CollaboratorError("unknown or expired OAuth state")
        flow.fetch_token(code=code)
        refresh_token = flow.credentials.refresh_token
        if refresh_token:
            self._refresh_token = refresh_token
            self._service = None
            self.log.info("gmail_refresh_token_obtained")
        return refresh_token
