"""Thin async client for the Gmail REST API (watch, history, messages) over httpx."""
import base64
import logging
import time
from typing import Any

import httpx

from procurement.errors import MailboxError

logger = logging.getLogger(__name__)

GMAIL_API = "https://gmail.googleapis.com/gmail/v1/users"
TOKEN_URL = "https://oauth2.googleapis.com/token"
_TIMEOUT_SEC = 30
# Refresh a little before the token actually expires.
_TOKEN_SKEW_SEC = 60


class GmailClient:
    def __init__(self, client_id: str, client_secret: str, refresh_token: str, user: str = "me",
                 http: httpx.AsyncClient | None = None):
        self.client_id = client_id
        self.client_secret = client_secret
        self.refresh_token = refresh_token
        self.user = user
        self._http = http or httpx.AsyncClient(timeout=_TIMEOUT_SEC)
        self._access_token: str | None = None
        self._token_expires_at = 0.0

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _token(self, force: bool = False) -> str:
        if not force and self._access_token and time.monotonic() < self._token_expires_at:
            return self._access_token
        try:
            resp = await self._http.post(TOKEN_URL, data={
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "refresh_token": self.refresh_token,
                "grant_type": "refresh_token",
            })
            resp.raise_for_status()
        except httpx.HTTPError as e:
            raise MailboxError(f"OAuth token refresh failed: {e}") from e
        body = resp.json()
        self._access_token = body["access_token"]
        self._token_expires_at = time.monotonic() + int(body.get("expires_in", 3600)) - _TOKEN_SKEW_SEC
        return self._access_token

    async def _request(self, method: str, path: str, **kwargs) -> dict[str, Any]:
        url = f"{GMAIL_API}/{self.user}/{path}"
        for attempt in (1, 2):
            token = await self._token(force=attempt == 2)
            try:
                resp = await self._http.request(method, url, headers={"Authorization": f"Bearer {token}"}, **kwargs)
            except httpx.HTTPError as e:
                raise MailboxError(f"{method} {path} failed: {e}") from e
            if resp.status_code == 401 and attempt == 1:
                logger.info("Gmail access token rejected, refreshing")
                continue
            if resp.status_code >= 400:
                raise MailboxError(f"{method} {path} returned {resp.status_code}: {resp.text[:200]}")
            return resp.json() if resp.content else {}
        raise MailboxError(f"{method} {path} unauthorized after token refresh")

    async def watch(self, topic: str, label_ids: list[str] | None = None) -> dict[str, Any]:
        """Returns {"historyId": str, "expiration": epoch-millis str}."""
        return await self._request("POST", "watch", json={"topicName": topic, "labelIds": label_ids or ["INBOX"]})

    async def list_added_message_ids(self, start_history_id: str) -> list[str]:
        """All message ids added since start_history_id, following pagination, in log order."""
        ids: list[str] = []
        params: dict[str, Any] = {"startHistoryId": start_history_id, "historyTypes": "messageAdded"}
        while True:
            page = await self._request("GET", "history", params=params)
            for record in page.get("history", []):
                for added in record.get("messagesAdded", []):
                    msg_id = (added.get("message") or {}).get("id")
                    if msg_id and msg_id not in ids:
                        ids.append(msg_id)
            token = page.get("nextPageToken")
            if not token:
                return ids
            params["pageToken"] = token

    async def list_message_ids(self, query: str, max_results: int) -> list[str]:
        page = await self._request("GET", "messages", params={"q": query, "maxResults": max_results})
        return [m["id"] for m in page.get("messages", []) if m.get("id")]

    async def get_message(self, message_id: str) -> dict[str, Any]:
        return await self._request("GET", f"messages/{message_id}", params={"format": "full"})


def header(message: dict[str, Any], name: str) -> str | None:
    for h in (message.get("payload") or {}).get("headers", []):
        if (h.get("name") or "").lower() == name.lower():
            return h.get("value")
    return None


def _decode(data: str) -> str:
    padded = data + "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(padded).decode("utf-8", errors="replace")


def extract_body(payload: dict[str, Any]) -> str:
    """Top-level body, else first text/plain or text/html part, recursing into nested parts."""
    data = (payload.get("body") or {}).get("data")
    if data:
        return _decode(data)
    for part in payload.get("parts") or []:
        if part.get("mimeType") in ("text/plain", "text/html"):
            part_data = (part.get("body") or {}).get("data")
            if part_data:
                return _decode(part_data)
        if part.get("parts"):
            nested = extract_body(part)
            if nested:
                return nested
    return ""
