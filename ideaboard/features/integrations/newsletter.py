"""Newsletter relay (Beehiiv subscriptions API)."""

from __future__ import annotations

import logging
from typing import Literal, Optional

import httpx

from ideaboard.core.config import Settings

logger = logging.getLogger("ideaboard.newsletter")

BEEHIIV_API_BASE = "https://api.beehiiv.com/v2"
NEWSLETTER_TIMEOUT_SECONDS = 10.0

SubscribeOutcome = Literal["ok", "already_subscribed"]


class NewsletterError(RuntimeError):
    pass


class NewsletterClient:
    def __init__(
        self,
        api_key: Optional[str],
        publication_id: Optional[str],
        *,
        http: Optional[httpx.Client] = None,
        base_url: str = BEEHIIV_API_BASE,
    ):
        self.api_key = api_key
        self.publication_id = publication_id
        self.base_url = base_url.rstrip("/")
        self._http = http

    @classmethod
    def from_settings(cls, cfg: Settings) -> "NewsletterClient":
        return cls(cfg.BEEHIIV_API_KEY, cfg.BEEHIIV_PUBLICATION_ID)

    @property
    def configured(self) -> bool:
        return bool(self.api_key and self.publication_id)

    def subscribe(self, email: str) -> SubscribeOutcome:
        if not self.configured:
            raise NewsletterError("Newsletter provider is not configured")

        url = f"{self.base_url}/publications/{self.publication_id}/subscriptions"
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Accept": "application/json",
        }
        body = {"email": email, "reactivate_existing": False, "send_welcome_email": False}

        if self._http is not None:
            response = self._http.post(url, json=body, headers=headers)
        else:
            with httpx.Client(timeout=NEWSLETTER_TIMEOUT_SECONDS) as client:
                response = client.post(url, json=body, headers=headers)

        if response.is_success:
            return "ok"
        message = ""
        try:
            message = str(response.json().get("message", ""))
        except ValueError:
            message = response.text
        if response.status_code in (400, 409) and "already subscribed" in message.lower():
            return "already_subscribed"
        raise NewsletterError(f"Newsletter provider error {response.status_code}: {message[:200]}")
