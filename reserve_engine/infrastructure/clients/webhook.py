"""Webhook event publisher with exponential backoff retry logic"""

import time
import httpx
from reserve_engine.config import settings
from reserve_engine.infrastructure.events import DomainEvent


class WebhookEventPublisher:
    """Posts domain events as JSON to a configured endpoint"""

    def __init__(
        self,
        webhook_url: str | None = None,
        client: httpx.Client | None = None,
        sleep=time.sleep,
    ):
        self.webhook_url = webhook_url or settings.event_webhook_url
        self.max_retries = settings.webhook_max_retries
        self.backoff_base = settings.webhook_backoff_base
        self.client = client or httpx.Client(timeout=settings.http_timeout_seconds)
        self._sleep = sleep

    def publish(self, event: DomainEvent) -> None:
        """
        Deliver one event, retrying on 5xx responses and network failures.

        Backoff: base * 2^(attempt-1). 4xx responses are not retried. The final
        failure is raised; callers dispatch after commit and log it.
        """
        attempt = 0
        while True:
            try:
                response = self.client.post(self.webhook_url, json=event.to_dict())
                response.raise_for_status()
                return
            except httpx.HTTPStatusError as e:
                if e.response.status_code < 500:
                    raise
                attempt += 1
                if attempt >= self.max_retries:
                    raise
            except httpx.RequestError:
                attempt += 1
                if attempt >= self.max_retries:
                    raise

            self._sleep(self.backoff_base * (2 ** (attempt - 1)))

    def close(self) -> None:
        self.client.close()
