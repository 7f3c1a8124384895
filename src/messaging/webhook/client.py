"""httpx-backed webhook client."""

import httpx
import structlog
from messaging.webhook.port import WebhookPort, WebhookResult

logger = structlog.get_logger(__name__)


class HttpWebhookClient(WebhookPort):
    def __init__(self, timeout: float = 10.0, client: httpx.Client | None = None):
        self._client = client or httpx.Client(timeout=httpx.Timeout(timeout, connect=min(timeout, 5.0)))

    def post(self, url, payload, headers=None) -> WebhookResult:
        try:
            response = self._client.post(url, json=payload, headers=headers or {})
        except httpx.TimeoutException:
            logger.warning("Webhook timed out", url=url)
            return WebhookResult(ok=False, error="Request timed out")
        except httpx.HTTPError as exc:
            logger.warning("Webhook request failed", url=url, error=str(exc))
            return WebhookResult(ok=False, error=str(exc))

        if 200 <= response.status_code < 300:
            return WebhookResult(ok=True, status_code=response.status_code)

        logger.warning("Webhook rejected", url=url, status_code=response.status_code)
        return WebhookResult(
            ok=False,
            status_code=response.status_code,
            error=f"HTTP {response.status_code}: {response.text[:500]}",
        )

    def close(self):
        self._client.close()
