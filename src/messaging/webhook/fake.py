"""Fake webhook client — records calls for test assertions."""

from messaging.webhook.port import WebhookPort, WebhookResult


class FakeWebhookClient(WebhookPort):
    def __init__(self):
        self.calls: list[dict] = []
        self.reset()

    def configure(self, should_succeed: bool = True, status_code: int = 500, fail_times: int | None = None):
        """``fail_times`` makes the next N calls fail and later ones succeed."""
        self.should_succeed = should_succeed
        self.status_code = status_code
        self.fail_times = fail_times

    def post(self, url, payload, headers=None) -> WebhookResult:
        self.calls.append({"url": url, "payload": payload, "headers": headers or {}})

        failing = not self.should_succeed
        if self.fail_times is not None:
            failing = self.fail_times > 0
            self.fail_times -= 1

        if failing:
            return WebhookResult(ok=False, status_code=self.status_code, error=f"HTTP {self.status_code}")
        return WebhookResult(ok=True, status_code=200)

    def reset(self):
        self.calls.clear()
        self.configure()
