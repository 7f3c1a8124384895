"""Fake channel senders — record payloads in memory for test assertions."""

from uuid import uuid4

from messaging.channel.port import ChannelSender, SendResult
from messaging.errors import ErrorCode
from messaging.message.message import Channel


class FakeChannelSender(ChannelSender):
    """Sender that succeeds by default and can be told to fail."""

    channel = None

    def __init__(self, config: dict | None = None):
        self.config = config or {}
        self.sent: list = []
        self.attempts = 0
        self.reset()

    def configure(
        self,
        should_succeed: bool = True,
        failure_reason: str = "Delivery failed",
        error_code: str = ErrorCode.DELIVERY_FAILED.value,
        retryable: bool = True,
        retry_after=None,
        fail_times: int | None = None,
        raises: Exception | None = None,
    ):
        """Configure the fake behavior.

        ``fail_times`` makes the next N attempts fail and later ones succeed;
        ``raises`` makes ``send`` throw instead of returning a result.
        """
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason
        self.error_code = error_code
        self.retryable = retryable
        self.retry_after = retry_after
        self.fail_times = fail_times
        self.raises = raises

    def send(self, payload) -> SendResult:
        self.attempts += 1

        if self.raises is not None:
            raise self.raises

        failing = not self.should_succeed
        if self.fail_times is not None:
            failing = self.fail_times > 0
            self.fail_times -= 1

        if failing:
            return SendResult(
                status="failed",
                error=self.failure_reason,
                error_code=self.error_code,
                retryable=self.retryable,
                retry_after=self.retry_after,
            )

        provider_message_id = f"{self.channel}-{uuid4().hex[:12]}"
        self.sent.append(payload)
        return SendResult(status="sent", provider_message_id=provider_message_id)

    def reset(self):
        """Clear sent payloads and restore the default behavior."""
        self.sent.clear()
        self.attempts = 0
        self.configure()


class FakePushSender(FakeChannelSender):
    channel = Channel.PUSH.value


class FakeEmailSender(FakeChannelSender):
    channel = Channel.EMAIL.value


class FakeSmsSender(FakeChannelSender):
    channel = Channel.SMS.value


class FakeWhatsAppSender(FakeChannelSender):
    channel = Channel.WHATSAPP.value


class FakeInboxSender(FakeChannelSender):
    channel = Channel.INAPP.value
