"""Channel sender registry — pluggable delivery adapters per channel.

Fake senders are used by default. Real provider adapters are registered with
``register_channel`` at startup; their configuration comes from
``settings.channel_config`` and is opaque to the core.
"""

from messaging.message.message import Channel
from messaging.settings import get_settings

_channel_instances: dict[str, object] = {}


def get_channel(channel_type: str):
    """Return the sender for a channel (singleton per channel).

    Args:
        channel_type: One of the Channel enum values ("push", "email", "whatsapp", "sms", "inapp")
    """
    if channel_type not in _channel_instances:
        config = get_settings().channel_config.get(channel_type, {})
        if channel_type == Channel.PUSH.value:
            from messaging.channel.fake import FakePushSender

            _channel_instances[channel_type] = FakePushSender(config)
        elif channel_type == Channel.EMAIL.value:
            from messaging.channel.fake import FakeEmailSender

            _channel_instances[channel_type] = FakeEmailSender(config)
        elif channel_type == Channel.SMS.value:
            from messaging.channel.fake import FakeSmsSender

            _channel_instances[channel_type] = FakeSmsSender(config)
        elif channel_type == Channel.WHATSAPP.value:
            from messaging.channel.fake import FakeWhatsAppSender

            _channel_instances[channel_type] = FakeWhatsAppSender(config)
        elif channel_type == Channel.INAPP.value:
            from messaging.channel.fake import FakeInboxSender

            _channel_instances[channel_type] = FakeInboxSender(config)
        else:
            raise ValueError(f"Unknown channel type: {channel_type}")

    return _channel_instances[channel_type]


def register_channel(channel_type: str, sender):
    """Install a sender for a channel, replacing the default."""
    Channel(channel_type)
    _channel_instances[channel_type] = sender


def reset_channels():
    """Reset all channel singletons (useful for testing)."""
    _channel_instances.clear()
