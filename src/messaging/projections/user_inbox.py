"""UserInbox — in-app inbox entries, fed by sent in-app messages."""

from messaging.domain import messaging
from messaging.message.events import MessageClicked, MessageRead, MessageSent
from messaging.message.message import Channel, Message
from protean.core.projector import on
from protean.exceptions import ObjectNotFoundError
from protean.fields import Boolean, DateTime, Identifier, String, Text
from protean.utils.globals import current_domain


@messaging.projection
class UserInbox:
    message_id: Identifier(identifier=True, required=True)
    user_id: Identifier(required=True)
    template_id: String()
    title: String(max_length=500)
    body: Text()
    cta_label: String(max_length=100)
    cta_url: String(max_length=1000)
    is_read: Boolean(default=False)
    received_at: DateTime()
    read_at: DateTime()


@messaging.projector(projector_for=UserInbox, aggregates=[Message])
class UserInboxProjector:
    @on(MessageSent)
    def on_message_sent(self, event):
        if event.channel != Channel.INAPP.value:
            return

        message = current_domain.repository_for(Message).get(event.message_id)
        current_domain.repository_for(UserInbox).add(
            UserInbox(
                message_id=event.message_id,
                user_id=event.user_id,
                template_id=message.template_id,
                title=message.subject,
                body=message.body,
                cta_label=message.cta_label,
                cta_url=message.cta_url,
                is_read=False,
                received_at=event.sent_at,
            )
        )

    def _mark_read(self, message_id, at):
        repo = current_domain.repository_for(UserInbox)
        try:
            entry = repo.get(message_id)
        except ObjectNotFoundError:
            return
        if entry.is_read:
            return
        entry.is_read = True
        entry.read_at = at
        repo.add(entry)

    @on(MessageRead)
    def on_message_read(self, event):
        self._mark_read(event.message_id, event.read_at)

    @on(MessageClicked)
    def on_message_clicked(self, event):
        self._mark_read(event.message_id, event.clicked_at)
