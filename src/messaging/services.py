"""Process-wide wiring of the messaging services.

The dispatcher, delivery worker, journey engine and their shared state
(counters, dispatch queue, event recorder) are built once and shared by the
API and the worker pool. Tests rebuild them with ``reset_services`` or swap
adapters with ``configure_services``.
"""

from dataclasses import dataclass

from messaging.directory.memory import InMemoryUserDirectory
from messaging.enrollment.store import EnrollmentStore
from messaging.event.recorder import EventRecorder
from messaging.journey.engine import JourneyEngine
from messaging.message.delivery import DeliveryWorker
from messaging.message.dispatch import MessageDispatcher
from messaging.message.queue import DispatchQueue
from messaging.policy.counters import CounterStore
from messaging.settings import get_settings
from messaging.webhook.client import HttpWebhookClient


@dataclass
class Services:
    counters: CounterStore
    queue: DispatchQueue
    recorder: EventRecorder
    dispatcher: MessageDispatcher
    worker: DeliveryWorker
    directory: object
    webhooks: object
    store: EnrollmentStore
    engine: JourneyEngine


_services: Services | None = None


def _build(directory=None, webhooks=None) -> Services:
    counters = CounterStore()
    queue = DispatchQueue()
    recorder = EventRecorder(counters)
    dispatcher = MessageDispatcher(counters, queue, recorder)
    directory = directory if directory is not None else InMemoryUserDirectory()
    webhooks = webhooks if webhooks is not None else HttpWebhookClient(timeout=get_settings().webhook_timeout_seconds)
    store = EnrollmentStore()
    engine = JourneyEngine(store, dispatcher, recorder, directory, webhooks)
    recorder.subscribe(engine.handle_event)

    return Services(
        counters=counters,
        queue=queue,
        recorder=recorder,
        dispatcher=dispatcher,
        worker=DeliveryWorker(counters, queue, recorder),
        directory=directory,
        webhooks=webhooks,
        store=store,
        engine=engine,
    )


def get_services() -> Services:
    global _services
    if _services is None:
        _services = _build()
    return _services


def configure_services(directory=None, webhooks=None) -> Services:
    """Rebuild the services with the given user directory and webhook adapter."""
    global _services
    _services = _build(directory=directory, webhooks=webhooks)
    return _services


def reset_services():
    """Drop the shared services (useful for testing)."""
    global _services
    _services = None
