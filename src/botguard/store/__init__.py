from botguard.store.base import KnownActorStore, RequestStore
from botguard.store.memory import InMemoryKnownActorStore, InMemoryRequestStore
from botguard.store.models import KnownActor, ProxyType, RequestFilter, TrackedRequest

__all__ = [
    "InMemoryKnownActorStore",
    "InMemoryRequestStore",
    "KnownActor",
    "KnownActorStore",
    "ProxyType",
    "RequestFilter",
    "RequestStore",
    "TrackedRequest",
]
