"""Services - side effects that follow a committed state change."""

from tracker.services.activity import ActivityDispatcher, Delivery

__all__ = [
    "ActivityDispatcher",
    "Delivery",
]
