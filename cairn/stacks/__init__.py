"""Stack declarations."""

from cairn.stacks.notifier import EventNoticesStack, declare_event_notices, default_packages

__all__ = [
    "EventNoticesStack",
    "declare_event_notices",
    "default_packages",
]
