"""Governor service and its request queue."""

from governor.services.governor import Governor, get_governor, reset_governor
from governor.services.request_queue import QueueEntry, RequestQueue

__all__ = [
    "Governor",
    "get_governor",
    "reset_governor",
    "QueueEntry",
    "RequestQueue",
]
