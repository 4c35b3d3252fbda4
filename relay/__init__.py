"""relay: in-process, namespace-aware cascading event dispatcher.

Subscribers for a name run as a chain: each one either settles the dispatch
(return value, completion callback or ``reply``) or hands off to the next
subscriber with ``next``. Pattern subscribers run before exact-name ones and
the most recently registered subscriber runs first within each group.
"""

from .dispatcher import (  # noqa: F401
    Dispatcher,
    DispatcherOptions,
    Methods,
    NotificationContext,
    create_event_dispatcher,
)
from .cascade import HandlerContext  # noqa: F401
from .event import Event, matches, normalize, validate  # noqa: F401
from .errors import (  # noqa: F401
    AlreadyHandled,
    DispatchError,
    HandlerFailure,
    InvalidEventIdentifier,
    InvalidHandler,
    NoSubscribers,
    RelayError,
    ValidationFailed,
)

__version__ = "0.1.0"

__all__ = [
    "Dispatcher",
    "DispatcherOptions",
    "Methods",
    "NotificationContext",
    "create_event_dispatcher",
    "HandlerContext",
    "Event",
    "matches",
    "normalize",
    "validate",
    "AlreadyHandled",
    "DispatchError",
    "HandlerFailure",
    "InvalidEventIdentifier",
    "InvalidHandler",
    "NoSubscribers",
    "RelayError",
    "ValidationFailed",
]
