"""
SAM.gov opportunity monitoring engine.

The engine is source- and channel-agnostic: :mod:`samgov` supplies the search
source and :mod:`notifiers` the delivery channels.
"""

from .context import RunCancelled, RunContext
from .differ import Differ
from .digest import DigestBatcher
from .dispatcher import CircuitBreaker, QueryDispatcher, RetryPolicy
from .fingerprint import fingerprint
from .recovery import PartialFailureHandler, RecoveryPolicy
from .router import NotificationRouter
from .runner import Monitor
from .state import Observation, StateStore

__version__ = "1.0.0"

__all__ = [
    "CircuitBreaker",
    "DigestBatcher",
    "Differ",
    "Monitor",
    "NotificationRouter",
    "Observation",
    "PartialFailureHandler",
    "QueryDispatcher",
    "RecoveryPolicy",
    "RetryPolicy",
    "RunCancelled",
    "RunContext",
    "StateStore",
    "fingerprint",
]
