"""
Auto-resolution actions.

The alert engine makes exactly one remediation attempt per remediable alert
and judges the outcome on the following tick by whether the signal
recovered. What a remediation actually does is environment specific: the
default PlaybookRemediator logs the playbook for the signal and runs any
handler the integrating system registered for it.
"""
import asyncio
import inspect
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional

from .models import Alert


logger = logging.getLogger(__name__)


DEFAULT_PLAYBOOKS: Dict[str, List[str]] = {
    "hub_load_time": ["Cache optimization", "Resource preloading", "Bundle size reduction"],
    "hub_load_regression": ["Cache optimization", "Resource preloading", "Bundle size reduction"],
    "world_transition_time": ["Asset prefetching", "Transition cache warm-up"],
    "memory_usage": ["Garbage collection", "Memory cleanup", "Resource deallocation"],
    "response_time": ["Performance tuning", "Query optimization", "Caching enhancement"],
    "throughput": ["Scale out workers", "Connection pool tuning"],
    "uptime": ["Restart unhealthy instances", "Fail over to standby"],
    "error_rate": ["Recycle failing workers", "Enable circuit breaker"],
    "recovery_time": ["Pre-warm standby capacity", "Shorten health check intervals"],
}

GENERAL_PLAYBOOK = ["General optimization"]


class Remediator(ABC):
    """Performs one bounded remediation attempt for an alert."""

    @abstractmethod
    async def remediate(self, alert: Alert) -> bool:
        """
        Dispatch the remediation for ``alert``.

        Returns:
            True if the action was dispatched; whether it worked is judged
            by the engine on the next tick
        """


class PlaybookRemediator(Remediator):
    """
    Remediator driven by per-signal playbooks and registered handlers.

    Usage:
        remediator = PlaybookRemediator()
        remediator.register("memory_usage", flush_caches)   # sync or async
    """

    def __init__(
        self,
        playbooks: Optional[Dict[str, List[str]]] = None,
        step_delay: float = 0.0
    ):
        self.playbooks = dict(DEFAULT_PLAYBOOKS if playbooks is None else playbooks)
        self.step_delay = step_delay
        self.handlers: Dict[str, Callable[[Alert], Any]] = {}
        self.attempts: List[str] = []

    def register(self, signal: str, handler: Callable[[Alert], Any]) -> None:
        """Register the environment-specific action for a signal."""
        self.handlers[signal] = handler

    def playbook_for(self, signal: str) -> List[str]:
        return self.playbooks.get(signal, GENERAL_PLAYBOOK)

    async def remediate(self, alert: Alert) -> bool:
        self.attempts.append(alert.id)
        logger.info(f"Attempting auto-resolution for {alert.category.value}/{alert.signal} ({alert.id})")

        for step in self.playbook_for(alert.signal):
            logger.info(f"   Applying: {step}")
            if self.step_delay:
                await asyncio.sleep(self.step_delay)

        handler = self.handlers.get(alert.signal)
        if handler is None:
            return True

        result = handler(alert)
        if inspect.isawaitable(result):
            result = await result
        return result is not False
