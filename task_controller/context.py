"""
Application context.

One AppContext is built at process start and handed to the HTTP app and
the Telegram application; nothing reaches shared state through module
globals.
"""

from dataclasses import dataclass
from typing import Optional

from .config import Settings
from .errors import StateUnavailableError
from .notifier import OperatorNotifier
from .registry import TaskRegistry
from .status_resolver import StatusResolver


@dataclass
class AppContext:
    registry: TaskRegistry
    operator_id: int
    settings: Optional[Settings] = None
    notifier: Optional[OperatorNotifier] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "AppContext":
        registry = TaskRegistry(
            allowed_devices=settings.allowed_devices,
            lock_timeout=settings.lock_timeout,
        )
        return cls(registry=registry, operator_id=settings.telegram_user_id, settings=settings)

    def status_resolver(self) -> StatusResolver:
        """Resolver bound to the current notifier."""
        if self.notifier is None:
            raise StateUnavailableError("operator notifier")
        return StatusResolver(self.registry, self.notifier)
