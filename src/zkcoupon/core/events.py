"""
Events published to the notification service.

The core never delivers messages itself. It hands a ``TokenIssuedEvent`` to
a sink; delivery (email, push, ...) is the sink owner's business.
"""

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, List, Optional

from .models import ConfirmationAction, ConfirmationToken


@dataclass(frozen=True)
class TokenIssuedEvent:
    """A confirmation token that must reach the wallet owner out-of-band."""

    token: str
    action: ConfirmationAction
    target_wallet: str
    expires_at: float

    @classmethod
    def from_token(cls, token: ConfirmationToken) -> "TokenIssuedEvent":
        return cls(
            token=token.token,
            action=token.action,
            target_wallet=token.target_wallet,
            expires_at=token.expires_at,
        )


class NotificationSink(ABC):
    """Receives confirmation-token events for delivery."""

    @abstractmethod
    def publish(self, event: TokenIssuedEvent) -> None:
        pass


class InMemoryNotificationSink(NotificationSink):
    """Keeps events in memory; used by tests and local development."""

    def __init__(self):
        self._events: List[TokenIssuedEvent] = []
        self._lock = threading.Lock()

    def publish(self, event: TokenIssuedEvent) -> None:
        with self._lock:
            self._events.append(event)

    @property
    def events(self) -> List[TokenIssuedEvent]:
        with self._lock:
            return list(self._events)

    def latest(
        self,
        target_wallet: Optional[str] = None,
        action: Optional[ConfirmationAction] = None,
    ) -> Optional[TokenIssuedEvent]:
        """Most recent event, optionally filtered by wallet and action."""
        with self._lock:
            for event in reversed(self._events):
                if target_wallet is not None and event.target_wallet != target_wallet:
                    continue
                if action is not None and event.action != action:
                    continue
                return event
        return None

    def clear(self) -> None:
        with self._lock:
            self._events.clear()


class CallbackNotificationSink(NotificationSink):
    """Forwards each event to a callable, e.g. a mail queue producer."""

    def __init__(self, callback: Callable[[TokenIssuedEvent], None]):
        self.callback = callback

    def publish(self, event: TokenIssuedEvent) -> None:
        self.callback(event)
