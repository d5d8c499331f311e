"""Observable availability of the document store."""

from enum import Enum
from typing import Callable, Optional

from guildbot.services.logger import get_logger

logger = get_logger(__name__)


class ConnectionStatus(str, Enum):
    """Lifecycle states of the document store connection."""

    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    ERROR = "error"


Listener = Callable[[ConnectionStatus, ConnectionStatus], None]


class ConnectionState:
    """Connection status owned by the document store client.

    Only the client's lifecycle hooks call the ``mark_*`` methods; everyone
    else reads ``available`` or subscribes to transitions.
    """

    def __init__(self) -> None:
        self._status = ConnectionStatus.DISCONNECTED
        self._listeners: list[Listener] = []
        self.last_error: Optional[str] = None

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def available(self) -> bool:
        return self._status is ConnectionStatus.CONNECTED

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a ``listener(old, new)``; returns an unsubscribe callable."""
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def mark_connected(self) -> None:
        self.last_error = None
        self._transition(ConnectionStatus.CONNECTED)

    def mark_error(self, error: BaseException | str) -> None:
        self.last_error = str(error) or error.__class__.__name__
        self._transition(ConnectionStatus.ERROR)

    def mark_disconnected(self) -> None:
        self._transition(ConnectionStatus.DISCONNECTED)

    def _transition(self, new: ConnectionStatus) -> None:
        old = self._status
        if old is new:
            return
        self._status = new

        if new is ConnectionStatus.CONNECTED:
            logger.info("Document store connected")
        else:
            logger.warning(
                "Document store unavailable", status=new.value, error=self.last_error
            )

        for listener in list(self._listeners):
            try:
                listener(old, new)
            except Exception as e:
                logger.error(f"Connection listener failed: {e}")
