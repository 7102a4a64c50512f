"""
Per-viewer push stream lifecycle.

A ClientConnection ties one viewer's transport (SSE response or WebSocket) to a
Broker subscription. It moves through three states:

- OPENING: created, not yet registered with the Broker
- STREAMING: registered; events() yields delivered events
- CLOSED: unregistered, entered exactly once on any exit path

Used as an async context manager the connection is always closed, whether the
stream ends normally, the transport fails, or the serving task is cancelled
because the client went away.

Example:
    ```python
    async with ClientConnection(broker, "default", client_id="abc123") as conn:
        async for event in conn.events():
            await send(event.to_sse())
    ```
"""

import enum
import logging
from typing import AsyncIterator, Optional

from .broker import Broker, Subscription
from .models import ChangeEvent

log = logging.getLogger('kubeview')


class ConnectionState(enum.Enum):
    OPENING = "opening"
    STREAMING = "streaming"
    CLOSED = "closed"


class ClientConnection:
    """
    One viewer's subscription to a namespace.

    Attributes:
        namespace: Namespace the viewer watches
        client_id: Viewer identifier, used for logging and to replace stale subscriptions
        state: Current ConnectionState
        subscription: Broker subscription while streaming
    """

    def __init__(self, broker: Broker, namespace: str, client_id: Optional[str] = None):
        self.broker = broker
        self.namespace = namespace
        self.client_id = client_id
        self.state = ConnectionState.OPENING
        self.subscription: Optional[Subscription] = None

    def __repr__(self) -> str:
        return f"ClientConnection(namespace={self.namespace!r}, client_id={self.client_id!r}, state={self.state.value})"

    def open(self) -> Subscription:
        if self.state is not ConnectionState.OPENING:
            raise RuntimeError(f"cannot open connection in state {self.state.value}")
        self.subscription = self.broker.register(self.namespace, self.client_id)
        self.state = ConnectionState.STREAMING
        log.info(f"[conn] open namespace={self.namespace} client={self.client_id}")
        return self.subscription

    def close(self) -> None:
        if self.state is ConnectionState.CLOSED:
            return
        self.state = ConnectionState.CLOSED
        if self.subscription is not None:
            self.broker.unregister(self.subscription)
        log.info(f"[conn] closed namespace={self.namespace} client={self.client_id}")

    async def __aenter__(self) -> "ClientConnection":
        self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.close()

    async def events(self) -> AsyncIterator[ChangeEvent]:
        """Yield delivered events until the subscription is closed."""
        if self.subscription is None:
            return
        while self.state is ConnectionState.STREAMING:
            event = await self.subscription.get()
            if event is None:
                # replaced by a newer subscription or broker shut down
                self.close()
                return
            yield event
