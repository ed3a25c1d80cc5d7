"""
Realtime subscriptions.

Opens a server-sent-events stream, waits for the server to announce a
client id, registers the requested topics through a separate control
request, and delivers decoded change events to a callback.
"""

import asyncio
import enum
import inspect
import logging
import ssl
from typing import Awaitable, Callable, Iterable, Optional, Union

import aiohttp
import httpx

from .connection import build_auth_headers, create_stream_connector, create_stream_timeout
from .errors import (
    DecodeError,
    HandshakeError,
    RecordbaseError,
    SubscriptionCancelled,
    SubscriptionRejected,
    SubscriptionTimeout,
    TransportError,
    parse_api_error,
)
from .models import RealtimeEvent, json_dumps, json_loads
from .session import CONNECT_TIMEOUT, CONTROL_TIMEOUT, SUBSCRIBE_TIMEOUT, SessionStore
from .sse import ServerSentEvent, iter_events

logger = logging.getLogger(__name__)

REALTIME_PATH = "/api/realtime"
CONNECT_EVENT = "PB_CONNECT"

# Called with (event, None) for each change, or (None, error) on failures.
# Events arriving before the topics are confirmed are delivered too, even
# when subscribe() then fails; callers needing only confirmed events should
# ignore them until subscribe() has returned.
RealtimeCallback = Callable[
    [Optional[RealtimeEvent], Optional[Exception]],
    Union[None, Awaitable[None]],
]


class SubscriptionState(enum.Enum):
    CONNECTING = "connecting"
    AWAITING_HANDSHAKE = "awaiting_handshake"
    SUBSCRIBED = "subscribed"
    CLOSED = "closed"
    FAILED = "failed"


class Subscription:
    """
    A live realtime subscription.

    Returned by RealtimeSubscriber.subscribe() once the server has accepted
    the topic registration. Call unsubscribe() (or leave the async context)
    to tear it down.
    """

    def __init__(
        self,
        subscriber: "RealtimeSubscriber",
        topics: list[str],
        callback: RealtimeCallback,
    ):
        self.topics = tuple(topics)
        self.client_id: Optional[str] = None
        self.state = SubscriptionState.CONNECTING
        self._subscriber = subscriber
        self._callback = callback
        self._confirmed: asyncio.Future = asyncio.get_running_loop().create_future()
        self._read_task: Optional[asyncio.Task] = None
        self._control_task: Optional[asyncio.Task] = None
        self._watch_task: Optional[asyncio.Task] = None
        self._closing = False

    def __repr__(self) -> str:
        return f"<Subscription client_id={self.client_id!r} topics={list(self.topics)} state={self.state.value}>"

    @property
    def active(self) -> bool:
        return self.state is SubscriptionState.SUBSCRIBED and not self._closing

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.unsubscribe()

    def _start(self, cancel_event: Optional[asyncio.Event]) -> None:
        self._read_task = asyncio.create_task(self._read_loop())
        if cancel_event is not None:
            self._watch_task = asyncio.create_task(self._watch(cancel_event))

    async def unsubscribe(self) -> None:
        """
        Stop the subscription and wait until its background tasks have exited.

        Safe to call more than once. When called from inside the callback the
        read loop cannot be joined from itself; it stops after the callback
        returns.
        """
        self._closing = True
        current = asyncio.current_task()
        tasks = [
            t for t in (self._watch_task, self._control_task, self._read_task)
            if t is not None and t is not current
        ]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        if not self._confirmed.done():
            # A pending subscribe() must raise, not see a CancelledError
            self._confirmed.set_exception(SubscriptionCancelled("Subscription closed"))
        # Mark any failure as retrieved; subscribe() may have timed out first
        self._confirmed.exception()

        if self.state is not SubscriptionState.FAILED:
            self.state = SubscriptionState.CLOSED
        self._subscriber._subscriptions.discard(self)

    async def wait_closed(self) -> None:
        """Wait until the stream ends, by unsubscribe or by failure."""
        if self._read_task is not None:
            await asyncio.wait({self._read_task})

    async def _watch(self, cancel_event: asyncio.Event) -> None:
        await cancel_event.wait()
        logger.info(f"Cancel event set, closing subscription {self.client_id or '(pending)'}")
        if not self._confirmed.done():
            self._confirmed.set_exception(SubscriptionCancelled("Subscription cancelled"))
        await self.unsubscribe()

    async def _read_loop(self) -> None:
        """Read the event stream until cancelled or the connection ends."""
        subscriber = self._subscriber
        try:
            token = await subscriber.store.token()
            headers = build_auth_headers(token)
            headers["Accept"] = "text/event-stream"

            session = subscriber._get_stream_session()
            async with session.get(subscriber.realtime_url, headers=headers) as response:
                try:
                    if response.status >= 400:
                        body = await response.read()
                        api_error = parse_api_error(response.status, body, REALTIME_PATH)
                        raise HandshakeError(f"Realtime connection rejected: {api_error}")

                    self.state = SubscriptionState.AWAITING_HANDSHAKE
                    async for event in iter_events(response.content.iter_any()):
                        if self._closing:
                            break
                        await self._dispatch(event)
                        if self._closing:
                            break
                finally:
                    # Drop the connection instead of returning it to the pool
                    response.close()

            if not self._closing:
                raise TransportError("Realtime stream closed by server")
        except asyncio.CancelledError:
            raise
        except RecordbaseError as e:
            await self._fail(e)
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            await self._fail(TransportError(f"Realtime connection failed: {type(e).__name__}: {e}"))
        except Exception as e:
            logger.error(f"Realtime read loop error: {type(e).__name__}: {e}")
            await self._fail(TransportError(f"Realtime read loop error: {e}"))

    async def _fail(self, error: RecordbaseError) -> None:
        if not self._confirmed.done():
            # Anything before confirmation is a handshake failure
            if isinstance(error, TransportError):
                wrapped = HandshakeError(str(error))
                wrapped.__cause__ = error
                error = wrapped
            logger.error(f"Realtime subscription failed: {error}")
            self.state = SubscriptionState.FAILED
            self._confirmed.set_exception(error)
            return

        logger.warning(f"Realtime subscription {self.client_id} closed: {error}")
        self.state = SubscriptionState.CLOSED
        if not self._closing:
            await self._deliver(None, error)

    async def _dispatch(self, event: ServerSentEvent) -> None:
        if self.client_id is None:
            self._handle_connect(event)
            return

        if event.event == CONNECT_EVENT:
            logger.debug(f"Ignoring repeated {CONNECT_EVENT} event")
            return
        if not event.data:
            logger.debug("Keep-alive received")
            return

        try:
            decoded = RealtimeEvent.from_json(event.data)
        except DecodeError as e:
            logger.warning(f"Malformed realtime event: {e}")
            await self._deliver(None, e)
            return
        await self._deliver(decoded, None)

    def _handle_connect(self, event: ServerSentEvent) -> None:
        """Validate the handshake event and start topic registration."""
        if event.event != CONNECT_EVENT:
            raise HandshakeError(f"Expected {CONNECT_EVENT} event, got {event.event!r}")
        try:
            payload = json_loads(event.data)
        except ValueError as e:
            raise HandshakeError(f"Malformed {CONNECT_EVENT} payload: {e}") from e

        client_id = payload.get("clientId") if isinstance(payload, dict) else None
        if not isinstance(client_id, str) or not client_id:
            raise HandshakeError(f"{CONNECT_EVENT} event missing clientId")

        self.client_id = client_id
        logger.info(f"Realtime connected (client: {client_id})")
        # Own task so a slow control request never stalls event delivery
        self._control_task = asyncio.create_task(self._confirm(client_id))

    async def _confirm(self, client_id: str) -> None:
        try:
            await self._subscriber.send_subscriptions(client_id, self.topics)
        except asyncio.CancelledError:
            raise
        except RecordbaseError as e:
            if not self._confirmed.done():
                logger.error(f"Subscription request failed: {e}")
                self.state = SubscriptionState.FAILED
                self._confirmed.set_exception(e)
            return

        if not self._confirmed.done():
            self.state = SubscriptionState.SUBSCRIBED
            self._confirmed.set_result(None)
            logger.info(f"Subscribed to {list(self.topics)} (client: {client_id})")

    async def _deliver(self, event: Optional[RealtimeEvent], error: Optional[Exception]) -> None:
        if self._closing:
            return
        try:
            result = self._callback(event, error)
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Realtime callback error: {type(e).__name__}: {e}")


class RealtimeSubscriber:
    """Creates realtime subscriptions against one server."""

    def __init__(
        self,
        base_url: str,
        http: httpx.AsyncClient,
        store: SessionStore,
        ssl_context: Optional[ssl.SSLContext] = None,
        connect_timeout: float = CONNECT_TIMEOUT,
        control_timeout: float = CONTROL_TIMEOUT,
        subscribe_timeout: float = SUBSCRIBE_TIMEOUT,
    ):
        """
        Initialize the subscriber.

        Args:
            base_url: Server base URL (e.g., https://db.example.com)
            http: Client used for control requests; its auth flow authorizes them
            store: Session store authorizing the event stream
            ssl_context: TLS settings for the event stream connection
            connect_timeout: Connection establishment timeout for the stream
            control_timeout: Timeout for the subscription control request
            subscribe_timeout: Default deadline for handshake and confirmation
        """
        self.realtime_url = base_url.rstrip("/") + REALTIME_PATH
        self.store = store
        self.connect_timeout = connect_timeout
        self.control_timeout = control_timeout
        self.subscribe_timeout = subscribe_timeout
        self._http = http
        self._ssl_context = ssl_context
        self._session: Optional[aiohttp.ClientSession] = None
        self._subscriptions: set[Subscription] = set()

    def _get_stream_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            connector = create_stream_connector(ssl_context=self._ssl_context)
            self._session = aiohttp.ClientSession(
                connector=connector,
                timeout=create_stream_timeout(self.connect_timeout),
            )
        return self._session

    async def subscribe(
        self,
        topics: Iterable[str],
        callback: RealtimeCallback,
        *,
        cancel_event: Optional[asyncio.Event] = None,
        timeout: Optional[float] = None,
    ) -> Subscription:
        """
        Subscribe to topics and deliver their events to callback.

        Args:
            topics: Topic filters, e.g. a collection name or "posts/RECORD_ID"
            callback: Called as callback(event, None) per event and
                      callback(None, error) for per-event or stream failures.
                      May be a coroutine function. Delivery starts as soon
                      as the stream is open, so it can already have run when
                      subscribe() raises.
            cancel_event: Setting this event cancels the subscription
            timeout: Deadline for handshake and confirmation in seconds

        Returns:
            A live Subscription, only after the server accepted the topics.

        Raises:
            SubscriptionCancelled: If cancel_event is (or becomes) set first.
            SubscriptionTimeout: If the deadline passes first.
            HandshakeError: If the stream fails or opens without a valid client id.
            SubscriptionRejected: If the server refuses the topics.
        """
        if cancel_event is not None and cancel_event.is_set():
            raise SubscriptionCancelled("Subscription cancelled before it was started")

        topics = list(topics)
        for topic in topics:
            if not isinstance(topic, str):
                raise TypeError(f"Topics must be strings, got {type(topic).__name__}")

        deadline = self.subscribe_timeout if timeout is None else timeout
        subscription = Subscription(self, topics, callback)
        self._subscriptions.add(subscription)
        subscription._start(cancel_event)

        try:
            await asyncio.wait_for(asyncio.shield(subscription._confirmed), timeout=deadline)
        except asyncio.TimeoutError:
            await subscription.unsubscribe()
            raise SubscriptionTimeout(
                f"Subscription not confirmed within {deadline}s"
            ) from None
        except asyncio.CancelledError:
            await subscription.unsubscribe()
            raise
        except RecordbaseError:
            await subscription.unsubscribe()
            raise

        return subscription

    async def send_subscriptions(self, client_id: str, topics: Iterable[str]) -> None:
        """
        Register topic interest for a connected client id.

        Raises:
            SubscriptionRejected: If the server answers with an error status.
            TransportError: If the request cannot be sent.
        """
        body = {"clientId": client_id, "subscriptions": list(topics)}
        try:
            response = await self._http.post(
                REALTIME_PATH,
                content=json_dumps(body),
                headers={"Content-Type": "application/json"},
                timeout=self.control_timeout,
            )
        except httpx.HTTPError as e:
            raise TransportError(f"Failed to send subscription request: {e}") from e

        if response.status_code >= 400:
            api_error = parse_api_error(response.status_code, response.content, REALTIME_PATH)
            raise SubscriptionRejected(response.status_code, api_error)

    async def close(self) -> None:
        """Unsubscribe everything and close the stream connection pool."""
        for subscription in list(self._subscriptions):
            await subscription.unsubscribe()
        if self._session is not None:
            await self._session.close()
            self._session = None
