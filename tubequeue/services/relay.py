"""Relay between UI surfaces and the single privileged executor.

Surfaces (dashboard, popup, options page) never talk to the platform
themselves. They hand messages to ``CrossContextRelay``, which validates the
sender, makes sure exactly one executor exists, forwards the request and
hands the executor's response back unchanged.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Generic, Protocol, TypeVar
from urllib.parse import urlsplit

from ..config import Settings
from ..errors import DeliveryError, ExecutorUnreachable, UnsupportedMessage
from ..messages import RelayMessage, RelayResponse, is_control, parse_message
from .executor import PlatformExecutor

logger = logging.getLogger(__name__)

UNTRUSTED_SENDER = "Untrusted sender."
UNSUPPORTED_MESSAGE = "Unsupported message type"

HandleT = TypeVar("HandleT")
ControlHandler = Callable[[RelayMessage, "Sender"], Awaitable[Any]]


class RelayState(str, Enum):
    NO_EXECUTOR = "no_executor"
    ACQUIRING = "acquiring"
    READY = "ready"
    DISPATCHING = "dispatching"


@dataclass(slots=True, frozen=True)
class Sender:
    """Identity of a message origin: owning app plus the surface it came from."""

    app_id: str
    surface: str | None = None

    @classmethod
    def from_url(cls, app_id: str, url: str | None) -> "Sender":
        if not url:
            return cls(app_id=app_id)
        path = urlsplit(url).path
        name = path.rsplit("/", 1)[-1].lower()
        if name.endswith(".html"):
            name = name[: -len(".html")]
        return cls(app_id=app_id, surface=name or None)


class ExecutorHost(Protocol[HandleT]):
    """Environment that can locate, start and talk to executors."""

    async def find_existing(self) -> HandleT | None: ...

    async def create(self) -> HandleT: ...

    async def wait_until_ready(self, handle: HandleT, timeout: float) -> None: ...

    async def deliver(self, handle: HandleT, request: RelayMessage) -> RelayResponse: ...

    async def reinject(self, handle: HandleT) -> None: ...

    def is_alive(self, handle: HandleT) -> bool: ...

    async def close(self) -> None: ...


class CrossContextRelay(Generic[HandleT]):
    """Validate, route and deliver surface messages to the executor."""

    def __init__(
        self,
        host: ExecutorHost[HandleT],
        settings: Settings,
        *,
        concurrency: int | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._host = host
        self._settings = settings
        self._sleep = sleep
        self._handle: HandleT | None = None
        self._acquisition: asyncio.Task[HandleT] | None = None
        self._in_flight = 0
        self._semaphore = asyncio.Semaphore(concurrency or settings.operation_concurrency)
        self._control_handlers: dict[str, ControlHandler] = {}

    @property
    def state(self) -> RelayState:
        if self._acquisition is not None:
            return RelayState.ACQUIRING
        if self._handle is None:
            return RelayState.NO_EXECUTOR
        if self._in_flight:
            return RelayState.DISPATCHING
        return RelayState.READY

    def register_control(self, message_type: str, handler: ControlHandler) -> None:
        self._control_handlers[message_type] = handler

    def is_trusted(self, sender: Sender) -> bool:
        return (
            sender.app_id == self._settings.app_id
            and sender.surface is not None
            and sender.surface in self._settings.trusted_surfaces
        )

    async def handle_message(self, payload: Any, sender: Sender) -> RelayResponse:
        """Answer one surface message; never raises."""

        try:
            message = parse_message(payload)
        except UnsupportedMessage:
            return RelayResponse.failure(UNSUPPORTED_MESSAGE)

        if is_control(message):
            if sender.app_id != self._settings.app_id:
                return RelayResponse.failure(UNTRUSTED_SENDER)
            return await self._handle_control(message, sender)

        if not self.is_trusted(sender):
            logger.warning("Rejected %s from untrusted sender %s", message.type, sender)
            return RelayResponse.failure(UNTRUSTED_SENDER)
        try:
            return await self.dispatch(message)
        except (DeliveryError, ExecutorUnreachable) as exc:
            logger.warning("Relay could not deliver %s: %s", message.type, exc)
            return RelayResponse.failure(exc)

    async def _handle_control(self, message: RelayMessage, sender: Sender) -> RelayResponse:
        handler = self._control_handlers.get(message.type)
        if handler is None:
            return RelayResponse.failure(f"{message.type} is not available")
        try:
            data = await handler(message, sender)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Control handler for %s failed", message.type)
            return RelayResponse.failure(exc)
        return RelayResponse.ok(data)

    async def acquire_executor(self) -> HandleT:
        """Return the executor handle, starting one if none exists.

        Concurrent callers share one acquisition task, so at most one
        executor is ever created at a time.
        """

        if self._handle is not None and self._host.is_alive(self._handle):
            return self._handle
        self._handle = None
        if self._acquisition is None:
            task = asyncio.create_task(self._acquire())
            task.add_done_callback(self._acquisition_settled)
            self._acquisition = task
        return await asyncio.shield(self._acquisition)

    def _acquisition_settled(self, task: asyncio.Task[HandleT]) -> None:
        if self._acquisition is task:
            self._acquisition = None
        if not task.cancelled() and task.exception() is not None:
            logger.warning("Executor acquisition failed: %s", task.exception())

    async def _acquire(self) -> HandleT:
        existing = await self._host.find_existing()
        if existing is not None:
            logger.debug("Reusing existing executor")
            self._handle = existing
            return existing

        handle = await self._host.create()
        timeout = self._settings.executor_ready_timeout_seconds
        try:
            await self._host.wait_until_ready(handle, timeout)
        except asyncio.TimeoutError as exc:
            raise ExecutorUnreachable(
                f"Timeout waiting for executor to become ready after {timeout:.0f}s"
            ) from exc
        await self._sleep(self._settings.executor_grace_seconds)
        logger.info("Started new executor")
        self._handle = handle
        return handle

    async def dispatch(self, message: RelayMessage) -> RelayResponse:
        """Deliver ``message`` to the executor, retrying failed deliveries."""

        async with self._semaphore:
            self._in_flight += 1
            try:
                return await self._deliver_with_retry(message)
            finally:
                self._in_flight -= 1

    async def _deliver_with_retry(self, message: RelayMessage) -> RelayResponse:
        attempts = self._settings.delivery_attempts
        for attempt in range(1, attempts + 1):
            handle = await self.acquire_executor()
            try:
                return await self._host.deliver(handle, message)
            except ExecutorUnreachable as exc:
                if attempt >= attempts:
                    raise DeliveryError(
                        f"Failed to communicate with executor after {attempts} attempts: {exc}",
                        attempts=attempts,
                    ) from exc
                logger.info(
                    "Delivery of %s failed (attempt %s/%s): %s", message.type, attempt, attempts, exc
                )
                await self._host.reinject(handle)
                await self._sleep(self._settings.delivery_retry_delay_seconds)
        raise DeliveryError("No delivery attempts configured", attempts=0)

    async def close(self) -> None:
        if self._acquisition is not None:
            self._acquisition.cancel()
        await self._host.close()
        self._handle = None


@dataclass(slots=True)
class SurfaceChannel:
    """A relay bound to one sender, as seen from a UI surface."""

    relay: CrossContextRelay[Any]
    sender: Sender

    async def request(self, message: RelayMessage | dict[str, Any]) -> RelayResponse:
        payload = message.to_payload() if isinstance(message, RelayMessage) else message
        return await self.relay.handle_message(payload, self.sender)


# ---------------------------------------------------------------------------
# In-process executor host
# ---------------------------------------------------------------------------


ExecutorFactory = Callable[[], Awaitable[PlatformExecutor]]


@dataclass(slots=True, eq=False)
class ExecutorHandle:
    id: int
    executor: PlatformExecutor | None = None
    ready: asyncio.Event = field(default_factory=asyncio.Event)
    closed: bool = False
    failure: BaseException | None = None


class InProcessExecutorHost:
    """Run executors as objects inside the current event loop."""

    def __init__(self, factory: ExecutorFactory):
        self._factory = factory
        self._handles: list[ExecutorHandle] = []
        self._boot_tasks: set[asyncio.Task[None]] = set()
        self._ids = itertools.count(1)
        self.created = 0

    async def find_existing(self) -> ExecutorHandle | None:
        for handle in self._handles:
            if self.is_alive(handle) and handle.ready.is_set():
                return handle
        return None

    async def create(self) -> ExecutorHandle:
        handle = ExecutorHandle(id=next(self._ids))
        self._handles.append(handle)
        self.created += 1
        task = asyncio.create_task(self._boot(handle))
        self._boot_tasks.add(task)
        task.add_done_callback(self._boot_tasks.discard)
        return handle

    async def _boot(self, handle: ExecutorHandle) -> None:
        try:
            handle.executor = await self._factory()
            handle.failure = None
        except Exception as exc:  # noqa: BLE001
            logger.exception("Executor %s failed to start", handle.id)
            handle.failure = exc
        finally:
            handle.ready.set()

    async def wait_until_ready(self, handle: ExecutorHandle, timeout: float) -> None:
        await asyncio.wait_for(handle.ready.wait(), timeout)

    def is_alive(self, handle: ExecutorHandle) -> bool:
        return not handle.closed and handle.failure is None

    async def deliver(self, handle: ExecutorHandle, request: RelayMessage) -> RelayResponse:
        if handle.closed:
            raise ExecutorUnreachable(f"Executor {handle.id} is closed")
        if handle.executor is None:
            reason = handle.failure or "not started"
            raise ExecutorUnreachable(f"Executor {handle.id} unavailable: {reason}")
        return await handle.executor.handle(request)

    async def reinject(self, handle: ExecutorHandle) -> None:
        if handle.closed or handle.executor is not None:
            return
        handle.ready.clear()
        await self._boot(handle)

    async def close_handle(self, handle: ExecutorHandle) -> None:
        handle.closed = True
        if handle.executor is not None:
            await handle.executor.aclose()
            handle.executor = None

    async def close(self) -> None:
        for task in list(self._boot_tasks):
            task.cancel()
        if self._boot_tasks:
            await asyncio.gather(*self._boot_tasks, return_exceptions=True)
        for handle in self._handles:
            if not handle.closed:
                await self.close_handle(handle)
        self._handles.clear()
