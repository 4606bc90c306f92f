"""
Watchers turn the push-based subscriptions of a Nacos client into pull-based streams.

Each watcher owns a bounded queue that the client callback produces into and that a
single consumer drains using ``next``. When the queue is full, the oldest payload is
dropped in favour of the newest, since every payload is a complete snapshot of the
watched state.

A watcher moves through the states SUBSCRIBING, ACTIVE, CLOSING and CLOSED, in that
order, and cannot be reused once it is closed. Stopping a watcher wakes any pending
``next`` immediately and cancels the upstream subscription exactly once.
"""

import asyncio
import enum
import logging
import typing as t

from . import errors, model, translate, util


@enum.unique
class State(enum.Enum):
    """
    Represents the possible states of a watcher.
    """
    #: The subscription has been requested but not yet accepted
    SUBSCRIBING = "SUBSCRIBING"
    #: The subscription is live and payloads are being delivered
    ACTIVE = "ACTIVE"
    #: The watcher is being torn down
    CLOSING = "CLOSING"
    #: The watcher has been torn down
    CLOSED = "CLOSED"


#: Type for a function that cancels the upstream subscription
Unsubscribe = t.Callable[[], t.Awaitable[None]]


class Watcher:
    """
    Base class for a watcher that converts subscription callbacks into a stream.

    Subclasses define how payloads are translated and what ``next`` does once the
    watcher has stopped.
    """
    def __init__(
        self,
        subject: str,
        unsubscribe: Unsubscribe,
        *,
        capacity: int = 1,
        parent: t.Optional[asyncio.Event] = None
    ):
        if capacity < 1:
            raise ValueError("capacity must be at least one")
        self.subject = subject
        self.capacity = capacity
        self.state = State.SUBSCRIBING
        #: The number of payloads that were dropped because the queue was full
        self.dropped = 0
        self._unsubscribe = unsubscribe
        self._parent = parent
        self._parent_task = None
        # Watchers must be created in the loop that will consume them
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue(maxsize = capacity)
        self._stopped = asyncio.Event()
        self._logger = logging.getLogger(__name__)

    @property
    def stopped(self) -> bool:
        """
        Indicates whether the watcher has been stopped.
        """
        return self._stopped.is_set()

    def translate(self, payload):
        """
        Translates a payload from the client into the type returned by ``next``.
        """
        raise NotImplementedError

    def stopped_result(self):
        """
        Returns the result of ``next`` once the watcher has stopped, or raises.
        """
        raise NotImplementedError

    def push(self, payload):
        """
        Delivers a payload to the watcher.

        This is safe to call from any thread and never blocks.
        """
        try:
            util.call_in_loop(self._loop, self._enqueue, payload)
        except RuntimeError:
            # The loop has been closed, so there is nobody left to deliver to
            self._logger.debug("Dropping payload for %s as the loop is closed", self.subject)

    def _enqueue(self, payload):
        if self.state in {State.CLOSING, State.CLOSED}:
            self._logger.debug("Dropping payload for %s as the watcher is stopped", self.subject)
            return
        if self._queue.full():
            # Latest wins, so discard the oldest payload to make room
            self._queue.get_nowait()
            self.dropped += 1
            self._logger.debug("Queue full for %s - dropped oldest payload", self.subject)
        self._queue.put_nowait(payload)

    async def start(
        self,
        subscribe: t.Callable[[], t.Awaitable[None]],
        prime: t.Optional[t.Callable[[], t.Awaitable[t.Any]]] = None
    ):
        """
        Starts the watcher using the given subscribe function.

        If a prime function is given, it is called once the subscription is accepted
        and its result is queued, but only if nothing has been delivered yet.
        """
        try:
            await subscribe()
        except asyncio.CancelledError:
            self._close()
            raise
        except Exception as exc:
            self._close()
            self._logger.error("Subscription failed for %s: %s", self.subject, exc)
            raise errors.SubscribeError(self.subject, exc) from exc
        if self.stopped:
            # The watcher was stopped while the subscription was in flight
            await self._teardown()
            return
        self.state = State.ACTIVE
        self._logger.info("Watcher for %s is active", self.subject)
        if prime is not None:
            try:
                payload = await prime()
            except Exception as exc:
                self._logger.error("Initial fetch failed for %s: %s", self.subject, exc)
                try:
                    await self.stop()
                except errors.UnsubscribeError:
                    pass  # already logged by stop
                raise errors.SubscribeError(self.subject, exc) from exc
            # Do not overwrite a fresher payload from the subscription
            if self._queue.empty() and not self.stopped:
                self._enqueue(payload)
        if self._parent is not None:
            self._parent_task = asyncio.create_task(self._watch_parent())

    async def _watch_parent(self):
        """
        Stops the watcher when the parent is cancelled.
        """
        await self._parent.wait()
        self._logger.info("Parent cancelled for watcher %s", self.subject)
        try:
            await self.stop()
        except errors.UnsubscribeError:
            pass  # already logged by stop

    def _close(self):
        self.state = State.CLOSED
        self._stopped.set()

    async def _teardown(self):
        # Discard anything that was not delivered
        while not self._queue.empty():
            self._queue.get_nowait()
        try:
            await self._unsubscribe()
        except Exception as exc:
            self._logger.error("Unsubscribe failed for %s: %s", self.subject, exc)
            raise errors.UnsubscribeError(self.subject, exc) from exc
        finally:
            self.state = State.CLOSED
        self._logger.info("Watcher for %s is closed", self.subject)

    async def stop(self):
        """
        Stops the watcher and cancels the upstream subscription.

        Only the first call has any effect. Later calls return without error.
        """
        if self.stopped:
            return
        previous = self.state
        self.state = State.CLOSING
        self._stopped.set()
        if self._parent_task is not None and self._parent_task is not asyncio.current_task():
            self._parent_task.cancel()
        # If the subscription is still in flight, start tears it down once it completes
        if previous is State.SUBSCRIBING:
            return
        await self._teardown()

    async def close(self):
        """
        Alias for stop.
        """
        await self.stop()

    async def next(self):
        """
        Waits for the next payload and returns it, translated.

        At most one consumer may wait in ``next`` at a time.
        """
        if self.stopped:
            return self.stopped_result()
        if not self._queue.empty():
            return self.translate(self._queue.get_nowait())
        getter = asyncio.ensure_future(self._queue.get())
        stopper = asyncio.ensure_future(self._stopped.wait())
        try:
            done, _ = await asyncio.wait(
                {getter, stopper},
                return_when = asyncio.FIRST_COMPLETED
            )
        finally:
            for task in (getter, stopper):
                if not task.done():
                    await util.task_cancel_and_wait(task)
        # Payloads that arrive alongside a stop are discarded
        if getter in done and not self.stopped:
            return self.translate(getter.result())
        return self.stopped_result()

    def __aiter__(self):
        return self

    async def __anext__(self):
        if self.stopped:
            raise StopAsyncIteration
        try:
            result = await self.next()
        except errors.WatcherCancelled:
            raise StopAsyncIteration
        if self.stopped:
            raise StopAsyncIteration
        return result

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.stop()


class ConfigWatcher(Watcher):
    """
    Watcher for changes to a configuration document.

    Once stopped, ``next`` returns an empty list.
    """
    def __init__(
        self,
        data_id: str,
        group: str,
        unsubscribe: Unsubscribe,
        *,
        capacity: int = 1,
        parent: t.Optional[asyncio.Event] = None
    ):
        super().__init__(f"{group}/{data_id}", unsubscribe, capacity = capacity, parent = parent)
        self.data_id = data_id
        self.group = group

    def on_change(self, namespace: str, group: str, data_id: str, content: str):
        """
        Callback for the config client.
        """
        # The client may deliver changes for other documents through the same listener
        if data_id != self.data_id or group != self.group:
            return
        self.push(content)

    def translate(self, content: str) -> t.List[model.KeyValue]:
        return [model.KeyValue(key = self.data_id, value = content.encode())]

    def stopped_result(self) -> t.List[model.KeyValue]:
        return []


class ServiceWatcher(Watcher):
    """
    Watcher for changes to the instances of a service.

    Once stopped, ``next`` raises WatcherCancelled.
    """
    def __init__(
        self,
        service_name: str,
        group: str,
        clusters: t.Sequence[str],
        unsubscribe: Unsubscribe,
        *,
        capacity: int = 100,
        parent: t.Optional[asyncio.Event] = None
    ):
        super().__init__(service_name, unsubscribe, capacity = capacity, parent = parent)
        self.service_name = service_name
        self.group = group
        self.clusters = list(clusters)

    def on_services(
        self,
        instances: t.List[model.Instance],
        error: t.Optional[BaseException]
    ):
        """
        Callback for the naming client.
        """
        if error is not None:
            self._logger.warning("Subscription error for %s: %s", self.service_name, error)
            return
        # Drop deliveries for other services
        if any(i.service_name and i.service_name != self.service_name for i in instances):
            return
        self.push(list(instances))

    def translate(self, instances: t.List[model.Instance]) -> t.List[model.ServiceInstance]:
        return [translate.service_instance(i, self.service_name) for i in instances]

    def stopped_result(self):
        raise errors.WatcherCancelled(self.service_name)
