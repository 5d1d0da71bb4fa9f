from __future__ import annotations

import inspect
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from ..events import EventBus, make_event
from ..timers import OneShot, PeriodicTask


ReadHandler = Callable[[], Union[Any, Awaitable[Any]]]
WriteHandler = Callable[[Any], Union[Any, Awaitable[Any]]]
ActionHandler = Callable[..., Union[Any, Awaitable[Any]]]


class UnknownInteractionError(KeyError):
    pass


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class ThingBase:
    """
    Common surface of every simulated Thing.

    Subclasses register property read/write handlers and action handlers by
    name; transports (MQTT bridge, in-process clients) only talk to a Thing
    through read_property / write_property / invoke_action. Property changes
    and named events go out on the shared EventBus.

    Timers are owned by the Thing and cancelled together by stop().
    """

    def __init__(self, name: str, bus: Optional[EventBus] = None):
        self.name = name
        self.bus = bus or EventBus()

        self._read_handlers: Dict[str, ReadHandler] = {}
        self._write_handlers: Dict[str, WriteHandler] = {}
        self._action_handlers: Dict[str, ActionHandler] = {}

        self._timers: List[Union[PeriodicTask, OneShot]] = []

    # ======================================================
    # Registration
    # ======================================================
    def set_property_read_handler(self, prop: str, handler: ReadHandler) -> None:
        self._read_handlers[prop] = handler

    def set_property_write_handler(self, prop: str, handler: WriteHandler) -> None:
        self._write_handlers[prop] = handler

    def set_action_handler(self, action: str, handler: ActionHandler) -> None:
        self._action_handlers[action] = handler

    def property_names(self) -> List[str]:
        return list(self._read_handlers.keys())

    def action_names(self) -> List[str]:
        return list(self._action_handlers.keys())

    # ======================================================
    # Interaction
    # ======================================================
    async def read_property(self, prop: str) -> Any:
        handler = self._read_handlers.get(prop)
        if handler is None:
            raise UnknownInteractionError(f"{self.name} has no readable property {prop!r}")
        return await _maybe_await(handler())

    async def write_property(self, prop: str, value: Any) -> Any:
        handler = self._write_handlers.get(prop)
        if handler is None:
            raise UnknownInteractionError(f"{self.name} has no writable property {prop!r}")
        return await _maybe_await(handler(value))

    async def invoke_action(self, action: str, *args: Any) -> Any:
        handler = self._action_handlers.get(action)
        if handler is None:
            raise UnknownInteractionError(f"{self.name} has no action {action!r}")
        return await _maybe_await(handler(*args))

    # ======================================================
    # Notifications
    # ======================================================
    async def emit_property_change(self, prop: str) -> None:
        value = await self.read_property(prop)
        await self.bus.publish(make_event("property", self.name, prop, value))

    async def emit_event(self, event: str, payload: Any) -> None:
        await self.bus.publish(make_event("event", self.name, event, payload))

    # ======================================================
    # Timers
    # ======================================================
    def periodic(self, name: str, interval_ms: float, fn, tag: Optional[str] = None) -> PeriodicTask:
        t = PeriodicTask(f"{self.name}.{name}", interval_ms, fn, tag=tag or self.name.upper())
        self._timers.append(t)
        return t

    def one_shot(self, name: str, delay_ms: float, fn, tag: Optional[str] = None) -> OneShot:
        t = OneShot(f"{self.name}.{name}", delay_ms, fn, tag=tag or self.name.upper())
        self._timers.append(t)
        return t

    def stop(self) -> None:
        for t in self._timers:
            t.close()
