from __future__ import annotations

import asyncio
from datetime import date
from typing import Callable, Dict, Mapping, Optional

from .clients import PeerUnavailableError, ThingClient
from .events import Event, EventBus
from .state import PARAMETERS
from .things.base import UnknownInteractionError
from .timers import PeriodicTask
from .utils import log


WARNING_WEIGHT = 20
ALERT_WEIGHT = 40

CLEANING_CHECK_INTERVAL_MS = 30000
CLEANING_HEALTH_THRESHOLD = 50.0


def compute_pump_speed(statuses: Mapping[str, str]) -> int:
    """20% per parameter in warning, 40% per parameter in alert, capped at 100."""
    warnings = sum(1 for s in statuses.values() if s == "warning")
    alerts = sum(1 for s in statuses.values() if s == "alert")
    return min(100, WARNING_WEIGHT * warnings + ALERT_WEIGHT * alerts)


class Orchestrator:
    """
    Reacts to sensor status changes by adjusting pump speed, and asks for
    a filter cleaning at most once a day when filter health runs low.
    Talks to the Things only through their clients.
    """

    def __init__(
        self,
        bus: EventBus,
        sensor: ThingClient,
        pump: ThingClient,
        status_interval_ms: float = 30000,
        cleaning_check_interval_ms: float = CLEANING_CHECK_INTERVAL_MS,
        health_threshold: float = CLEANING_HEALTH_THRESHOLD,
        today: Callable[[], str] = lambda: date.today().isoformat(),
    ):
        self.bus = bus
        self.sensor = sensor
        self.pump = pump
        self.health_threshold = float(health_threshold)
        self._today = today

        self.statuses: Dict[str, str] = {p: "ok" for p in PARAMETERS}
        self.current_speed: Optional[int] = None
        # a speed change the pump has not accepted yet
        self.sync_pending = False
        self.last_cleaning_date: Optional[str] = None

        self._cleaning_timer = PeriodicTask("orch.cleaning", cleaning_check_interval_ms, self.check_daily_cleaning, tag="ORCH")
        self._status_timer = PeriodicTask("orch.status", status_interval_ms, self.log_status, tag="ORCH")

    # ======================================================
    # Status-driven pump speed
    # ======================================================
    async def handle_event(self, ev: Event) -> None:
        if ev.type != "event" or ev.source != self.sensor.peer_name:
            return
        if not ev.name.endswith("StatusChanged"):
            return

        payload = ev.data.get("value") or {}
        parameter = payload.get("parameter")
        status = payload.get("newStatus")
        if parameter not in self.statuses or status is None:
            return

        self.statuses[parameter] = status
        log(f"[ORCH] {parameter} -> {status}")
        await self.sync_pump_speed()

    async def sync_pump_speed(self) -> Optional[int]:
        target = compute_pump_speed(self.statuses)
        if target == self.current_speed:
            self.sync_pending = False
            return None

        self.sync_pending = True
        try:
            result = await self.pump.invoke_action("setPumpSpeed", target)
        except (PeerUnavailableError, UnknownInteractionError) as e:
            log(f"[ORCH] WARNING unable to set pump speed: {e!r}")
            return None
        if isinstance(result, dict) and result.get("success") is False:
            log(f"[ORCH] WARNING pump rejected speed {target}%: {result.get('message')}")
            return None

        self.current_speed = target
        self.sync_pending = False
        log(f"[ORCH] pump speed -> {target}% ({result.get('message', '') if isinstance(result, dict) else result})")
        return target

    # ======================================================
    # Daily cleaning
    # ======================================================
    async def check_daily_cleaning(self) -> bool:
        today = self._today()
        if self.last_cleaning_date == today:
            return False

        try:
            health = float(await self.pump.read_property("filterHealth"))
        except (PeerUnavailableError, UnknownInteractionError) as e:
            log(f"[ORCH] WARNING unable to read filter health: {e!r}")
            return False

        if health >= self.health_threshold:
            return False

        log(f"[ORCH] filter health {health:.1f}% below {self.health_threshold:.0f}%, requesting cleaning")
        try:
            result = await self.pump.invoke_action("cleaningCycle")
        except (PeerUnavailableError, UnknownInteractionError) as e:
            log(f"[ORCH] WARNING unable to start cleaning: {e!r}")
            return False
        if not (isinstance(result, dict) and result.get("success")):
            log(f"[ORCH] WARNING cleaning not started: {result}")
            return False

        self.last_cleaning_date = today
        return True

    # ======================================================
    # Status log
    # ======================================================
    async def log_status(self) -> None:
        if self.sync_pending:
            await self.sync_pump_speed()

        try:
            values = await self.sensor.read_property("allParameters")
            speed = await self.pump.read_property("pumpSpeed")
            filter_status = await self.pump.read_property("filterStatus")
            health = await self.pump.read_property("filterHealth")
        except (PeerUnavailableError, UnknownInteractionError) as e:
            log(f"[ORCH] WARNING status unavailable: {e!r}")
            return

        log(
            f"[ORCH] pH={values['pH']:.2f} temp={values['temperature']:.2f} O2={values['oxygenLevel']:.2f} | "
            f"pump={speed}% {filter_status} health={float(health):.1f}% | "
            + " ".join(f"{p}={s}" for p, s in self.statuses.items())
        )

    # ======================================================
    # Loop
    # ======================================================
    async def run(self, stop_event: asyncio.Event) -> None:
        q = await self.bus.subscribe()
        self._cleaning_timer.start()
        self._status_timer.start()
        log("[ORCH] running")

        try:
            while not stop_event.is_set():
                try:
                    ev: Event = await asyncio.wait_for(q.get(), timeout=0.5)
                except asyncio.TimeoutError:
                    continue
                try:
                    await self.handle_event(ev)
                except Exception as e:
                    log(f"[ORCH] event {ev.name} failed: {repr(e)}")
        finally:
            self._cleaning_timer.stop()
            self._status_timer.stop()
            await self.bus.unsubscribe(q)
