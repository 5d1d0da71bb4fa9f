"""
Register-level filter pump simulator.

Holding registers:
  0  pumpSpeed        0..100
  1  filterStatus     0=idle, 1=running, 2=cleaning, 3=error
  2  filterHealth     0..100
  3  cleaningCommand  write 1 to start a cleaning cycle

No wire encoding: registers are read and written in memory. The mock drives
water correction itself through a CorrectionLoop, so it can stand in for the
filter pump when the pump Thing is not running.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional

from .backoff import PeerConnection
from .clients import WaterClient
from .config import ConfigStore
from .correction import CorrectionLoop
from .state import FILTER_STATUS_CODES
from .timers import OneShot, PeriodicTask
from .utils import clamp, log, now_ms, utc_iso


REG_PUMP_SPEED = 0
REG_FILTER_STATUS = 1
REG_FILTER_HEALTH = 2
REG_CLEANING_COMMAND = 3

STATUS_IDLE = 0
STATUS_RUNNING = 1
STATUS_CLEANING = 2
STATUS_ERROR = 3


@dataclass
class ModbusMockConfig:
    port: int = 502
    initial_speed: int = 30

    degradation_interval_ms: float = 5000.0
    decay_per_tick: float = 0.3
    cleaning_duration_ms: float = 8000.0

    correction_interval_ms: float = 1000.0
    correction_rate: float = 0.8


def status_name(code: int) -> str:
    return FILTER_STATUS_CODES.get(int(code), f"unknown({code})")


class ModbusFilterPumpMock:
    def __init__(
        self,
        water: Optional[WaterClient] = None,
        store: Optional[ConfigStore] = None,
        cfg: Optional[ModbusMockConfig] = None,
        clock=now_ms,
    ):
        self.cfg = cfg or ModbusMockConfig()
        self.registers: Dict[int, float] = {
            REG_PUMP_SPEED: int(clamp(self.cfg.initial_speed, 0, 100)),
            REG_FILTER_STATUS: STATUS_IDLE,
            REG_FILTER_HEALTH: 100.0,
            REG_CLEANING_COMMAND: 0,
        }
        self.last_cleaning_time: str = utc_iso()

        self._degradation = PeriodicTask("modbus.degradation", self.cfg.degradation_interval_ms, self.run_degradation_tick, tag="MODBUS")
        self._cleaning = OneShot("modbus.cleaning", self.cfg.cleaning_duration_ms, self._finish_cleaning, tag="MODBUS")

        self.correction: Optional[CorrectionLoop] = None
        self._correction_timer: Optional[PeriodicTask] = None
        if water is not None and store is not None:
            self.correction = CorrectionLoop(
                owner="MODBUS",
                water=water,
                store=store,
                speed_source=self._speed,
                connection=PeerConnection("MODBUS", water.peer_name, clock=clock),
                rate_per_tick=self.cfg.correction_rate,
            )
            self.correction.active = True
            self._correction_timer = PeriodicTask("modbus.correction", self.cfg.correction_interval_ms, self.correction.tick, tag="MODBUS")

    async def _speed(self) -> float:
        if self.registers[REG_FILTER_STATUS] == STATUS_ERROR:
            return 0.0
        return float(self.registers[REG_PUMP_SPEED])

    # ======================================================
    # Register access
    # ======================================================
    def read_register(self, address: int) -> float:
        return self.registers.get(address, 0)

    def write_register(self, address: int, value: float) -> None:
        if address == REG_PUMP_SPEED:
            value = int(clamp(value, 0, 100))
        self.registers[address] = value
        self._on_register_change(address, value)

    def get_registers(self) -> Dict[int, float]:
        return dict(self.registers)

    def _on_register_change(self, address: int, value: float) -> None:
        if address == REG_PUMP_SPEED:
            log(f"[MODBUS] register 0 (pumpSpeed) = {value}%")
            if self.registers[REG_FILTER_STATUS] not in (STATUS_CLEANING, STATUS_ERROR):
                self.registers[REG_FILTER_STATUS] = STATUS_IDLE if value == 0 else STATUS_RUNNING

        elif address == REG_FILTER_STATUS:
            log(f"[MODBUS] register 1 (filterStatus) = {status_name(value)}")

        elif address == REG_CLEANING_COMMAND:
            if int(value) == 1:
                log("[MODBUS] register 3: cleaning cycle triggered")
                self._execute_cleaning()

        else:
            log(f"[MODBUS] register {address} = {value}")

    # ======================================================
    # Cleaning
    # ======================================================
    def _execute_cleaning(self) -> None:
        if self._cleaning.pending:
            log("[MODBUS] cleaning already in progress, ignoring")
            return
        self.registers[REG_FILTER_STATUS] = STATUS_CLEANING
        self._cleaning.start()

    async def _finish_cleaning(self) -> None:
        self.registers[REG_FILTER_HEALTH] = 100.0
        speed = self.registers[REG_PUMP_SPEED]
        self.registers[REG_FILTER_STATUS] = STATUS_RUNNING if speed > 0 else STATUS_IDLE
        self.registers[REG_CLEANING_COMMAND] = 0
        self.last_cleaning_time = utc_iso()
        log("[MODBUS] cleaning cycle completed")

    # ======================================================
    # Simulation
    # ======================================================
    async def run_degradation_tick(self) -> None:
        speed = await self._speed()
        rate = (speed / 100.0) * self.cfg.decay_per_tick

        if self.registers[REG_FILTER_HEALTH] > 0:
            self.registers[REG_FILTER_HEALTH] = max(0.0, self.registers[REG_FILTER_HEALTH] - rate)

        status = self.registers[REG_FILTER_STATUS]
        if status not in (STATUS_CLEANING, STATUS_ERROR):
            self.registers[REG_FILTER_STATUS] = STATUS_RUNNING if speed > 0 else STATUS_IDLE

        log(f"[MODBUS] {self.summary()}")

    def summary(self) -> str:
        r = self.registers
        return (
            f"pump={r[REG_PUMP_SPEED]}% status={status_name(r[REG_FILTER_STATUS])} "
            f"health={r[REG_FILTER_HEALTH]:.1f}%"
        )

    # ======================================================
    # Lifecycle
    # ======================================================
    def start(self) -> None:
        log(f"[MODBUS] mock filter pump listening on 127.0.0.1:{self.cfg.port} (in-memory)")
        self._degradation.start()
        if self._correction_timer is not None:
            self._correction_timer.start()

    def stop(self) -> None:
        log("[MODBUS] stopping mock filter pump")
        self._degradation.stop()
        self._cleaning.cancel()
        if self._correction_timer is not None:
            self._correction_timer.stop()
