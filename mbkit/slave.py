"""The slave protocol stack: handler table, state and the event poll loop."""

from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass
from enum import Enum, auto
from functools import partial
from typing import Callable

from .protocol import (
    ADDRESS_BROADCAST,
    ADDRESS_MAX,
    ADDRESS_MIN,
    FUNC_CODE_MAX,
    FUNC_ERROR,
    FUNC_HANDLERS_MAX,
    PDU_FUNC_OFF,
    TCP_PSEUDO_ADDRESS,
    ErrorCode,
    ExceptionCode,
    FunctionCode,
    Mode,
    ModbusError,
    ModbusException,
    RegisterBank,
    SlaveEvent,
)
from .slave_bits import read_coils, read_discrete_inputs, write_coil, write_multiple_coils
from .slave_registers import (
    SlaveIdentity,
    read_holding_registers,
    read_input_registers,
    read_write_multiple_holding_registers,
    write_holding_register,
    write_multiple_holding_registers,
)

Handler = Callable[[bytes], bytes]


class _State(Enum):
    ENABLED = auto()
    DISABLED = auto()


@dataclass
class _Slot:
    function_code: int
    handler: Handler


class ModbusSlave:
    """A Modbus slave driven by a framer and a register bank.

    The framer provides ``start()``, ``stop()``, ``receive()`` returning
    ``(address, pdu)``, ``send(address, pdu)`` and optionally ``close()`` and
    ``next_event()``. Handlers take a request PDU and return the response PDU,
    raising :class:`ModbusException` to report a protocol exception.
    """

    def __init__(
        self,
        framer,
        address: int,
        *,
        mode: Mode = Mode.ASCII,
        bank: RegisterBank | None = None,
        identity: SlaveIdentity | None = None,
        send_delay: float = 0.0,
    ) -> None:
        if mode == Mode.TCP:
            if not 0 <= address <= ADDRESS_MAX:
                raise ModbusError(ErrorCode.INVAL, "invalid unit id")
        elif address == ADDRESS_BROADCAST or not ADDRESS_MIN <= address <= ADDRESS_MAX:
            raise ModbusError(ErrorCode.INVAL, "invalid slave address")
        self.framer = framer
        self.address = address
        self.mode = mode
        self.bank = bank if bank is not None else RegisterBank()
        self.identity = identity if identity is not None else SlaveIdentity()
        self.send_delay = send_delay
        self._state = _State.DISABLED
        self._events: deque[SlaveEvent] = deque()
        self._rcv_address = 0
        self._frame: bytes | None = None
        defaults: list[tuple[int, Handler]] = [
            (FunctionCode.OTHER_REPORT_SLAVEID, self.identity.report),
            (FunctionCode.READ_INPUT_REGISTER, partial(read_input_registers, bank=self.bank)),
            (FunctionCode.READ_HOLDING_REGISTER, partial(read_holding_registers, bank=self.bank)),
            (
                FunctionCode.WRITE_MULTIPLE_REGISTERS,
                partial(write_multiple_holding_registers, bank=self.bank),
            ),
            (FunctionCode.WRITE_REGISTER, partial(write_holding_register, bank=self.bank)),
            (
                FunctionCode.READWRITE_MULTIPLE_REGISTERS,
                partial(read_write_multiple_holding_registers, bank=self.bank),
            ),
            (FunctionCode.READ_COILS, partial(read_coils, bank=self.bank)),
            (FunctionCode.WRITE_SINGLE_COIL, partial(write_coil, bank=self.bank)),
            (FunctionCode.WRITE_MULTIPLE_COILS, partial(write_multiple_coils, bank=self.bank)),
            (FunctionCode.READ_DISCRETE_INPUTS, partial(read_discrete_inputs, bank=self.bank)),
        ]
        self._handlers: list[_Slot | None] = [None] * FUNC_HANDLERS_MAX
        for index, (code, handler) in enumerate(defaults):
            self._handlers[index] = _Slot(int(code), handler)

    @property
    def enabled(self) -> bool:
        return self._state == _State.ENABLED

    def register_handler(self, function_code: int, handler: Handler | None) -> None:
        """Install ``handler`` for ``function_code``, or remove it when None."""
        if not 0 < function_code <= FUNC_CODE_MAX:
            raise ModbusError(ErrorCode.INVAL, "invalid function code")
        if handler is not None:
            for index, slot in enumerate(self._handlers):
                if slot is None or slot.handler is handler:
                    self._handlers[index] = _Slot(function_code, handler)
                    return
            raise ModbusError(ErrorCode.NORES, "handler table is full")
        for index, slot in enumerate(self._handlers):
            if slot is not None and slot.function_code == function_code:
                self._handlers[index] = None
                return

    def enable(self) -> None:
        """Start the framer and activate the stack."""
        if self._state != _State.DISABLED:
            raise ModbusError(ErrorCode.ILLSTATE)
        self.framer.start()
        self._state = _State.ENABLED

    def disable(self) -> None:
        """Stop the framer; disabling a disabled stack does nothing."""
        if self._state == _State.ENABLED:
            self.framer.stop()
            self._state = _State.DISABLED

    def close(self) -> None:
        """Release the port; the stack must be disabled."""
        if self._state != _State.DISABLED:
            raise ModbusError(ErrorCode.ILLSTATE)
        closer = getattr(self.framer, "close", None)
        if callable(closer):
            closer()

    def __enter__(self) -> "ModbusSlave":
        self.enable()
        return self

    def __exit__(self, *exc_info) -> None:
        self.disable()
        self.close()

    def post(self, event: SlaveEvent) -> None:
        """Queue an event for the poll loop."""
        self._events.append(SlaveEvent(event))

    def _next_event(self) -> SlaveEvent | None:
        if self._events:
            return self._events.popleft()
        source = getattr(self.framer, "next_event", None)
        return source() if callable(source) else None

    def poll(self) -> SlaveEvent | None:
        """Handle one pending event and return it, or None if none was pending."""
        if self._state != _State.ENABLED:
            raise ModbusError(ErrorCode.ILLSTATE)
        event = self._next_event()
        if event == SlaveEvent.FRAME_RECEIVED:
            address, pdu = self.framer.receive()
            self._rcv_address = address
            self._frame = bytes(pdu)
            if address in (self.address, ADDRESS_BROADCAST, TCP_PSEUDO_ADDRESS):
                self.post(SlaveEvent.EXECUTE)
        elif event == SlaveEvent.EXECUTE:
            self._execute()
        return event

    def _dispatch(self, pdu: bytes) -> tuple[bytes, ExceptionCode]:
        function_code = pdu[PDU_FUNC_OFF]
        for slot in self._handlers:
            if slot is None:
                break
            if slot.function_code == function_code:
                try:
                    return slot.handler(pdu), ExceptionCode.NONE
                except ModbusException as error:
                    return pdu, error.code
        return pdu, ExceptionCode.ILLEGAL_FUNCTION

    def _execute(self) -> None:
        if not self._frame:
            raise ModbusError(ErrorCode.ILLSTATE, "no frame to execute")
        function_code = self._frame[PDU_FUNC_OFF]
        response, exception = self._dispatch(self._frame)
        if self._rcv_address == ADDRESS_BROADCAST and self.mode != Mode.TCP:
            return
        if exception != ExceptionCode.NONE:
            response = bytes([(function_code | FUNC_ERROR) & 0xFF, exception])
        if self.mode == Mode.ASCII and self.send_delay > 0:
            time.sleep(self.send_delay)
        self.framer.send(self.address, response)