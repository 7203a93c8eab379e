"""Modbus protocol constants, error types, bit helpers and register banks."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Iterable, Sequence

ADDRESS_BROADCAST = 0
ADDRESS_MIN = 1
ADDRESS_MAX = 247
TCP_PSEUDO_ADDRESS = 255
FUNC_CODE_MAX = 127
FUNC_ERROR = 0x80
FUNC_HANDLERS_MAX = 16
PDU_SIZE_MIN = 1
PDU_SIZE_MAX = 253
PDU_FUNC_OFF = 0
PDU_DATA_OFF = 1


class FunctionCode(IntEnum):
    """Modbus function codes handled by the stack."""

    READ_COILS = 0x01
    READ_DISCRETE_INPUTS = 0x02
    READ_HOLDING_REGISTER = 0x03
    READ_INPUT_REGISTER = 0x04
    WRITE_SINGLE_COIL = 0x05
    WRITE_REGISTER = 0x06
    WRITE_MULTIPLE_COILS = 0x0F
    WRITE_MULTIPLE_REGISTERS = 0x10
    OTHER_REPORT_SLAVEID = 0x11
    READWRITE_MULTIPLE_REGISTERS = 0x17


class ExceptionCode(IntEnum):
    """Exception codes carried in Modbus error responses."""

    NONE = 0x00
    ILLEGAL_FUNCTION = 0x01
    ILLEGAL_DATA_ADDRESS = 0x02
    ILLEGAL_DATA_VALUE = 0x03
    SLAVE_DEVICE_FAILURE = 0x04
    ACKNOWLEDGE = 0x05
    SLAVE_BUSY = 0x06
    MEMORY_PARITY_ERROR = 0x08
    GATEWAY_PATH_FAILED = 0x0A
    GATEWAY_TARGET_FAILED = 0x0B


class ErrorCode(IntEnum):
    """Internal error codes of the protocol stack."""

    NOERR = 0
    NOREG = 1
    INVAL = 2
    PORTERR = 3
    NORES = 4
    IO = 5
    ILLSTATE = 6
    TIMEDOUT = 7


class Mode(Enum):
    """Transport mode of the stack."""

    RTU = "rtu"
    ASCII = "ascii"
    TCP = "tcp"


class RegisterMode(Enum):
    """Direction of a register access."""

    READ = "read"
    WRITE = "write"


class SlaveEvent(Enum):
    """Events driving the slave poll loop."""

    READY = "ready"
    FRAME_RECEIVED = "frame_received"
    EXECUTE = "execute"
    FRAME_TRANSMIT = "frame_transmit"
    FRAME_SENT = "frame_sent"


class ModbusError(Exception):
    """An internal stack error, carrying an ErrorCode."""

    def __init__(self, code: ErrorCode, message: str | None = None) -> None:
        self.code = ErrorCode(code)
        super().__init__(message or self.code.name)


class ModbusException(Exception):
    """A Modbus protocol exception to be reported in an error response."""

    def __init__(self, code: ExceptionCode) -> None:
        self.code = ExceptionCode(code)
        super().__init__(self.code.name)


@dataclass(frozen=True)
class Request:
    """A master request: destination slave address and request PDU."""

    slave_address: int
    pdu: bytes

    @property
    def function_code(self) -> int:
        return self.pdu[PDU_FUNC_OFF]


def _byte_at(buf: Sequence[int], index: int) -> int:
    return buf[index] if index < len(buf) else 0


def set_bits(buf: bytearray, bit_offset: int, n_bits: int, value: int) -> None:
    """Store the low ``n_bits`` of ``value`` at ``bit_offset`` in ``buf``."""
    if not 0 <= n_bits <= 8:
        raise ValueError("at most 8 bits can be set at once")
    if not 0 <= value <= 0xFF:
        raise ValueError("value must fit in one byte")
    byte_offset, pre_bits = divmod(bit_offset, 8)
    mask = ((1 << n_bits) - 1) << pre_bits
    word = buf[byte_offset] | (_byte_at(buf, byte_offset + 1) << 8)
    word = ((word & ~mask) | (value << pre_bits)) & 0xFFFF
    buf[byte_offset] = word & 0xFF
    if byte_offset + 1 < len(buf):
        buf[byte_offset + 1] = word >> 8


def get_bits(buf: Sequence[int], bit_offset: int, n_bits: int) -> int:
    """Return ``n_bits`` bits of ``buf`` starting at ``bit_offset``."""
    byte_offset, pre_bits = divmod(bit_offset, 8)
    mask = (1 << n_bits) - 1
    word = buf[byte_offset] | (_byte_at(buf, byte_offset + 1) << 8)
    return ((word >> pre_bits) & mask) & 0xFF


def error_to_exception(code: ErrorCode) -> ExceptionCode:
    """Map an internal error code to the Modbus exception reported for it."""
    if code == ErrorCode.NOERR:
        return ExceptionCode.NONE
    if code == ErrorCode.NOREG:
        return ExceptionCode.ILLEGAL_DATA_ADDRESS
    if code == ErrorCode.TIMEDOUT:
        return ExceptionCode.SLAVE_BUSY
    return ExceptionCode.SLAVE_DEVICE_FAILURE


class RegisterBank:
    """In-memory data tables of a slave; addresses are protocol addresses."""

    def __init__(
        self,
        *,
        coils: Iterable[bool] = (),
        discrete_inputs: Iterable[bool] = (),
        holding_registers: Iterable[int] = (),
        input_registers: Iterable[int] = (),
        start: int = 1,
    ) -> None:
        self.start = start
        self._coils = [bool(v) for v in coils]
        self._discrete = [bool(v) for v in discrete_inputs]
        self._holding = [int(v) & 0xFFFF for v in holding_registers]
        self._input = [int(v) & 0xFFFF for v in input_registers]

    def _span(self, table: list, address: int, count: int) -> slice:
        index = address - self.start
        if index < 0 or count < 0 or index + count > len(table):
            raise ModbusError(ErrorCode.NOREG)
        return slice(index, index + count)

    @staticmethod
    def _check_values(values, count: int) -> list:
        if values is None or len(values) != count:
            raise ModbusError(ErrorCode.INVAL, "write needs exactly count values")
        return list(values)

    def coils(self, address, count, mode, values=None):
        """Read (returns a list of bools) or write coils."""
        span = self._span(self._coils, address, count)
        if mode == RegisterMode.READ:
            return self._coils[span]
        self._coils[span] = [bool(v) for v in self._check_values(values, count)]
        return None

    def discrete_inputs(self, address, count):
        """Return ``count`` discrete inputs starting at ``address``."""
        return self._discrete[self._span(self._discrete, address, count)]

    def holding_registers(self, address, count, mode, values=None):
        """Read (returns a list of ints) or write holding registers."""
        span = self._span(self._holding, address, count)
        if mode == RegisterMode.READ:
            return self._holding[span]
        self._holding[span] = [int(v) & 0xFFFF for v in self._check_values(values, count)]
        return None

    def input_registers(self, address, count):
        """Return ``count`` input registers starting at ``address``."""
        return self._input[self._span(self._input, address, count)]


class MasterRegisterBank:
    """Storage on the master side for values read from or written to slaves."""

    def __init__(self, *, start: int = 1, size: int = 0x10000) -> None:
        self.start = start
        self.size = size
        self.coil_values: dict[int, bool] = {}
        self.discrete_values: dict[int, bool] = {}
        self.holding_values: dict[int, int] = {}
        self.input_values: dict[int, int] = {}
        self.slave_id = b""

    def _check(self, address: int, count: int, values) -> list:
        if address < self.start or count < 0 or address + count > self.start + self.size:
            raise ModbusError(ErrorCode.NOREG)
        if values is None or len(values) < count:
            raise ModbusError(ErrorCode.INVAL, "not enough values")
        return list(values)[:count]

    def coils(self, address, count, mode, values):
        """Record coil values read from or written to a slave."""
        for offset, value in enumerate(self._check(address, count, values)):
            self.coil_values[address + offset] = bool(value)

    def discrete_inputs(self, address, count, values):
        """Record discrete input values read from a slave."""
        for offset, value in enumerate(self._check(address, count, values)):
            self.discrete_values[address + offset] = bool(value)

    def holding_registers(self, address, count, mode, values):
        """Record holding register values read from or written to a slave."""
        for offset, value in enumerate(self._check(address, count, values)):
            self.holding_values[address + offset] = int(value) & 0xFFFF

    def input_registers(self, address, count, values):
        """Record input register values read from a slave."""
        for offset, value in enumerate(self._check(address, count, values)):
            self.input_values[address + offset] = int(value) & 0xFFFF

    def common(self, values):
        """Record the data of a report-slave-id response."""
        self.slave_id = bytes(values)