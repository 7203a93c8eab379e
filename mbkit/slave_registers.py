"""Slave-side handlers for holding register, input register and slave-id function codes."""

from __future__ import annotations

from .protocol import (
    PDU_DATA_OFF,
    PDU_FUNC_OFF,
    PDU_SIZE_MIN,
    ErrorCode,
    ExceptionCode,
    FunctionCode,
    ModbusError,
    ModbusException,
    RegisterBank,
    RegisterMode,
    error_to_exception,
)

_READ_SIZE = 4
_READ_COUNT_MAX = 0x007D

_WRITE_SIZE = 4
_WRITE_VALUE_OFF = PDU_DATA_OFF + 2

_WRITE_MUL_REGCNT_OFF = PDU_DATA_OFF + 2
_WRITE_MUL_BYTECNT_OFF = PDU_DATA_OFF + 4
_WRITE_MUL_VALUES_OFF = PDU_DATA_OFF + 5
_WRITE_MUL_SIZE_MIN = 5
_WRITE_MUL_COUNT_MAX = 0x0078

_RW_READ_ADDR_OFF = PDU_DATA_OFF + 0
_RW_READ_REGCNT_OFF = PDU_DATA_OFF + 2
_RW_WRITE_ADDR_OFF = PDU_DATA_OFF + 4
_RW_WRITE_REGCNT_OFF = PDU_DATA_OFF + 6
_RW_BYTECNT_OFF = PDU_DATA_OFF + 8
_RW_WRITE_VALUES_OFF = PDU_DATA_OFF + 9
_RW_SIZE_MIN = 9
_RW_READ_COUNT_MAX = 0x7D
_RW_WRITE_COUNT_MAX = 0x79

_SLAVEID_BYTECNT_OFF = PDU_DATA_OFF + 0
SLAVEID_BUF_SIZE = 32


def _u16(pdu: bytes, offset: int) -> int:
    return (pdu[offset] << 8) | pdu[offset + 1]


def _address(pdu: bytes, offset: int) -> int:
    return (_u16(pdu, offset) + 1) & 0xFFFF


def _decode_registers(data: bytes) -> list[int]:
    return [_u16(data, offset) for offset in range(0, len(data) - 1, 2)]


def _encode_registers(values) -> bytes:
    return b"".join((int(v) & 0xFFFF).to_bytes(2, "big") for v in values)


def _call(func, *args):
    try:
        return func(*args)
    except ModbusError as error:
        raise ModbusException(error_to_exception(error.code)) from error


def _illegal_value() -> ModbusException:
    return ModbusException(ExceptionCode.ILLEGAL_DATA_VALUE)


def _read_registers(pdu: bytes, function: FunctionCode, reader) -> bytes:
    if len(pdu) != _READ_SIZE + PDU_SIZE_MIN:
        raise _illegal_value()
    address = _address(pdu, PDU_DATA_OFF)
    count = _u16(pdu, PDU_DATA_OFF + 2)
    if not 1 <= count <= _READ_COUNT_MAX:
        raise _illegal_value()
    values = _call(reader, address, count)
    return bytes([function, (count * 2) & 0xFF]) + _encode_registers(values)


def read_holding_registers(pdu: bytes, bank: RegisterBank) -> bytes:
    """Handle a read holding registers request PDU and return the response PDU."""
    return _read_registers(
        pdu,
        FunctionCode.READ_HOLDING_REGISTER,
        lambda address, count: bank.holding_registers(address, count, RegisterMode.READ, None),
    )


def read_input_registers(pdu: bytes, bank: RegisterBank) -> bytes:
    """Handle a read input registers request PDU and return the response PDU."""
    return _read_registers(pdu, FunctionCode.READ_INPUT_REGISTER, bank.input_registers)


def write_holding_register(pdu: bytes, bank: RegisterBank) -> bytes:
    """Handle a write single register request PDU; the response echoes the request."""
    if len(pdu) != _WRITE_SIZE + PDU_SIZE_MIN:
        raise _illegal_value()
    address = _address(pdu, PDU_DATA_OFF)
    value = _u16(pdu, _WRITE_VALUE_OFF)
    _call(bank.holding_registers, address, 1, RegisterMode.WRITE, [value])
    return bytes(pdu)


def write_multiple_holding_registers(pdu: bytes, bank: RegisterBank) -> bytes:
    """Handle a write multiple registers request PDU and return the response PDU."""
    if len(pdu) < _WRITE_MUL_SIZE_MIN + PDU_SIZE_MIN:
        raise _illegal_value()
    address = _address(pdu, PDU_DATA_OFF)
    count = _u16(pdu, _WRITE_MUL_REGCNT_OFF)
    byte_count = pdu[_WRITE_MUL_BYTECNT_OFF]
    if not (
        1 <= count <= _WRITE_MUL_COUNT_MAX
        and byte_count == (2 * count) & 0xFF
        and len(pdu) >= _WRITE_MUL_VALUES_OFF + byte_count
    ):
        raise _illegal_value()
    data = pdu[_WRITE_MUL_VALUES_OFF:_WRITE_MUL_VALUES_OFF + byte_count]
    _call(bank.holding_registers, address, count, RegisterMode.WRITE, _decode_registers(data))
    return bytes(pdu[:_WRITE_MUL_BYTECNT_OFF])


def read_write_multiple_holding_registers(pdu: bytes, bank: RegisterBank) -> bytes:
    """Handle a read/write multiple registers request PDU and return the response PDU.

    The write is carried out before the read. A request shorter than the
    minimum size is left untouched and returned as it came.
    """
    if len(pdu) < _RW_SIZE_MIN + PDU_SIZE_MIN:
        return bytes(pdu)
    read_address = _address(pdu, _RW_READ_ADDR_OFF)
    read_count = _u16(pdu, _RW_READ_REGCNT_OFF)
    write_address = _address(pdu, _RW_WRITE_ADDR_OFF)
    write_count = _u16(pdu, _RW_WRITE_REGCNT_OFF)
    byte_count = pdu[_RW_BYTECNT_OFF]
    if not (
        1 <= read_count <= _RW_READ_COUNT_MAX
        and 1 <= write_count <= _RW_WRITE_COUNT_MAX
        and 2 * write_count == byte_count
        and len(pdu) >= _RW_WRITE_VALUES_OFF + byte_count
    ):
        raise _illegal_value()
    data = pdu[_RW_WRITE_VALUES_OFF:_RW_WRITE_VALUES_OFF + byte_count]
    _call(
        bank.holding_registers,
        write_address,
        write_count,
        RegisterMode.WRITE,
        _decode_registers(data),
    )
    values = _call(bank.holding_registers, read_address, read_count, RegisterMode.READ, None)
    header = bytes([FunctionCode.READWRITE_MULTIPLE_REGISTERS, (read_count * 2) & 0xFF])
    return header + _encode_registers(values)


class SlaveIdentity:
    """The data a slave returns for a report-slave-id request."""

    def __init__(self, buffer_size: int = SLAVEID_BUF_SIZE) -> None:
        self.buffer_size = buffer_size
        self.data = b""

    def set(self, slave_id: int, is_running: bool, additional: bytes = b"") -> None:
        """Store the slave id, the run indicator and additional data."""
        additional = bytes(additional)
        if len(additional) + 2 >= self.buffer_size:
            raise ModbusError(ErrorCode.NORES, "slave id data does not fit")
        self.data = bytes([slave_id & 0xFF, 0xFF if is_running else 0x00]) + additional

    def report(self, pdu: bytes) -> bytes:
        """Build the report-slave-id response for the request PDU."""
        function = pdu[PDU_FUNC_OFF] if pdu else FunctionCode.OTHER_REPORT_SLAVEID
        return bytes([function, len(self.data) & 0xFF]) + self.data