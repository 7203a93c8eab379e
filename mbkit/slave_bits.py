"""Slave-side handlers for coil and discrete input function codes."""

from __future__ import annotations

from .protocol import (
    PDU_DATA_OFF,
    PDU_SIZE_MIN,
    ExceptionCode,
    FunctionCode,
    ModbusError,
    ModbusException,
    RegisterBank,
    RegisterMode,
    error_to_exception,
    get_bits,
    set_bits,
)

_READ_SIZE = 4
_READ_COUNT_MAX = 0x07D0
_WRITE_SIZE = 4
_WRITE_MUL_BYTECNT_OFF = PDU_DATA_OFF + 4
_WRITE_MUL_VALUES_OFF = PDU_DATA_OFF + 5
_WRITE_MUL_COUNT_MAX = 0x07B0


def _u16(pdu: bytes, offset: int) -> int:
    return (pdu[offset] << 8) | pdu[offset + 1]


def _address(pdu: bytes) -> int:
    return (_u16(pdu, PDU_DATA_OFF) + 1) & 0xFFFF


def _byte_count(count: int) -> int:
    return ((count + 7) // 8) & 0xFF


def _pack(values, count: int) -> bytes:
    buf = bytearray(_byte_count(count))
    for offset, value in enumerate(list(values)[:count]):
        set_bits(buf, offset, 1, 1 if value else 0)
    return bytes(buf)


def _unpack(data: bytes, count: int) -> list[bool]:
    return [bool(get_bits(data, offset, 1)) for offset in range(count)]


def _call(func, *args):
    try:
        return func(*args)
    except ModbusError as error:
        raise ModbusException(error_to_exception(error.code)) from error


def _read_bits(pdu: bytes, function: FunctionCode, reader) -> bytes:
    if len(pdu) != _READ_SIZE + PDU_SIZE_MIN:
        raise ModbusException(ExceptionCode.ILLEGAL_DATA_VALUE)
    address = _address(pdu)
    count = _u16(pdu, PDU_DATA_OFF + 2)
    if not 1 <= count < _READ_COUNT_MAX:
        raise ModbusException(ExceptionCode.ILLEGAL_DATA_VALUE)
    values = _call(reader, address, count)
    data = _pack(values, count)
    return bytes([function, len(data)]) + data


def read_coils(pdu: bytes, bank: RegisterBank) -> bytes:
    """Handle a read coils request PDU and return the response PDU."""
    return _read_bits(
        pdu,
        FunctionCode.READ_COILS,
        lambda address, count: bank.coils(address, count, RegisterMode.READ, None),
    )


def write_coil(pdu: bytes, bank: RegisterBank) -> bytes:
    """Handle a write single coil request PDU and return the response PDU."""
    if len(pdu) != _WRITE_SIZE + PDU_SIZE_MIN:
        raise ModbusException(ExceptionCode.ILLEGAL_DATA_VALUE)
    address = _address(pdu)
    high, low = pdu[PDU_DATA_OFF + 2], pdu[PDU_DATA_OFF + 3]
    if low != 0x00 or high not in (0xFF, 0x00):
        raise ModbusException(ExceptionCode.ILLEGAL_DATA_VALUE)
    _call(bank.coils, address, 1, RegisterMode.WRITE, [high == 0xFF])
    return bytes(pdu)


def write_multiple_coils(pdu: bytes, bank: RegisterBank) -> bytes:
    """Handle a write multiple coils request PDU and return the response PDU."""
    if len(pdu) <= _WRITE_SIZE + PDU_SIZE_MIN:
        raise ModbusException(ExceptionCode.ILLEGAL_DATA_VALUE)
    address = _address(pdu)
    count = _u16(pdu, PDU_DATA_OFF + 2)
    byte_count = pdu[_WRITE_MUL_BYTECNT_OFF]
    if not (
        1 <= count <= _WRITE_MUL_COUNT_MAX
        and _byte_count(count) == byte_count
        and len(pdu) >= _WRITE_MUL_VALUES_OFF + byte_count
    ):
        raise ModbusException(ExceptionCode.ILLEGAL_DATA_VALUE)
    data = pdu[_WRITE_MUL_VALUES_OFF:_WRITE_MUL_VALUES_OFF + byte_count]
    _call(bank.coils, address, count, RegisterMode.WRITE, _unpack(data, count))
    return bytes(pdu[:_WRITE_MUL_BYTECNT_OFF])


def read_discrete_inputs(pdu: bytes, bank: RegisterBank) -> bytes:
    """Handle a read discrete inputs request PDU and return the response PDU."""
    return _read_bits(pdu, FunctionCode.READ_DISCRETE_INPUTS, bank.discrete_inputs)