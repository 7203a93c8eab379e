"""Master-side request building and response handling for holding registers and slave id."""

from __future__ import annotations

from typing import Callable, Sequence

from .protocol import (
    ADDRESS_MAX,
    PDU_DATA_OFF,
    PDU_SIZE_MIN,
    ErrorCode,
    ExceptionCode,
    FunctionCode,
    MasterRegisterBank,
    ModbusError,
    ModbusException,
    RegisterMode,
    Request,
    error_to_exception,
)
from .slave_registers import SLAVEID_BUF_SIZE

_REQ_READ_ADDR_OFF = PDU_DATA_OFF + 0
_REQ_READ_REGCNT_OFF = PDU_DATA_OFF + 2
_FUNC_READ_BYTECNT_OFF = PDU_DATA_OFF + 0
_FUNC_READ_VALUES_OFF = PDU_DATA_OFF + 1
_FUNC_READ_SIZE_MIN = 1

_FUNC_WRITE_ADDR_OFF = PDU_DATA_OFF + 0
_FUNC_WRITE_VALUE_OFF = PDU_DATA_OFF + 2
_FUNC_WRITE_SIZE = 4

_REQ_WRITE_MUL_ADDR_OFF = PDU_DATA_OFF + 0
_REQ_WRITE_MUL_REGCNT_OFF = PDU_DATA_OFF + 2
_REQ_WRITE_MUL_BYTECNT_OFF = PDU_DATA_OFF + 4
_REQ_WRITE_MUL_VALUES_OFF = PDU_DATA_OFF + 5
_FUNC_WRITE_MUL_SIZE = 4

_REQ_RW_READ_ADDR_OFF = PDU_DATA_OFF + 0
_REQ_RW_READ_REGCNT_OFF = PDU_DATA_OFF + 2
_REQ_RW_WRITE_ADDR_OFF = PDU_DATA_OFF + 4
_REQ_RW_WRITE_REGCNT_OFF = PDU_DATA_OFF + 6
_REQ_RW_WRITE_VALUES_OFF = PDU_DATA_OFF + 9
_FUNC_RW_READ_BYTECNT_OFF = PDU_DATA_OFF + 0
_FUNC_RW_READ_VALUES_OFF = PDU_DATA_OFF + 1
_FUNC_RW_SIZE_MIN = 1

_SLAVEID_BYTECNT_OFF = PDU_DATA_OFF + 0
_SLAVEID_DATA_OFF = PDU_DATA_OFF + 1


def _u16(pdu: bytes, offset: int) -> int:
    return (pdu[offset] << 8) | pdu[offset + 1]


def _be16(value: int) -> bytes:
    return (int(value) & 0xFFFF).to_bytes(2, "big")


def _encode(values: Sequence[int]) -> bytes:
    return b"".join(_be16(v) for v in values)


def _decode(data: bytes) -> list[int]:
    return [_u16(data, offset) for offset in range(0, len(data) - 1, 2)]


def _pdu_of(request) -> bytes:
    return bytes(request.pdu if isinstance(request, Request) else request)


def _check_slave(slave_address: int, max_slaves: int) -> None:
    if slave_address > max_slaves:
        raise ModbusError(ErrorCode.INVAL, "slave address out of range")


def _illegal_value() -> ModbusException:
    return ModbusException(ExceptionCode.ILLEGAL_DATA_VALUE)


def _call(func: Callable, *args) -> None:
    try:
        func(*args)
    except ModbusError as error:
        raise ModbusException(error_to_exception(error.code)) from error


def _registers(frame: bytes, offset: int, count: int) -> list[int]:
    data = bytes(frame[offset:offset + 2 * count])
    if len(data) < 2 * count:
        raise _illegal_value()
    return _decode(data)


def write_holding_register_request(
    slave_address: int, address: int, value: int, max_slaves: int = ADDRESS_MAX
) -> Request:
    """Build a write single register request."""
    _check_slave(slave_address, max_slaves)
    pdu = bytes([FunctionCode.WRITE_REGISTER]) + _be16(address) + _be16(value)
    return Request(slave_address, pdu)


def write_multiple_holding_registers_request(
    slave_address: int, start: int, values: Sequence[int], max_slaves: int = ADDRESS_MAX
) -> Request:
    """Build a write multiple registers request writing ``values`` from ``start``."""
    _check_slave(slave_address, max_slaves)
    values = list(values)
    count = len(values)
    pdu = (
        bytes([FunctionCode.WRITE_MULTIPLE_REGISTERS])
        + _be16(start)
        + _be16(count)
        + bytes([(count * 2) & 0xFF])
        + _encode(values)
    )
    return Request(slave_address, pdu)


def read_holding_registers_request(
    slave_address: int, start: int, count: int, max_slaves: int = ADDRESS_MAX
) -> Request:
    """Build a read holding registers request for ``count`` registers at ``start``."""
    _check_slave(slave_address, max_slaves)
    pdu = bytes([FunctionCode.READ_HOLDING_REGISTER]) + _be16(start) + _be16(count)
    return Request(slave_address, pdu)


def read_write_multiple_holding_registers_request(
    slave_address: int,
    read_start: int,
    read_count: int,
    write_start: int,
    values: Sequence[int],
    max_slaves: int = ADDRESS_MAX,
) -> Request:
    """Build a read/write multiple registers request."""
    _check_slave(slave_address, max_slaves)
    values = list(values)
    write_count = len(values)
    pdu = (
        bytes([FunctionCode.READWRITE_MULTIPLE_REGISTERS])
        + _be16(read_start)
        + _be16(read_count)
        + _be16(write_start)
        + _be16(write_count)
        + bytes([(write_count * 2) & 0xFF])
        + _encode(values)
    )
    return Request(slave_address, pdu)


def report_slave_id_request(slave_address: int, max_slaves: int = ADDRESS_MAX) -> Request:
    """Build a report slave id request."""
    _check_slave(slave_address, max_slaves)
    return Request(slave_address, bytes([FunctionCode.OTHER_REPORT_SLAVEID]))


def handle_write_holding_register(
    request, response: bytes, bank: MasterRegisterBank, broadcast: bool = False
) -> None:
    """Record the register confirmed by a write single register response in ``bank``.

    For a broadcast there is no response and the request itself is used.
    """
    frame = _pdu_of(request) if broadcast else bytes(response)
    if len(frame) != PDU_SIZE_MIN + _FUNC_WRITE_SIZE:
        raise _illegal_value()
    address = (_u16(frame, _FUNC_WRITE_ADDR_OFF) + 1) & 0xFFFF
    value = _u16(frame, _FUNC_WRITE_VALUE_OFF)
    _call(bank.holding_registers, address, 1, RegisterMode.WRITE, [value])


def handle_write_multiple_holding_registers(
    request, response: bytes, bank: MasterRegisterBank, broadcast: bool = False
) -> None:
    """Record the registers written by a write multiple registers request in ``bank``.

    The response length is not checked for a broadcast, which has none.
    """
    if not broadcast and len(response) != PDU_SIZE_MIN + _FUNC_WRITE_MUL_SIZE:
        raise _illegal_value()
    pdu = _pdu_of(request)
    if len(pdu) <= _REQ_WRITE_MUL_BYTECNT_OFF:
        raise _illegal_value()
    address = (_u16(pdu, _REQ_WRITE_MUL_ADDR_OFF) + 1) & 0xFFFF
    count = _u16(pdu, _REQ_WRITE_MUL_REGCNT_OFF)
    byte_count = pdu[_REQ_WRITE_MUL_BYTECNT_OFF]
    if byte_count != 2 * count:
        raise _illegal_value()
    values = _registers(pdu, _REQ_WRITE_MUL_VALUES_OFF, count)
    _call(bank.holding_registers, address, count, RegisterMode.WRITE, values)


def handle_read_holding_registers(
    request, response: bytes, bank: MasterRegisterBank, broadcast: bool = False
) -> None:
    """Store the registers of a read holding registers response in ``bank``.

    Broadcast requests need no handling.
    """
    if broadcast:
        return
    if len(response) < PDU_SIZE_MIN + _FUNC_READ_SIZE_MIN:
        raise _illegal_value()
    pdu = _pdu_of(request)
    address = (_u16(pdu, _REQ_READ_ADDR_OFF) + 1) & 0xFFFF
    count = _u16(pdu, _REQ_READ_REGCNT_OFF)
    if count < 1 or 2 * count != response[_FUNC_READ_BYTECNT_OFF]:
        raise _illegal_value()
    values = _registers(bytes(response), _FUNC_READ_VALUES_OFF, count)
    _call(bank.holding_registers, address, count, RegisterMode.READ, values)


def handle_read_write_multiple_holding_registers(
    request, response: bytes, bank: MasterRegisterBank, broadcast: bool = False
) -> None:
    """Record the written and the read registers of a read/write request in ``bank``.

    Broadcast requests need no handling, and a response shorter than the
    minimum is ignored. The written values are recorded before the read ones.
    """
    if broadcast:
        return
    if len(response) < PDU_SIZE_MIN + _FUNC_RW_SIZE_MIN:
        return
    pdu = _pdu_of(request)
    read_address = (_u16(pdu, _REQ_RW_READ_ADDR_OFF) + 1) & 0xFFFF
    read_count = _u16(pdu, _REQ_RW_READ_REGCNT_OFF)
    write_address = (_u16(pdu, _REQ_RW_WRITE_ADDR_OFF) + 1) & 0xFFFF
    write_count = _u16(pdu, _REQ_RW_WRITE_REGCNT_OFF)
    if 2 * read_count != response[_FUNC_RW_READ_BYTECNT_OFF]:
        raise _illegal_value()
    written = _registers(pdu, _REQ_RW_WRITE_VALUES_OFF, write_count)
    _call(bank.holding_registers, write_address, write_count, RegisterMode.WRITE, written)
    read = _registers(bytes(response), _FUNC_RW_READ_VALUES_OFF, read_count)
    _call(bank.holding_registers, read_address, read_count, RegisterMode.READ, read)


def handle_report_slave_id(
    request, response: bytes, bank: MasterRegisterBank, broadcast: bool = False
) -> None:
    """Store the data of a report slave id response in ``bank``.

    For a broadcast there is no response and the request itself is used.
    """
    frame = _pdu_of(request) if broadcast else bytes(response)
    if len(frame) > SLAVEID_BUF_SIZE - 2:
        raise _illegal_value()
    byte_count = frame[_SLAVEID_BYTECNT_OFF] if len(frame) > _SLAVEID_BYTECNT_OFF else 0
    data = frame[_SLAVEID_DATA_OFF:_SLAVEID_DATA_OFF + byte_count]
    _call(bank.common, data)