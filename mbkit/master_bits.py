"""Master-side request building and response handling for coils and discrete inputs."""

from __future__ import annotations

from typing import Callable

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
    get_bits,
)

_REQ_ADDR_OFF = PDU_DATA_OFF + 0
_REQ_COUNT_OFF = PDU_DATA_OFF + 2
_FUNC_READ_BYTECNT_OFF = PDU_DATA_OFF + 0
_FUNC_READ_VALUES_OFF = PDU_DATA_OFF + 1
_FUNC_READ_SIZE_MIN = 1

_WRITE_SIZE = 4
_FUNC_WRITE_VALUE_OFF = PDU_DATA_OFF + 2

_REQ_WRITE_MUL_BYTECNT_OFF = PDU_DATA_OFF + 4
_REQ_WRITE_MUL_VALUES_OFF = PDU_DATA_OFF + 5
_REQ_WRITE_MUL_COUNT_MAX = 0x07B0
_FUNC_WRITE_MUL_SIZE = 5

COIL_ON = 0xFF00
COIL_OFF = 0x0000


def _u16(pdu: bytes, offset: int) -> int:
    return (pdu[offset] << 8) | pdu[offset + 1]


def _be16(value: int) -> bytes:
    return (value & 0xFFFF).to_bytes(2, "big")


def _pdu_of(request) -> bytes:
    return bytes(request.pdu if isinstance(request, Request) else request)


def _byte_count(count: int) -> int:
    return ((count + 7) // 8) & 0xFF


def _unpack(data: bytes, count: int) -> list[bool]:
    return [bool(get_bits(data, offset, 1)) for offset in range(count)]


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


def _read_request(
    function: FunctionCode, slave_address: int, start: int, count: int, max_slaves: int
) -> Request:
    _check_slave(slave_address, max_slaves)
    return Request(slave_address, bytes([function]) + _be16(start) + _be16(count))


def read_coils_request(
    slave_address: int, start: int, count: int, max_slaves: int = ADDRESS_MAX
) -> Request:
    """Build a read coils request for ``count`` coils at ``start``."""
    return _read_request(FunctionCode.READ_COILS, slave_address, start, count, max_slaves)


def read_discrete_inputs_request(
    slave_address: int, start: int, count: int, max_slaves: int = ADDRESS_MAX
) -> Request:
    """Build a read discrete inputs request for ``count`` inputs at ``start``."""
    return _read_request(
        FunctionCode.READ_DISCRETE_INPUTS, slave_address, start, count, max_slaves
    )


def write_coil_request(
    slave_address: int, address: int, value: int, max_slaves: int = ADDRESS_MAX
) -> Request:
    """Build a write single coil request; ``value`` is 0xFF00 (on) or 0x0000 (off).

    A bool is accepted as well and mapped to the on/off values.
    """
    _check_slave(slave_address, max_slaves)
    if isinstance(value, bool):
        value = COIL_ON if value else COIL_OFF
    if value not in (COIL_ON, COIL_OFF):
        raise ModbusError(ErrorCode.INVAL, "coil value must be 0xFF00 or 0x0000")
    pdu = bytes([FunctionCode.WRITE_SINGLE_COIL]) + _be16(address) + _be16(value)
    return Request(slave_address, pdu)


def write_multiple_coils_request(
    slave_address: int,
    start: int,
    count: int,
    data: bytes,
    max_slaves: int = ADDRESS_MAX,
) -> Request:
    """Build a write multiple coils request from packed coil ``data``."""
    _check_slave(slave_address, max_slaves)
    if count > _REQ_WRITE_MUL_COUNT_MAX:
        raise ModbusError(ErrorCode.INVAL, "too many coils")
    byte_count = _byte_count(count)
    data = bytes(data)
    if len(data) < byte_count:
        raise ModbusError(ErrorCode.INVAL, "not enough coil data")
    pdu = (
        bytes([FunctionCode.WRITE_MULTIPLE_COILS])
        + _be16(start)
        + _be16(count)
        + bytes([byte_count])
        + data[:byte_count]
    )
    return Request(slave_address, pdu)


def _handle_read_bits(request, response: bytes, store: Callable) -> None:
    if len(response) < PDU_SIZE_MIN + _FUNC_READ_SIZE_MIN:
        raise _illegal_value()
    pdu = _pdu_of(request)
    address = (_u16(pdu, _REQ_ADDR_OFF) + 1) & 0xFFFF
    count = _u16(pdu, _REQ_COUNT_OFF)
    byte_count = _byte_count(count)
    if count < 1 or byte_count != response[_FUNC_READ_BYTECNT_OFF]:
        raise _illegal_value()
    data = bytes(response[_FUNC_READ_VALUES_OFF:_FUNC_READ_VALUES_OFF + byte_count])
    if len(data) < byte_count:
        raise _illegal_value()
    _call(store, address, count, _unpack(data, count))


def handle_read_coils(
    request, response: bytes, bank: MasterRegisterBank, broadcast: bool = False
) -> None:
    """Store the coils of a read coils response in ``bank``.

    Broadcast requests need no handling.
    """
    if broadcast:
        return
    _handle_read_bits(
        request,
        response,
        lambda address, count, values: bank.coils(address, count, RegisterMode.READ, values),
    )


def handle_read_discrete_inputs(
    request, response: bytes, bank: MasterRegisterBank, broadcast: bool = False
) -> None:
    """Store the inputs of a read discrete inputs response in ``bank``.

    Broadcast requests need no handling.
    """
    if broadcast:
        return
    _handle_read_bits(request, response, bank.discrete_inputs)


def handle_write_coil(
    request, response: bytes, bank: MasterRegisterBank, broadcast: bool = False
) -> None:
    """Record the coil confirmed by a write single coil response in ``bank``.

    For a broadcast there is no response and the request itself is used.
    """
    frame = _pdu_of(request) if broadcast else bytes(response)
    if len(frame) != _WRITE_SIZE + PDU_SIZE_MIN:
        raise _illegal_value()
    address = (_u16(frame, PDU_DATA_OFF) + 1) & 0xFFFF
    high, low = frame[_FUNC_WRITE_VALUE_OFF], frame[_FUNC_WRITE_VALUE_OFF + 1]
    if low != 0x00 or high not in (0xFF, 0x00):
        raise _illegal_value()
    _call(bank.coils, address, 1, RegisterMode.WRITE, [high == 0xFF])


def handle_write_multiple_coils(
    request, response: bytes, bank: MasterRegisterBank, broadcast: bool = False
) -> None:
    """Record the coils written by a write multiple coils request in ``bank``.

    The response length is not checked for a broadcast, which has none.
    """
    pdu = _pdu_of(request)
    if not broadcast and len(response) != _FUNC_WRITE_MUL_SIZE:
        raise _illegal_value()
    frame = pdu if broadcast else bytes(response)
    address = (_u16(frame, PDU_DATA_OFF) + 1) & 0xFFFF
    count = _u16(frame, PDU_DATA_OFF + 2)
    if len(pdu) <= _REQ_WRITE_MUL_BYTECNT_OFF:
        raise _illegal_value()
    byte_count = pdu[_REQ_WRITE_MUL_BYTECNT_OFF]
    if count < 1 or _byte_count(count) != byte_count:
        raise _illegal_value()
    data = pdu[_REQ_WRITE_MUL_VALUES_OFF:_REQ_WRITE_MUL_VALUES_OFF + byte_count]
    if len(data) < byte_count:
        raise _illegal_value()
    _call(bank.coils, address, count, RegisterMode.WRITE, _unpack(data, count))