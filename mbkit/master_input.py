"""Master-side request building and response handling for read input registers."""

from __future__ import annotations

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
    Request,
    error_to_exception,
)

_REQ_READ_ADDR_OFF = PDU_DATA_OFF + 0
_REQ_READ_REGCNT_OFF = PDU_DATA_OFF + 2
_FUNC_READ_BYTECNT_OFF = PDU_DATA_OFF + 0
_FUNC_READ_VALUES_OFF = PDU_DATA_OFF + 1
_FUNC_READ_SIZE_MIN = 1


def _u16(pdu: bytes, offset: int) -> int:
    return (pdu[offset] << 8) | pdu[offset + 1]


def _pdu_of(request) -> bytes:
    return bytes(request.pdu if isinstance(request, Request) else request)


def read_input_registers_request(
    slave_address: int, start: int, count: int, max_slaves: int = ADDRESS_MAX
) -> Request:
    """Build a read input registers request for ``count`` registers at ``start``."""
    if slave_address > max_slaves:
        raise ModbusError(ErrorCode.INVAL, "slave address out of range")
    pdu = bytes([FunctionCode.READ_INPUT_REGISTER]) + (start & 0xFFFF).to_bytes(
        2, "big"
    ) + (count & 0xFFFF).to_bytes(2, "big")
    return Request(slave_address, pdu)


def handle_read_input_registers(
    request, response: bytes, bank: MasterRegisterBank, broadcast: bool = False
) -> None:
    """Store the registers of a read input registers response in ``bank``.

    Raises ModbusException when the response does not match the request or
    the bank rejects the values. Broadcast requests need no handling.
    """
    if broadcast:
        return
    if len(response) < PDU_SIZE_MIN + _FUNC_READ_SIZE_MIN:
        raise ModbusException(ExceptionCode.ILLEGAL_DATA_VALUE)
    pdu = _pdu_of(request)
    address = (_u16(pdu, _REQ_READ_ADDR_OFF) + 1) & 0xFFFF
    count = _u16(pdu, _REQ_READ_REGCNT_OFF)
    if count < 1 or 2 * count != response[_FUNC_READ_BYTECNT_OFF]:
        raise ModbusException(ExceptionCode.ILLEGAL_DATA_VALUE)
    data = bytes(response[_FUNC_READ_VALUES_OFF:_FUNC_READ_VALUES_OFF + 2 * count])
    values = [_u16(data, offset) for offset in range(0, len(data) - 1, 2)]
    try:
        bank.input_registers(address, count, values)
    except ModbusError as error:
        raise ModbusException(error_to_exception(error.code)) from error