import pytest

from mbkit.master_input import handle_read_input_registers, read_input_registers_request
from mbkit.protocol import (
    ErrorCode,
    ExceptionCode,
    FunctionCode,
    MasterRegisterBank,
    ModbusError,
    ModbusException,
    RegisterBank,
)
from mbkit.slave_registers import read_input_registers


def test_request_wire_bytes():
    request = read_input_registers_request(1, 0x0010, 2)
    assert request.slave_address == 1
    assert request.pdu == bytes([FunctionCode.READ_INPUT_REGISTER, 0x00, 0x10, 0x00, 0x02])
    assert request.function_code == FunctionCode.READ_INPUT_REGISTER


def test_request_rejects_address_above_max():
    with pytest.raises(ModbusError) as info:
        read_input_registers_request(5, 0, 1, max_slaves=4)
    assert info.value.code == ErrorCode.INVAL


def test_handle_stores_values_at_protocol_address():
    bank = MasterRegisterBank()
    request = read_input_registers_request(1, 0x0010, 2)
    handle_read_input_registers(request, bytes([4, 4, 0x00, 0x0A, 0x01, 0x02]), bank)
    assert bank.input_values == {0x11: 0x000A, 0x12: 0x0102}


def test_round_trip_with_slave_handler():
    slave_bank = RegisterBank(input_registers=[11, 22, 33, 44])
    request = read_input_registers_request(3, 1, 3)
    response = read_input_registers(request.pdu, slave_bank)
    master_bank = MasterRegisterBank()
    handle_read_input_registers(request, response, master_bank)
    assert [master_bank.input_values[a] for a in (2, 3, 4)] == [22, 33, 44]


def test_byte_count_mismatch():
    request = read_input_registers_request(1, 0, 2)
    with pytest.raises(ModbusException) as info:
        handle_read_input_registers(request, bytes([4, 2, 0, 1]), MasterRegisterBank())
    assert info.value.code == ExceptionCode.ILLEGAL_DATA_VALUE


def test_short_response():
    request = read_input_registers_request(1, 0, 1)
    with pytest.raises(ModbusException) as info:
        handle_read_input_registers(request, bytes([4]), MasterRegisterBank())
    assert info.value.code == ExceptionCode.ILLEGAL_DATA_VALUE


def test_zero_count_is_illegal():
    request = read_input_registers_request(1, 0, 0)
    with pytest.raises(ModbusException) as info:
        handle_read_input_registers(request, bytes([4, 0]), MasterRegisterBank())
    assert info.value.code == ExceptionCode.ILLEGAL_DATA_VALUE


def test_broadcast_is_not_executed():
    bank = MasterRegisterBank()
    request = read_input_registers_request(0, 0, 1)
    handle_read_input_registers(request, bytes([4, 2, 0, 5]), bank, broadcast=True)
    assert bank.input_values == {}


def test_bank_range_error_maps_to_illegal_address():
    bank = MasterRegisterBank(size=1)
    request = read_input_registers_request(1, 0, 2)
    with pytest.raises(ModbusException) as info:
        handle_read_input_registers(request, bytes([4, 4, 0, 1, 0, 2]), bank)
    assert info.value.code == ExceptionCode.ILLEGAL_DATA_ADDRESS


def test_truncated_values_map_to_device_failure():
    request = read_input_registers_request(1, 0, 2)
    with pytest.raises(ModbusException) as info:
        handle_read_input_registers(request, bytes([4, 4, 0, 1]), MasterRegisterBank())
    assert info.value.code == ExceptionCode.SLAVE_DEVICE_FAILURE