import pytest

from mbkit.protocol import (
    ErrorCode,
    ExceptionCode,
    ModbusError,
    ModbusException,
    RegisterBank,
    RegisterMode,
)
from mbkit.slave_registers import (
    SlaveIdentity,
    read_holding_registers,
    read_input_registers,
    read_write_multiple_holding_registers,
    write_holding_register,
    write_multiple_holding_registers,
)


@pytest.fixture
def bank():
    return RegisterBank(
        holding_registers=[0x1234, 0xABCD, 0x0000, 0x0001],
        input_registers=[0x0102, 0x0304, 0x0506],
    )


def holding(bank, address, count):
    return bank.holding_registers(address, count, RegisterMode.READ, None)


def test_read_holding_registers(bank):
    response = read_holding_registers(bytes([0x03, 0x00, 0x00, 0x00, 0x02]), bank)
    assert response == bytes([0x03, 0x04, 0x12, 0x34, 0xAB, 0xCD])


@pytest.mark.parametrize("count", [0, 0x7E])
def test_read_holding_count_out_of_range(bank, count):
    pdu = bytes([0x03, 0x00, 0x00, count >> 8, count & 0xFF])
    with pytest.raises(ModbusException) as info:
        read_holding_registers(pdu, bank)
    assert info.value.code == ExceptionCode.ILLEGAL_DATA_VALUE


def test_read_holding_wrong_length(bank):
    with pytest.raises(ModbusException) as info:
        read_holding_registers(bytes([0x03, 0x00, 0x00, 0x00]), bank)
    assert info.value.code == ExceptionCode.ILLEGAL_DATA_VALUE


def test_read_holding_bad_address(bank):
    with pytest.raises(ModbusException) as info:
        read_holding_registers(bytes([0x03, 0x00, 0x03, 0x00, 0x02]), bank)
    assert info.value.code == ExceptionCode.ILLEGAL_DATA_ADDRESS


def test_read_input_registers(bank):
    response = read_input_registers(bytes([0x04, 0x00, 0x01, 0x00, 0x02]), bank)
    assert response[:2] == bytes([0x04, 0x04])
    assert response[2:] == bytes([0x03, 0x04, 0x05, 0x06])


def test_read_input_registers_bad_address(bank):
    with pytest.raises(ModbusException) as info:
        read_input_registers(bytes([0x04, 0x00, 0x02, 0x00, 0x02]), bank)
    assert info.value.code == ExceptionCode.ILLEGAL_DATA_ADDRESS


def test_write_holding_register_echoes_and_stores(bank):
    pdu = bytes([0x06, 0x00, 0x02, 0xBE, 0xEF])
    assert write_holding_register(pdu, bank) == pdu
    assert holding(bank, 3, 1) == [0xBEEF]


def test_write_holding_register_wrong_length(bank):
    with pytest.raises(ModbusException) as info:
        write_holding_register(bytes([0x06, 0x00, 0x02, 0xBE]), bank)
    assert info.value.code == ExceptionCode.ILLEGAL_DATA_VALUE


def test_write_multiple_holding_registers(bank):
    pdu = bytes([0x10, 0x00, 0x01, 0x00, 0x02, 0x04, 0x11, 0x22, 0x33, 0x44])
    assert write_multiple_holding_registers(pdu, bank) == pdu[:5]
    assert holding(bank, 2, 2) == [0x1122, 0x3344]
    assert holding(bank, 1, 1) == [0x1234]


def test_write_multiple_byte_count_mismatch(bank):
    pdu = bytes([0x10, 0x00, 0x01, 0x00, 0x02, 0x03, 0x11, 0x22, 0x33])
    with pytest.raises(ModbusException) as info:
        write_multiple_holding_registers(pdu, bank)
    assert info.value.code == ExceptionCode.ILLEGAL_DATA_VALUE
    assert holding(bank, 2, 2) == [0xABCD, 0x0000]


def test_write_multiple_out_of_range(bank):
    pdu = bytes([0x10, 0x00, 0x03, 0x00, 0x02, 0x04, 0x11, 0x22, 0x33, 0x44])
    with pytest.raises(ModbusException) as info:
        write_multiple_holding_registers(pdu, bank)
    assert info.value.code == ExceptionCode.ILLEGAL_DATA_ADDRESS


def test_read_write_writes_before_reading(bank):
    pdu = bytes([0x17, 0x00, 0x00, 0x00, 0x02, 0x00, 0x01, 0x00, 0x01, 0x02, 0x55, 0x66])
    response = read_write_multiple_holding_registers(pdu, bank)
    assert response == bytes([0x17, 0x04, 0x12, 0x34, 0x55, 0x66])
    assert holding(bank, 2, 1) == [0x5566]


def test_read_write_short_request_returned_unchanged(bank):
    pdu = bytes([0x17, 0x00, 0x00, 0x00, 0x01])
    assert read_write_multiple_holding_registers(pdu, bank) == pdu


def test_read_write_bad_byte_count(bank):
    pdu = bytes([0x17, 0x00, 0x00, 0x00, 0x01, 0x00, 0x01, 0x00, 0x01, 0x03, 0x55, 0x66, 0x77])
    with pytest.raises(ModbusException) as info:
        read_write_multiple_holding_registers(pdu, bank)
    assert info.value.code == ExceptionCode.ILLEGAL_DATA_VALUE


def test_slave_identity_report():
    identity = SlaveIdentity()
    identity.set(0x11, True, b"ab")
    assert identity.report(bytes([0x11])) == bytes([0x11, 0x04, 0x11, 0xFF]) + b"ab"


def test_slave_identity_not_running_and_empty():
    identity = SlaveIdentity()
    assert identity.report(bytes([0x11])) == bytes([0x11, 0x00])
    identity.set(7, False)
    assert identity.report(bytes([0x11])) == bytes([0x11, 0x02, 0x07, 0x00])


def test_slave_identity_too_long():
    identity = SlaveIdentity(buffer_size=8)
    with pytest.raises(ModbusError) as info:
        identity.set(1, True, b"123456")
    assert info.value.code == ErrorCode.NORES
    identity.set(1, True, b"12345")
    assert len(identity.report(bytes([0x11]))) == 2 + 7