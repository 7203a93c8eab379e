import pytest

from mbkit.ascii import AsciiSlaveFramer, encode_frame
from mbkit.protocol import (
    ErrorCode,
    ExceptionCode,
    FunctionCode,
    Mode,
    ModbusError,
    ModbusException,
    RegisterBank,
    SlaveEvent,
)
from mbkit.slave import ModbusSlave


def _feed(framer, data):
    for byte in data:
        framer.receive_byte(byte)


def _drain(framer):
    out = bytearray()
    while True:
        byte = framer.transmit_byte()
        if byte is None:
            return bytes(out)
        out.append(byte)


def _make(address=1, **bank_args):
    framer = AsciiSlaveFramer()
    bank = RegisterBank(**bank_args)
    slave = ModbusSlave(framer, address, bank=bank)
    slave.enable()
    assert slave.poll() == SlaveEvent.READY
    return framer, bank, slave


def _request(framer, slave, address, pdu):
    _feed(framer, encode_frame(address, pdu))
    assert slave.poll() == SlaveEvent.FRAME_RECEIVED


class FakeFramer:
    def __init__(self, frames=()):
        self.frames = list(frames)
        self.sent = []
        self.started = 0
        self.stopped = 0
        self.closed = 0

    def start(self):
        self.started += 1

    def stop(self):
        self.stopped += 1

    def receive(self):
        return self.frames.pop(0)

    def send(self, address, pdu):
        self.sent.append((address, bytes(pdu)))

    def close(self):
        self.closed += 1


def test_read_holding_registers_round_trip():
    framer, _, slave = _make(holding_registers=[0x1234, 0xABCD])
    _request(framer, slave, 1, bytes([3, 0, 0, 0, 2]))
    assert slave.poll() == SlaveEvent.EXECUTE
    expected = encode_frame(1, bytes([3, 4, 0x12, 0x34, 0xAB, 0xCD]))
    assert _drain(framer) == expected
    assert slave.poll() == SlaveEvent.FRAME_TRANSMIT


def test_unknown_function_gives_illegal_function():
    framer, _, slave = _make()
    _request(framer, slave, 1, bytes([0x2B, 1, 2]))
    slave.poll()
    expected = encode_frame(1, bytes([0x2B | 0x80, ExceptionCode.ILLEGAL_FUNCTION]))
    assert _drain(framer) == expected


def test_handler_exception_becomes_error_response():
    framer, _, slave = _make(holding_registers=[1])
    _request(framer, slave, 1, bytes([3, 0, 5, 0, 1]))
    slave.poll()
    expected = encode_frame(
        1, bytes([FunctionCode.READ_HOLDING_REGISTER | 0x80, ExceptionCode.ILLEGAL_DATA_ADDRESS])
    )
    assert _drain(framer) == expected


def test_frame_for_other_slave_is_ignored():
    framer, _, slave = _make()
    _request(framer, slave, 9, bytes([3, 0, 0, 0, 1]))
    assert slave.poll() is None
    assert framer.transmit_byte() is None


def test_broadcast_write_executes_without_reply():
    framer, bank, slave = _make(holding_registers=[0, 0])
    _request(framer, slave, 0, bytes([6, 0, 1, 0x55, 0xAA]))
    assert slave.poll() == SlaveEvent.EXECUTE
    assert framer.transmit_byte() is None
    assert bank.holding_registers(2, 1, mode=None if False else __import_mode_read()) == [0x55AA]


def __import_mode_read():
    from mbkit.protocol import RegisterMode

    return RegisterMode.READ


def test_tcp_mode_answers_broadcast():
    framer = FakeFramer(frames=[(0, bytes([4, 0, 0, 0, 1]))])
    slave = ModbusSlave(framer, 1, mode=Mode.TCP, bank=RegisterBank(input_registers=[7]))
    slave.enable()
    slave.post(SlaveEvent.FRAME_RECEIVED)
    assert slave.poll() == SlaveEvent.FRAME_RECEIVED
    assert slave.poll() == SlaveEvent.EXECUTE
    assert framer.sent == [(1, bytes([4, 2, 0, 7]))]


def test_custom_handler_is_called():
    framer, _, slave = _make()
    seen = []

    def handler(pdu):
        seen.append(pdu)
        return pdu[:1] + b"ok"

    slave.register_handler(0x41, handler)
    _request(framer, slave, 1, bytes([0x41, 9]))
    slave.poll()
    assert seen == [bytes([0x41, 9])]
    assert _drain(framer) == encode_frame(1, b"\x41ok")


def test_custom_handler_may_raise_modbus_exception():
    framer, _, slave = _make()

    def handler(pdu):
        raise ModbusException(ExceptionCode.SLAVE_BUSY)

    slave.register_handler(0x42, handler)
    _request(framer, slave, 1, bytes([0x42]))
    slave.poll()
    assert _drain(framer) == encode_frame(1, bytes([0x42 | 0x80, ExceptionCode.SLAVE_BUSY]))


def test_handler_table_fills_up():
    slave = ModbusSlave(FakeFramer(), 1)
    handlers = [lambda pdu: pdu for _ in range(7)]
    for index, handler in enumerate(handlers[:6]):
        slave.register_handler(0x41 + index, handler)
    with pytest.raises(ModbusError) as info:
        slave.register_handler(0x50, handlers[6])
    assert info.value.code == ErrorCode.NORES


def test_reregistering_same_handler_reuses_slot():
    slave = ModbusSlave(FakeFramer(), 1)
    handler = lambda pdu: pdu  # noqa: E731
    for code in range(0x41, 0x50):
        slave.register_handler(code, handler)
    extra = [lambda pdu: pdu for _ in range(6)]
    for index, other in enumerate(extra[:5]):
        slave.register_handler(0x60 + index, other)
    with pytest.raises(ModbusError) as info:
        slave.register_handler(0x70, extra[5])
    assert info.value.code == ErrorCode.NORES


def test_removed_handler_gives_illegal_function():
    framer, _, slave = _make(holding_registers=[1])
    slave.register_handler(FunctionCode.READ_HOLDING_REGISTER, None)
    _request(framer, slave, 1, bytes([3, 0, 0, 0, 1]))
    slave.poll()
    expected = encode_frame(
        1, bytes([FunctionCode.READ_HOLDING_REGISTER | 0x80, ExceptionCode.ILLEGAL_FUNCTION])
    )
    assert _drain(framer) == expected


@pytest.mark.parametrize("code", [0, 128])
def test_register_handler_rejects_bad_code(code):
    slave = ModbusSlave(FakeFramer(), 1)
    with pytest.raises(ModbusError) as info:
        slave.register_handler(code, lambda pdu: pdu)
    assert info.value.code == ErrorCode.INVAL


@pytest.mark.parametrize("address", [0, 248])
def test_invalid_serial_address(address):
    with pytest.raises(ModbusError) as info:
        ModbusSlave(FakeFramer(), address)
    assert info.value.code == ErrorCode.INVAL


def test_tcp_accepts_unit_id_zero():
    slave = ModbusSlave(FakeFramer(), 0, mode=Mode.TCP)
    assert slave.address == 0


def test_poll_requires_enabled():
    slave = ModbusSlave(FakeFramer(), 1)
    with pytest.raises(ModbusError) as info:
        slave.poll()
    assert info.value.code == ErrorCode.ILLSTATE


def test_state_transitions():
    framer = FakeFramer()
    slave = ModbusSlave(framer, 1)
    slave.enable()
    assert slave.enabled
    with pytest.raises(ModbusError) as info:
        slave.enable()
    assert info.value.code == ErrorCode.ILLSTATE
    with pytest.raises(ModbusError):
        slave.close()
    slave.disable()
    slave.disable()
    slave.close()
    assert (framer.started, framer.stopped, framer.closed) == (1, 1, 1)


def test_context_manager_enables_and_closes():
    framer = FakeFramer()
    with ModbusSlave(framer, 1) as slave:
        assert slave.enabled
    assert (framer.started, framer.stopped, framer.closed) == (1, 1, 1)


def test_bad_lrc_frame_raises_io():
    framer, _, slave = _make()
    frame = bytearray(encode_frame(1, bytes([3, 0, 0, 0, 1])))
    frame[-4] = ord("0") if frame[-4] != ord("0") else ord("1")
    _feed(framer, frame)
    with pytest.raises(ModbusError) as info:
        slave.poll()
    assert info.value.code == ErrorCode.IO