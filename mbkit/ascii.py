"""Modbus ASCII framing: LRC, hex nibble coding and the slave-side framer."""

from __future__ import annotations

from collections import deque
from enum import Enum, auto

from .protocol import ErrorCode, ModbusError, SlaveEvent

ASCII_DEFAULT_CR = 0x0D
ASCII_DEFAULT_LF = 0x0A
ASCII_START = ord(":")
ASCII_SER_PDU_SIZE_MIN = 3
SER_PDU_SIZE_MAX = 256
SER_PDU_ADDR_OFF = 0
SER_PDU_PDU_OFF = 1
SER_PDU_SIZE_LRC = 1


class _RxState(Enum):
    IDLE = auto()
    RCV = auto()
    WAIT_EOF = auto()


class _TxState(Enum):
    IDLE = auto()
    START = auto()
    DATA = auto()
    END = auto()
    NOTIFY = auto()


class _BytePos(Enum):
    HIGH = auto()
    LOW = auto()


def lrc(data: bytes) -> int:
    """Return the longitudinal redundancy check of ``data``."""
    return (-sum(data)) & 0xFF


def encode_nibble(value: int) -> int:
    """Return the upper-case hex character code for a value 0..15."""
    if 0 <= value <= 9:
        return ord("0") + value
    if 0x0A <= value <= 0x0F:
        return ord("A") + value - 0x0A
    raise ValueError(f"not a nibble: {value!r}")


def decode_nibble(char: int | str) -> int:
    """Return the value of a hex character ('0'-'9', 'A'-'F'), else 0xFF."""
    code = ord(char) if isinstance(char, str) else char
    if ord("0") <= code <= ord("9"):
        return code - ord("0")
    if ord("A") <= code <= ord("F"):
        return code - ord("A") + 0x0A
    return 0xFF


def _hex(data: bytes) -> bytes:
    return bytes(c for b in data for c in (encode_nibble(b >> 4), encode_nibble(b & 0x0F)))


def encode_frame(address: int, pdu: bytes) -> bytes:
    """Return the complete ASCII wire frame for ``pdu`` sent to ``address``."""
    body = bytes([address & 0xFF]) + bytes(pdu)
    body += bytes([lrc(body)])
    return bytes([ASCII_START]) + _hex(body) + bytes([ASCII_DEFAULT_CR, ASCII_DEFAULT_LF])


class AsciiSlaveFramer:
    """Character-driven Modbus ASCII receiver and transmitter for a slave.

    Received characters are fed with :meth:`receive_byte`; characters to be
    put on the line are taken one at a time from :meth:`transmit_byte`.
    Events for the poll loop are queued and taken with :meth:`next_event`.
    """

    def __init__(self, lf_character: int = ASCII_DEFAULT_LF) -> None:
        self.lf_character = lf_character
        self.receiver_enabled = False
        self.transmitter_enabled = False
        self.timer_enabled = False
        self._rx_state = _RxState.IDLE
        self._tx_state = _TxState.IDLE
        self._byte_pos = _BytePos.HIGH
        self._rx_buf = bytearray(SER_PDU_SIZE_MAX)
        self._rx_pos = 0
        self._tx_frame = b""
        self._tx_pos = 0
        self._events: deque[SlaveEvent] = deque()

    def _post(self, event: SlaveEvent) -> None:
        self._events.append(event)

    def next_event(self) -> SlaveEvent | None:
        """Return the oldest pending event, or None if there is none."""
        return self._events.popleft() if self._events else None

    def start(self) -> None:
        """Enable the receiver and signal that the stack is ready."""
        self.receiver_enabled = True
        self.transmitter_enabled = False
        self._rx_state = _RxState.IDLE
        self._post(SlaveEvent.READY)

    def stop(self) -> None:
        """Disable the serial line and the character timer."""
        self.receiver_enabled = False
        self.transmitter_enabled = False
        self.timer_enabled = False

    def receive(self) -> tuple[int, bytes]:
        """Return the address and PDU of the last received frame.

        Raises ModbusError(IO) if the frame is too short or its LRC is wrong.
        """
        length = self._rx_pos
        frame = bytes(self._rx_buf[:length])
        if length >= SER_PDU_SIZE_MAX:
            raise ModbusError(ErrorCode.IO, "frame too long")
        if length < ASCII_SER_PDU_SIZE_MIN or lrc(frame) != 0:
            raise ModbusError(ErrorCode.IO, "invalid frame")
        return frame[SER_PDU_ADDR_OFF], frame[SER_PDU_PDU_OFF:length - SER_PDU_SIZE_LRC]

    def send(self, address: int, pdu: bytes) -> None:
        """Prepare a response frame and start the transmitter.

        Raises ModbusError(IO) if a new frame is already being received.
        """
        if self._rx_state != _RxState.IDLE:
            raise ModbusError(ErrorCode.IO, "receiver is busy")
        body = bytes([address & 0xFF]) + bytes(pdu)
        self._tx_frame = body + bytes([lrc(body)])
        self._tx_pos = 0
        self._tx_state = _TxState.START
        self.receiver_enabled = False
        self.transmitter_enabled = True

    def _reset_rx(self) -> None:
        self._rx_pos = 0
        self._byte_pos = _BytePos.HIGH

    def receive_byte(self, byte: int) -> bool:
        """Process one received character; True when a whole frame arrived."""
        if self._tx_state != _TxState.IDLE:
            raise ModbusError(ErrorCode.ILLSTATE, "transmission in progress")
        state = self._rx_state
        if state == _RxState.RCV:
            self.timer_enabled = True
            if byte == ASCII_START:
                self._reset_rx()
            elif byte == ASCII_DEFAULT_CR:
                self._rx_state = _RxState.WAIT_EOF
            else:
                value = decode_nibble(byte)
                if self._byte_pos == _BytePos.HIGH:
                    if self._rx_pos < SER_PDU_SIZE_MAX:
                        self._rx_buf[self._rx_pos] = (value << 4) & 0xFF
                        self._byte_pos = _BytePos.LOW
                    else:
                        self._rx_state = _RxState.IDLE
                        self.timer_enabled = False
                else:
                    self._rx_buf[self._rx_pos] |= value
                    self._rx_pos += 1
                    self._byte_pos = _BytePos.HIGH
        elif state == _RxState.WAIT_EOF:
            if byte == self.lf_character:
                self.timer_enabled = False
                self._rx_state = _RxState.IDLE
                self._post(SlaveEvent.FRAME_RECEIVED)
                return True
            if byte == ASCII_START:
                self._reset_rx()
                self._rx_state = _RxState.RCV
                self.timer_enabled = True
            else:
                self._rx_state = _RxState.IDLE
        elif byte == ASCII_START:
            self.timer_enabled = True
            self._reset_rx()
            self._rx_state = _RxState.RCV
        return False

    def transmit_byte(self) -> int | None:
        """Return the next character to send, or None when nothing is sent."""
        if self._rx_state != _RxState.IDLE:
            raise ModbusError(ErrorCode.ILLSTATE, "reception in progress")
        state = self._tx_state
        if state == _TxState.START:
            self._tx_state = _TxState.DATA
            self._byte_pos = _BytePos.HIGH
            return ASCII_START
        if state == _TxState.DATA:
            if self._tx_pos < len(self._tx_frame):
                current = self._tx_frame[self._tx_pos]
                if self._byte_pos == _BytePos.HIGH:
                    self._byte_pos = _BytePos.LOW
                    return encode_nibble(current >> 4)
                self._tx_pos += 1
                self._byte_pos = _BytePos.HIGH
                return encode_nibble(current & 0x0F)
            self._tx_state = _TxState.END
            return ASCII_DEFAULT_CR
        if state == _TxState.END:
            self._tx_state = _TxState.NOTIFY
            return self.lf_character
        if state == _TxState.NOTIFY:
            self._tx_state = _TxState.IDLE
            self._post(SlaveEvent.FRAME_TRANSMIT)
        return None

    def timer_expired(self) -> bool:
        """Handle a character timeout: drop any partial frame."""
        if self._rx_state in (_RxState.RCV, _RxState.WAIT_EOF):
            self._rx_state = _RxState.IDLE
        self.timer_enabled = False
        return False