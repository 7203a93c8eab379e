"""Modbus protocol toolkit: slave and master function handlers, ASCII framing and a slave loop."""

__version__ = "0.1.0"

__all__ = [
    "protocol",
    "slave_bits",
    "slave_registers",
    "ascii",
    "slave",
    "master_input",
    "master_bits",
    "master_holding",
]