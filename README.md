# mbkit

A pure-Python toolkit for the Modbus application protocol. It provides:

- the PDU handlers that a Modbus **slave** runs for coils, discrete inputs,
  holding registers, input registers and "report slave ID";
- the request builders and response handlers that a Modbus **master** uses
  for the same functions;
- Modbus **ASCII** framing: the LRC checksum, hex nibble coding, and a
  byte-by-byte slave framer state machine;
- a small **slave** protocol loop. It dispatches received frames to the
  registered handlers and sends back replies or exception responses.

The package has no runtime dependencies.

## Installation

```
pip install mbkit
```

To run the test suite:

```
pip install "mbkit[test]"
pytest
```

## Modules

| Module | Contents |
| --- | --- |
| `mbkit.protocol` | `FunctionCode`, `ExceptionCode`, `ErrorCode`, `Mode`, `RegisterMode`, `SlaveEvent`, `ModbusError`, `ModbusException`, `Request`, `RegisterBank`, `MasterRegisterBank`, `set_bits`, `get_bits`, `error_to_exception` |
| `mbkit.slave_bits` | `read_coils`, `write_coil`, `write_multiple_coils`, `read_discrete_inputs` |
| `mbkit.slave_registers` | `read_holding_registers`, `write_holding_register`, `write_multiple_holding_registers`, `read_write_multiple_holding_registers`, `read_input_registers`, `SlaveIdentity` |
| `mbkit.ascii` | `lrc`, `encode_nibble`, `decode_nibble`, `encode_frame`, `AsciiSlaveFramer` |
| `mbkit.slave` | `ModbusSlave` |
| `mbkit.master_bits` | request builders and response handlers for coils and discrete inputs |
| `mbkit.master_input` | request builder and response handler for input registers |
| `mbkit.master_holding` | request builders and response handlers for holding registers and report slave ID |

## Concepts

### Errors

Two exception types are used:

- `ModbusError(code)` carries an internal `ErrorCode`, such as `INVAL`, `NOREG`, `NORES`, `IO` or `ILLSTATE`.
- `ModbusException(code)` carries the `ExceptionCode` that goes into a Modbus error response.

`error_to_exception` maps one to the other:

| `ErrorCode` | `ExceptionCode` |
| --- | --- |
| `NOERR` | `NONE` |
| `NOREG` | `ILLEGAL_DATA_ADDRESS` |
| `TIMEDOUT` | `SLAVE_BUSY` |
| anything else | `SLAVE_DEVICE_FAILURE` |

### Register banks

`RegisterBank` holds the four data tables of a slave in memory:

```python
RegisterBank(coils=..., discrete_inputs=..., holding_registers=..., input_registers=..., start=1)
```

Its methods are:

- `coils(address, count, mode, values)`
- `discrete_inputs(address, count)`
- `holding_registers(address, count, mode, values)`
- `input_registers(address, count)`

`mode` is a `RegisterMode`. In `READ` mode the method returns a list of values. In `WRITE` mode it stores the values it is given.

The handlers pass one-based addresses: a request for wire address 0 reaches the bank as address 1.

The bank raises `ModbusError(ErrorCode.NOREG)` for an address range outside its tables. It raises `ModbusError(ErrorCode.INVAL)` when the number of values given for a write does not match the count.

You can subclass `RegisterBank` to connect the handlers to your own data.

`MasterRegisterBank(start=1, size=0x10000)` records on the master side what slaves returned or confirmed. It keeps four dictionaries keyed by address:

- `coil_values`
- `discrete_values`
- `holding_values`
- `input_values`

It also keeps `slave_id`, which holds the data of a report-slave-ID response.

### Slave handlers

Each slave handler takes a request PDU, function code first, and a bank. It returns the response PDU.

When the request is malformed, the handler raises `ModbusException`. When the bank raises `ModbusError`, the handler converts it with `error_to_exception` and raises `ModbusException` with the result.

`SlaveIdentity` stores the reply to "report slave ID":

- `set(slave_id, is_running, additional=b"")` stores the slave id, a run indicator (0xFF when running, 0x00 otherwise) and the additional bytes. It raises `ModbusError(ErrorCode.NORES)` if the data does not fit.
- `report(pdu)` returns the response.

### ASCII framing

`lrc(data)` computes the longitudinal redundancy check. A frame whose bytes, including the trailing LRC, sum to zero modulo 256 is valid.

`encode_nibble` and `decode_nibble` convert between values 0–15 and upper-case hex characters. `decode_nibble` returns 0xFF for a character that is not hex.

`encode_frame(address, pdu)` produces the full wire form: `:`, then upper-case hex, then CR LF.

`AsciiSlaveFramer` is the character-level receiver and transmitter of a slave:

- `receive_byte(byte)` feeds one received character. It returns `True` when a whole frame has arrived.
- `receive()` returns `(address, pdu)` for that frame. It raises `ModbusError(ErrorCode.IO)` when the frame is too short or its LRC is wrong.
- `send(address, pdu)` prepares a reply.
- `transmit_byte()` hands out the reply's characters one at a time, and returns `None` once the reply is finished.
- `timer_expired()` drops a partially received frame.
- `next_event()` hands out the queued `SlaveEvent`s.

### Slave loop

The loop is created with:

```python
ModbusSlave(framer, address, mode=Mode.ASCII, bank=None, identity=None, send_delay=0.0)
```

The framer ties the slave to a line. It must provide `start`, `stop`, `receive` and `send`; `close` and `next_event` are optional. An `AsciiSlaveFramer` fits.

The slave's handler table starts with the built-in handlers, all bound to its bank and identity. `register_handler(function_code, handler)` adds a handler, or removes one when `handler` is `None`.

Call `enable()`, then call `poll()` repeatedly. Each `poll()` handles one pending event and returns it. Events come from `post()` or from the framer.

Frames are executed when they are addressed to the slave, to the broadcast address 0, or to the TCP pseudo-address 255. A reply is sent for every request except a broadcast outside `Mode.TCP`. A handler that raises `ModbusException` produces an exception response: the function code with its top bit set, followed by the exception code. An unknown function code produces `ILLEGAL_FUNCTION`.

The slave can also be used as a context manager. It is enabled on entry, then disabled and closed on exit.

### Master requests

The `*_request` functions check the slave address against `max_slaves`, which defaults to 247. They return a `Request(slave_address, pdu)`.

When the slave answers, pass the request and the response PDU to the matching `handle_*` function. It checks the response against the request and stores the data in a `MasterRegisterBank`. It raises `ModbusException` when they do not match.

With `broadcast=True`:

- read handlers do nothing;
- write handlers take the values from the request itself.

## Example: answering a read-holding-registers request

```python
from mbkit.protocol import RegisterBank
from mbkit.slave_registers import read_holding_registers

bank = RegisterBank(holding_registers=[0x1234, 0xABCD])
request = bytes([0x03, 0x00, 0x00, 0x00, 0x02])
response = read_holding_registers(request, bank)
# response == bytes([0x03, 0x04, 0x12, 0x34, 0xAB, 0xCD])
```

## Example: an ASCII frame

```python
from mbkit.ascii import encode_frame

frame = encode_frame(0x01, bytes([0x03, 0x00, 0x00, 0x00, 0x01]))
# frame == b":010300000001FB\r\n"
```

## What the package does not do

- It opens no serial port or network socket. Bytes are moved between the framer and the line by your own code.
- There is a framer for ASCII only. `Mode.RTU` and `Mode.TCP` exist as values, but the package has no RTU or TCP framer.
- There is no master event loop, no transaction tracking and no response timeout. The master side consists of request builders and response handlers that your code calls.
- Register data is kept in memory only.