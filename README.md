# krpc

krpc holds the building blocks of an RPC framework that uses ZooKeeper for
service discovery. It reads configuration files, tracks the state of a call,
encodes and decodes request frames, and talks to a ZooKeeper ensemble. It has
no dependencies outside the standard library.

## Installation

```
pip install .
```

To run the test suite, install the `test` extra and run `pytest`:

```
pip install ".[test]"
pytest
```

## Configuration (`krpc.config`, `krpc.application`)

A configuration file is made of plain `key = value` lines:

```
# address the RPC server listens on
rpcserverip = 127.0.0.1
rpcserverport = 8000

# ZooKeeper used for service discovery
zookeeperip = 127.0.0.1
zookeeperport = 2181
```

Blank lines, lines that start with `#` and lines without `=` are ignored. Only
spaces are trimmed around keys and values. If a key appears more than once,
the first value wins.

`Config().load_file(path)` reads such a file and raises `OSError` if it cannot
be opened. `Config.load(key)` returns the value, or an empty string if the key
is not set.

`krpc.application` keeps one shared configuration per process:

- `init(argv)` parses `-i <config file>` from the arguments (without the
  program name, `sys.argv[1:]` by default), loads that file into the shared
  configuration and returns it. It raises `UsageError` if no file is named or
  an unknown option is given.
- `get_config()` returns the shared `Config`.
- `Application.get_instance()` returns the shared instance, and `reset()`
  drops it so the next use starts with an empty configuration.

## Call state (`krpc.controller`)

`Controller` records whether a call failed and why: `set_failed(reason)`,
`failed()`, `error_text()` and `reset()`. It also supports cancellation:
`start_cancel()` marks the call as cancelled and runs each callback given to
`notify_on_cancel(callback)` once. A callback registered after cancellation
runs at once. `is_canceled()` reports the state.

## Request framing (`krpc.wire`)

A request frame is a varint header length, a serialized `RpcHeader`, and then
the argument bytes.

- `RpcHeader(service_name, method_name, args_size)` has `encode()` and
  `RpcHeader.decode(data)`. The encoding is protocol-buffer compatible:
  fields 1 and 2 are strings and field 3 is a varint. Unknown fields are
  skipped when decoding.
- `encode_request(header, args)` builds a frame. It sets `args_size` from
  `args`.
- `decode_request(data)` returns `(header, args)`.
- `encode_varint(value)` and `decode_varint(data, pos)` handle base-128
  varints.

Malformed input raises `FrameError`, which is a subclass of `ValueError`.

## ZooKeeper client (`krpc.zookeeper`)

`ZkClient("host:port[,host:port...]")` speaks the ZooKeeper wire protocol
directly. `start()` opens a session on the first reachable server and keeps it
alive with background pings. `close()` ends the session. The client also works
as a context manager, which calls both.

- `exists(path)` returns whether a node exists.
- `create(path, data=None, ephemeral=False)` creates a node with an open ACL.
  It returns `False` if the node already exists and `True` once it is created.
- `get_data(path)` returns at most 64 bytes of the node's data as text. It
  returns an empty string if the read fails.

Connection and server errors raise `ZkError`. When the server returned an
error code, it is stored in `ZkError.code`.

## Logging (`krpc.log`)

`info`, `warning`, `error` and `fatal` log to the `krpc` logger. `fatal` also
raises `FatalError`. Inside `with RpcLogger(name):` these messages go to
standard error, coloured when it is a terminal. The handler is removed when
the block exits.

## What the package does not do

The package does not contain a service registry or server that accepts TCP
connections and dispatches requests, a client channel that looks up a method
in ZooKeeper and sends a request, or an example service. It also installs no
command-line programs. Those parts have to be built on top of the modules
above.