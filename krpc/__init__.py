"""Building blocks for an RPC framework: configuration, call state, request framing and a ZooKeeper client."""

__version__ = "0.1.0"