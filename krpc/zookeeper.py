"""ZooKeeper client: sessions, node existence checks, node creation and reads."""

from __future__ import annotations

import itertools
import socket
import struct
import threading
from types import TracebackType
from typing import List, Optional, Tuple, Type, Union

from . import log

ZOK = 0
ZNONODE = -101
ZNODEEXISTS = -110

SESSION_TIMEOUT_MS = 6000
MAX_DATA_LEN = 64

_OP_CREATE = 1
_OP_EXISTS = 3
_OP_GET_DATA = 4
_OP_PING = 11
_OP_CLOSE_SESSION = -11

_WATCH_XID = -1
_PING_XID = -2

_PERM_ALL = 31
_PERSISTENT = 0
_EPHEMERAL = 1

_PASSWORD_LEN = 16


class ZkError(Exception):
    """A ZooKeeper operation failed; ``code`` holds the server's error code if any."""

    def __init__(self, message: str, code: Optional[int] = None) -> None:
        super().__init__(message)
        self.code = code


def _int(value: int) -> bytes:
    return struct.pack(">i", value)


def _long(value: int) -> bytes:
    return struct.pack(">q", value)


def _bool(value: bool) -> bytes:
    return b"\x01" if value else b"\x00"


def _buffer(data: Optional[bytes]) -> bytes:
    return _int(-1) if data is None else _int(len(data)) + data


def _string(text: str) -> bytes:
    return _buffer(text.encode("utf-8"))


class _Reader:
    """Reads big-endian fields from one reply packet."""

    def __init__(self, data: bytes) -> None:
        self._data = data
        self._pos = 0

    def _take(self, size: int) -> bytes:
        end = self._pos + size
        if end > len(self._data):
            raise ZkError("truncated reply")
        piece = self._data[self._pos:end]
        self._pos = end
        return piece

    def int(self) -> int:
        return struct.unpack(">i", self._take(4))[0]

    def long(self) -> int:
        return struct.unpack(">q", self._take(8))[0]

    def buffer(self) -> Optional[bytes]:
        size = self.int()
        return None if size < 0 else self._take(size)


def _parse_servers(connect_string: str) -> List[Tuple[str, int]]:
    servers = []
    for item in connect_string.split(","):
        host, separator, port = item.strip().rpartition(":")
        if not separator or not host or not port.isdigit():
            raise ZkError(f"invalid connect string {connect_string!r}")
        servers.append((host, int(port)))
    return servers


def _recv_exact(sock: socket.socket, size: int) -> bytes:
    chunks = bytearray()
    while len(chunks) < size:
        chunk = sock.recv(size - len(chunks))
        if not chunk:
            raise ConnectionError("connection closed by server")
        chunks += chunk
    return bytes(chunks)


def _send_packet(sock: socket.socket, body: bytes) -> None:
    sock.sendall(_int(len(body)) + body)


def _recv_packet(sock: socket.socket) -> bytes:
    (size,) = struct.unpack(">i", _recv_exact(sock, 4))
    if size < 0:
        raise ZkError("invalid packet length")
    return _recv_exact(sock, size)


class ZkClient:
    """A session with a ZooKeeper ensemble given as ``host:port[,host:port...]``."""

    def __init__(self, connect_string: str) -> None:
        self.connect_string = connect_string
        self._sock: Optional[socket.socket] = None
        self._lock = threading.Lock()
        self._xids = itertools.count(1)
        self._stopping = threading.Event()
        self._pinger: Optional[threading.Thread] = None
        self.session_id = 0
        self.session_timeout_ms = SESSION_TIMEOUT_MS

    def start(self) -> None:
        """Connect to the first reachable server and open a session."""
        if self._sock is not None:
            return
        try:
            servers = _parse_servers(self.connect_string)
        except ZkError:
            log.error("zookeeper_init error")
            raise
        last_error: Optional[BaseException] = None
        for host, port in servers:
            try:
                sock = socket.create_connection((host, port), timeout=SESSION_TIMEOUT_MS / 1000)
            except OSError as exc:
                last_error = exc
                continue
            try:
                self._handshake(sock)
            except (OSError, ZkError) as exc:
                sock.close()
                last_error = exc
                continue
            self._sock = sock
            break
        else:
            log.error("zookeeper_init error")
            raise ZkError("zookeeper_init error") from last_error

        self._stopping = threading.Event()
        interval = self.session_timeout_ms / 3000
        self._pinger = threading.Thread(
            target=self._keep_alive, args=(interval,), name="zk-ping", daemon=True
        )
        self._pinger.start()
        log.info("zookeeper_init success")

    def _handshake(self, sock: socket.socket) -> None:
        request = (
            _int(0)
            + _long(0)
            + _int(SESSION_TIMEOUT_MS)
            + _long(0)
            + _buffer(bytes(_PASSWORD_LEN))
            + _bool(False)
        )
        _send_packet(sock, request)
        reply = _Reader(_recv_packet(sock))
        reply.int()
        timeout_ms = reply.int()
        session_id = reply.long()
        reply.buffer()
        if timeout_ms <= 0:
            raise ZkError("session expired")
        self.session_id = session_id
        self.session_timeout_ms = timeout_ms
        sock.settimeout(timeout_ms / 1000)

    def _request(self, op: int, body: bytes, xid: Optional[int] = None) -> Tuple[int, _Reader]:
        with self._lock:
            sock = self._sock
            if sock is None:
                raise ZkError("not connected")
            if xid is None:
                xid = next(self._xids)
            try:
                _send_packet(sock, _int(xid) + _int(op) + body)
                while True:
                    reply = _Reader(_recv_packet(sock))
                    reply_xid = reply.int()
                    reply.long()
                    err = reply.int()
                    if reply_xid == xid:
                        return err, reply
                    if reply_xid in (_WATCH_XID, _PING_XID):
                        continue
                    raise ZkError(f"unexpected reply xid {reply_xid}")
            except OSError as exc:
                raise ZkError("connection lost") from exc

    def _keep_alive(self, interval: float) -> None:
        while not self._stopping.wait(interval):
            try:
                self._request(_OP_PING, b"", xid=_PING_XID)
            except ZkError as exc:
                log.warning(f"zookeeper ping failed: {exc}")
                return

    def exists(self, path: str) -> bool:
        """Return whether the node at ``path`` exists."""
        err, _ = self._request(_OP_EXISTS, _string(path) + _bool(False))
        if err == ZOK:
            return True
        if err == ZNONODE:
            return False
        raise ZkError(f"zoo_exists error... path:{path}", err)

    def create(
        self,
        path: str,
        data: Union[bytes, str, None] = None,
        ephemeral: bool = False,
    ) -> bool:
        """Create the node at ``path`` unless it exists; return whether it was created."""
        if self.exists(path):
            return False
        payload = data.encode("utf-8") if isinstance(data, str) else data
        if payload is not None:
            payload = bytes(payload)
        body = (
            _string(path)
            + _buffer(payload)
            + _int(1)
            + _int(_PERM_ALL)
            + _string("world")
            + _string("anyone")
            + _int(_EPHEMERAL if ephemeral else _PERSISTENT)
        )
        err, _ = self._request(_OP_CREATE, body)
        if err != ZOK:
            log.error(f"znode create failed... path:{path}")
            raise ZkError(f"znode create failed... path:{path}", err)
        log.info(f"znode create success... path:{path}")
        return True

    def get_data(self, path: str) -> str:
        """Return at most 64 bytes of the node's data, or an empty string on failure."""
        try:
            err, reply = self._request(_OP_GET_DATA, _string(path) + _bool(False))
            data = reply.buffer() if err == ZOK else None
        except ZkError:
            err, data = -1, None
        if err != ZOK:
            log.error("zoo_get error")
            return ""
        if data is None:
            return ""
        text = data[:MAX_DATA_LEN].split(b"\x00", 1)[0]
        return text.decode("utf-8", errors="replace")

    def close(self) -> None:
        """End the session and close the connection."""
        self._stopping.set()
        pinger = self._pinger
        if pinger is not None and pinger is not threading.current_thread():
            pinger.join()
        self._pinger = None
        if self._sock is None:
            return
        try:
            self._request(_OP_CLOSE_SESSION, b"")
        except ZkError:
            pass
        with self._lock:
            sock, self._sock = self._sock, None
        if sock is not None:
            sock.close()

    def __enter__(self) -> "ZkClient":
        self.start()
        return self

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        self.close()