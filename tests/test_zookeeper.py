import socket
import socketserver
import struct
import threading

import pytest

from krpc.zookeeper import ZkClient, ZkError

_STAT = bytes(68)


def _recv_exact(sock, size):
    data = b""
    while len(data) < size:
        chunk = sock.recv(size - len(data))
        if not chunk:
            return None
        data += chunk
    return data


def _read_packet(sock):
    head = _recv_exact(sock, 4)
    if head is None:
        return None
    (size,) = struct.unpack(">i", head)
    return _recv_exact(sock, size)


def _send(sock, body):
    sock.sendall(struct.pack(">i", len(body)) + body)


def _buf(data):
    if data is None:
        return struct.pack(">i", -1)
    return struct.pack(">i", len(data)) + data


class _In:
    def __init__(self, data):
        self.data = data
        self.pos = 0

    def take(self, size):
        piece = self.data[self.pos:self.pos + size]
        self.pos += size
        return piece

    def int(self):
        return struct.unpack(">i", self.take(4))[0]

    def long(self):
        return struct.unpack(">q", self.take(8))[0]

    def bool(self):
        return self.take(1) != b"\x00"

    def buffer(self):
        size = self.int()
        return None if size < 0 else self.take(size)

    def string(self):
        return self.buffer().decode()


class _Handler(socketserver.BaseRequestHandler):
    def handle(self):
        server = self.server
        sock = self.request
        packet = _read_packet(sock)
        if packet is None:
            return
        r = _In(packet)
        r.int()
        r.long()
        timeout = r.int()
        r.long()
        r.buffer()
        with server.lock:
            session = server.next_session
            server.next_session += 1
        _send(sock, struct.pack(">iiq", 0, timeout, session) + _buf(bytes(16)) + b"\x00")
        try:
            while True:
                packet = _read_packet(sock)
                if packet is None:
                    return
                r = _In(packet)
                xid = r.int()
                op = r.int()
                with server.lock:
                    body, err = server.apply(session, op, r)
                _send(sock, struct.pack(">iqi", xid, 1, err) + body)
                if op == -11:
                    return
        finally:
            server.drop_session(session)


class _FakeZooKeeper(socketserver.ThreadingTCPServer):
    daemon_threads = True
    allow_reuse_address = True
    block_on_close = False

    def __init__(self):
        super().__init__(("127.0.0.1", 0), _Handler)
        self.lock = threading.RLock()
        self.nodes = {"/": b""}
        self.flags = {}
        self.acls = {}
        self.owners = {}
        self.next_session = 1

    def drop_session(self, session):
        with self.lock:
            for path in [p for p, owner in self.owners.items() if owner == session]:
                del self.owners[path]
                self.nodes.pop(path, None)

    def apply(self, session, op, r):
        if op == 11:
            return b"", 0
        if op == -11:
            self.drop_session(session)
            return b"", 0
        path = r.string()
        if op == 3:
            r.bool()
            return (_STAT, 0) if path in self.nodes else (b"", -101)
        if op == 4:
            r.bool()
            if path not in self.nodes:
                return b"", -101
            return _buf(self.nodes[path]) + _STAT, 0
        if op == 1:
            data = r.buffer()
            acl = [(r.int(), r.string(), r.string()) for _ in range(r.int())]
            flags = r.int()
            if path in self.nodes:
                return b"", -110
            parent = path.rsplit("/", 1)[0] or "/"
            if parent not in self.nodes:
                return b"", -101
            self.nodes[path] = data
            self.flags[path] = flags
            self.acls[path] = acl
            if flags & 1:
                self.owners[path] = session
            return _buf(path.encode()), 0
        return b"", -6


@pytest.fixture
def zk_server():
    server = _FakeZooKeeper()
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield server
    server.shutdown()
    server.server_close()


def _address(server):
    return f"127.0.0.1:{server.server_address[1]}"


def _dead_port():
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def test_exists_before_and_after_create(zk_server):
    with ZkClient(_address(zk_server)) as zk:
        assert zk.exists("/UserServiceRpc") is False
        assert zk.create("/UserServiceRpc") is True
        assert zk.exists("/UserServiceRpc") is True


def test_created_data_is_read_back(zk_server):
    with ZkClient(_address(zk_server)) as zk:
        zk.create("/UserServiceRpc")
        zk.create("/UserServiceRpc/Login", "127.0.0.1:8000", ephemeral=True)
        assert zk.get_data("/UserServiceRpc/Login") == "127.0.0.1:8000"


def test_create_existing_node_keeps_data(zk_server):
    with ZkClient(_address(zk_server)) as zk:
        assert zk.create("/svc", b"first") is True
        assert zk.create("/svc", b"second") is False
        assert zk.get_data("/svc") == "first"


def test_get_data_of_missing_node_is_empty(zk_server):
    with ZkClient(_address(zk_server)) as zk:
        assert zk.get_data("/missing") == ""


def test_get_data_without_data_is_empty(zk_server):
    with ZkClient(_address(zk_server)) as zk:
        zk.create("/empty")
        assert zk.get_data("/empty") == ""


def test_get_data_is_limited_to_buffer_size(zk_server):
    value = "x" * 100
    with ZkClient(_address(zk_server)) as zk:
        zk.create("/long", value)
        assert zk.get_data("/long") == value[:64]


def test_get_data_stops_at_nul(zk_server):
    with ZkClient(_address(zk_server)) as zk:
        zk.create("/nul", b"abc\x00def")
        assert zk.get_data("/nul") == "abc"


def test_create_sends_open_acl_and_flags(zk_server):
    with ZkClient(_address(zk_server)) as zk:
        zk.create("/persistent", "data")
        zk.create("/ephemeral", "data", ephemeral=True)
    assert zk_server.acls["/persistent"] == [(31, "world", "anyone")]
    assert zk_server.flags["/persistent"] == 0
    assert zk_server.flags["/ephemeral"] == 1


def test_ephemeral_node_disappears_with_session(zk_server):
    with ZkClient(_address(zk_server)) as zk:
        zk.create("/gone", "data", ephemeral=True)
        zk.create("/kept", "data")
    with ZkClient(_address(zk_server)) as zk:
        assert zk.exists("/gone") is False
        assert zk.exists("/kept") is True


def test_create_without_parent_raises(zk_server):
    with ZkClient(_address(zk_server)) as zk:
        with pytest.raises(ZkError) as info:
            zk.create("/no/parent", "data")
    assert info.value.code == -101


def test_start_with_unreachable_server_raises():
    with pytest.raises(ZkError):
        ZkClient(f"127.0.0.1:{_dead_port()}").start()


def test_start_with_invalid_connect_string_raises():
    with pytest.raises(ZkError):
        ZkClient("no-port-here").start()


def test_start_skips_unreachable_servers(zk_server):
    connect = f"127.0.0.1:{_dead_port()},{_address(zk_server)}"
    with ZkClient(connect) as zk:
        zk.create("/reached", "yes")
        assert zk.get_data("/reached") == "yes"


def test_operations_before_start():
    zk = ZkClient("127.0.0.1:1")
    with pytest.raises(ZkError):
        zk.exists("/x")
    assert zk.get_data("/x") == ""


def test_operations_after_close_fail(zk_server):
    zk = ZkClient(_address(zk_server))
    zk.start()
    zk.close()
    zk.close()
    with pytest.raises(ZkError):
        zk.create("/late")