import queue
import socket
import threading

import pytest

from custom_components.lutron_caseta_pro.lib.connection import (
    BridgeConnection,
    BridgeConnectionConfig,
    ConnectionState,
    LoginRejectedError,
    LoginTimeoutError,
    ReconnectPolicy,
)
from custom_components.lutron_caseta_pro.lib.message_parser import MonitorMessage


class FakeSocket:
    def __init__(self) -> None:
        self.sent = bytearray()
        self.closed = False

    def send(self, data) -> int:
        self.sent.extend(data)
        return len(data)

    def shutdown(self, *_args) -> None:
        pass

    def close(self) -> None:
        self.closed = True


def _connected(**kwargs) -> tuple[BridgeConnection, FakeSocket]:
    config = BridgeConnectionConfig("127.0.0.1", username="user", password="secret")
    conn = BridgeConnection(config, **kwargs)
    sock = FakeSocket()
    conn.sock = sock  # type: ignore[assignment]
    conn._handle_connected()
    return conn, sock


def _log_in(conn: BridgeConnection) -> None:
    conn._handle_data(b"login: ")
    conn._handle_data(b"password: ")


def test_reconnect_policy_backoff() -> None:
    policy = ReconnectPolicy(initial_delay=1.0, max_delay=5.0, multiplier=2.0, max_attempts=4)

    assert [policy.delay_for(n) for n in range(1, 6)] == [1.0, 2.0, 4.0, 5.0, None]
    with pytest.raises(ValueError):
        policy.delay_for(0)


def test_login_sequence_then_queued_commands() -> None:
    conn, sock = _connected()
    events = []
    conn.on_logged_in(lambda: events.append(bytes(sock.sent)))
    conn.send_command("#OUTPUT,5,1,100")
    conn.send_command("?DEVICE,2,4")

    assert conn.state is ConnectionState.AWAITING_LOGIN_PROMPT

    conn._handle_data(b"login: ")
    assert sock.sent == b"user\r\n"
    assert conn.state is ConnectionState.AWAITING_PASSWORD_PROMPT

    conn._handle_data(b"password: ")
    assert conn.logged_in
    assert events == [b"user\r\nsecret\r\n"]
    assert sock.sent == b"user\r\nsecret\r\n#OUTPUT,5,1,100\r\n?DEVICE,2,4\r\n"


def test_prompt_split_across_chunks() -> None:
    conn, sock = _connected()

    conn._handle_data(b"log")
    assert sock.sent == b""
    conn._handle_data(b"in: ")

    assert sock.sent == b"user\r\n"


def test_repeated_prompt_is_answered_once() -> None:
    conn, sock = _connected()
    _log_in(conn)
    conn._handle_data(b"password: ")

    assert sock.sent == b"user\r\nsecret\r\n"


def test_monitor_messages_only_after_login() -> None:
    conn, _ = _connected()
    received = []
    conn.on_monitor_message(received.append)

    conn._handle_data(b"~DEVICE,2,4,3\r\n")
    assert received == []

    _log_in(conn)
    conn._handle_data(b"GNET> ~DEVICE,2,4,")
    conn._handle_data(b"3\r\n~DEVICE,2,4,4\r\n")

    assert received == [MonitorMessage("2", "4", "3"), MonitorMessage("2", "4", "4")]


def test_non_monitor_lines_are_not_emitted() -> None:
    conn, _ = _connected()
    _log_in(conn)
    received = []
    conn.on_monitor_message(received.append)

    conn._handle_data(b"GNET> \r\n#OUTPUT,5,1,100\r\n~OUTPUT,5,1,100.00\r\n~DEVICE,x\r\n")

    assert received == []


def test_failing_listener_does_not_block_others() -> None:
    conn, _ = _connected()
    _log_in(conn)
    received = []

    def boom(_msg) -> None:
        raise RuntimeError("listener failure")

    conn.on_monitor_message(boom)
    conn.on_monitor_message(received.append)
    conn._handle_data(b"~DEVICE,3,2,3\r\n")

    assert received == [MonitorMessage("3", "2", "3")]


def test_transport_lost_without_policy_closes() -> None:
    conn, sock = _connected()
    _log_in(conn)
    closes = []
    states = []
    conn.on_close(closes.append)
    conn.on_state(states.append)

    conn._on_transport_lost(None)

    assert sock.closed
    assert conn.sock is None
    assert conn.state is ConnectionState.CLOSED
    assert closes == [None]
    assert states == [ConnectionState.LOGGED_IN, ConnectionState.CLOSED]


def test_transport_lost_with_policy_backs_off_then_gives_up() -> None:
    policy = ReconnectPolicy(initial_delay=1.0, multiplier=2.0, max_attempts=2)
    conn, _ = _connected(reconnect_policy=policy)
    errors = []
    conn.on_error(errors.append)

    err = ConnectionResetError("reset by peer")
    conn._on_transport_lost(err)
    assert conn.state is ConnectionState.RECONNECTING
    assert conn._retry_delay == 1.0
    assert errors == [err]

    conn._on_transport_lost(OSError("refused"))
    assert conn.state is ConnectionState.RECONNECTING
    assert conn._retry_delay == 2.0

    conn._on_transport_lost(OSError("refused"))
    assert conn.state is ConnectionState.CLOSED
    assert conn._retry_delay is None


def test_successful_login_resets_backoff() -> None:
    policy = ReconnectPolicy(initial_delay=1.0, multiplier=2.0)
    conn, _ = _connected(reconnect_policy=policy)
    conn._on_transport_lost(OSError("refused"))
    conn._on_transport_lost(OSError("refused"))

    sock = FakeSocket()
    conn.sock = sock  # type: ignore[assignment]
    conn._handle_connected()
    _log_in(conn)
    conn._on_transport_lost(None)

    assert conn._retry_delay == 1.0


def test_login_prompt_after_login_is_a_rejection() -> None:
    conn, sock = _connected()
    _log_in(conn)
    closes = []
    conn.on_close(closes.append)

    conn._handle_data(b"\r\nlogin: ")

    assert sock.closed
    assert conn.state is ConnectionState.CLOSED
    assert len(closes) == 1
    assert isinstance(closes[0], LoginRejectedError)


def test_login_timeout() -> None:
    conn, sock = _connected(login_timeout=0.0)
    errors = []
    conn.on_error(errors.append)

    conn._check_login_timeout()

    assert sock.closed
    assert conn.state is ConnectionState.CLOSED
    assert len(errors) == 1
    assert isinstance(errors[0], LoginTimeoutError)


def test_no_login_timeout_once_logged_in() -> None:
    conn, sock = _connected(login_timeout=0.0)
    _log_in(conn)

    conn._check_login_timeout()

    assert conn.logged_in
    assert not sock.closed


def test_commands_wait_for_next_login() -> None:
    policy = ReconnectPolicy()
    conn, _ = _connected(reconnect_policy=policy)
    _log_in(conn)
    conn._on_transport_lost(None)

    conn.send_command("#OUTPUT,5,1,0")
    sock = FakeSocket()
    conn.sock = sock  # type: ignore[assignment]
    conn._handle_connected()
    conn._flush_outbox()
    assert sock.sent == b""

    _log_in(conn)
    assert sock.sent.endswith(b"#OUTPUT,5,1,0\r\n")


class ThrottledSocket(FakeSocket):
    """Accepts ``budget`` more bytes, then reports a full send buffer."""

    def __init__(self, budget: int) -> None:
        super().__init__()
        self.budget = budget

    def send(self, data) -> int:
        if self.budget <= 0:
            raise BlockingIOError
        chunk = bytes(data[: self.budget])
        self.budget -= len(chunk)
        self.sent.extend(chunk)
        return len(chunk)


class BrokenPipeSocket(FakeSocket):
    def __init__(self) -> None:
        super().__init__()
        self.broken = False

    def send(self, data) -> int:
        if self.broken:
            raise BrokenPipeError("peer went away")
        return super().send(data)


def test_unsent_commands_survive_a_disconnect() -> None:
    policy = ReconnectPolicy()
    login = len(b"user\r\nsecret\r\n")
    sock = ThrottledSocket(login + 5)
    conn = BridgeConnection(
        BridgeConnectionConfig("127.0.0.1", username="user", password="secret"),
        reconnect_policy=policy,
    )
    conn.sock = sock  # type: ignore[assignment]
    conn._handle_connected()
    conn.send_command("#OUTPUT,5,1,100")
    conn.send_command("?DEVICE,2,4")

    _log_in(conn)
    assert sock.sent == b"user\r\nsecret\r\n#OUTP"

    conn._on_transport_lost(None)
    assert list(conn._outbox) == ["#OUTPUT,5,1,100", "?DEVICE,2,4"]

    fresh = FakeSocket()
    conn.sock = fresh  # type: ignore[assignment]
    conn._handle_connected()
    _log_in(conn)

    assert fresh.sent == b"user\r\nsecret\r\n#OUTPUT,5,1,100\r\n?DEVICE,2,4\r\n"


def test_fully_sent_commands_are_not_repeated() -> None:
    conn, sock = _connected(reconnect_policy=ReconnectPolicy())
    _log_in(conn)
    conn.send_command("#OUTPUT,5,1,0")
    conn._flush_outbox()

    conn._on_transport_lost(None)

    assert sock.sent.endswith(b"#OUTPUT,5,1,0\r\n")
    assert not conn._outbox


def test_send_failure_drops_the_link_and_keeps_the_command() -> None:
    policy = ReconnectPolicy()
    conn = BridgeConnection(
        BridgeConnectionConfig("127.0.0.1", username="user", password="secret"),
        reconnect_policy=policy,
    )
    sock = BrokenPipeSocket()
    conn.sock = sock  # type: ignore[assignment]
    conn._handle_connected()
    _log_in(conn)
    errors = []
    conn.on_error(errors.append)

    sock.broken = True
    conn.send_command("#OUTPUT,5,1,0")
    conn._poll_once()

    assert conn.state is ConnectionState.RECONNECTING
    assert isinstance(errors[0], BrokenPipeError)
    assert list(conn._outbox) == ["#OUTPUT,5,1,0"]


def test_destroy_is_quiet() -> None:
    conn, sock = _connected()
    _log_in(conn)
    received = []
    closes = []
    conn.on_monitor_message(received.append)
    conn.on_close(closes.append)
    conn.send_command("#OUTPUT,5,1,0")

    conn.destroy()
    conn._handle_data(b"~DEVICE,2,4,3\r\n")
    conn._on_transport_lost(OSError("late"))

    assert sock.closed
    assert conn.destroyed
    assert conn.state is ConnectionState.CLOSED
    assert received == []
    assert closes == []
    assert not conn._outbox


def test_on_state_reports_current_state() -> None:
    conn = BridgeConnection(BridgeConnectionConfig("127.0.0.1"))
    states = []

    conn.on_state(states.append)

    assert states == [ConnectionState.DISCONNECTED]


def test_live_bridge_session() -> None:
    server = socket.create_server(("127.0.0.1", 0))
    server.settimeout(5.0)
    port = server.getsockname()[1]
    received_by_bridge: "queue.Queue[str]" = queue.Queue()
    done = threading.Event()

    def bridge() -> None:
        client, _ = server.accept()
        client.settimeout(5.0)
        reader = client.makefile("rb")
        try:
            client.sendall(b"login: ")
            received_by_bridge.put(reader.readline().decode())
            client.sendall(b"password: ")
            received_by_bridge.put(reader.readline().decode())
            client.sendall(b"\r\nGNET> \r\n~DEVICE,2,4,3\r\n")
            received_by_bridge.put(reader.readline().decode())
            done.wait(5.0)
        finally:
            reader.close()
            client.close()

    thread = threading.Thread(target=bridge, daemon=True)
    thread.start()

    messages: "queue.Queue[MonitorMessage]" = queue.Queue()
    conn = BridgeConnection(BridgeConnectionConfig("127.0.0.1", port=port), poll_interval=0.05)
    conn.on_monitor_message(messages.put)
    conn.on_logged_in(lambda: conn.send_command("?DEVICE,2,4"))
    conn.start()
    try:
        assert received_by_bridge.get(timeout=5.0) == "lutron\r\n"
        assert received_by_bridge.get(timeout=5.0) == "integration\r\n"
        assert messages.get(timeout=5.0) == MonitorMessage("2", "4", "3")
        assert received_by_bridge.get(timeout=5.0) == "?DEVICE,2,4\r\n"
    finally:
        done.set()
        conn.destroy()
        server.close()
        thread.join(5.0)

    assert conn.state is ConnectionState.CLOSED
