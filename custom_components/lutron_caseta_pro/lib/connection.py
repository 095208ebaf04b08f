from __future__ import annotations

import logging
import select
import socket
import threading
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Deque, List, Optional

from .line_framer import LineFramer
from .message_parser import MessageKind, MonitorMessage, is_prompt, parse_line
from .protocol_const import (
    DEFAULT_PASSWORD,
    DEFAULT_PORT,
    DEFAULT_USERNAME,
    LINE_TERMINATOR,
)

log = logging.getLogger("lutronpro.connection")


class BridgeConnectionError(Exception):
    """Base class for transport level failures."""


class LoginTimeoutError(BridgeConnectionError):
    pass


class LoginRejectedError(BridgeConnectionError):
    pass


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AWAITING_LOGIN_PROMPT = "awaiting_login_prompt"
    AWAITING_PASSWORD_PROMPT = "awaiting_password_prompt"
    LOGGED_IN = "logged_in"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"


@dataclass(frozen=True)
class BridgeConnectionConfig:
    host: str
    port: int = DEFAULT_PORT
    username: str = DEFAULT_USERNAME
    password: str = DEFAULT_PASSWORD
    debug: bool = False


@dataclass(frozen=True)
class ReconnectPolicy:
    """Bounded exponential backoff between connection attempts."""

    initial_delay: float = 1.0
    max_delay: float = 60.0
    multiplier: float = 2.0
    max_attempts: Optional[int] = None

    def delay_for(self, attempt: int) -> Optional[float]:
        """Delay before ``attempt`` (1-based), or ``None`` once exhausted."""
        if attempt < 1:
            raise ValueError("attempt numbers start at 1")
        if self.max_attempts is not None and attempt > self.max_attempts:
            return None
        return min(self.initial_delay * self.multiplier ** (attempt - 1), self.max_delay)


def _enable_keepalive(
    sock: socket.socket, *, idle: int = 30, interval: int = 10, count: int = 3
) -> None:
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1)
    except OSError:
        return
    for name, value in (
        ("TCP_KEEPIDLE", idle),
        ("TCP_KEEPINTVL", interval),
        ("TCP_KEEPCNT", count),
        ("TCP_KEEPALIVE", idle),  # macOS
    ):
        opt = getattr(socket, name, None)
        if opt is None:
            continue
        try:
            sock.setsockopt(socket.IPPROTO_TCP, opt, value)
        except OSError:
            pass


def _flush_buffer(sock: Any, buf: bytearray) -> None:
    """Write as much of ``buf`` as the socket accepts right now.

    Hard socket errors propagate; the unsent tail stays in ``buf``.
    """

    while buf:
        try:
            sent = sock.send(buf)
        except (BlockingIOError, InterruptedError):
            break

        if not sent:
            break

        if log.isEnabledFor(logging.DEBUG):
            log.debug("[TCP→BRIDGE] sent %dB", sent)
        del buf[:sent]


class BridgeConnection:
    """Own the bridge socket, log in and turn inbound lines into events.

    All socket work and every listener call happens on a single worker
    thread, one notification at a time. ``send_command`` is the only method
    meant to be called from other threads; it just queues the command.
    """

    def __init__(
        self,
        config: BridgeConnectionConfig,
        *,
        reconnect_policy: Optional[ReconnectPolicy] = None,
        login_timeout: Optional[float] = 30.0,
        connect_timeout: float = 5.0,
        poll_interval: float = 0.2,
    ) -> None:
        self.config = config
        self.reconnect_policy = reconnect_policy
        self.login_timeout = login_timeout
        self.connect_timeout = float(connect_timeout)
        self.poll_interval = float(poll_interval)

        self.state = ConnectionState.DISCONNECTED
        self.sock: Optional[socket.socket] = None
        self._sock_lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

        self._framer = LineFramer()
        self._to_bridge = bytearray()
        # (command or None for login lines, bytes of it still in _to_bridge)
        self._in_flight: Deque[List[Any]] = deque()
        self._write_error: Optional[OSError] = None
        self._outbox: Deque[str] = deque()
        self._outbox_lock = threading.Lock()

        self._attempt = 0
        self._retry_delay: Optional[float] = None
        self._login_deadline: Optional[float] = None

        # listeners
        self._logged_in_cbs: list[Callable[[], None]] = []
        self._monitor_cbs: list[Callable[[MonitorMessage], None]] = []
        self._close_cbs: list[Callable[[Optional[BaseException]], None]] = []
        self._error_cbs: list[Callable[[BaseException], None]] = []
        self._state_cbs: list[Callable[[ConnectionState], None]] = []

    # ------------------------------------------------------------------
    # Listener registration
    # ------------------------------------------------------------------
    def on_logged_in(self, cb: Callable[[], None]) -> None:
        self._logged_in_cbs.append(cb)

    def on_monitor_message(self, cb: Callable[[MonitorMessage], None]) -> None:
        self._monitor_cbs.append(cb)

    def on_close(self, cb: Callable[[Optional[BaseException]], None]) -> None:
        self._close_cbs.append(cb)

    def on_error(self, cb: Callable[[BaseException], None]) -> None:
        self._error_cbs.append(cb)

    def on_state(self, cb: Callable[[ConnectionState], None]) -> None:
        """cb(state) is called right away and on every transition."""
        self._state_cbs.append(cb)
        cb(self.state)

    # ------------------------------------------------------------------
    # External control
    # ------------------------------------------------------------------
    @property
    def logged_in(self) -> bool:
        return self.state is ConnectionState.LOGGED_IN

    @property
    def destroyed(self) -> bool:
        return self._stop.is_set()

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run, name="lutronpro-bridge", daemon=True
        )
        self._thread.start()

    def destroy(self, timeout: float = 5.0) -> None:
        """Close the socket and stop delivering events.

        Once this returns no listener is invoked again, unless the worker
        failed to exit within ``timeout`` (which is logged).
        """
        self._stop.set()
        self._close_socket()

        thr = self._thread
        if thr is not None and thr is not threading.current_thread():
            thr.join(timeout)
            if thr.is_alive():
                log.warning("[STOP] bridge worker did not exit within %.1fs", timeout)

        self.state = ConnectionState.CLOSED
        with self._outbox_lock:
            self._outbox.clear()
        log.info("[STOP] bridge connection to %s:%d destroyed", self.config.host, self.config.port)

    def send_command(self, command: str) -> None:
        """Queue a pre-formatted command; it goes out once logged in."""
        with self._outbox_lock:
            self._outbox.append(command)
        if self.config.debug:
            log.debug("[CMD] queued %r (logged_in=%s)", command, self.logged_in)

    # ------------------------------------------------------------------
    # Worker loop
    # ------------------------------------------------------------------
    def _run(self) -> None:
        try:
            while not self._stop.is_set():
                if self.sock is None:
                    if self.state is ConnectionState.CLOSED:
                        break
                    if self.state is ConnectionState.RECONNECTING:
                        if self._stop.wait(self._retry_delay or 0.0):
                            break
                    self._connect_once()
                    continue
                self._poll_once()
        finally:
            self._close_socket()

    def _connect_once(self) -> bool:
        host, port = self.config.host, self.config.port
        self._set_state(ConnectionState.CONNECTING)
        log.info("[TCP] connecting -> BRIDGE %s:%d", host, port)
        try:
            sock = socket.create_connection((host, port), timeout=self.connect_timeout)
        except OSError as err:
            self._on_transport_lost(err)
            return False

        if self._stop.is_set():
            sock.close()
            return False

        sock.settimeout(0.0)
        try:
            sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        except OSError:
            pass
        _enable_keepalive(sock)
        with self._sock_lock:
            self.sock = sock
        self._handle_connected()
        return True

    def _poll_once(self) -> None:
        sock = self.sock
        if sock is None:
            return

        self._flush_outbox()
        if self._raise_write_error():
            return
        wlist = [sock] if self._to_bridge else []
        try:
            r, w, _ = select.select([sock], wlist, [], self.poll_interval)
        except (OSError, ValueError) as err:
            if not self._stop.is_set():
                self._on_transport_lost(err)
            return

        if w and self._to_bridge:
            self._flush_to_bridge()
            if self._raise_write_error():
                return

        if r:
            try:
                data = sock.recv(4096)
            except (BlockingIOError, InterruptedError):
                return
            except OSError as err:
                if not self._stop.is_set():
                    self._on_transport_lost(err)
                return
            if not data:
                self._on_transport_lost(None)
                return
            self._handle_data(data)
            if self._raise_write_error():
                return

        self._check_login_timeout()

    # ------------------------------------------------------------------
    # Notification handlers (worker thread)
    # ------------------------------------------------------------------
    def _handle_connected(self) -> None:
        self._framer.reset()
        self._to_bridge.clear()
        self._in_flight.clear()
        self._write_error = None
        if self.login_timeout is not None:
            self._login_deadline = time.monotonic() + self.login_timeout
        log.info("[TCP] connected -> BRIDGE %s:%d", self.config.host, self.config.port)
        self._set_state(ConnectionState.AWAITING_LOGIN_PROMPT)

    def _handle_data(self, data: bytes) -> None:
        if self.config.debug:
            log.debug("[BRIDGE→] %r", data)

        for line in self._framer.feed(data):
            self._handle_line(line)
            if self._stop.is_set() or self.sock is None or self._write_error is not None:
                return

        # prompts arrive without a line terminator
        if is_prompt(self._framer.pending):
            self._handle_line(self._framer.take_pending())

    def _handle_line(self, line: str) -> None:
        msg = parse_line(line)
        kind = msg.kind

        if kind is MessageKind.LOGIN_PROMPT:
            if self.state is ConnectionState.LOGGED_IN:
                log.error("[LOGIN] bridge asked for a login again; credentials rejected")
                self._on_transport_lost(LoginRejectedError("bridge rejected the configured credentials"))
                return
            if self.state is ConnectionState.AWAITING_LOGIN_PROMPT:
                self._write_line(self.config.username)
                self._set_state(ConnectionState.AWAITING_PASSWORD_PROMPT)
            return

        if kind is MessageKind.PASSWORD_PROMPT:
            if self.state is ConnectionState.AWAITING_PASSWORD_PROMPT:
                self._write_line(self.config.password, secret=True)
                self._login_deadline = None
                self._attempt = 0
                self._set_state(ConnectionState.LOGGED_IN)
                log.info("[LOGIN] logged in to bridge %s:%d", self.config.host, self.config.port)
                self._emit(self._logged_in_cbs, "logged_in")
                self._flush_outbox()
            return

        if kind is MessageKind.MONITOR and msg.monitor is not None:
            if self.state is not ConnectionState.LOGGED_IN:
                log.debug("[BRIDGE] ignoring %r before login", line)
                return
            if self.config.debug:
                log.debug("[MONITOR] %s", msg.monitor)
            self._emit(self._monitor_cbs, "monitor_message", msg.monitor)
            return

        if self.config.debug:
            log.debug("[BRIDGE] %s line: %r", kind.value, line)

    def _on_transport_lost(self, err: Optional[BaseException]) -> None:
        if self._stop.is_set():
            self._close_socket()
            return

        was_logged_in = self.state is ConnectionState.LOGGED_IN
        self._close_socket()
        self._framer.reset()
        self._to_bridge.clear()
        self._login_deadline = None
        self._write_error = None
        self._requeue_in_flight()

        if err is None:
            log.warning("[TCP] bridge %s:%d closed the connection", self.config.host, self.config.port)
        else:
            log.warning(
                "[TCP] lost connection to bridge %s:%d (logged_in=%s): %s",
                self.config.host,
                self.config.port,
                was_logged_in,
                err,
            )
            self._emit(self._error_cbs, "error", err)

        self._attempt += 1
        delay = None
        if self.reconnect_policy is not None:
            delay = self.reconnect_policy.delay_for(self._attempt)
            if delay is None:
                log.error(
                    "[TCP] giving up on bridge %s:%d after %d attempts",
                    self.config.host,
                    self.config.port,
                    self._attempt - 1,
                )

        if delay is None:
            self._retry_delay = None
            self._set_state(ConnectionState.CLOSED)
        else:
            log.info("[TCP] reconnecting in %.1fs (attempt %d)", delay, self._attempt)
            self._retry_delay = delay
            self._set_state(ConnectionState.RECONNECTING)

        self._emit(self._close_cbs, "close", err)

    def _check_login_timeout(self) -> None:
        if self._login_deadline is None or self.state is ConnectionState.LOGGED_IN:
            return
        if time.monotonic() >= self._login_deadline:
            log.error("[LOGIN] no login handshake within %.1fs", self.login_timeout or 0.0)
            self._on_transport_lost(LoginTimeoutError("login handshake timed out"))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _write_line(
        self, text: str, *, secret: bool = False, command: bool = False
    ) -> None:
        if self.sock is None:
            return
        if self.config.debug:
            log.debug("[→BRIDGE] %r", "********" if secret else text)
        data = (text + LINE_TERMINATOR).encode("utf-8")
        self._to_bridge.extend(data)
        self._in_flight.append([text if command else None, len(data)])
        self._flush_to_bridge()

    def _flush_to_bridge(self) -> None:
        sock = self.sock
        if sock is None or not self._to_bridge:
            return
        before = len(self._to_bridge)
        try:
            _flush_buffer(sock, self._to_bridge)
        except OSError as err:
            if self._write_error is None:
                self._write_error = err
        self._settle_written(before - len(self._to_bridge))

    def _settle_written(self, sent: int) -> None:
        while sent and self._in_flight:
            entry = self._in_flight[0]
            if sent < entry[1]:
                entry[1] -= sent
                return
            sent -= entry[1]
            self._in_flight.popleft()

    def _requeue_in_flight(self) -> None:
        unsent = [text for text, _ in self._in_flight if text is not None]
        self._in_flight.clear()
        if not unsent:
            return
        with self._outbox_lock:
            self._outbox.extendleft(reversed(unsent))
        log.info("[CMD] re-queued %d unsent commands", len(unsent))

    def _raise_write_error(self) -> bool:
        err, self._write_error = self._write_error, None
        if err is None:
            return False
        if not self._stop.is_set():
            self._on_transport_lost(err)
        return True

    def _flush_outbox(self) -> None:
        if self.state is not ConnectionState.LOGGED_IN:
            return
        with self._outbox_lock:
            pending: List[str] = list(self._outbox)
            self._outbox.clear()
        for command in pending:
            self._write_line(command, command=True)

    def _set_state(self, state: ConnectionState) -> None:
        if state is self.state:
            return
        old = self.state
        self.state = state
        log.debug("[STATE] %s -> %s", old.value, state.value)
        self._emit(self._state_cbs, "state", state)

    def _emit(self, listeners: list, name: str, *args: Any) -> None:
        for cb in list(listeners):
            if self._stop.is_set():
                return
            try:
                cb(*args)
            except Exception:
                log.exception("%s listener failed", name)

    def _close_socket(self) -> None:
        with self._sock_lock:
            sock, self.sock = self.sock, None
        if sock is None:
            return
        try:
            sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        try:
            sock.close()
        except OSError:
            pass


__all__ = [
    "BridgeConnection",
    "BridgeConnectionConfig",
    "BridgeConnectionError",
    "ConnectionState",
    "LoginRejectedError",
    "LoginTimeoutError",
    "ReconnectPolicy",
]
