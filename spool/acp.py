"""ACP client: JSON-RPC 2.0 over the stdio of a persistent ``kiro-cli acp`` process.

One long-lived subprocess serves many calls. A single daemon reader thread
owns the process's stdout and dispatches every inbound line exactly once:

* responses are matched by ``id`` to a pending :class:`~concurrent.futures.Future`
  (or to the prompt stream that issued the request);
* ``session/notification`` messages are routed by ``sessionId`` to the open
  prompt stream of that session, and to no other;
* requests from the agent itself are answered with *method not found*.

Writes to stdin are serialized with a lock, since the channel is one ordered
byte stream shared by every session.
"""

from __future__ import annotations

import json
import logging
import os
import subprocess
import threading
from concurrent.futures import Future
from typing import IO, Any

from spool import constants
from spool.adapter import AdapterError


logger = logging.getLogger(__name__)

PROTOCOL_VERSION = 1
CLIENT_INFO = {'name': 'spool', 'version': '2.0.0'}
CLIENT_CAPABILITIES = {
    'fs': {'readTextFile': True, 'writeTextFile': True},
    'terminal': True,
}

REQUEST_TIMEOUT: float = 60.0
STOP_GRACE_SECONDS: float = 5.0

CHUNK_KIND = 'AgentMessageChunk'
TURN_END_KIND = 'TurnEnd'


# ---------------------------------------------------------------------------
# Prompt streams
# ---------------------------------------------------------------------------


class PromptStream:
    """Text collected for one in-flight ``session/prompt`` call."""

    def __init__(self, session_id: str, request_id: int):
        self.session_id = session_id
        self.request_id = request_id
        self.chunks: list[str] = []
        self.error: str | None = None
        self._fallback: str | None = None
        self._done = threading.Event()

    @property
    def done(self) -> bool:
        return self._done.is_set()

    def feed(self, text: str) -> None:
        if not self.done:
            self.chunks.append(text)

    def finish(self, fallback: str | None = None) -> None:
        if self.done:
            return
        self._fallback = fallback
        self._done.set()

    def fail(self, reason: str) -> None:
        if self.done:
            return
        self.error = reason
        self._done.set()

    def wait(self, timeout: float | None) -> bool:
        return self._done.wait(timeout)

    def text(self) -> str:
        streamed = ''.join(self.chunks)
        if streamed or self._fallback is None:
            return streamed
        return self._fallback


def _chunk_text(content: Any) -> str:
    if content is None:
        return ''
    if isinstance(content, str):
        return content
    if isinstance(content, dict):
        return str(content.get('text', ''))
    if isinstance(content, list):
        return ''.join(_chunk_text(c) for c in content)
    return str(content)


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class AcpClient:
    """Persistent session client. Owns exactly one child process.

    Typical use::

        client = AcpClient('kiro-cli')
        client.start()
        session_id = client.new_session(project_dir)
        client.set_agent(session_id, 'developer')
        text = client.prompt(session_id, prompt, timeout=300)
        client.stop()
    """

    def __init__(
        self,
        command: str | None = None,
        *,
        args: list[str] | None = None,
        env: dict[str, str] | None = None,
        request_timeout: float = REQUEST_TIMEOUT,
    ):
        self.command = command or constants.KIRO_CLI_PATH
        self.args = ['acp'] if args is None else args
        self.env = env
        self.request_timeout = request_timeout
        self.agent_info: dict[str, Any] = {}

        self._process: subprocess.Popen | None = None
        self._stdin: IO[str] | None = None
        self._reader: threading.Thread | None = None
        self._stderr_reader: threading.Thread | None = None

        self._lock = threading.Lock()
        self._write_lock = threading.Lock()
        self._next_id = 0
        self._pending: dict[int, Future] = {}
        self._streams: dict[str, PromptStream] = {}
        self._closed = False

    # -- lifecycle -------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._process is not None and not self._closed

    def start(self) -> dict[str, Any]:
        """Spawn the agent process, start the reader thread and run ``initialize``."""
        if self._process is not None:
            raise AdapterError('ACP client already started')

        full_env = {**os.environ, **(self.env or {})}
        try:
            self._process = subprocess.Popen(
                [self.command, *self.args],
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                bufsize=1,
                env=full_env,
            )
        except FileNotFoundError as exc:
            raise AdapterError(f'ACP agent executable not found: {self.command}') from exc

        self._stdin = self._process.stdin
        self._reader = threading.Thread(
            target=self._read_loop,
            args=(self._process.stdout,),
            name='acp-reader',
            daemon=True,
        )
        self._reader.start()
        self._stderr_reader = threading.Thread(
            target=self._drain_stderr,
            args=(self._process.stderr,),
            name='acp-stderr',
            daemon=True,
        )
        self._stderr_reader.start()

        result = self.request(
            'initialize',
            {
                'protocolVersion': PROTOCOL_VERSION,
                'clientCapabilities': CLIENT_CAPABILITIES,
                'clientInfo': CLIENT_INFO,
            },
        )
        self.agent_info = (result or {}).get('agentInfo') or {}
        logger.info('Connected to %s %s', self.command, self.agent_info.get('version', 'unknown'))
        return result or {}

    def stop(self) -> None:
        """Terminate the child process (kill after a grace period) and fail anything pending."""
        process = self._process
        if process is None:
            return
        with self._lock:
            self._closed = True
        with self._write_lock:
            try:
                if self._stdin is not None:
                    self._stdin.close()
            except OSError:
                pass
        if process.poll() is None:
            process.terminate()
            try:
                process.wait(timeout=STOP_GRACE_SECONDS)
            except subprocess.TimeoutExpired:
                logger.warning('ACP process did not exit, killing it')
                process.kill()
                process.wait()
        if self._reader is not None and self._reader is not threading.current_thread():
            self._reader.join(timeout=STOP_GRACE_SECONDS)
        self._fail_all('ACP client stopped')
        self._process = None

    # -- protocol --------------------------------------------------------------

    def new_session(self, cwd: str) -> str:
        result = self.request('session/new', {'cwd': cwd, 'mcpServers': []})
        session_id = (result or {}).get('sessionId')
        if not session_id:
            raise AdapterError(f'session/new returned no sessionId: {result!r}')
        return session_id

    def set_agent(self, session_id: str, agent: str) -> None:
        self.request(
            '_kiro.dev/commands/execute',
            {'sessionId': session_id, 'command': f'/agent {agent}'},
        )

    def prompt(self, session_id: str, text: str, timeout: float | None = None) -> str:
        """Send a prompt and block until its turn ends. Returns the streamed text."""
        stream = self.open_stream(session_id)
        try:
            self._write(
                {
                    'jsonrpc': '2.0',
                    'id': stream.request_id,
                    'method': 'session/prompt',
                    'params': {
                        'sessionId': session_id,
                        'content': [{'type': 'text', 'text': text}],
                    },
                }
            )
            if not stream.wait(timeout):
                raise AdapterError(f'ACP prompt on session {session_id} timed out after {timeout}s')
        finally:
            self._close_stream(stream)

        if stream.error is not None:
            raise AdapterError(stream.error)
        return stream.text()

    def open_stream(self, session_id: str) -> PromptStream:
        """Register the listener for a prompt before its request is written."""
        with self._lock:
            if self._closed:
                raise AdapterError('ACP channel is closed')
            if session_id in self._streams:
                raise AdapterError(f'A prompt is already in flight on session {session_id}')
            self._next_id += 1
            stream = PromptStream(session_id, self._next_id)
            self._streams[session_id] = stream
        return stream

    def request(self, method: str, params: dict[str, Any], timeout: float | None = None) -> Any:
        """Send a request and wait for its response ``result``."""
        future: Future = Future()
        with self._lock:
            if self._closed:
                raise AdapterError('ACP channel is closed')
            self._next_id += 1
            request_id = self._next_id
            self._pending[request_id] = future

        try:
            self._write({'jsonrpc': '2.0', 'id': request_id, 'method': method, 'params': params})
            return future.result(timeout=timeout or self.request_timeout)
        except TimeoutError as exc:
            raise AdapterError(f'ACP request {method} timed out') from exc
        finally:
            with self._lock:
                self._pending.pop(request_id, None)

    # -- wire ------------------------------------------------------------------

    def _write(self, message: dict[str, Any]) -> None:
        line = json.dumps(message) + '\n'
        with self._write_lock:
            if self._stdin is None or self._closed:
                raise AdapterError('ACP channel is closed')
            try:
                self._stdin.write(line)
                self._stdin.flush()
            except (OSError, ValueError) as exc:
                raise AdapterError(f'Failed to write to ACP channel: {exc}') from exc

    def _read_loop(self, stdout: IO[str]) -> None:
        try:
            for line in stdout:
                self.handle_line(line)
        except (OSError, ValueError) as exc:
            logger.debug('ACP reader stopped: %s', exc)
        with self._lock:
            expected = self._closed
            self._closed = True
        if not expected:
            logger.warning('ACP channel closed unexpectedly')
        self._fail_all('ACP channel closed unexpectedly')

    def _drain_stderr(self, stderr: IO[str]) -> None:
        try:
            for line in stderr:
                line = line.rstrip()
                if line:
                    logger.debug('[acp stderr] %s', line)
        except (OSError, ValueError):
            pass

    def handle_line(self, line: str) -> None:
        """Dispatch one inbound line. Only ever called from the reader thread (or tests)."""
        line = line.strip()
        if not line:
            return
        try:
            msg = json.loads(line)
        except json.JSONDecodeError:
            logger.debug('Skipping non-JSON line from ACP agent: %s', line[:200])
            return
        if not isinstance(msg, dict):
            return

        if 'method' in msg:
            if 'id' in msg:
                self._reject_agent_request(msg)
            elif msg['method'] == 'session/notification':
                self._route_notification(msg.get('params') or {})
            return

        if 'id' in msg:
            self._resolve_response(msg)

    def _resolve_response(self, msg: dict[str, Any]) -> None:
        request_id = msg['id']
        error = msg.get('error')
        with self._lock:
            future = self._pending.pop(request_id, None)
            stream = None
            if future is None:
                for candidate in self._streams.values():
                    if candidate.request_id == request_id:
                        stream = candidate
                        break

        if future is not None:
            if error is not None:
                future.set_exception(AdapterError(f'ACP error: {_error_message(error)}'))
            else:
                future.set_result(msg.get('result'))
        elif stream is not None:
            if error is not None:
                stream.fail(f'ACP prompt failed: {_error_message(error)}')
            else:
                result = msg.get('result')
                stream.finish(fallback=json.dumps(result) if result is not None else None)
        else:
            logger.debug('Ignoring response for unknown request id %r', request_id)

    def _route_notification(self, params: dict[str, Any]) -> None:
        kind = params.get('kind') or params.get('type')
        session_id = params.get('sessionId')
        with self._lock:
            if session_id is not None:
                stream = self._streams.get(session_id)
            elif len(self._streams) == 1:
                # Older agents omit sessionId; unambiguous only with one open stream.
                stream = next(iter(self._streams.values()))
            else:
                stream = None
        if stream is None:
            logger.debug('Dropping %s notification for session %r with no open prompt', kind, session_id)
            return

        if kind == CHUNK_KIND:
            stream.feed(_chunk_text(params.get('content')))
        elif kind == TURN_END_KIND:
            stream.finish()

    def _reject_agent_request(self, msg: dict[str, Any]) -> None:
        logger.debug('Agent requested unsupported method %s', msg.get('method'))
        try:
            self._write(
                {
                    'jsonrpc': '2.0',
                    'id': msg['id'],
                    'error': {'code': -32601, 'message': f'Method not found: {msg.get("method")}'},
                }
            )
        except AdapterError as exc:
            logger.debug('Could not answer agent request: %s', exc)

    def _close_stream(self, stream: PromptStream) -> None:
        with self._lock:
            if self._streams.get(stream.session_id) is stream:
                del self._streams[stream.session_id]

    def _fail_all(self, reason: str) -> None:
        with self._lock:
            pending = list(self._pending.values())
            streams = list(self._streams.values())
            self._pending.clear()
            self._streams.clear()
        for future in pending:
            if not future.done():
                future.set_exception(AdapterError(reason))
        for stream in streams:
            stream.fail(reason)


def _error_message(error: Any) -> str:
    if isinstance(error, dict):
        return str(error.get('message') or error)
    return str(error)
