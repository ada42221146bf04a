"""Tests for the ACP stdio client (spool.acp)."""

from __future__ import annotations

import io
import json
import sys
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path

import pytest

from spool.acp import AcpClient, PromptStream
from spool.adapter import AdapterError


FAKE_AGENT = Path(__file__).parent / 'fake_acp_agent.py'


def _notification(session_id: str | None, kind: str, text: str | None = None) -> str:
    params: dict = {'kind': kind}
    if session_id is not None:
        params['sessionId'] = session_id
    if text is not None:
        params['content'] = {'type': 'text', 'text': text}
    return json.dumps({'jsonrpc': '2.0', 'method': 'session/notification', 'params': params})


def _response(request_id, result=None, error=None) -> str:
    msg: dict = {'jsonrpc': '2.0', 'id': request_id}
    if error is not None:
        msg['error'] = error
    else:
        msg['result'] = result
    return json.dumps(msg)


@pytest.fixture
def client():
    """A client with no process behind it; stdin is captured in memory."""
    c = AcpClient('fake-agent')
    c._stdin = io.StringIO()
    return c


@pytest.fixture
def live_client():
    c = AcpClient(sys.executable, args=[str(FAKE_AGENT)], request_timeout=10)
    c.start()
    yield c
    c.stop()


# ---------------------------------------------------------------------------
# Dispatch (no process)
# ---------------------------------------------------------------------------


class TestPromptStream:
    def test_text_prefers_streamed_chunks(self):
        stream = PromptStream('s', 1)
        stream.feed('a')
        stream.feed('b')
        stream.finish(fallback='{"x": 1}')
        assert stream.text() == 'ab'

    def test_fallback_when_nothing_streamed(self):
        stream = PromptStream('s', 1)
        stream.finish(fallback='{"x": 1}')
        assert stream.text() == '{"x": 1}'

    def test_feed_after_finish_ignored(self):
        stream = PromptStream('s', 1)
        stream.finish()
        stream.feed('late')
        assert stream.text() == ''

    def test_first_terminal_state_wins(self):
        stream = PromptStream('s', 1)
        stream.fail('boom')
        stream.finish()
        assert stream.error == 'boom'
        assert stream.wait(0)


class TestNotificationRouting:
    def test_interleaved_sessions_stay_separate(self, client: AcpClient):
        a = client.open_stream('sess-a')
        b = client.open_stream('sess-b')

        for i in range(3):
            client.handle_line(_notification('sess-a', 'AgentMessageChunk', f'a{i}'))
            client.handle_line(_notification('sess-b', 'AgentMessageChunk', f'b{i}'))
        client.handle_line(_notification('sess-b', 'TurnEnd'))
        client.handle_line(_notification('sess-a', 'TurnEnd'))

        assert a.text() == 'a0a1a2'
        assert b.text() == 'b0b1b2'
        assert a.done and b.done

    def test_unknown_session_dropped(self, client: AcpClient):
        a = client.open_stream('sess-a')
        client.handle_line(_notification('sess-zzz', 'AgentMessageChunk', 'stray'))
        assert a.text() == ''

    def test_missing_session_id_goes_to_only_stream(self, client: AcpClient):
        a = client.open_stream('sess-a')
        client.handle_line(_notification(None, 'AgentMessageChunk', 'hello'))
        assert a.text() == 'hello'

    def test_missing_session_id_dropped_when_ambiguous(self, client: AcpClient):
        a = client.open_stream('sess-a')
        b = client.open_stream('sess-b')
        client.handle_line(_notification(None, 'AgentMessageChunk', 'who?'))
        assert a.text() == '' and b.text() == ''

    def test_type_field_accepted_for_kind(self, client: AcpClient):
        a = client.open_stream('sess-a')
        line = json.dumps(
            {
                'jsonrpc': '2.0',
                'method': 'session/notification',
                'params': {'sessionId': 'sess-a', 'type': 'AgentMessageChunk', 'content': [{'text': 'x'}, 'y']},
            }
        )
        client.handle_line(line)
        assert a.text() == 'xy'

    def test_non_json_and_blank_lines_skipped(self, client: AcpClient):
        client.handle_line('')
        client.handle_line('Loading model...')
        client.handle_line('[1, 2]')

    def test_duplicate_prompt_on_session_rejected(self, client: AcpClient):
        client.open_stream('sess-a')
        with pytest.raises(AdapterError, match='already in flight'):
            client.open_stream('sess-a')


class TestResponses:
    def test_result_resolves_pending_future(self, client: AcpClient):
        future: Future = Future()
        client._pending[7] = future
        client.handle_line(_response(7, {'sessionId': 'abc'}))
        assert future.result(timeout=0) == {'sessionId': 'abc'}
        assert 7 not in client._pending

    def test_error_rejects_pending_future(self, client: AcpClient):
        future: Future = Future()
        client._pending[7] = future
        client.handle_line(_response(7, error={'code': -32000, 'message': 'nope'}))
        with pytest.raises(AdapterError, match='ACP error: nope'):
            future.result(timeout=0)

    def test_prompt_response_finishes_stream_with_fallback(self, client: AcpClient):
        stream = client.open_stream('sess-a')
        client.handle_line(_response(stream.request_id, {'stopReason': 'end_turn'}))
        assert stream.done
        assert json.loads(stream.text()) == {'stopReason': 'end_turn'}

    def test_prompt_error_fails_stream(self, client: AcpClient):
        stream = client.open_stream('sess-a')
        client.handle_line(_response(stream.request_id, error={'message': 'overloaded'}))
        assert stream.error == 'ACP prompt failed: overloaded'

    def test_unknown_response_ignored(self, client: AcpClient):
        client.handle_line(_response(999, {}))

    def test_agent_request_answered_method_not_found(self, client: AcpClient):
        client.handle_line(json.dumps({'jsonrpc': '2.0', 'id': 'r1', 'method': 'fs/read_text_file', 'params': {}}))
        reply = json.loads(client._stdin.getvalue())
        assert reply['id'] == 'r1'
        assert reply['error']['code'] == -32601

    def test_fail_all_rejects_everything(self, client: AcpClient):
        future: Future = Future()
        client._pending[3] = future
        stream = client.open_stream('sess-a')

        client._fail_all('ACP channel closed unexpectedly')

        with pytest.raises(AdapterError, match='closed unexpectedly'):
            future.result(timeout=0)
        assert stream.error == 'ACP channel closed unexpectedly'
        assert client._streams == {}

    def test_closed_channel_refuses_new_work(self, client: AcpClient):
        client._closed = True
        with pytest.raises(AdapterError, match='closed'):
            client.open_stream('sess-a')
        with pytest.raises(AdapterError, match='closed'):
            client.request('session/new', {})


# ---------------------------------------------------------------------------
# Against a real child process
# ---------------------------------------------------------------------------


class TestLiveAgent:
    def test_initialize_reads_agent_info(self, live_client: AcpClient):
        assert live_client.is_running
        assert live_client.agent_info == {'name': 'fake-acp', 'version': '0.1.0'}

    def test_session_prompt_round_trip(self, live_client: AcpClient):
        session_id = live_client.new_session('/tmp')
        live_client.set_agent(session_id, 'developer')
        text = live_client.prompt(session_id, 'hello', timeout=10)
        assert text == f'[{session_id}:0][{session_id}:1][{session_id}:2][{session_id}:3][{session_id}:4] hello'

    def test_concurrent_sessions_do_not_mix(self, live_client: AcpClient):
        sessions = [live_client.new_session('/tmp') for _ in range(3)]

        with ThreadPoolExecutor(max_workers=3) as pool:
            results = list(pool.map(lambda s: (s, live_client.prompt(s, f'task for {s}', timeout=10)), sessions))

        for session_id, text in results:
            assert text.endswith(f' task for {session_id}')
            for other in sessions:
                if other != session_id:
                    assert other not in text

    def test_prompt_error_raises(self, live_client: AcpClient):
        session_id = live_client.new_session('/tmp')
        with pytest.raises(AdapterError, match='model overloaded'):
            live_client.prompt(session_id, 'ERROR', timeout=10)

    def test_result_without_chunks_returns_serialized_result(self, live_client: AcpClient):
        session_id = live_client.new_session('/tmp')
        text = live_client.prompt(session_id, 'SILENT', timeout=10)
        assert json.loads(text) == {'stopReason': 'end_turn'}

    def test_agent_request_does_not_block_prompt(self, live_client: AcpClient):
        session_id = live_client.new_session('/tmp')
        assert live_client.prompt(session_id, 'ASK', timeout=10).endswith(' ASK')

    def test_unknown_method_raises(self, live_client: AcpClient):
        with pytest.raises(AdapterError, match='ACP error'):
            live_client.request('no/such/method', {})

    def test_crash_fails_in_flight_prompt(self, live_client: AcpClient):
        session_id = live_client.new_session('/tmp')
        with pytest.raises(AdapterError, match='closed unexpectedly'):
            live_client.prompt(session_id, 'CRASH', timeout=10)
        assert not live_client.is_running

    def test_stop_fails_waiting_prompt(self, live_client: AcpClient):
        session_id = live_client.new_session('/tmp')
        stream = live_client.open_stream(session_id)
        stopper = threading.Timer(0.2, live_client.stop)
        stopper.start()
        assert stream.wait(10)
        stopper.join()
        assert stream.error is not None


def test_missing_executable_raises():
    with pytest.raises(AdapterError, match='not found'):
        AcpClient('/nonexistent/kiro-cli').start()
