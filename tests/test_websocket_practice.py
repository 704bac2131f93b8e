"""Tests for the WebSocket practice loop."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import WebSocket, WebSocketDisconnect

from lumina_coach.api.websocket import PracticeSession, handle_browser_websocket
from lumina_coach.models.analysis import AnalysisStatus, SpeechAnalysis, fallback_analysis
from lumina_coach.models.session_state import User
from lumina_coach.storage.state_store import SessionStore

MISTAKE = SpeechAnalysis(
    status=AnalysisStatus.MISTAKE,
    correction="I am fine",
    feedback="Use 'am' not 'is'",
    reply="Got it, try again!",
)


@pytest.fixture
def store(tmp_path):
    session_store = SessionStore(tmp_path / "lumina_state.json")
    session_store.login(User(name="Alex", email="alex@example.com"))
    return session_store


@pytest.fixture
def analyzer():
    analysis_client = MagicMock()
    analysis_client.evaluate = AsyncMock(return_value=MISTAKE)
    return analysis_client


@pytest.fixture
def ws():
    return AsyncMock(spec=WebSocket)


def sent(ws, msg_type: str) -> list[dict]:
    return [c.args[0] for c in ws.send_json.call_args_list if c.args[0]["type"] == msg_type]


async def utter(session: PracticeSession, transcript: str) -> None:
    await session.handle_message({"type": "capture_start"})
    await session.handle_message({"type": "capture_result", "transcript": transcript})
    await session.handle_message({"type": "capture_end"})


class TestPracticeTurn:
    async def test_mistake_turn(self, store, analyzer, ws):
        session = PracticeSession(store, analyzer, ws)

        await utter(session, "I is fine")
        await session.stop()

        assert store.snapshot.points == 990
        [mistake] = store.snapshot.mistakes
        assert mistake.original == "I is fine"
        assert mistake.corrected == "I am fine"

        [feedback] = sent(ws, "feedback")
        assert feedback["delta"] == -10
        [speak] = sent(ws, "speak")
        assert speak["text"] == "Got it, try again!"
        assert not session.is_processing
        assert sent(ws, "processing")[-1] == {"type": "processing", "active": False}

    async def test_fallback_turn_changes_nothing_but_points_up(self, store, analyzer, ws):
        analyzer.evaluate.return_value = fallback_analysis()
        session = PracticeSession(store, analyzer, ws)

        await utter(session, "Hello")
        await session.stop()

        assert store.snapshot.points == 1010
        assert store.snapshot.mistakes == []

    async def test_empty_transcript_is_not_analyzed(self, store, analyzer, ws):
        session = PracticeSession(store, analyzer, ws)

        await utter(session, "   ")
        await session.stop()

        analyzer.evaluate.assert_not_called()
        assert store.snapshot.points == 1000
        assert not session.is_processing

    async def test_capture_error_clears_flags(self, store, analyzer, ws):
        session = PracticeSession(store, analyzer, ws)

        await session.handle_message({"type": "capture_start"})
        assert session.capture.is_recording
        await session.handle_message({"type": "capture_error", "error": "no-speech"})

        assert not session.capture.is_recording
        assert not session.is_processing
        analyzer.evaluate.assert_not_called()
        assert store.snapshot.points == 1000

    async def test_stale_result_is_discarded(self, store, analyzer, ws):
        gate = asyncio.Event()

        async def slow_evaluate(transcript):
            await gate.wait()
            return MISTAKE

        analyzer.evaluate = AsyncMock(side_effect=slow_evaluate)
        session = PracticeSession(store, analyzer, ws)

        await utter(session, "I is fine")
        await asyncio.sleep(0)
        # A newer capture begins before the first analysis resolves
        await session.handle_message({"type": "capture_start"})
        gate.set()
        await session.stop()

        assert store.snapshot.points == 1000
        assert store.snapshot.mistakes == []
        assert sent(ws, "speak") == []
        assert not session.is_processing


class TestRecordingToggle:
    async def test_start_recording_sends_command(self, store, analyzer, ws):
        session = PracticeSession(store, analyzer, ws)
        await session.handle_message({"type": "start_recording"})
        [command] = sent(ws, "capture_command")
        assert command == {"type": "capture_command", "action": "start", "locale": "en-US"}

    async def test_refused_while_recording(self, store, analyzer, ws):
        session = PracticeSession(store, analyzer, ws)
        await session.handle_message({"type": "capture_start"})
        await session.handle_message({"type": "start_recording"})
        assert sent(ws, "capture_command") == []
        assert sent(ws, "error")[-1]["reason"] == "busy"

    async def test_refused_when_logged_out(self, store, analyzer, ws):
        store.logout()
        session = PracticeSession(store, analyzer, ws)
        await session.handle_message({"type": "start_recording"})
        assert sent(ws, "error")[-1]["reason"] == "not_authenticated"

    async def test_stop_recording(self, store, analyzer, ws):
        session = PracticeSession(store, analyzer, ws)
        await session.handle_message({"type": "stop_recording"})
        assert sent(ws, "capture_command") == [{"type": "capture_command", "action": "stop"}]

    async def test_double_start_sends_one_command(self, store, analyzer, ws):
        session = PracticeSession(store, analyzer, ws)
        await session.handle_message({"type": "start_recording"})
        await session.handle_message({"type": "start_recording"})

        assert len(sent(ws, "capture_command")) == 1
        assert sent(ws, "error")[-1]["reason"] == "busy"
        assert session.is_capture_requested

    async def test_start_allowed_again_after_capture_ends(self, store, analyzer, ws):
        analyzer.evaluate.return_value = fallback_analysis()
        session = PracticeSession(store, analyzer, ws)
        await session.handle_message({"type": "start_recording"})
        await utter(session, "Hello")
        await session.stop()
        assert not session.is_capture_requested

        await session.handle_message({"type": "start_recording"})
        assert len(sent(ws, "capture_command")) == 2

    async def test_capture_error_clears_request(self, store, analyzer, ws):
        session = PracticeSession(store, analyzer, ws)
        await session.handle_message({"type": "start_recording"})
        await session.handle_message({"type": "capture_error", "error": "not-allowed"})
        assert not session.is_capture_requested

        await session.handle_message({"type": "start_recording"})
        assert len(sent(ws, "capture_command")) == 2


class TestPlaybackRelay:
    async def test_speaking_flags(self, store, analyzer, ws):
        session = PracticeSession(store, analyzer, ws)
        utterance_id = await session.playback.speak("Hi there")

        await session.handle_message({"type": "playback_start", "utterance_id": utterance_id})
        assert session.playback.is_speaking
        await session.handle_message({"type": "playback_end", "utterance_id": utterance_id})
        assert not session.playback.is_speaking
        assert [m["active"] for m in sent(ws, "speaking")] == [True, False]

    async def test_second_reply_cancels_first(self, store, analyzer, ws):
        session = PracticeSession(store, analyzer, ws)
        first = await session.playback.speak("One")
        await session.playback.speak("Two")
        assert sent(ws, "cancel_speech") == [{"type": "cancel_speech", "utterance_id": first}]

    @pytest.mark.parametrize("utterance_id", ["abc", None, "3", True])
    async def test_bad_utterance_id_is_rejected(self, store, analyzer, ws, utterance_id):
        session = PracticeSession(store, analyzer, ws)
        await session.handle_message({"type": "playback_end", "utterance_id": utterance_id})
        assert sent(ws, "error")[-1]["reason"] == "invalid_message"

        await session.handle_message({"type": "start_recording"})
        assert len(sent(ws, "capture_command")) == 1


class TestHandleBrowserWebsocket:
    async def test_routes_messages_until_disconnect(self, store, analyzer):
        mock_ws = AsyncMock(spec=WebSocket)
        messages = [
            {"type": "capture_start"},
            {"type": "capture_result", "transcript": "I is fine"},
            {"type": "capture_end"},
            "not a dict",
        ]

        async def fake_receive_json():
            if messages:
                return messages.pop(0)
            raise WebSocketDisconnect()

        mock_ws.receive_json = fake_receive_json

        await handle_browser_websocket(mock_ws, store, analyzer)

        mock_ws.accept.assert_awaited_once()
        assert store.snapshot.points == 990
        states = sent(mock_ws, "session_state")
        assert states[0]["points"] == 1000
        assert states[-1]["points"] == 990
        assert sent(mock_ws, "error")[-1]["reason"] == "invalid_message"

    async def test_bad_message_keeps_connection_alive(self, store, analyzer):
        mock_ws = AsyncMock(spec=WebSocket)
        messages = [
            {"type": "playback_end", "utterance_id": "abc"},
            {"type": "start_recording"},
        ]

        async def fake_receive_json():
            if messages:
                return messages.pop(0)
            raise WebSocketDisconnect()

        mock_ws.receive_json = fake_receive_json

        await handle_browser_websocket(mock_ws, store, analyzer)

        assert messages == []
        assert sent(mock_ws, "error") == [{"type": "error", "reason": "invalid_message"}]
        assert len(sent(mock_ws, "capture_command")) == 1
