"""Browser WebSocket handler - drives the practice loop."""

import asyncio

import structlog
from fastapi import WebSocket, WebSocketDisconnect

from lumina_coach.analysis.client import AnalysisClient
from lumina_coach.coach import coach_turn
from lumina_coach.speech.collaborators import SpeechCapture, SpeechPlayback
from lumina_coach.storage.state_store import SessionStore

logger = structlog.get_logger()


class PracticeSession:
    """Practice loop for one browser connection.

    The browser reports capture and playback signals; this class keeps the
    recording, processing and speaking flags, runs analysis for each final
    transcript and tells the browser what to say.

    Args:
        store: Session store.
        analyzer: Analysis client.
        browser_ws: WebSocket connection to the browser.
    """

    def __init__(
        self,
        store: SessionStore,
        analyzer: AnalysisClient,
        browser_ws: WebSocket,
        locale: str = "en-US",
    ):
        self.store = store
        self.analyzer = analyzer
        self.browser_ws = browser_ws
        self.capture = SpeechCapture(locale=locale)
        self.playback = SpeechPlayback()
        self._processing = False
        # Set when a start command is sent, until the browser reports back
        self._capture_requested = False
        # Bumped on every capture start; results from older captures are dropped
        self._sequence = 0
        self._tasks: set[asyncio.Task] = set()
        self._setup_handlers()

    @property
    def is_processing(self) -> bool:
        return self._processing

    @property
    def is_capture_requested(self) -> bool:
        return self._capture_requested

    @property
    def sequence(self) -> int:
        return self._sequence

    async def start(self) -> None:
        await self.send_state()

    async def stop(self) -> None:
        """Wait for in-flight analyses; their results are still applied."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

    async def handle_message(self, data: dict) -> None:
        """Route a single browser message."""
        msg_type = data.get("type", "")

        if msg_type == "start_recording":
            await self.start_recording()
        elif msg_type == "stop_recording":
            self._capture_requested = False
            await self._send_to_browser({"type": "capture_command", "action": "stop"})
        elif msg_type == "capture_start":
            await self.capture.handle_start()
        elif msg_type == "capture_result":
            await self.capture.handle_result(str(data.get("transcript", "")))
        elif msg_type == "capture_end":
            await self.capture.handle_end()
        elif msg_type == "capture_error":
            await self.capture.handle_error(str(data.get("error", "")))
        elif msg_type in ("playback_start", "playback_end"):
            utterance_id = data.get("utterance_id")
            if not isinstance(utterance_id, int) or isinstance(utterance_id, bool):
                logger.warning("invalid_browser_message", msg_type=msg_type)
                await self._send_to_browser({"type": "error", "reason": "invalid_message"})
            elif msg_type == "playback_start":
                await self.playback.handle_start(utterance_id)
            else:
                await self.playback.handle_end(utterance_id)
        else:
            logger.warning("unknown_browser_message", msg_type=msg_type)
            await self._send_to_browser({"type": "error", "reason": "unknown_message"})

    async def start_recording(self) -> None:
        """Ask the browser to start capture unless busy or logged out."""
        if not self.store.is_authenticated:
            await self._send_to_browser({"type": "error", "reason": "not_authenticated"})
            return
        if self._capture_requested or self.capture.is_recording or self._processing:
            await self._send_to_browser({"type": "error", "reason": "busy"})
            return
        self._capture_requested = True
        await self._send_to_browser({
            "type": "capture_command",
            "action": "start",
            "locale": self.capture.locale,
        })

    async def send_state(self) -> None:
        state = self.store.snapshot
        await self._send_to_browser({
            "type": "session_state",
            "points": state.points,
            "mistakes": len(state.mistakes),
            "authenticated": state.is_authenticated,
            "recording": self.capture.is_recording,
            "processing": self._processing,
            "speaking": self.playback.is_speaking,
        })

    def _setup_handlers(self) -> None:
        """Register observers on the capture and playback collaborators."""

        async def on_capture_start(event: dict) -> None:
            self._capture_requested = False
            self._sequence += 1
            await self._send_to_browser({"type": "recording", "active": True})

        async def on_capture_result(event: dict) -> None:
            transcript = event.get("transcript", "").strip()
            if not transcript:
                # Nothing recognized: same as a capture failure
                self._processing = False
                await self._send_to_browser({"type": "processing", "active": False})
                return
            await self._send_to_browser({"type": "transcript", "text": transcript})
            self._processing = True
            await self._send_to_browser({"type": "processing", "active": True})
            task = asyncio.create_task(self._run_turn(transcript, self._sequence))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

        async def on_capture_end(event: dict) -> None:
            self._capture_requested = False
            await self._send_to_browser({"type": "recording", "active": False})

        async def on_capture_error(event: dict) -> None:
            self._capture_requested = False
            self._processing = False
            await self._send_to_browser({"type": "recording", "active": False})
            await self._send_to_browser({"type": "processing", "active": False})

        async def on_speak(event: dict) -> None:
            await self._send_to_browser({
                "type": "speak",
                "utterance_id": event["utterance_id"],
                "text": event["text"],
            })

        async def on_cancel(event: dict) -> None:
            await self._send_to_browser({
                "type": "cancel_speech",
                "utterance_id": event["utterance_id"],
            })
            await self._send_to_browser({"type": "speaking", "active": False})

        async def on_playback_start(event: dict) -> None:
            await self._send_to_browser({"type": "speaking", "active": True})

        async def on_playback_end(event: dict) -> None:
            await self._send_to_browser({"type": "speaking", "active": False})

        self.capture.on("start", on_capture_start)
        self.capture.on("result", on_capture_result)
        self.capture.on("end", on_capture_end)
        self.capture.on("error", on_capture_error)
        self.playback.on("speak", on_speak)
        self.playback.on("cancel", on_cancel)
        self.playback.on("start", on_playback_start)
        self.playback.on("end", on_playback_end)

    async def _run_turn(self, transcript: str, sequence: int) -> None:
        """Analyze and score one transcript captured under ``sequence``."""
        try:
            outcome = await coach_turn(
                self.store,
                self.analyzer,
                transcript,
                is_current=lambda: sequence == self._sequence,
            )
            if outcome is None:
                return
            await self._send_to_browser({
                "type": "feedback",
                "text": outcome.ui_feedback,
                "delta": outcome.points_delta,
            })
            await self.send_state()
            await self.playback.speak(outcome.spoken_reply)
        except Exception:
            logger.exception("practice_turn_error")
        finally:
            current = asyncio.current_task()
            if not any(t is not current and not t.done() for t in self._tasks):
                self._processing = False
                await self._send_to_browser({"type": "processing", "active": False})

    async def _send_to_browser(self, data: dict) -> None:
        """Send a message to the browser WebSocket."""
        try:
            await self.browser_ws.send_json(data)
        except Exception:
            logger.warning("browser_send_failed")


async def handle_browser_websocket(
    websocket: WebSocket,
    store: SessionStore,
    analyzer: AnalysisClient,
) -> None:
    """Handle a browser WebSocket connection."""
    await websocket.accept()
    session = PracticeSession(store, analyzer, websocket)
    await session.start()

    try:
        while True:
            data = await websocket.receive_json()
            if not isinstance(data, dict):
                await websocket.send_json({"type": "error", "reason": "invalid_message"})
                continue
            await session.handle_message(data)

    except WebSocketDisconnect:
        logger.info("browser_disconnected")
    except Exception:
        logger.exception("websocket_handler_error")
    finally:
        await session.stop()
