"""Speech capture and playback collaborators.

The browser runs the platform speech APIs; these classes mirror their state
on the server side. Raw browser signals are fed in through the ``handle_*``
methods, and the resulting discrete events are dispatched to registered
async observers.
"""

import itertools
from collections.abc import Callable, Coroutine
from enum import StrEnum
from typing import Any

import structlog

logger = structlog.get_logger()

# Type alias for event observer callbacks
EventHandler = Callable[[dict[str, Any]], Coroutine[Any, Any, None]]


class _EventSource:
    """Minimal observer registry shared by both collaborators."""

    def __init__(self) -> None:
        self._event_handlers: dict[str, list[EventHandler]] = {}

    def on(self, event_type: str, handler: EventHandler) -> None:
        """Register an observer for an event type."""
        self._event_handlers.setdefault(event_type, []).append(handler)

    async def _dispatch(self, event_type: str, **payload: Any) -> None:
        event = {"type": event_type, **payload}
        for handler in self._event_handlers.get(event_type, []):
            try:
                await handler(event)
            except Exception:
                logger.exception("speech_event_handler_error", event_type=event_type)


class CaptureState(StrEnum):
    IDLE = "idle"
    LISTENING = "listening"


class SpeechCapture(_EventSource):
    """Single-shot, single-locale recognition session.

    Events: ``start``, ``result`` (at most one per invocation, with
    ``transcript``), ``end`` and ``error``. Both ``end`` and ``error`` return
    the capture to idle.

    Args:
        locale: Recognition locale requested from the browser.
    """

    def __init__(self, locale: str = "en-US"):
        super().__init__()
        self.locale = locale
        self._state = CaptureState.IDLE
        self._result_delivered = False

    @property
    def state(self) -> CaptureState:
        return self._state

    @property
    def is_recording(self) -> bool:
        return self._state == CaptureState.LISTENING

    async def handle_start(self) -> None:
        self._state = CaptureState.LISTENING
        self._result_delivered = False
        await self._dispatch("start", locale=self.locale)

    async def handle_result(self, transcript: str) -> bool:
        """Accept a final transcript.

        Returns:
            True if the result was dispatched, False if one was already
            delivered for this invocation.
        """
        if self._result_delivered:
            logger.debug("capture_extra_result_ignored")
            return False
        self._result_delivered = True
        await self._dispatch("result", transcript=transcript)
        return True

    async def handle_end(self) -> None:
        self._state = CaptureState.IDLE
        await self._dispatch("end")

    async def handle_error(self, error: str = "") -> None:
        self._state = CaptureState.IDLE
        logger.info("capture_error", error=error)
        await self._dispatch("error", error=error)


class SpeechPlayback(_EventSource):
    """Text-to-speech relay allowing one utterance at a time.

    ``speak`` cancels any utterance still in progress before requesting the
    new one. Events: ``speak`` (request), ``cancel``, ``start`` and ``end``.
    Signals for utterances other than the current one are ignored.
    """

    def __init__(self) -> None:
        super().__init__()
        self._ids = itertools.count(1)
        self._current_id: int | None = None
        self._speaking = False

    @property
    def is_speaking(self) -> bool:
        return self._speaking

    @property
    def current_utterance(self) -> int | None:
        return self._current_id

    async def speak(self, text: str) -> int:
        """Request playback of ``text`` and return its utterance id."""
        if self._current_id is not None:
            cancelled = self._current_id
            self._current_id = None
            self._speaking = False
            await self._dispatch("cancel", utterance_id=cancelled)

        utterance_id = next(self._ids)
        self._current_id = utterance_id
        await self._dispatch("speak", utterance_id=utterance_id, text=text)
        return utterance_id

    async def handle_start(self, utterance_id: int) -> None:
        if utterance_id != self._current_id:
            return
        self._speaking = True
        await self._dispatch("start", utterance_id=utterance_id)

    async def handle_end(self, utterance_id: int) -> None:
        if utterance_id != self._current_id:
            logger.debug("playback_stale_end_ignored", utterance_id=utterance_id)
            return
        self._current_id = None
        self._speaking = False
        await self._dispatch("end", utterance_id=utterance_id)
