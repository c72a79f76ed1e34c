"""Tests for update dispatch and the capture-and-deliver sequence."""

import asyncio
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from structlog.testing import capture_logs
from telegram.constants import ChatAction, ParseMode
from telegram.error import NetworkError, TelegramError

from camerabot.bot.dispatcher import DispatchOutcome, UpdateDispatcher
from camerabot.bot.router import Command
from camerabot.config.settings import Settings
from camerabot.exceptions import CaptureError
from camerabot.security.auth import WhitelistAuthProvider
from camerabot.services.capture import RaspiStillCapture
from camerabot.services.session_store import SessionStatus, SessionStore
from camerabot.utils.constants import MESSAGE_UNKNOWN_COMMAND

STATUS_TEXT = "Uptime: 1:02:03\nMemory Usage: RSS 12.0 MB, VMS 40.0 MB"


class _FakeCapture:
    """Capture stub that writes a small JPEG-like file per call."""

    def __init__(self, error: Exception | None = None, delay: float = 0.0):
        self.error = error
        self.delay = delay
        self.calls: list[tuple[Path, int, int]] = []
        self.produced: list[Path] = []

    async def capture(self, output_dir, width, height):
        self.calls.append((Path(output_dir), width, height))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        path = Path(output_dir) / f"capture_{len(self.calls)}.jpg"
        path.write_bytes(b"\xff\xd8\xff" + b"\x00" * 64)
        self.produced.append(path)
        return path


def _settings(tmp_path: Path, **overrides) -> Settings:
    values = {
        "telegram_bot_token": "test:token",
        "available_ids": ["alice", "bob"],
        "temp_dir": tmp_path,
    }
    values.update(overrides)
    return Settings(**values)


def _bot() -> SimpleNamespace:
    return SimpleNamespace(
        send_message=AsyncMock(),
        send_photo=AsyncMock(),
        send_chat_action=AsyncMock(),
    )


def _update(text="/help", username="alice", first_name="Alice", chat_id=1001):
    return SimpleNamespace(
        update_id=1,
        message=SimpleNamespace(
            from_user=SimpleNamespace(username=username, first_name=first_name),
            chat_id=chat_id,
            text=text,
        ),
    )


def _dispatcher(tmp_path, capture=None, store=None, **settings_overrides):
    settings = _settings(tmp_path, **settings_overrides)
    return UpdateDispatcher(
        settings=settings,
        auth_provider=WhitelistAuthProvider(settings.available_ids),
        session_store=store if store is not None else SessionStore(settings.available_ids),
        capture=capture or _FakeCapture(),
        status_text_provider=lambda: STATUS_TEXT,
    )


class TestAuthorization:
    async def test_unlisted_user_gets_no_reply(self, tmp_path):
        dispatcher = _dispatcher(tmp_path)
        bot = _bot()

        result = await dispatcher.process_update(bot, _update(username="mallory"))

        assert result.outcome is DispatchOutcome.UNAUTHORIZED
        assert result.ok is False
        bot.send_message.assert_not_awaited()
        bot.send_photo.assert_not_awaited()
        bot.send_chat_action.assert_not_awaited()

    async def test_missing_username_is_distinct_outcome(self, tmp_path):
        dispatcher = _dispatcher(tmp_path)
        bot = _bot()

        result = await dispatcher.process_update(bot, _update(username=None))

        assert result.outcome is DispatchOutcome.UNAUTHORIZED_NO_USERNAME
        assert result.ok is False
        bot.send_message.assert_not_awaited()

    async def test_unlisted_capture_never_invokes_camera(self, tmp_path):
        capture = _FakeCapture()
        dispatcher = _dispatcher(tmp_path, capture=capture)

        await dispatcher.process_update(_bot(), _update("/capture", username="eve"))

        assert capture.calls == []

    async def test_update_without_message_is_ignored(self, tmp_path):
        dispatcher = _dispatcher(tmp_path)
        bot = _bot()

        result = await dispatcher.process_update(
            bot, SimpleNamespace(update_id=2, message=None)
        )

        assert result.outcome is DispatchOutcome.IGNORED
        bot.send_message.assert_not_awaited()

    async def test_authorized_user_without_session_is_dropped(self, tmp_path):
        """Defensive path: allow-listed but no session record."""
        dispatcher = _dispatcher(tmp_path, store=SessionStore(["alice"]))
        bot = _bot()

        with capture_logs() as logs:
            result = await dispatcher.process_update(bot, _update(username="bob"))

        assert result.outcome is DispatchOutcome.NO_SESSION
        bot.send_message.assert_not_awaited()
        assert [entry["event"] for entry in logs] == ["Session does not exist for id"]
        assert dispatcher.session_store.locked is False


class TestTextReplies:
    async def test_status_reply_text_and_options(self, tmp_path):
        dispatcher = _dispatcher(tmp_path)
        bot = _bot()

        result = await dispatcher.process_update(bot, _update("/status"))

        assert result.outcome is DispatchOutcome.TEXT_SENT
        assert result.command is Command.STATUS
        assert result.ok is True
        kwargs = bot.send_message.await_args.kwargs
        assert kwargs["chat_id"] == 1001
        assert kwargs["text"] == STATUS_TEXT
        assert kwargs["parse_mode"] == ParseMode.MARKDOWN
        keyboard = kwargs["reply_markup"].keyboard
        assert [[button.text for button in row] for row in keyboard] == [
            ["/capture"],
            ["/status", "/help"],
        ]
        assert kwargs["reply_markup"].resize_keyboard is True

    async def test_unknown_command_echoes_text(self, tmp_path):
        dispatcher = _dispatcher(tmp_path)
        bot = _bot()

        result = await dispatcher.process_update(bot, _update(" /unknowncmd "))

        assert result.command is Command.UNKNOWN
        assert bot.send_message.await_args.kwargs["text"] == (
            f"*/unknowncmd*: {MESSAGE_UNKNOWN_COMMAND}"
        )

    async def test_send_failure_is_logged_not_retried(self, tmp_path):
        dispatcher = _dispatcher(tmp_path)
        bot = _bot()
        bot.send_message.side_effect = TelegramError("Chat not found")

        with capture_logs() as logs:
            result = await dispatcher.process_update(bot, _update("/help"))

        assert result.outcome is DispatchOutcome.TEXT_FAILED
        assert result.ok is False
        assert bot.send_message.await_count == 1
        errors = [entry for entry in logs if entry["log_level"] == "error"]
        assert len(errors) == 1
        assert errors[0]["event"] == "Failed to send message"
        assert errors[0]["description"] == "Chat not found"

    async def test_session_stays_waiting(self, tmp_path):
        dispatcher = _dispatcher(tmp_path)
        store = dispatcher.session_store

        for text in ("/start", "/status", "/help", "/capture", "whatever"):
            await dispatcher.process_update(_bot(), _update(text))

        assert store.get("alice").status is SessionStatus.WAITING
        assert store.get("bob").status is SessionStatus.WAITING


class TestCaptureAndDeliver:
    async def test_capture_sends_photo_and_deletes_file(self, tmp_path):
        capture = _FakeCapture()
        dispatcher = _dispatcher(tmp_path, capture=capture)
        bot = _bot()
        remove = MagicMock(wraps=UpdateDispatcher._remove_temp_file)
        dispatcher._remove_temp_file = remove  # type: ignore[method-assign]

        result = await dispatcher.process_update(bot, _update("/capture"))

        assert result.outcome is DispatchOutcome.PHOTO_SENT
        assert result.command is Command.CAPTURE
        (produced,) = capture.produced
        bot.send_photo.assert_awaited_once()
        kwargs = bot.send_photo.await_args.kwargs
        assert kwargs["chat_id"] == 1001
        assert kwargs["photo"] == produced
        assert kwargs["parse_mode"] == ParseMode.MARKDOWN
        assert kwargs["reply_markup"] is not None
        remove.assert_called_once_with(produced)
        assert not produced.exists()
        bot.send_message.assert_not_awaited()

    async def test_chat_actions_sent_in_order(self, tmp_path):
        dispatcher = _dispatcher(tmp_path)
        bot = _bot()

        await dispatcher.process_update(bot, _update("/capture"))

        actions = [
            call.kwargs["action"] for call in bot.send_chat_action.await_args_list
        ]
        assert actions == [ChatAction.TYPING, ChatAction.UPLOAD_PHOTO]

    async def test_photo_send_failure_still_deletes_file(self, tmp_path):
        capture = _FakeCapture()
        dispatcher = _dispatcher(tmp_path, capture=capture)
        bot = _bot()
        bot.send_photo.side_effect = NetworkError("connection reset")
        remove = MagicMock(wraps=UpdateDispatcher._remove_temp_file)
        dispatcher._remove_temp_file = remove  # type: ignore[method-assign]

        result = await dispatcher.process_update(bot, _update("/capture"))

        assert result.outcome is DispatchOutcome.PHOTO_FAILED
        assert result.ok is False
        (produced,) = capture.produced
        bot.send_photo.assert_awaited_once()
        remove.assert_called_once_with(produced)
        assert not produced.exists()
        bot.send_message.assert_not_awaited()

    async def test_capture_failure_sends_nothing_and_logs_once(self, tmp_path):
        capture = _FakeCapture(error=CaptureError("raspistill exited with code 70"))
        dispatcher = _dispatcher(tmp_path, capture=capture)
        bot = _bot()

        with capture_logs() as logs:
            result = await dispatcher.process_update(bot, _update("/capture"))

        assert result.outcome is DispatchOutcome.CAPTURE_FAILED
        assert result.ok is False
        bot.send_photo.assert_not_awaited()
        bot.send_message.assert_not_awaited()
        errors = [entry for entry in logs if entry["log_level"] == "error"]
        assert len(errors) == 1
        assert errors[0]["event"] == "Image capture failed"
        assert dispatcher.session_store.locked is False

    async def test_failed_camera_run_leaves_temp_dir_empty(self, tmp_path):
        out = tmp_path / "out"
        out.mkdir()
        script = tmp_path / "raspistill"
        script.write_text(
            "#!/bin/sh\n"
            'while [ "$#" -gt 0 ]; do\n'
            '  if [ "$1" = "-o" ]; then printf partial > "$2"; fi\n'
            "  shift\n"
            "done\n"
            "exit 70\n"
        )
        script.chmod(0o755)
        dispatcher = _dispatcher(out, capture=RaspiStillCapture(str(script)))
        bot = _bot()

        result = await dispatcher.process_update(bot, _update("/capture"))

        assert result.outcome is DispatchOutcome.CAPTURE_FAILED
        bot.send_photo.assert_not_awaited()
        assert list(out.iterdir()) == []

    async def test_cleanup_failure_does_not_change_outcome(self, tmp_path):
        capture = _FakeCapture()
        dispatcher = _dispatcher(tmp_path, capture=capture)
        bot = _bot()

        async def send_photo_and_remove(**kwargs):
            kwargs["photo"].unlink()

        bot.send_photo.side_effect = send_photo_and_remove

        with capture_logs() as logs:
            result = await dispatcher.process_update(bot, _update("/capture"))

        assert result.outcome is DispatchOutcome.PHOTO_SENT
        assert [entry["event"] for entry in logs if entry["log_level"] == "error"] == [
            "Failed to delete temp file"
        ]

    async def test_chat_action_failure_is_not_fatal(self, tmp_path):
        dispatcher = _dispatcher(tmp_path)
        bot = _bot()
        bot.send_chat_action.side_effect = TelegramError("Too Many Requests")

        result = await dispatcher.process_update(bot, _update("/capture"))

        assert result.outcome is DispatchOutcome.PHOTO_SENT
        bot.send_photo.assert_awaited_once()

    async def test_clamped_dimensions_passed_to_every_capture(self, tmp_path):
        capture = _FakeCapture()
        dispatcher = _dispatcher(
            tmp_path, capture=capture, image_width=100, image_height=100
        )

        for _ in range(3):
            await dispatcher.process_update(_bot(), _update("/capture"))

        assert capture.calls == [(tmp_path, 400, 300)] * 3

    async def test_unexpected_error_releases_lock(self, tmp_path):
        dispatcher = _dispatcher(tmp_path, capture=_FakeCapture())
        bot = _bot()
        bot.send_photo.side_effect = RuntimeError("boom")

        with pytest.raises(RuntimeError):
            await dispatcher.process_update(bot, _update("/capture"))

        assert dispatcher.session_store.locked is False
        assert list(tmp_path.glob("capture_*.jpg")) == []


class _RecordingLock:
    """asyncio.Lock wrapper recording hold intervals."""

    def __init__(self):
        self._lock = asyncio.Lock()
        self.intervals: list[tuple[float, float]] = []
        self._entered_at = 0.0

    def locked(self) -> bool:
        return self._lock.locked()

    async def __aenter__(self):
        await self._lock.acquire()
        self._entered_at = asyncio.get_running_loop().time()
        return self

    async def __aexit__(self, *exc_info):
        self.intervals.append(
            (self._entered_at, asyncio.get_running_loop().time())
        )
        self._lock.release()
        return False


class TestSerialization:
    async def test_concurrent_updates_never_overlap(self, tmp_path):
        lock = _RecordingLock()
        store = SessionStore(["alice", "bob"], lock=lock)
        capture = _FakeCapture(delay=0.05)
        dispatcher = _dispatcher(tmp_path, capture=capture, store=store)
        events: list[str] = []
        bot = _bot()
        bot.send_photo.side_effect = lambda **kwargs: events.append("photo")
        bot.send_message.side_effect = lambda **kwargs: events.append("text")

        results = await asyncio.gather(
            dispatcher.process_update(bot, _update("/capture", username="alice")),
            dispatcher.process_update(bot, _update("/help", username="bob")),
            dispatcher.process_update(bot, _update("/status", username="alice")),
        )

        assert [result.ok for result in results] == [True, True, True]
        assert len(lock.intervals) == 3
        ordered = sorted(lock.intervals)
        for (_, first_end), (second_start, _) in zip(ordered, ordered[1:]):
            assert first_end <= second_start
        # The slow capture finishes before the other users are answered.
        assert events == ["photo", "text", "text"]
