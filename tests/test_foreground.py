"""ForegroundSession / ShellCommandProcessor tests.

Runs against the in-memory FakeExecution capability.

Test coverage:
- Status derivation and final output for every disposition
- Live display updates, binary suppression, interactive frames
- Backgrounding handoff and redirected updates
- Directory drift warning and marker cleanup
- History policy and error paths
"""

from __future__ import annotations

import asyncio
import re
from pathlib import Path

import pytest
from conftest import FakeExecution

from shell_sessions.runtime.cancellation import CancellationToken
from shell_sessions.runtime.events import (
    AnsiToken,
    BinaryDetectedEvent,
    BinaryProgressEvent,
    DataEvent,
    UnhandledEventError,
)
from shell_sessions.runtime.types import ExecResult
from shell_sessions.shell.aggregator import BINARY_DETECTED_MESSAGE
from shell_sessions.shell.foreground import derive_status
from shell_sessions.shell.history import InMemoryHistory
from shell_sessions.shell.processor import ShellCommandProcessor
from shell_sessions.shell.types import (
    BINARY_RESULT_MESSAGE,
    NO_OUTPUT_MESSAGE,
    ShellStatus,
    ToolCallStatus,
)


class Harness:
    """Processor wired to a fake capability with recording collaborators."""

    def __init__(self, target_dir: str, is_windows: bool = True, interactive: bool = False):
        self.fake = FakeExecution()
        self.updates = []
        self.debug_messages = []
        self.focus = []
        self.history = InMemoryHistory()
        self.processor = ShellCommandProcessor(
            self.fake,
            target_dir=target_dir,
            history=self.history,
            on_display=self.updates.append,
            on_debug_message=self.debug_messages.append,
            set_shell_input_focused=self.focus.append,
            interactive=interactive,
            is_windows=is_windows,
        )

    def on_started(self, callback) -> None:
        self.fake.on_started = callback


@pytest.fixture
def harness(tmp_path: Path) -> Harness:
    return Harness(str(tmp_path))


def marker_path(command: str) -> Path:
    match = re.search(r'pwd > "([^"]+)"', command)
    assert match, command
    return Path(match.group(1))


# =============================================================================
# Status derivation
# =============================================================================


class TestDeriveStatus:
    def test_error_wins(self):
        result = ExecResult(error=OSError("boom"), aborted=True, exit_code=1)
        status, output = derive_status(result, "out")
        assert status == ToolCallStatus.ERROR
        assert output == "boom\nout"

    def test_aborted_before_backgrounded(self):
        status, output = derive_status(ExecResult(aborted=True, backgrounded=True), "out")
        assert status == ToolCallStatus.CANCELED
        assert output == "Command was cancelled.\nout"

    def test_backgrounded(self):
        status, output = derive_status(ExecResult(backgrounded=True, pid=42), "out")
        assert status == ToolCallStatus.SUCCESS
        assert output == (
            "Command moved to background (PID: 42). Output hidden. Press Ctrl+B to view."
        )

    def test_signal_before_exit_code(self):
        status, output = derive_status(ExecResult(signal=9, exit_code=1), "out")
        assert status == ToolCallStatus.ERROR
        assert output == "Command terminated by signal: 9.\nout"

    def test_nonzero_exit(self):
        status, output = derive_status(ExecResult(exit_code=2), "out")
        assert status == ToolCallStatus.ERROR
        assert output.startswith("Command exited with code 2.")

    def test_success(self):
        assert derive_status(ExecResult(exit_code=0), "hi") == (ToolCallStatus.SUCCESS, "hi")


# =============================================================================
# Foreground execution
# =============================================================================


class TestExecute:
    @pytest.mark.asyncio
    async def test_echo_success(self, harness: Harness):
        def started(pid):
            harness.fake.emit(pid, DataEvent(chunk="hi\n"))
            harness.fake.finish(pid, exit_code=0, output="hi\n")

        harness.on_started(started)
        result = await harness.processor.execute("echo hi", CancellationToken())

        assert result.status == ToolCallStatus.SUCCESS
        assert result.output == "hi"
        assert result.exit_code == 0
        assert result.pid == 1000

        statuses = [u.status for u in harness.updates]
        assert statuses[0] == ToolCallStatus.EXECUTING
        assert statuses[-1] == ToolCallStatus.SUCCESS
        assert harness.updates[-1].result_display == "hi"
        assert {u.call_id for u in harness.updates} == {harness.updates[0].call_id}
        assert any(u.result_display == "hi\n" for u in harness.updates)

    @pytest.mark.asyncio
    async def test_no_output_placeholder(self, harness: Harness):
        harness.on_started(lambda pid: harness.fake.finish(pid, exit_code=0, output="  \n"))
        result = await harness.processor.execute("true")
        assert result.output == NO_OUTPUT_MESSAGE

    @pytest.mark.asyncio
    async def test_nonzero_exit(self, harness: Harness):
        harness.on_started(lambda pid: harness.fake.finish(pid, exit_code=2, output="bad\n"))
        result = await harness.processor.execute("exit 2")
        assert result.status == ToolCallStatus.ERROR
        assert result.output == "Command exited with code 2.\nbad"

    @pytest.mark.asyncio
    async def test_signal(self, harness: Harness):
        harness.on_started(lambda pid: harness.fake.finish(pid, exit_code=None, signal=9))
        result = await harness.processor.execute("sleep 100")
        assert result.status == ToolCallStatus.ERROR
        assert result.output.startswith("Command terminated by signal: 9.")

    @pytest.mark.asyncio
    async def test_spawn_failure(self, harness: Harness):
        harness.fake.spawn_error = OSError("spawn failed")
        result = await harness.processor.execute("ls")
        assert result.status == ToolCallStatus.ERROR
        assert result.output == f"spawn failed\n{NO_OUTPUT_MESSAGE}"
        assert result.pid is None
        assert len(harness.history) == 1

    @pytest.mark.asyncio
    async def test_blank_input_not_handled(self, harness: Harness):
        assert await harness.processor.execute("   ") is None
        assert await harness.processor.execute(123) is None
        assert harness.fake.calls == []

    @pytest.mark.asyncio
    async def test_execute_arguments(self, harness: Harness, tmp_path: Path):
        harness.on_started(lambda pid: harness.fake.finish(pid))
        token = CancellationToken()
        await harness.processor.execute("ls", token)

        call = harness.fake.calls[0]
        assert call["command"] == "ls"
        assert call["cwd"] == str(tmp_path)
        assert call["cancel_token"] is token
        assert call["interactive"] is False

    @pytest.mark.asyncio
    async def test_state_reset_after_run(self, harness: Harness):
        seen = []

        def started(pid):
            seen.append(harness.processor.active_shell_pid)
            harness.fake.finish(pid)

        harness.on_started(started)
        await harness.processor.execute("ls")

        assert seen == [1000]
        assert harness.processor.active_shell_pid is None
        assert harness.focus == [False]

    @pytest.mark.asyncio
    async def test_call_ids_are_unique(self, harness: Harness):
        first = harness.processor.next_call_id()
        second = harness.processor.next_call_id()
        assert re.fullmatch(r"shell-\d+", first)
        assert first != second


class TestStreaming:
    @pytest.mark.asyncio
    async def test_binary_suppresses_data(self, harness: Harness):
        def started(pid):
            harness.fake.emit(pid, DataEvent(chunk="head"))
            harness.fake.emit(pid, BinaryDetectedEvent())
            harness.fake.emit(pid, DataEvent(chunk="ignored"))
            harness.fake.emit(pid, BinaryProgressEvent(bytes_received=2048))
            harness.fake.finish(pid, output="head\x00", raw_output=b"head\x00\x01")

        harness.on_started(started)
        result = await harness.processor.execute("cat image.png")

        displays = [u.result_display for u in harness.updates if u.status == ToolCallStatus.EXECUTING]
        assert "head" in displays
        assert BINARY_DETECTED_MESSAGE in displays
        assert "[Receiving binary output... 2.0 KB received]" in displays
        assert not any(d == "headignored" for d in displays)
        assert result.output == BINARY_RESULT_MESSAGE

    @pytest.mark.asyncio
    async def test_interactive_frames(self, tmp_path: Path):
        harness = Harness(str(tmp_path), interactive=True)
        first = [[AnsiToken(text="1")]]
        second = [[AnsiToken(text="1")], [AnsiToken(text="2")]]

        def started(pid):
            harness.fake.emit(pid, DataEvent(chunk=first))
            harness.fake.emit(pid, DataEvent(chunk=second))
            harness.fake.finish(pid, output="1\n2\n")

        harness.on_started(started)
        await harness.processor.execute("top")

        executing = [u for u in harness.updates if u.status == ToolCallStatus.EXECUTING]
        assert executing[-1].result_display == second
        assert harness.fake.calls[0]["interactive"] is True

    @pytest.mark.asyncio
    async def test_unhandled_event_is_fatal(self, harness: Harness):
        def started(pid):
            try:
                harness.fake.emit(pid, object())
            except UnhandledEventError as e:
                harness.fake.handles[pid].result.set_exception(e)

        harness.on_started(started)
        with pytest.raises(UnhandledEventError):
            await harness.processor.execute("ls")

        assert len(harness.history) == 0
        assert harness.processor.active_shell_pid is None
        assert harness.focus == [False]


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_mid_run(self, harness: Harness):
        token = CancellationToken()

        def started(pid):
            harness.fake.emit(pid, DataEvent(chunk="partial"))
            token.cancel()

        harness.on_started(started)
        result = await harness.processor.execute("sleep 100", token)

        assert result.status == ToolCallStatus.CANCELED
        assert result.aborted
        assert result.output.startswith("Command was cancelled.")
        assert len(harness.history) == 0
        assert "Aborting shell command (PID: 1000)" in harness.debug_messages

    @pytest.mark.asyncio
    async def test_abort_listener_removed_after_run(self, harness: Harness):
        token = CancellationToken()
        harness.on_started(lambda pid: harness.fake.finish(pid))
        await harness.processor.execute("ls", token)

        token.cancel()
        assert not any(m.startswith("Aborting") for m in harness.debug_messages)


class TestBackgrounding:
    @pytest.mark.asyncio
    async def test_background_handoff(self, harness: Harness):
        processor = harness.processor

        def started(pid):
            harness.fake.emit(pid, DataEvent(chunk="listening"))
            assert processor.background_current_shell()

        harness.on_started(started)
        result = await processor.execute("npm start")

        assert result.status == ToolCallStatus.SUCCESS
        assert result.backgrounded
        assert result.output.startswith("Command moved to background (PID: 1000)")
        assert processor.active_shell_pid is None

        shell = processor.registry.get(1000)
        assert shell.command == "npm start"
        assert shell.output == "listening"
        assert shell.status == ShellStatus.RUNNING
        assert processor.background_shell_count == 1
        assert processor.is_background_shell_visible

        # Later output goes to the registry, not the foreground display
        update_count = len(harness.updates)
        harness.fake.emit(1000, DataEvent(chunk=" on :3000"))
        assert shell.output == "listening on :3000"
        assert len(harness.updates) == update_count

        harness.fake.exit(1000, exit_code=0)
        assert shell.status == ShellStatus.EXITED
        assert processor.background_shell_count == 0

    @pytest.mark.asyncio
    async def test_backgrounded_result_goes_to_history(self, harness: Harness):
        harness.on_started(lambda pid: harness.processor.background_current_shell())
        await harness.processor.execute("npm start")
        assert len(harness.history) == 1
        assert "moved to background" in harness.history.entries[0].text

    @pytest.mark.asyncio
    async def test_two_backgrounded_commands(self, harness: Harness):
        processor = harness.processor
        harness.on_started(lambda pid: processor.background_current_shell())

        await processor.execute("server a")
        await processor.execute("server b")

        assert processor.registry.pids() == [1000, 1001]
        assert processor.view.list_open

        harness.fake.exit(1000, exit_code=0)
        assert processor.registry.pids() == [1001, 1000]
        assert processor.registry.get(1001).status == ShellStatus.RUNNING

    @pytest.mark.asyncio
    async def test_background_requested_before_start(self, harness: Harness):
        session = harness.processor.create_session("npm start")
        assert session.background()
        assert harness.fake.backgrounded == []

        result = await harness.processor.run_session(session)
        assert harness.fake.backgrounded == [1000]
        assert result.backgrounded

    @pytest.mark.asyncio
    async def test_background_after_finish_is_rejected(self, harness: Harness):
        harness.on_started(lambda pid: harness.fake.finish(pid))
        session = harness.processor.create_session("ls")
        await harness.processor.run_session(session)
        assert session.background() is False

    @pytest.mark.asyncio
    async def test_late_output_after_dismiss_is_dropped(self, harness: Harness):
        processor = harness.processor
        harness.on_started(lambda pid: processor.background_current_shell())
        await processor.execute("tail -f log")
        assert processor.dismiss_background_shell(1000)

        update_count = len(harness.updates)
        output_time = processor.last_shell_output_time
        harness.fake.emit(1000, DataEvent(chunk="late output"))

        assert len(harness.updates) == update_count
        assert processor.last_shell_output_time == output_time

    @pytest.mark.asyncio
    async def test_reused_pid_is_tracked_as_running(self, harness: Harness):
        processor = harness.processor
        harness.on_started(lambda pid: harness.fake.finish(pid))
        await processor.execute("true")
        assert harness.fake.hub.has_exited(1000)

        def started(pid):
            harness.fake.emit(pid, DataEvent(chunk="ready"))
            processor.background_current_shell()

        harness.fake.next_pid = 1000
        harness.on_started(started)
        await processor.execute("npm start")

        shell = processor.registry.get(1000)
        assert shell.status == ShellStatus.RUNNING
        assert shell.output == "ready"

    def test_background_without_active_shell(self, harness: Harness):
        assert harness.processor.background_current_shell() is False
        assert harness.fake.backgrounded == []

    def test_toggle_without_shells_adds_info(self, harness: Harness):
        assert harness.processor.toggle_background_shell() is False
        entry = harness.history.entries[-1]
        assert entry.role == "info"
        assert entry.text == "No background shells are currently active."

    def test_register_and_dismiss(self, harness: Harness):
        processor = harness.processor
        assert processor.register_background_shell(7, "sleep 9", "")
        assert processor.is_background_shell_visible
        assert processor.dismiss_background_shell(7)
        assert harness.fake.killed == [7]
        assert not processor.is_background_shell_visible


class TestDirectoryCapture:
    @pytest.mark.asyncio
    async def test_directory_change_warning(self, tmp_path: Path):
        harness = Harness(str(tmp_path), is_windows=False)
        markers = []

        def started(pid):
            marker = marker_path(harness.fake.calls[-1]["command"])
            marker.write_text("/somewhere/else\n")
            markers.append(marker)
            harness.fake.finish(pid, output="ok")

        harness.on_started(started)
        result = await harness.processor.execute("cd /somewhere/else")

        assert result.output == (
            "WARNING: shell mode is stateless; the directory change to "
            "'/somewhere/else' will not persist.\n\nok"
        )
        assert not markers[0].exists()

    @pytest.mark.asyncio
    async def test_same_directory_no_warning(self, tmp_path: Path):
        harness = Harness(str(tmp_path), is_windows=False)

        def started(pid):
            marker_path(harness.fake.calls[-1]["command"]).write_text(str(tmp_path))
            harness.fake.finish(pid, output="ok")

        harness.on_started(started)
        result = await harness.processor.execute("ls")
        assert result.output == "ok"

    @pytest.mark.asyncio
    async def test_marker_removed_on_error(self, tmp_path: Path):
        harness = Harness(str(tmp_path), is_windows=False)
        markers = []

        def started(pid):
            marker = marker_path(harness.fake.calls[-1]["command"])
            marker.write_text("/x")
            markers.append(marker)
            try:
                harness.fake.emit(pid, object())
            except UnhandledEventError as e:
                harness.fake.handles[pid].result.set_exception(e)

        harness.on_started(started)
        with pytest.raises(UnhandledEventError):
            await harness.processor.execute("ls")
        assert not markers[0].exists()

    @pytest.mark.asyncio
    async def test_backgrounded_marker_removed_after_exit(self, tmp_path: Path):
        harness = Harness(str(tmp_path), is_windows=False)
        markers = []

        def started(pid):
            markers.append(marker_path(harness.fake.calls[-1]["command"]))
            harness.processor.background_current_shell()

        harness.on_started(started)
        await harness.processor.execute("npm run build")

        # The wrapper writes the marker when the background process ends
        markers[0].write_text(str(tmp_path))
        assert markers[0].exists()
        harness.fake.exit(1000, exit_code=0)
        assert not markers[0].exists()

    @pytest.mark.asyncio
    async def test_dismissed_marker_removed_after_exit(self, tmp_path: Path):
        harness = Harness(str(tmp_path), is_windows=False)
        markers = []

        def started(pid):
            markers.append(marker_path(harness.fake.calls[-1]["command"]))
            harness.processor.background_current_shell()

        harness.on_started(started)
        await harness.processor.execute("sleep 100")
        assert harness.processor.dismiss_background_shell(1000)

        markers[0].write_text("/tmp")
        harness.fake.exit(1000, signal=15)
        assert not markers[0].exists()


class TestHistory:
    @pytest.mark.asyncio
    async def test_history_entry_shape(self, harness: Harness):
        harness.on_started(lambda pid: harness.fake.finish(pid, output="hello"))
        await harness.processor.execute("echo hello")

        entry = harness.history.entries[0]
        assert entry.role == "user"
        assert entry.text == (
            "I ran the following shell command:\n```sh\necho hello\n```\n\n"
            "This produced the following result:\n```\nhello\n```"
        )

    @pytest.mark.asyncio
    async def test_history_truncated(self, tmp_path: Path):
        harness = Harness(str(tmp_path))
        harness.processor.max_history_output = 10
        harness.on_started(lambda pid: harness.fake.finish(pid, output="x" * 50))
        result = await harness.processor.execute("yes")

        assert result.output == "x" * 50
        assert "x" * 10 + "\n... (truncated)" in harness.history.entries[0].text

    @pytest.mark.asyncio
    async def test_unexpected_error(self, harness: Harness):
        class FailingHistory(InMemoryHistory):
            def append_history(self, entry):
                if entry.role == "user":
                    raise OSError("disk full")
                super().append_history(entry)

        harness.processor.history = FailingHistory()
        harness.on_started(lambda pid: harness.fake.finish(pid, output="ok"))
        result = await harness.processor.execute("ls")

        assert result.status == ToolCallStatus.ERROR
        entries = harness.processor.history.entries
        assert [e.role for e in entries] == ["error"]
        assert entries[0].text == "An unexpected error occurred: disk full"
        assert harness.processor.active_shell_pid is None


class TestHandleShellCommand:
    @pytest.mark.asyncio
    async def test_schedules_and_reports_task(self, tmp_path: Path):
        tasks = []
        fake = FakeExecution()
        processor = ShellCommandProcessor(
            fake, target_dir=str(tmp_path), on_exec=tasks.append, is_windows=True
        )
        fake.on_started = lambda pid: fake.finish(pid, output="done")

        assert processor.handle_shell_command("echo done") is True
        assert len(tasks) == 1
        result = await asyncio.wait_for(tasks[0], timeout=5)
        assert result.output == "done"

    @pytest.mark.asyncio
    async def test_blank_not_handled(self, tmp_path: Path):
        processor = ShellCommandProcessor(FakeExecution(), target_dir=str(tmp_path))
        assert processor.handle_shell_command("") is False
