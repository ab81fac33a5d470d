"""Tests for the Claude Code CLI provider.

Tests cover:
- stream-json parsing
- Command line and prompt rendering
- Subprocess streaming with a stand-in executable
- Health checks
"""

import json
import stat
import sys
from pathlib import Path

import pytest

from contextforge.domain.context.context_assembler import assemble
from contextforge.domain.errors import ProviderError, ProviderNotConfiguredError
from contextforge.domain.generation.provider import AGENT_GUARD_SUFFIX, GenerationOptions
from contextforge.domain.models.content import SYSTEM_PROMPT_KIND, ContentItem, Zone
from contextforge.domain.models.conversation import Message, MessageRole
from contextforge.infrastructure.providers.claude_cli_provider import (
    ClaudeCliProvider,
    ClaudeStreamParser,
    locate_claude,
    render_prompt,
)

PROMPT = assemble(
    [
        ContentItem(session_id="s1", content="Be kind.", zone=Zone.PERMANENT, position=0, kind=SYSTEM_PROMPT_KIND),
        ContentItem(session_id="s1", content="Notes", zone=Zone.WORKING, position=0),
    ],
    [Message(role=MessageRole.USER, content="Earlier"), Message(role=MessageRole.ASSISTANT, content="Reply")],
    [],
    "Now"
)

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="uses a shell script as the CLI")


def delta_line(text: str) -> str:
    return json.dumps({
        "type": "stream_event",
        "event": {"type": "content_block_delta", "delta": {"type": "text_delta", "text": text}},
    })


RESULT_LINE = json.dumps({
    "type": "result",
    "subtype": "success",
    "is_error": False,
    "usage": {"input_tokens": 40, "output_tokens": 3},
    "total_cost_usd": 0.002,
    "duration_ms": 850,
})


def fake_cli(tmp_path: Path, body: str) -> str:
    script = tmp_path / "claude"
    script.write_text("#!/bin/sh\n" + body)
    script.chmod(script.stat().st_mode | stat.S_IXUSR)
    return str(script)


class TestClaudeStreamParser:
    def test_text_deltas(self) -> None:
        parser = ClaudeStreamParser()

        event = parser.feed(delta_line("Hi"))

        assert event.text == "Hi"
        assert parser.saw_delta

    def test_assistant_message_used_without_deltas(self) -> None:
        parser = ClaudeStreamParser()
        line = json.dumps({"type": "assistant", "message": {"content": [{"type": "text", "text": "Whole"}]}})

        assert parser.feed(line).text == "Whole"

    def test_assistant_message_ignored_after_deltas(self) -> None:
        parser = ClaudeStreamParser()
        parser.feed(delta_line("Who"))
        line = json.dumps({"type": "assistant", "message": {"content": [{"type": "text", "text": "Whole"}]}})

        assert parser.feed(line) is None

    def test_result_usage(self) -> None:
        parser = ClaudeStreamParser()

        usage = parser.feed(RESULT_LINE).usage

        assert usage.input_units == 40
        assert usage.output_units == 3
        assert usage.cost == 0.002
        assert usage.duration_ms == 850
        assert parser.result_seen

    def test_error_result_raises(self) -> None:
        parser = ClaudeStreamParser()
        line = json.dumps({"type": "result", "subtype": "error_max_turns", "is_error": True})

        with pytest.raises(ProviderError):
            parser.feed(line)

    @pytest.mark.parametrize("line", ["", "not json", "5", "[]", json.dumps({"type": "system", "subtype": "init"})])
    def test_ignored_lines(self, line: str) -> None:
        assert ClaudeStreamParser().feed(line) is None


class TestCommandAndPrompt:
    def test_command_carries_system_prompt_with_guard(self) -> None:
        provider = ClaudeCliProvider(default_model="sonnet")

        command = provider.build_command("/bin/claude", PROMPT, GenerationOptions())

        assert command[:2] == ["/bin/claude", "-p"]
        assert command[command.index("--output-format") + 1] == "stream-json"
        assert "--include-partial-messages" in command
        assert command[command.index("--system-prompt") + 1] == "Be kind." + AGENT_GUARD_SUFFIX
        assert command[command.index("--model") + 1] == "sonnet"

    def test_guard_alone_without_instruction(self) -> None:
        command = ClaudeCliProvider().build_command("claude", assemble([], [], [], "Hi"), GenerationOptions())

        assert command[command.index("--system-prompt") + 1] == AGENT_GUARD_SUFFIX.strip()
        assert "--model" not in command

    def test_no_system_prompt_without_instruction_or_guard(self) -> None:
        options = GenerationOptions(disable_agent_behavior=False)

        command = ClaudeCliProvider().build_command("claude", assemble([], [], [], "Hi"), options)

        assert "--system-prompt" not in command

    def test_instruction_without_guard(self) -> None:
        options = GenerationOptions(disable_agent_behavior=False)

        command = ClaudeCliProvider().build_command("/bin/claude", PROMPT, options)

        assert command[command.index("--system-prompt") + 1] == "Be kind."

    def test_render_prompt_tags_roles(self) -> None:
        rendered = render_prompt(PROMPT)

        assert rendered == (
            "<user>\nCurrent Context:\n\nNotes\n</user>\n\n"
            "<user>\nEarlier\n</user>\n\n"
            "<assistant>\nReply\n</assistant>\n\n"
            "<user>\nNow\n</user>"
        )

    def test_locate_prefers_explicit_path(self) -> None:
        assert locate_claude("/opt/claude") == "/opt/claude"


@posix_only
class TestSubprocessStreaming:
    async def test_streams_from_cli(self, tmp_path: Path) -> None:
        executable = fake_cli(
            tmp_path,
            "cat > /dev/null\n"
            f"echo '{delta_line('Hel')}'\n"
            f"echo '{delta_line('lo')}'\n"
            f"echo '{RESULT_LINE}'\n"
        )
        provider = ClaudeCliProvider(executable=executable)

        events = [event async for event in provider.stream(PROMPT, GenerationOptions())]

        assert "".join(e.text for e in events) == "Hello"
        assert events[-1].usage.output_units == 3

    async def test_nonzero_exit_carries_stderr(self, tmp_path: Path) -> None:
        executable = fake_cli(tmp_path, "cat > /dev/null\necho 'unknown option' >&2\nexit 2\n")
        provider = ClaudeCliProvider(executable=executable)

        with pytest.raises(ProviderError) as exc_info:
            async for _ in provider.stream(PROMPT, GenerationOptions()):
                pass

        assert "exited with code 2" in exc_info.value.message
        assert "unknown option" in exc_info.value.full_message

    async def test_closing_stream_terminates_process(self, tmp_path: Path) -> None:
        executable = fake_cli(
            tmp_path,
            "cat > /dev/null\n"
            f"echo '{delta_line('first')}'\n"
            "exec sleep 30\n"
        )
        provider = ClaudeCliProvider(executable=executable)

        stream = provider.stream(PROMPT, GenerationOptions())
        first = await stream.__anext__()
        await stream.aclose()

        assert first.text == "first"

    async def test_health_reports_version(self, tmp_path: Path) -> None:
        executable = fake_cli(tmp_path, "echo '2.0.1 (Claude Code)'\n")

        health = await ClaudeCliProvider(executable=executable).check_health()

        assert health.ok is True
        assert health.version == "2.0.1 (Claude Code)"


class TestDisabled:
    async def test_stream_refuses_when_disabled(self) -> None:
        provider = ClaudeCliProvider(enabled=False)

        with pytest.raises(ProviderNotConfiguredError):
            async for _ in provider.stream(PROMPT, GenerationOptions()):
                pass

    async def test_health_reports_disabled(self) -> None:
        health = await ClaudeCliProvider(enabled=False).check_health()

        assert health.ok is False
        assert health.disabled is True
