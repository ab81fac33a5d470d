"""
Claude Code CLI provider.

Runs the local ``claude`` executable in print mode with ``stream-json``
output, one call per subprocess. The prompt goes in on stdin as tagged
blocks, the system instruction through ``--system-prompt``. Closing the
stream terminates the subprocess.
"""

from typing import AsyncIterator, List, Optional
from pathlib import Path
import asyncio
import json
import shutil
import structlog

from contextforge.domain.context.context_assembler import AssembledPrompt, role_of
from contextforge.domain.errors import ProviderError, ProviderNotConfiguredError
from contextforge.domain.generation.provider import GenerationOptions, ProviderClient, ProviderEvent, ProviderHealth
from contextforge.domain.models.generation import GenerationUsage

logger = structlog.get_logger(__name__)

COMMON_INSTALL_PATHS = (
    Path.home() / ".local" / "bin" / "claude",
    Path("/usr/local/bin/claude"),
    Path("/usr/bin/claude"),
)

# stream-json lines can carry whole assistant messages
STDOUT_LINE_LIMIT = 16 * 1024 * 1024
TERMINATE_GRACE_SECONDS = 2.0
HEALTH_TIMEOUT_SECONDS = 5.0


def locate_claude(explicit_path: Optional[str] = None) -> Optional[str]:
    """Configured path first, then PATH, then the usual install locations"""

    if explicit_path:
        return explicit_path

    found = shutil.which("claude")
    if found:
        return found

    for candidate in COMMON_INSTALL_PATHS:
        if candidate.exists():
            return str(candidate)
    return None


def render_prompt(prompt: AssembledPrompt) -> str:
    """Render the conversation as <system>/<user>/<assistant> blocks"""

    parts = []
    for message in prompt.messages:
        role = role_of(message)
        parts.append(f"<{role}>\n{message.content}\n</{role}>")
    return "\n\n".join(parts)


class ClaudeStreamParser:
    """
    Turns ``stream-json`` lines into provider events.

    Text comes from ``text_delta`` stream events. Whole ``assistant`` messages
    are only used when no deltas arrived, otherwise the text would be doubled.
    """

    def __init__(self):
        self.saw_delta = False
        self.result_seen = False

    def feed(self, line: str) -> Optional[ProviderEvent]:
        if not line.strip():
            return None
        try:
            message = json.loads(line)
        except json.JSONDecodeError:
            logger.debug("Skipping non-JSON CLI output", line=line[:200])
            return None
        if not isinstance(message, dict):
            return None

        message_type = message.get("type")

        if message_type == "stream_event":
            event = message.get("event") or {}
            delta = event.get("delta") or {}
            if event.get("type") == "content_block_delta" and delta.get("type") == "text_delta":
                text = delta.get("text") or ""
                if text:
                    self.saw_delta = True
                    return ProviderEvent(text=text)
            return None

        if message_type == "assistant":
            if self.saw_delta:
                return None
            content = (message.get("message") or {}).get("content") or []
            text = "".join(block.get("text") or "" for block in content if block.get("type") == "text")
            return ProviderEvent(text=text) if text else None

        if message_type == "result":
            self.result_seen = True
            if message.get("is_error"):
                detail = message.get("result") or message.get("subtype") or "unknown error"
                raise ProviderError(f"Claude Code error: {detail}", provider="claude")

            usage = message.get("usage") or {}
            return ProviderEvent(usage=GenerationUsage(
                input_units=usage.get("input_tokens"),
                output_units=usage.get("output_tokens"),
                cost=message.get("total_cost_usd"),
                duration_ms=message.get("duration_ms")
            ))

        return None


class ClaudeCliProvider(ProviderClient):
    name = "claude"

    def __init__(
        self,
        enabled: bool = True,
        executable: Optional[str] = None,
        default_model: Optional[str] = None
    ):
        self.enabled = enabled
        self.executable = executable
        self.default_model = default_model

    def _resolve_executable(self) -> str:
        if not self.enabled:
            raise ProviderNotConfiguredError(
                "Claude Code is disabled (CONTEXTFORGE_CLAUDE_CODE_ENABLED=false)",
                provider=self.name
            )

        path = locate_claude(self.executable)
        if path is None:
            raise ProviderNotConfiguredError(
                "Claude Code CLI not found. Install it or set CONTEXTFORGE_CLAUDE_CODE_PATH.",
                provider=self.name
            )
        return path

    def build_command(self, executable: str, prompt: AssembledPrompt, options: GenerationOptions) -> List[str]:
        command = [
            executable,
            "-p",
            "--output-format", "stream-json",
            "--verbose",
            "--include-partial-messages",
            "--max-turns", "1",
        ]

        # Guard alone when there is no instruction
        system_prompt = ((prompt.system_instruction or "") + self.system_suffix(options)).strip()
        if system_prompt:
            command += ["--system-prompt", system_prompt]

        model = options.model or self.default_model
        if model:
            command += ["--model", model]
        return command

    async def _collect_stderr(self, stream: asyncio.StreamReader, sink: List[str]):
        while True:
            line = await stream.readline()
            if not line:
                return
            sink.append(line.decode("utf-8", errors="replace"))

    async def _teardown(self, process: asyncio.subprocess.Process):
        if process.returncode is not None:
            return

        process.terminate()
        try:
            await asyncio.wait_for(process.wait(), timeout=TERMINATE_GRACE_SECONDS)
        except asyncio.TimeoutError:
            logger.warning("Claude CLI ignored SIGTERM, killing", pid=process.pid)
            process.kill()
            await process.wait()

    async def stream(self, prompt: AssembledPrompt, options: GenerationOptions) -> AsyncIterator[ProviderEvent]:
        executable = self._resolve_executable()
        command = self.build_command(executable, prompt, options)

        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=STDOUT_LINE_LIMIT
            )
        except OSError as e:
            raise ProviderError(f"Failed to start Claude Code CLI: {e}", provider=self.name) from e

        logger.debug("Claude CLI started", pid=process.pid, model=options.model or self.default_model)

        stderr_lines: List[str] = []
        stderr_task = asyncio.create_task(self._collect_stderr(process.stderr, stderr_lines))
        parser = ClaudeStreamParser()

        try:
            process.stdin.write(render_prompt(prompt).encode("utf-8"))
            await process.stdin.drain()
            process.stdin.close()

            while True:
                line = await process.stdout.readline()
                if not line:
                    break
                try:
                    event = parser.feed(line.decode("utf-8", errors="replace"))
                except ProviderError as e:
                    e.diagnostics = "".join(stderr_lines)
                    raise
                if event is not None:
                    yield event

            returncode = await process.wait()
            await stderr_task
            if returncode != 0:
                raise ProviderError(
                    f"Claude Code exited with code {returncode}",
                    provider=self.name,
                    diagnostics="".join(stderr_lines)
                )
        except (BrokenPipeError, ConnectionResetError) as e:
            raise ProviderError(
                f"Claude Code CLI closed its input: {e}",
                provider=self.name,
                diagnostics="".join(stderr_lines)
            ) from e
        finally:
            await self._teardown(process)
            if not stderr_task.done():
                stderr_task.cancel()

    async def check_health(self) -> ProviderHealth:
        if not self.enabled:
            return ProviderHealth(
                ok=False,
                disabled=True,
                error="Claude Code is disabled (CONTEXTFORGE_CLAUDE_CODE_ENABLED=false)"
            )

        path = locate_claude(self.executable) or "claude"
        try:
            process = await asyncio.create_subprocess_exec(
                path, "--version",
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE
            )
        except OSError as e:
            return ProviderHealth(ok=False, error=f"Claude Code CLI error: {e}")

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=HEALTH_TIMEOUT_SECONDS)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            return ProviderHealth(ok=False, error="Claude Code CLI timed out")

        if process.returncode != 0:
            return ProviderHealth(
                ok=False,
                error=stderr.decode("utf-8", errors="replace").strip() or "Claude Code CLI not available"
            )
        return ProviderHealth(ok=True, version=stdout.decode("utf-8", errors="replace").strip())
