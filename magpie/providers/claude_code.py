"""Claude Code CLI provider: drives `claude -p <prompt>` as a subprocess."""

import asyncio
import codecs
import logging
import time
from collections.abc import AsyncIterator

from config.config_loader import ModelConfig
from magpie.models import Message
from magpie.providers.base import ChatProvider, ProviderError

logger = logging.getLogger(__name__)

_READ_SIZE = 4096


def build_prompt(messages: list[Message], system_prompt: str | None = None) -> str:
    """Flatten a conversation into the single prompt the CLI accepts."""
    parts: list[str] = []
    if system_prompt:
        parts.append(f"System: {system_prompt}")
    parts.extend(f"{m.role}: {m.content}" for m in messages)
    return "\n\n".join(parts) + "\n\n"


class ClaudeCodeProvider(ChatProvider):
    """Runs the locally installed `claude` CLI. Needs no API key."""

    def __init__(self, config: ModelConfig, executable: str = "claude") -> None:
        self._config = config
        self._executable = executable

    def name(self) -> str:
        return self._config.name

    def model_string(self) -> str:
        return self._config.model

    async def _spawn(self, prompt: str) -> asyncio.subprocess.Process:
        try:
            return await asyncio.create_subprocess_exec(
                self._executable, "-p", prompt,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise ProviderError(self._config.name, f"Failed to run {self._executable} CLI: {exc}") from exc

    async def chat(self, messages: list[Message], system_prompt: str | None = None) -> str:
        start = time.monotonic()
        proc = await self._spawn(build_prompt(messages, system_prompt))
        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self._config.timeout_sec)
        except TimeoutError as exc:
            proc.kill()
            await proc.wait()
            raise ProviderError(self._config.name, f"CLI timed out after {self._config.timeout_sec}s") from exc

        if proc.returncode != 0:
            raise ProviderError(
                self._config.name,
                f"CLI exited with code {proc.returncode}: {stderr.decode(errors='replace').strip()}",
            )

        logger.debug("Claude CLI chat: %.2fs", time.monotonic() - start)
        return stdout.decode(errors="replace").strip()

    async def chat_stream(
        self,
        messages: list[Message],
        system_prompt: str | None = None,
    ) -> AsyncIterator[str]:
        start = time.monotonic()
        proc = await self._spawn(build_prompt(messages, system_prompt))
        # The CLI may write progress to stderr; drain it so the pipe never blocks.
        stderr_task = asyncio.create_task(proc.stderr.read())
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        try:
            while True:
                data = await proc.stdout.read(_READ_SIZE)
                if not data:
                    break
                text = decoder.decode(data)
                if text:
                    yield text
            tail = decoder.decode(b"", final=True)
            if tail:
                yield tail

            returncode = await proc.wait()
            stderr = await stderr_task
            if returncode != 0:
                raise ProviderError(
                    self._config.name,
                    f"CLI exited with code {returncode}: {stderr.decode(errors='replace').strip()}",
                )
        finally:
            if proc.returncode is None:
                proc.kill()
                await proc.wait()
            if not stderr_task.done():
                stderr_task.cancel()

        logger.debug("Claude CLI stream: %.2fs", time.monotonic() - start)
