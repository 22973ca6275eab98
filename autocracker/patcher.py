import asyncio
import json
import logging
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

from .errors import PatchError
from .events import EventHub
from .progress import PROGRESS_TOPIC

logger = logging.getLogger(__name__)

DEFAULT_COMMAND = ["steam-autocrack"]
READ_CHUNK_SIZE = 64 * 1024


def parse_progress_line(line: str) -> Optional[Dict[str, Any]]:
    """
    Reads one patcher stdout line. Progress lines are JSON objects such as
    {"progress": 50, "message": "Starting Goldberg"}; anything else is None.
    """
    line = line.strip()
    if not line.startswith("{"):
        return None
    try:
        data = json.loads(line)
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict) or "message" not in data:
        return None
    percent = data.get("progress", data.get("percent"))
    if percent is None:
        return None
    return {"percent": percent, "message": str(data["message"])}


class SubprocessPatcher:
    """
    Apply-task that drives the external patcher executable (Steamless and the
    Goldberg emulator live behind it) and republishes its progress lines on
    the hub.
    """

    def __init__(
        self,
        hub: EventHub,
        command: Optional[Sequence[str]] = None,
        topic: str = PROGRESS_TOPIC,
    ):
        self.hub = hub
        self.command = list(command or DEFAULT_COMMAND)
        self.topic = topic

    def build_args(
        self, catalog_id: str, install_path: str, language: Optional[str] = None
    ) -> List[str]:
        args = self.command + ["--app-id", catalog_id, "--game-dir", install_path]
        if language:
            args += ["--language", language]
        return args

    def _emit(self, percent: float, message: str) -> None:
        self.hub.emit(self.topic, {"percent": percent, "message": message})

    async def __call__(
        self, catalog_id: str, install_path: str, language: Optional[str] = None
    ) -> str:
        args = self.build_args(catalog_id, install_path, language)
        logger.info("Running patcher: %s", " ".join(args))
        self._emit(0, "Starting")

        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise PatchError(f"Could not start patcher '{args[0]}': {e}") from e

        output_lines: List[str] = []
        stderr_task = asyncio.ensure_future(process.stderr.read())
        try:
            async for line in self._read_lines(process.stdout):
                payload = parse_progress_line(line)
                if payload is not None:
                    self.hub.emit(self.topic, payload)
                elif line:
                    output_lines.append(line)

            stderr = (await stderr_task).decode("utf-8", errors="replace")
            returncode = await process.wait()
        finally:
            if process.returncode is None:
                logger.warning("Killing patcher (pid %s)", process.pid)
                process.kill()
                await process.wait()
            if not stderr_task.done():
                stderr_task.cancel()

        if returncode != 0:
            stderr_lines = [l for l in stderr.splitlines() if l.strip()]
            detail = (
                stderr_lines[-1].strip()
                if stderr_lines
                else f"patcher exited with code {returncode}"
            )
            logger.error("Patcher failed (%d): %s", returncode, stderr.strip())
            raise PatchError(detail)

        self._emit(100, "Done")
        return "\n".join(output_lines)

    @staticmethod
    async def _read_lines(stream: asyncio.StreamReader) -> AsyncIterator[str]:
        # Splits lines by hand; readline() gives up past the stream limit.
        buffer = b""
        while True:
            chunk = await stream.read(READ_CHUNK_SIZE)
            if not chunk:
                break
            buffer += chunk
            *lines, buffer = buffer.split(b"\n")
            for raw in lines:
                yield raw.decode("utf-8", errors="replace").rstrip()
        if buffer:
            yield buffer.decode("utf-8", errors="replace").rstrip()
