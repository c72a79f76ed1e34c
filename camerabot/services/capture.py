"""Still image capture through the raspistill command line tool."""

import asyncio
from datetime import datetime
from pathlib import Path
from typing import List, Union

import structlog

from camerabot.exceptions import CaptureError
from camerabot.utils.constants import DEFAULT_CAPTURE_COMMAND

logger = structlog.get_logger()


class RaspiStillCapture:
    """Run ``raspistill`` and return the path of the written JPEG.

    The call has no timeout: a capture that never exits blocks its caller.
    """

    def __init__(self, command: str = DEFAULT_CAPTURE_COMMAND):
        self.command = command

    def build_output_path(self, output_dir: Union[str, Path]) -> Path:
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
        return Path(output_dir) / f"capture_{timestamp}.jpg"

    def build_command(self, output_path: Path, width: int, height: int) -> List[str]:
        return [
            self.command,
            "-n",
            "-w",
            str(width),
            "-h",
            str(height),
            "-o",
            str(output_path),
        ]

    async def capture(
        self, output_dir: Union[str, Path], width: int, height: int
    ) -> Path:
        """Capture one still image into ``output_dir``."""
        output_path = self.build_output_path(output_dir)
        cmd = self.build_command(output_path, width, height)

        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            _, stderr = await proc.communicate()
        except OSError as e:
            raise CaptureError(f"Failed to run {self.command}: {e}") from e

        if proc.returncode != 0:
            self._discard_output(output_path)
            stderr_text = stderr.decode("utf-8", errors="replace").strip()
            raise CaptureError(
                f"{self.command} exited with code {proc.returncode}: {stderr_text}"
            )

        if not output_path.is_file():
            raise CaptureError(f"{self.command} produced no file at {output_path}")

        logger.debug(
            "Image captured", path=str(output_path), width=width, height=height
        )
        return output_path

    @staticmethod
    def _discard_output(output_path: Path) -> None:
        """Remove whatever a failed run left at the output path."""
        try:
            output_path.unlink(missing_ok=True)
        except OSError as e:
            logger.error(
                "Failed to delete temp file", path=str(output_path), error=str(e)
            )
