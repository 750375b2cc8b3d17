"""Image application with DISM.

Supported operations:
    get_image_info():    List the image indexes in a WIM/ESD file with their
                         expanded sizes
    apply_image():       Apply one image index to a volume root

DISM prints its progress as a bar ending in a percentage, e.g.
``[=====    10.0%   ]``. The percentage is parsed and forwarded to the
progress callback as ``callback(lines, ratio)``.

DISM exits with a Win32 error code on failure; the common ones are turned
into readable messages (see DISM_ERRORS).
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Callable, List, Optional, Protocol

from wim_deployer.config.settings import get_setting
from wim_deployer.logging import LoggerFactory, ThrottledLogger
from wim_deployer.storage.commands import find_tool, run_command, stream_command
from wim_deployer.storage.exceptions import ImageApplyError


log = LoggerFactory.for_image()

ProgressCallback = Callable[[List[str], Optional[float]], None]

PROGRESS_PATTERN = re.compile(r"(\d{1,3}(?:\.\d+)?)%")
INDEX_PATTERN = re.compile(r"^\s*Index\s*:\s*(\d+)\s*$")
SIZE_PATTERN = re.compile(r"^\s*Size\s*:\s*([\d,.\s]+?)\s*bytes\s*$")

DISM_ERRORS = {
    2: "image file not found",
    3: "path not found",
    5: "access denied (run as Administrator)",
    87: "invalid parameter or image index",
    112: "insufficient space on the target volume",
    1392: "image file is corrupt or unreadable",
}


class ImageTool(Protocol):
    def get_image_info(self, image_path: Path) -> dict[int, Optional[int]]: ...

    def apply_image(
        self,
        image_path: Path,
        index: int,
        target_root: str,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> None: ...


def describe_dism_error(returncode: int, output: str = "") -> str:
    """Turn a DISM exit code into a readable message."""
    match = re.search(r"Error:\s*(\d+)", output)
    code = int(match.group(1)) if match else returncode
    description = DISM_ERRORS.get(code)
    if description:
        return f"{description} (error {code})"
    return f"DISM exited with code {returncode}"


def parse_image_info(output: str) -> dict[int, Optional[int]]:
    """Map each image index in DISM /Get-ImageInfo output to its size in bytes.

    The size is None when DISM did not report one for the index.
    """
    images: dict[int, Optional[int]] = {}
    current: Optional[int] = None
    for line in output.splitlines():
        index_match = INDEX_PATTERN.match(line)
        if index_match:
            current = int(index_match.group(1))
            images[current] = None
            continue
        size_match = SIZE_PATTERN.match(line)
        if size_match and current is not None:
            digits = re.sub(r"\D", "", size_match.group(1))
            images[current] = int(digits) if digits else None
    return images


def parse_progress(line: str) -> Optional[float]:
    """Return the progress ratio (0.0-1.0) found in a DISM output line."""
    match = PROGRESS_PATTERN.search(line)
    if not match:
        return None
    percent = float(match.group(1))
    if percent > 100:
        return None
    return percent / 100.0


class DismImageTool:
    """ImageTool backed by DISM.exe."""

    def __init__(self, executable: Optional[str] = None):
        self.executable = executable or get_setting("dism_path", "DISM.exe")

    def _require_tool(self, image_path: Path, index: Optional[int]) -> None:
        if not find_tool(self.executable):
            raise ImageApplyError(
                str(image_path), index, f"{self.executable} not found on PATH"
            )

    def get_image_info(self, image_path: Path) -> dict[int, Optional[int]]:
        """List the images stored in an image file, keyed by index.

        Returns:
            {index: expanded size in bytes, or None if not reported}

        Raises:
            ImageApplyError: If DISM is missing, cannot be started or cannot read the file
        """
        self._require_tool(image_path, None)
        try:
            result = run_command(
                [
                    self.executable,
                    "/English",
                    "/Get-ImageInfo",
                    f"/ImageFile:{image_path}",
                ],
                check=False,
                log_output=False,
            )
        except OSError as error:
            raise ImageApplyError(
                str(image_path), None, f"could not start DISM: {error}"
            ) from error
        if result.returncode != 0:
            raise ImageApplyError(
                str(image_path),
                None,
                describe_dism_error(result.returncode, result.stdout or ""),
                output=result.stdout or "",
            )
        images = parse_image_info(result.stdout or "")
        log.debug(f"Image {image_path} lists indexes {sorted(images)}")
        return images

    def apply_image(
        self,
        image_path: Path,
        index: int,
        target_root: str,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> None:
        """Apply one image from an image file to a volume root.

        Args:
            image_path: Path to the WIM/ESD file
            index: Image index inside the file
            target_root: Volume root to apply to (e.g. F:\\)
            progress_callback: Optional callback(lines, ratio)

        Raises:
            ImageApplyError: On a missing file, invalid index, lack of space, a DISM
                that cannot be started or any other DISM failure
        """
        image_path = Path(image_path)
        if not image_path.is_file():
            raise ImageApplyError(str(image_path), index, "image file not found")
        self._require_tool(image_path, index)

        command = [
            self.executable,
            "/English",
            "/Apply-Image",
            f"/ImageFile:{image_path}",
            f"/Index:{int(index)}",
            f"/ApplyDir:{target_root}",
        ]
        log.info(f"Applying {image_path.name} index {index} to {target_root}")
        if progress_callback:
            progress_callback(["Applying image..."], 0.0)

        throttled = ThrottledLogger(log.bind(tags=["image", "progress"]), 10.0)

        def on_line(line: str) -> None:
            ratio = parse_progress(line)
            if ratio is None:
                log.debug(f"dism: {line}")
                return
            throttled.info("apply", f"Applying image: {ratio * 100:.1f}%")
            if progress_callback:
                progress_callback(["Applying image...", f"{ratio * 100:.1f}%"], ratio)

        try:
            returncode, lines = stream_command(command, on_line)
        except OSError as error:
            log.error(f"Could not start DISM: {error}")
            raise ImageApplyError(
                str(image_path), index, f"could not start DISM: {error}"
            ) from error
        if returncode != 0:
            output = "\n".join(lines)
            message = describe_dism_error(returncode, output)
            log.error(f"DISM failed: {message}")
            raise ImageApplyError(str(image_path), index, message, output=output)

        if progress_callback:
            progress_callback(["Image applied"], 1.0)
        log.info(f"Image applied to {target_root}")
