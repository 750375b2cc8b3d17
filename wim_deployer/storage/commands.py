"""External command execution.

Commands are always passed as argument lists, never through a shell.
"""

from __future__ import annotations

import shutil
import subprocess
from typing import Callable, Iterator, Optional, Sequence

from wim_deployer.logging import LoggerFactory


log = LoggerFactory.for_system()


def find_tool(executable: str) -> Optional[str]:
    """Return the full path of an executable, or None if it is not installed."""
    return shutil.which(executable)


def run_command(
    command: Sequence[str], check=True, log_output=True, log_command=True
) -> subprocess.CompletedProcess:
    if log_command:
        log.debug(f"Running command: {' '.join(command)}")
    try:
        result = subprocess.run(
            list(command), check=check, text=True, capture_output=True
        )
    except subprocess.CalledProcessError as error:
        log.debug(f"Command failed: {' '.join(command)}")
        if error.stdout:
            log.debug(f"stdout: {error.stdout.strip()}")
        if error.stderr:
            log.debug(f"stderr: {error.stderr.strip()}")
        raise
    if result.stdout and (log_output or result.returncode != 0):
        log.debug(f"stdout: {result.stdout.strip()}")
    if result.stderr and (log_output or result.returncode != 0):
        log.debug(f"stderr: {result.stderr.strip()}")
    if log_command:
        log.debug(f"Command completed with return code {result.returncode}")
    return result


def stream_command(
    command: Sequence[str],
    on_line: Optional[Callable[[str], None]] = None,
) -> tuple[int, list[str]]:
    """Run a command and hand each output line to ``on_line`` as it arrives.

    stderr is merged into stdout.

    Returns:
        (return code, all output lines)
    """
    log.debug(f"Starting command: {' '.join(command)}")
    process = subprocess.Popen(
        list(command),
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        text=True,
    )
    lines: list[str] = []
    for line in _iter_lines(process):
        lines.append(line)
        if on_line is not None:
            on_line(line)
    returncode = process.wait()
    log.debug(f"Command completed with return code {returncode}")
    return returncode, lines


def _iter_lines(process: subprocess.Popen) -> Iterator[str]:
    stream = process.stdout
    if stream is None:
        return
    # DISM redraws its progress bar with carriage returns
    for raw in stream:
        for part in raw.replace("\r", "\n").split("\n"):
            part = part.strip()
            if part:
                yield part
