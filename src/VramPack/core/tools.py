"""Run external encoders (toktx, gltf-transform) as child processes.

Every invocation is bounded by a timeout and reports failure by raising a
`ToolError` subclass, so a hung or crashing encoder costs one file, never the
whole worker slot.
"""

import logging
import os
import platform
import shutil
import subprocess
import sys
from typing import List, Optional, Sequence

logger = logging.getLogger("vram_pack.tools")

GLTF_TRANSFORM_NPX = ["-y", "@gltf-transform/cli"]

# Known Windows NTSTATUS crash codes (as signed int32)
_CRASH_CODES_WIN = {
    -1073741819: "ACCESS_VIOLATION (0xC0000005)",
    -1073741795: "ILLEGAL_INSTRUCTION (0xC000001D)",
    -1073740791: "STACK_BUFFER_OVERRUN (0xC0000409)",
    -1073741571: "STACK_OVERFLOW (0xC00000FD)",
    -1073741515: "DLL_NOT_FOUND (0xC0000135)",
}


class ToolError(RuntimeError):
    """An external tool failed to run or exited non-zero."""

    def __init__(self, message: str, tool: str = "", cmd: Sequence[str] = (),
                 returncode: Optional[int] = None):
        super().__init__(message)
        self.tool = tool
        self.cmd = list(cmd)
        self.returncode = returncode


class ToolNotFoundError(ToolError):
    """The executable could not be started."""


class ToolTimeoutError(ToolError):
    """The tool exceeded its time budget and was killed."""


def _is_crash_code(returncode: int) -> Optional[str]:
    """Return a human-readable crash description, or None if not a crash."""
    if sys.platform == "win32":
        desc = _CRASH_CODES_WIN.get(returncode)
        if desc:
            return desc
        if returncode < 0:
            return f"NTSTATUS 0x{returncode & 0xFFFFFFFF:08X}"
        return None
    # Unix: negative returncode means killed by signal
    if returncode < 0:
        sig_num = -returncode
        try:
            import signal
            return f"{signal.Signals(sig_num).name} (signal {sig_num})"
        except (ValueError, AttributeError):
            return f"signal {sig_num}"
    return None


def _forward_output(text, tool_label: str, stream_name: str,
                    level: int, max_lines: int = 120) -> None:
    """Log subprocess output line-by-line at the given level."""
    if not text or not text.strip():
        return
    lines = text.splitlines()
    if len(lines) > max_lines:
        omitted = len(lines) - max_lines
        logger.log(level, "[%s] ... %d earlier %s lines omitted",
                   tool_label, omitted, stream_name)
        lines = lines[-max_lines:]
    for line in lines:
        if len(line) > 500:
            line = line[:500] + "..."
        logger.log(level, "[%s] %s: %s", tool_label, stream_name, line)


def _as_text(output) -> str:
    if not output:
        return ""
    return output if isinstance(output, str) else output.decode(errors="replace")


def run_tool(cmd: List[str], tool_label: str, source_info: str,
             timeout: int = 600) -> subprocess.CompletedProcess:
    """Run ``cmd`` and return the completed process.

    Raises:
        ToolNotFoundError: the executable is missing or not executable.
        ToolTimeoutError: the process ran longer than ``timeout`` seconds.
        ToolError: the process exited non-zero or crashed.
    """
    logger.debug("Running %s: %s", tool_label, " ".join(cmd))
    try:
        proc = subprocess.run(
            cmd, capture_output=True, timeout=timeout, text=True,
            encoding="utf-8", errors="replace",
        )
    except FileNotFoundError as e:
        raise ToolNotFoundError(
            f"{tool_label} not found: {cmd[0]}", tool_label, cmd
        ) from e
    except PermissionError as e:
        raise ToolNotFoundError(
            f"{tool_label} is not executable: {cmd[0]}", tool_label, cmd
        ) from e
    except subprocess.TimeoutExpired as e:
        _forward_output(_as_text(e.stderr), tool_label, "stderr", logging.ERROR,
                        max_lines=10)
        raise ToolTimeoutError(
            f"{tool_label} timed out after {timeout}s for {source_info}",
            tool_label, cmd,
        ) from e

    if proc.returncode == 0:
        _forward_output(proc.stdout, tool_label, "stdout", logging.DEBUG, max_lines=200)
        _forward_output(proc.stderr, tool_label, "stderr", logging.DEBUG, max_lines=200)
        return proc

    _forward_output(proc.stdout, tool_label, "stdout", logging.ERROR)
    _forward_output(proc.stderr, tool_label, "stderr", logging.ERROR)
    crash = _is_crash_code(proc.returncode)
    if crash:
        message = (
            f"{tool_label} crashed processing {source_info}: {crash} "
            f"(exit code {proc.returncode})"
        )
    else:
        message = (
            f"{tool_label} failed for {source_info} with exit code {proc.returncode}"
        )
    raise ToolError(message, tool_label, cmd, proc.returncode)


def find_toktx(configured: str = "toktx") -> Optional[str]:
    """Resolve toktx on PATH, then in the bundled ``bin/`` directory."""
    if os.path.isfile(configured):
        return configured
    tool_path = shutil.which(configured)
    if tool_path:
        return tool_path

    from .. import BIN_DIR
    exe_suffix = ".exe" if platform.system() == "Windows" else ""
    candidates = [
        ktx_dir / f"toktx{exe_suffix}"
        for ktx_dir in sorted(BIN_DIR.glob("KTX-Software*"), reverse=True)
    ]
    candidates.append(BIN_DIR / f"toktx{exe_suffix}")
    for candidate in candidates:
        if candidate.is_file():
            return str(candidate)
    return None


def gltf_transform_command(configured: Sequence[str] = ()) -> List[str]:
    """Return the argv prefix that invokes the gltf-transform CLI."""
    if configured:
        return list(configured)
    direct = shutil.which("gltf-transform")
    if direct:
        return [direct]
    npx = shutil.which("npx") or "npx"
    return [npx, *GLTF_TRANSFORM_NPX]
