import asyncio
import logging
import sys
import tempfile
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional


logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 30_000
MAX_OUTPUT_CHARS = 20_000


@dataclass
class PythonResult:
    ok: bool
    exit_code: int
    stdout: str
    stderr: str
    timed_out: bool = False

    def to_artifact(self) -> Dict[str, Any]:
        return asdict(self)


def _decode(raw: Optional[bytes]) -> str:
    text = (raw or b"").decode("utf-8", errors="replace")
    if len(text) > MAX_OUTPUT_CHARS:
        text = text[:MAX_OUTPUT_CHARS] + "\n...(truncated)"
    return text


class PythonSandbox:
    """Runs a script in a throwaway working directory.

    Isolation is limited to the filesystem working directory; the process is not
    OS-sandboxed. The process is killed once the timeout elapses.
    """

    def __init__(self, command: Optional[List[str]] = None, default_timeout_ms: int = DEFAULT_TIMEOUT_MS):
        self.command = list(command or [sys.executable])
        self.default_timeout_ms = default_timeout_ms

    async def run(self, code: str, timeout_ms: Optional[int] = None) -> PythonResult:
        timeout_s = (timeout_ms if timeout_ms and timeout_ms > 0 else self.default_timeout_ms) / 1000
        with tempfile.TemporaryDirectory(prefix="harness-sandbox-") as sandbox_dir:
            script_path = Path(sandbox_dir) / "main.py"
            script_path.write_text(code, encoding="utf-8")
            try:
                proc = await asyncio.create_subprocess_exec(
                    *self.command,
                    str(script_path),
                    cwd=sandbox_dir,
                    stdin=asyncio.subprocess.DEVNULL,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                )
            except OSError as exc:
                logger.warning("Failed to start sandbox interpreter %s: %s", self.command, exc)
                return PythonResult(ok=False, exit_code=127, stdout="", stderr=str(exc))

            # Pipes are drained independently so output written before a kill survives.
            readers = [asyncio.ensure_future(proc.stdout.read()), asyncio.ensure_future(proc.stderr.read())]
            timed_out = False
            try:
                await asyncio.wait_for(proc.wait(), timeout=timeout_s)
            except asyncio.TimeoutError:
                timed_out = True
                proc.kill()
                await proc.wait()
            except asyncio.CancelledError:
                proc.kill()
                await proc.wait()
                for reader in readers:
                    reader.cancel()
                raise
            stdout, stderr = await asyncio.gather(*readers)
            if timed_out:
                note = f"Killed after {timeout_s:g}s timeout."
                stderr = (stderr.rstrip(b"\n") + b"\n" if stderr else b"") + note.encode("utf-8")

        exit_code = proc.returncode if proc.returncode is not None else 1
        if timed_out and exit_code == 0:
            exit_code = 1
        return PythonResult(
            ok=exit_code == 0 and not timed_out,
            exit_code=exit_code,
            stdout=_decode(stdout),
            stderr=_decode(stderr),
            timed_out=timed_out,
        )
