from __future__ import annotations

import shutil
import subprocess
import tempfile
import uuid
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Sequence, TypeVar

from .errors import EngineSessionError
from .utils import get_logger


logger = get_logger()

K = TypeVar("K")
R = TypeVar("R")


class ScratchSpace:
    """Directory for per-run engine files, removed on exit unless ``keep`` is set."""

    def __init__(self, root: Optional[Path | str] = None, prefix: str = "linkmap_", keep: bool = False):
        self.root = Path(root) if root is not None else None
        self.prefix = prefix
        self.keep = keep
        self.directory: Optional[Path] = None

    def __enter__(self) -> "ScratchSpace":
        if self.root is not None:
            self.root.mkdir(parents=True, exist_ok=True)
        self.directory = Path(tempfile.mkdtemp(prefix=self.prefix, dir=self.root))
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.cleanup()

    def path(self, name: str) -> Path:
        if self.directory is None:
            raise RuntimeError("ScratchSpace is not active")
        return self.directory / name

    def cleanup(self) -> None:
        if self.directory is None:
            return
        if self.keep:
            logger.info("Keeping scratch directory %s", self.directory)
        else:
            shutil.rmtree(self.directory, ignore_errors=True)
        self.directory = None


@dataclass
class EngineConfig:
    """How to launch an interactive engine and delimit its responses."""

    command: Sequence[str]
    echo_command: str = "puts {token}"
    exit_command: Optional[str] = "exit"
    close_timeout: float = 10.0
    cwd: Optional[Path] = None
    env: Optional[Dict[str, str]] = field(default=None, repr=False)


class EngineSession:
    """Line-oriented request/response session with a long-lived engine process.

    Each request is a single command line. The response is every line the
    engine prints until the echo of a unique end token, which is requested
    right after the command.
    """

    def __init__(self, config: EngineConfig, process: subprocess.Popen):
        self.config = config
        self._process = process
        self.transcript: List[str] = []

    @classmethod
    def open(cls, config: EngineConfig) -> "EngineSession":
        cmd = [str(part) for part in config.command]
        logger.info("Starting engine: %s", " ".join(cmd))
        try:
            process = subprocess.Popen(
                cmd,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                bufsize=1,
                cwd=str(config.cwd) if config.cwd else None,
                env=config.env,
            )
        except OSError as exc:
            raise EngineSessionError(f"Could not start engine {cmd[0]}: {exc}") from exc
        return cls(config, process)

    @property
    def closed(self) -> bool:
        return self._process.poll() is not None

    def _write(self, line: str) -> None:
        if self.closed:
            raise EngineSessionError(f"Engine exited with status {self._process.returncode}")
        try:
            self._process.stdin.write(line + "\n")
            self._process.stdin.flush()
        except (BrokenPipeError, OSError, ValueError) as exc:
            raise EngineSessionError(f"Could not send {line!r} to engine: {exc}") from exc

    def send(self, command: str) -> List[str]:
        if "\n" in command:
            raise ValueError("Engine commands must be a single line")
        token = f"__linkmap_end_{uuid.uuid4().hex}__"
        self.transcript.append(command)
        self._write(command)
        self._write(self.config.echo_command.format(token=token))

        lines: List[str] = []
        while True:
            raw = self._process.stdout.readline()
            if raw == "":
                raise EngineSessionError(
                    f"Engine closed its output before answering {command!r} "
                    f"(status {self._process.poll()})"
                )
            line = raw.rstrip("\r\n")
            if line.strip() == token:
                return lines
            lines.append(line)

    def close(self) -> None:
        process = self._process
        if process.poll() is None and self.config.exit_command:
            try:
                process.stdin.write(self.config.exit_command + "\n")
                process.stdin.flush()
            except (BrokenPipeError, OSError, ValueError):
                pass
        try:
            if process.stdin and not process.stdin.closed:
                process.stdin.close()
        except (BrokenPipeError, OSError):
            pass
        try:
            process.wait(timeout=self.config.close_timeout)
        except subprocess.TimeoutExpired:
            logger.warning("Engine did not exit within %.1fs; killing it", self.config.close_timeout)
            process.kill()
            process.wait()
        finally:
            if process.stdout and not process.stdout.closed:
                process.stdout.close()


@contextmanager
def open_session(config: EngineConfig) -> Iterator[EngineSession]:
    session = EngineSession.open(config)
    try:
        yield session
    finally:
        session.close()


def run_batch(cmd: Sequence[object], cwd: Optional[Path] = None) -> subprocess.CompletedProcess:
    """Run a one-shot engine command, raising ``EngineSessionError`` on failure."""
    args = [str(part) for part in cmd]
    logger.info("Running: %s", " ".join(args))
    try:
        return subprocess.run(args, check=True, capture_output=True, text=True, cwd=str(cwd) if cwd else None)
    except FileNotFoundError as exc:
        raise EngineSessionError(f"Executable not found: {args[0]}") from exc
    except subprocess.CalledProcessError as exc:
        raise EngineSessionError(f"Command failed ({exc.returncode}): {exc.stderr or exc.stdout}") from exc


def order_groups(groups: Iterable[K], func: Callable[[K], R], workers: int = 1) -> Dict[K, R]:
    """Apply ``func`` to every linkage group, optionally on a thread pool."""
    keys = list(groups)
    if workers <= 1 or len(keys) <= 1:
        return {key: func(key) for key in keys}
    with ThreadPoolExecutor(max_workers=workers) as pool:
        results = list(pool.map(func, keys))
    return dict(zip(keys, results))


__all__ = [
    "ScratchSpace",
    "EngineConfig",
    "EngineSession",
    "open_session",
    "run_batch",
    "order_groups",
]
