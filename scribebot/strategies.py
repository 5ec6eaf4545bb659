"""
Ordered fallback strategies for the external retrieval tool (yt-dlp).

Strategies are plain data: each one is the extra argument set for a single
invocation. StrategyRunner walks them strictly in order, one at a time,
with exponential backoff in between, and reports an aggregate failure only
after every strategy has been tried. [REH][RM]
"""
from __future__ import annotations

import asyncio
import os
import signal
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple, TypeVar

from .exceptions import AcquisitionFailed, AcquisitionFailureKind, InferenceError
from .retry_utils import RetryConfig, calculate_delay
from .utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

_READ_CHUNK = 64 * 1024

# Each tool runs in its own process group so a kill reaches its children
_OWN_PROCESS_GROUP = hasattr(os, "killpg")

# Shell and loader messages meaning the executable itself is absent
NOT_FOUND_PATTERNS = (
    "command not found",
    "no such file or directory",
    "is not recognized as an internal or external command",
    "enoent",
    "executable not found",
)


def is_tool_missing(message: str) -> bool:
    lowered = (message or "").lower()
    return any(pattern in lowered for pattern in NOT_FOUND_PATTERNS)


@dataclass(frozen=True)
class Strategy:
    """One invocation configuration for the retrieval tool."""

    name: str
    args: Tuple[str, ...] = ()
    credential: Optional[str] = None  # e.g. "cookies-file", "browser:firefox"
    runtime: Optional[str] = None  # JS runtime hint passed to the extractor

    @property
    def is_baseline(self) -> bool:
        return not self.args and self.credential is None and self.runtime is None

    def argv(self, binary: str, operation_args: Sequence[str], reference: str) -> List[str]:
        return [binary, *operation_args, *self.args, reference]


BASELINE = Strategy(name="baseline")


def ensure_baseline(strategies: Sequence[Strategy]) -> Tuple[Strategy, ...]:
    """Return the strategies with a credential-free baseline guaranteed last."""
    ordered = tuple(s for s in strategies if not s.is_baseline)
    return ordered + (BASELINE,)


def build_strategies(
    cookies_file: Optional[Path] = None,
    browsers: Sequence[str] = (),
    js_runtime: Optional[str] = None,
) -> Tuple[Strategy, ...]:
    """Build the fallback list from configuration.

    Order: cookies file (only when it exists), each browser's cookie store,
    the JS runtime alone, the android player client, then the baseline.
    """
    runtime_args: Tuple[str, ...] = ("--js-runtimes", js_runtime) if js_runtime else ()
    strategies: List[Strategy] = []

    if cookies_file is not None and Path(cookies_file).is_file():
        strategies.append(
            Strategy(
                name="cookies-file",
                args=("--cookies", str(cookies_file)) + runtime_args,
                credential="cookies-file",
                runtime=js_runtime,
            )
        )

    for browser in browsers:
        strategies.append(
            Strategy(
                name=f"browser-{browser}",
                args=("--cookies-from-browser", browser) + runtime_args,
                credential=f"browser:{browser}",
                runtime=js_runtime,
            )
        )

    if runtime_args:
        strategies.append(Strategy(name="js-runtime", args=runtime_args, runtime=js_runtime))

    strategies.append(
        Strategy(name="android-client", args=("--extractor-args", "youtube:player_client=android"))
    )
    return ensure_baseline(strategies)


def strategies_from_config(config: dict) -> Tuple[Strategy, ...]:
    return build_strategies(
        cookies_file=config.get("YTDLP_COOKIES_FILE"),
        browsers=config.get("YTDLP_COOKIE_BROWSERS") or (),
        js_runtime=config.get("YTDLP_JS_RUNTIME"),
    )


@dataclass
class RetrievalTarget:
    """A validated reference plus the index of the strategy being attempted."""

    reference: str
    cursor: int = 0


# ------------------------------------------------------------------ processes


class ToolInvocationError(InferenceError):
    """The tool could not be run to completion (missing, hung, too chatty)."""

    def __init__(self, message: str, tool_missing: bool = False):
        super().__init__(message)
        self.tool_missing = tool_missing


@dataclass
class ToolResult:
    argv: List[str]
    returncode: int
    stdout: bytes = b""
    stderr: bytes = b""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def stderr_tail(self, limit: int = 500) -> str:
        text = self.stderr.decode("utf-8", errors="replace").strip()
        return text[-limit:] if text else f"exit status {self.returncode}"


def _kill(proc: asyncio.subprocess.Process) -> None:
    """Kill the tool and everything it spawned (yt-dlp runs ffmpeg as a child)."""
    if proc.returncode is not None:
        return
    if _OWN_PROCESS_GROUP:
        try:
            os.killpg(proc.pid, signal.SIGKILL)
            return
        except (ProcessLookupError, PermissionError):
            pass
    try:
        proc.kill()
    except ProcessLookupError:
        pass


async def _reap(proc: asyncio.subprocess.Process) -> None:
    """Wait for a killed process even while the caller is being cancelled."""
    try:
        await asyncio.shield(proc.wait())
    except asyncio.CancelledError:
        pass


async def run_tool(argv: Sequence[str], timeout: float, max_output_bytes: int) -> ToolResult:
    """Run an external process with a wall-clock timeout and an output cap.

    stdout and stderr together may not exceed max_output_bytes; the process is
    killed as soon as either limit is crossed.

    Raises:
        ToolInvocationError: the binary is missing, timed out, or overflowed.
    """
    argv = [str(a) for a in argv]
    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            start_new_session=_OWN_PROCESS_GROUP,
        )
    except FileNotFoundError as e:
        raise ToolInvocationError(f"{argv[0]}: command not found", tool_missing=True) from e
    except PermissionError as e:
        raise ToolInvocationError(f"{argv[0]}: not executable ({e})") from e

    stdout = bytearray()
    stderr = bytearray()
    used = 0
    overflow = False

    async def _drain(stream: asyncio.StreamReader, sink: bytearray) -> None:
        nonlocal used, overflow
        while True:
            chunk = await stream.read(_READ_CHUNK)
            if not chunk:
                return
            used += len(chunk)
            if used > max_output_bytes:
                overflow = True
                _kill(proc)
                return
            sink.extend(chunk)

    async def _collect() -> int:
        await asyncio.gather(_drain(proc.stdout, stdout), _drain(proc.stderr, stderr))
        return await proc.wait()

    try:
        returncode = await asyncio.wait_for(_collect(), timeout=timeout)
    except asyncio.TimeoutError:
        _kill(proc)
        await proc.wait()
        raise ToolInvocationError(f"{argv[0]} timed out after {timeout:.0f}s")
    except asyncio.CancelledError:
        _kill(proc)
        await _reap(proc)
        raise

    if overflow:
        raise ToolInvocationError(f"{argv[0]} output exceeded {max_output_bytes} bytes")

    return ToolResult(argv=argv, returncode=returncode, stdout=bytes(stdout), stderr=bytes(stderr))


# --------------------------------------------------------------------- runner


class StrategyAttemptFailed(InferenceError):
    """Raised by a result validator to reject an otherwise successful run."""


@dataclass
class StrategyFailure:
    strategy: str
    message: str
    tool_missing: bool = False


Invoker = Callable[[Sequence[str], float, int], Awaitable[ToolResult]]


class StrategyRunner:
    """Runs one tool operation across the fallback list, strictly in order."""

    def __init__(
        self,
        strategies: Sequence[Strategy],
        binary: str = "yt-dlp",
        timeout: float = 300.0,
        max_output_bytes: int = 10 * 1024 * 1024,
        backoff_base: float = 1.0,
        backoff_max: float = 30.0,
        invoke: Optional[Invoker] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.strategies = ensure_baseline(strategies)
        self.binary = binary
        self.timeout = timeout
        self.max_output_bytes = max_output_bytes
        self.backoff = RetryConfig(
            max_attempts=len(self.strategies),
            base_delay=backoff_base,
            max_delay=backoff_max,
            jitter=False,
        )
        self._invoke = invoke or run_tool
        self._sleep = sleep

    async def run(
        self,
        target: RetrievalTarget,
        operation_args: Sequence[str],
        validate: Callable[[ToolResult], T],
        before_attempt: Optional[Callable[[], None]] = None,
        operation: str = "fetch",
    ) -> T:
        """Try each strategy until validate() accepts a result.

        before_attempt runs ahead of every attempt (used to clear partial
        outputs). validate may raise StrategyAttemptFailed to reject a zero
        exit status, e.g. when the declared output file is absent.

        Raises:
            AcquisitionFailed: every strategy failed.
        """
        failures: List[StrategyFailure] = []

        for index, strategy in enumerate(self.strategies):
            target.cursor = index
            if index > 0 and not failures[-1].tool_missing:
                delay = calculate_delay(index - 1, self.backoff)
                logger.debug(f"⏳ Backing off {delay:.1f}s before strategy {strategy.name}")
                await self._sleep(delay)

            if before_attempt is not None:
                before_attempt()

            argv = strategy.argv(self.binary, operation_args, target.reference)
            logger.debug(
                f"🧰 {operation} attempt {index + 1}/{len(self.strategies)} via {strategy.name}",
                extra={"subsys": "acquisition", "event": "strategy_attempt", "detail": {"strategy": strategy.name}},
            )

            try:
                result = await self._invoke(argv, self.timeout, self.max_output_bytes)
            except ToolInvocationError as e:
                failures.append(StrategyFailure(strategy.name, str(e), e.tool_missing))
                logger.info(f"ℹ️ Strategy {strategy.name} failed: {e}")
                continue

            if not result.ok:
                message = result.stderr_tail()
                missing = result.returncode == 127 or is_tool_missing(message)
                failures.append(StrategyFailure(strategy.name, message, missing))
                logger.info(f"ℹ️ Strategy {strategy.name} exited {result.returncode}: {message[:200]}")
                continue

            try:
                value = validate(result)
            except StrategyAttemptFailed as e:
                failures.append(StrategyFailure(strategy.name, str(e)))
                logger.info(f"ℹ️ Strategy {strategy.name} produced no usable output: {e}")
                continue

            if failures:
                logger.info(f"✅ {operation} succeeded with strategy {strategy.name} after {len(failures)} failures")
            return value

        raise self._aggregate(failures, operation)

    def _aggregate(self, failures: List[StrategyFailure], operation: str) -> AcquisitionFailed:
        attempts = [f"{f.strategy}: {f.message}" for f in failures]
        if failures and all(f.tool_missing for f in failures):
            logger.error(f"❌ {self.binary} is not installed or not on PATH")
            return AcquisitionFailed(
                f"{self.binary} not found while trying to {operation}",
                kind=AcquisitionFailureKind.TOOL_MISSING,
                attempts=attempts,
                user_message=f"The retrieval tool `{self.binary}` is not installed or not on PATH.",
                remediation="Install yt-dlp (`pip install yt-dlp`) and make sure it is on PATH.",
            )

        last = failures[-1].message if failures else "no strategies ran"
        logger.warning(
            f"⚠️ All {len(failures)} strategies failed to {operation}. Last error: {last[:200]}",
            extra={"subsys": "acquisition", "event": "strategies_exhausted", "detail": {"attempts": attempts}},
        )
        return AcquisitionFailed(
            f"All {len(failures)} strategies failed to {operation}. Last error: {last}",
            kind=AcquisitionFailureKind.EXHAUSTED,
            attempts=attempts,
            user_message="Could not download the video after trying every strategy. It may be blocked, private or rate-limited.",
            remediation="Try again later, or provide a cookies.txt exported from a logged-in browser.",
        )
