import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, Sequence, TypeVar

from ..exceptions import ProcessStartError

T = TypeVar("T")

LineCallback = Callable[[str], None]


@dataclass
class ProcessResult:
    returncode: int
    stdout: str
    stderr: str


async def run_process(cmd: Sequence[str], on_stdout_line: Optional[LineCallback] = None) -> ProcessResult:
    """
    Run an external tool without blocking the event loop.

    stdout is read line by line (handed to `on_stdout_line` if given) while
    stderr is drained concurrently so a chatty ffmpeg never fills its pipe.
    No timeout is applied. If the awaiting task is cancelled the child is
    killed before the cancellation propagates.
    """
    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        raise ProcessStartError(f"Failed to start {cmd[0]}: {e}") from e

    stderr_task = asyncio.ensure_future(proc.stderr.read())
    out_lines: List[str] = []
    try:
        async for raw in proc.stdout:
            line = raw.decode(errors="replace").rstrip("\r\n")
            out_lines.append(line)
            if on_stdout_line:
                on_stdout_line(line)
        stderr = await stderr_task
        returncode = await proc.wait()
    except BaseException:
        stderr_task.cancel()
        if proc.returncode is None:
            proc.kill()
            await proc.wait()
        raise

    return ProcessResult(
        returncode=returncode,
        stdout="\n".join(out_lines),
        stderr=stderr.decode(errors="replace"),
    )


async def gather_first_error(*aws: Awaitable[T]) -> List[T]:
    """
    Run awaitables concurrently and return their results in order.
    The first failure wins: remaining siblings are cancelled and the
    exception is re-raised.
    """
    tasks = [asyncio.ensure_future(a) for a in aws]
    if not tasks:
        return []
    try:
        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
    except BaseException:
        for t in tasks:
            t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise

    if pending:
        for t in pending:
            t.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

    first_exc: Optional[BaseException] = None
    for t in tasks:
        if t.cancelled():
            continue
        exc = t.exception()
        if exc is not None and first_exc is None:
            first_exc = exc
    if first_exc is not None:
        raise first_exc
    return [t.result() for t in tasks]
