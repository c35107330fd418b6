"""Server-Sent Events decoding for the editor backend."""

from typing import AsyncIterable, AsyncIterator


async def iter_sse_records(lines: AsyncIterable[str]) -> AsyncIterator[tuple[str | None, str]]:
    """Yield ``(event, data)`` for each record; comments and empty records are skipped."""
    event: str | None = None
    data: list[str] = []
    async for line in lines:
        line = line.rstrip("\r")
        if not line:
            if data:
                yield event, "\n".join(data)
            event, data = None, []
            continue
        if line.startswith(":"):
            continue
        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if name == "event":
            event = value
        elif name == "data":
            data.append(value)
    if data:
        yield event, "\n".join(data)
