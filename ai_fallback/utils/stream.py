import inspect
from collections.abc import AsyncIterator
from typing import Any, TypeVar

T = TypeVar("T")


async def close_stream(stream: Any) -> None:
    """Close an async stream, releasing whatever connection backs it.

    Async generators expose ``aclose``; SDK stream objects expose an async
    ``close``. Objects with neither are left alone.
    """
    closer = getattr(stream, "aclose", None) or getattr(stream, "close", None)
    if closer is None:
        return
    result = closer()
    if inspect.isawaitable(result):
        await result


async def _replay(first: T, rest: AsyncIterator[T]) -> AsyncIterator[T]:
    try:
        yield first
        async for item in rest:
            yield item
    finally:
        await close_stream(rest)


async def _empty() -> AsyncIterator[T]:
    return
    yield  # pragma: no cover


async def peek_stream(stream: AsyncIterator[T]) -> tuple[T | None, AsyncIterator[T]]:
    """Read the first item of a stream and return an equivalent stream.

    The returned stream yields the peeked item first, then the rest of the
    source. Closing it closes the source. Returns (None, empty stream) when
    the source is exhausted immediately.
    """
    iterator = aiter(stream)
    try:
        first = await anext(iterator)
    except StopAsyncIteration:
        return None, _empty()
    return first, _replay(first, iterator)
