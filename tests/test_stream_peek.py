from collections.abc import AsyncIterator

import pytest

from ai_fallback.utils.stream import close_stream, peek_stream


async def _numbers(n: int) -> AsyncIterator[int]:
    for i in range(n):
        yield i


class TestPeekStream:
    async def test_first_item_and_full_replay(self):
        first, replay = await peek_stream(_numbers(3))

        assert first == 0
        assert [x async for x in replay] == [0, 1, 2]

    async def test_single_item(self):
        first, replay = await peek_stream(_numbers(1))

        assert first == 0
        assert [x async for x in replay] == [0]

    async def test_empty_source(self):
        first, replay = await peek_stream(_numbers(0))

        assert first is None
        assert [x async for x in replay] == []

    async def test_source_consumed_lazily(self):
        pulled: list[int] = []

        async def source() -> AsyncIterator[int]:
            for i in range(3):
                pulled.append(i)
                yield i

        first, replay = await peek_stream(source())

        assert first == 0
        assert pulled == [0]
        await anext(replay)
        await anext(replay)
        assert pulled == [0, 1]

    async def test_error_after_first_item_propagates_through_replay(self):
        async def source() -> AsyncIterator[int]:
            yield 1
            raise RuntimeError("broken pipe")

        first, replay = await peek_stream(source())
        assert first == 1

        collected: list[int] = []
        with pytest.raises(RuntimeError, match="broken pipe"):
            async for x in replay:
                collected.append(x)
        assert collected == [1]

    async def test_closing_replay_closes_source(self):
        finalized: list[bool] = []

        async def source() -> AsyncIterator[int]:
            try:
                for i in range(5):
                    yield i
            finally:
                finalized.append(True)

        _, replay = await peek_stream(source())
        await anext(replay)
        await anext(replay)
        await replay.aclose()

        assert finalized == [True]


class TestCloseStream:
    async def test_async_generator(self):
        finalized: list[bool] = []

        async def source() -> AsyncIterator[int]:
            try:
                yield 1
                yield 2
            finally:
                finalized.append(True)

        stream = source()
        await anext(stream)
        await close_stream(stream)

        assert finalized == [True]

    async def test_async_close_method(self):
        class SDKStream:
            closed = False

            async def close(self):
                self.closed = True

        stream = SDKStream()
        await close_stream(stream)

        assert stream.closed

    async def test_object_without_close_is_ignored(self):
        await close_stream([1, 2, 3])
