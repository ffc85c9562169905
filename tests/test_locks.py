"""
Tests for the asyncio reader/writer lock.
"""

import asyncio

import pytest

from gerrit_poller.locks import ReadWriteLock


async def settle() -> None:
    """Let every runnable task make progress."""
    for _ in range(5):
        await asyncio.sleep(0)


class TestReadWriteLock:
    """Test shared and exclusive locking."""

    def setup_method(self):
        """Set up test fixtures."""
        self.lock = ReadWriteLock()
        self.events: list[str] = []

    @pytest.mark.asyncio
    async def test_readers_share_the_lock(self):
        async with self.lock.read():
            async with self.lock.read():
                assert self.lock.readers == 2
        assert self.lock.readers == 0

    @pytest.mark.asyncio
    async def test_writer_waits_for_readers(self):
        await self.lock.acquire_read()

        async def writer():
            async with self.lock.write():
                self.events.append("write")

        task = asyncio.create_task(writer())
        await settle()
        assert self.events == []

        await self.lock.release_read()
        await task
        assert self.events == ["write"]
        assert not self.lock.locked

    @pytest.mark.asyncio
    async def test_readers_wait_for_writer(self):
        await self.lock.acquire_write()

        async def reader():
            async with self.lock.read():
                self.events.append("read")

        task = asyncio.create_task(reader())
        await settle()
        assert self.events == []
        assert self.lock.locked

        await self.lock.release_write()
        await task
        assert self.events == ["read"]

    @pytest.mark.asyncio
    async def test_waiting_writer_blocks_new_readers(self):
        await self.lock.acquire_read()

        async def writer():
            async with self.lock.write():
                self.events.append("write")

        async def reader():
            async with self.lock.read():
                self.events.append("read")

        writer_task = asyncio.create_task(writer())
        await settle()
        reader_task = asyncio.create_task(reader())
        await settle()
        assert self.events == []

        await self.lock.release_read()
        await asyncio.gather(writer_task, reader_task)
        assert self.events == ["write", "read"]

    @pytest.mark.asyncio
    async def test_cancelled_writer_releases_waiting_readers(self):
        await self.lock.acquire_read()

        async def writer():
            async with self.lock.write():
                self.events.append("write")

        async def reader():
            async with self.lock.read():
                self.events.append("read")

        writer_task = asyncio.create_task(writer())
        await settle()
        reader_task = asyncio.create_task(reader())
        await settle()

        writer_task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await writer_task
        await reader_task

        assert self.events == ["read"]
        await self.lock.release_read()
        assert self.lock.readers == 0
