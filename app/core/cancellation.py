"""取消句柄：由调用方持有，在每个片段边界检查。每次请求新建一个，不在重叠的请求间共享。"""
import asyncio


class CancellationToken:
    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()
