"""
app.core.locks
~~~~~~~~~~~~~~

按键串行化的进程内互斥锁。

DJ 会话的每次变更都是「读取 → 修改 → 保存」，读取与保存之间会让出事件循环。
同一频道的并发请求必须排队执行，否则后保存者会覆盖先保存者的修改。
不同频道之间互不阻塞。
"""
from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager


class KeyedLock:
    """每个 key 一把 ``asyncio.Lock``，无人持有也无人等待时自动回收。"""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        """获取 ``key`` 对应的锁，退出上下文时释放。

        ``asyncio.Lock`` 按等待顺序唤醒，同一 key 的请求按到达顺序执行。
        """
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)
