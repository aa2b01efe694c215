import asyncio
from typing import Awaitable, TypeVar

T = TypeVar("T")


async def run_cancellable(aw: Awaitable[T], cancel_event: asyncio.Event) -> T:
    """
    等待 aw 完成，期间如果 cancel_event 被设置则取消它并抛出 CancelledError。
    """
    if cancel_event.is_set():
        if asyncio.iscoroutine(aw):
            aw.close()
        raise asyncio.CancelledError()

    work = asyncio.ensure_future(aw)
    waiter = asyncio.ensure_future(cancel_event.wait())
    try:
        await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        # 外部取消时两个子任务都不能遗留
        if not waiter.done():
            waiter.cancel()
        if not work.done() and not cancel_event.is_set():
            work.cancel()

    if work.done():
        return work.result()

    work.cancel()
    try:
        await work
    except asyncio.CancelledError:
        pass
    raise asyncio.CancelledError()
