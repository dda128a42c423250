"""
事件发射器

实现发布/订阅模式，支持：
- 同步和异步监听器
- 一次性监听器
- 事件历史记录

监听器抛出的异常只记录日志，不会影响流水线执行。
"""
from typing import Callable, Dict, List, Optional, Union, Awaitable
from collections import defaultdict
import asyncio
from loguru import logger

from .types import AnyPipelineEvent, PipelineEventType


# 监听器类型
SyncListener = Callable[[AnyPipelineEvent], None]
AsyncListener = Callable[[AnyPipelineEvent], Awaitable[None]]
Listener = Union[SyncListener, AsyncListener]


class EventEmitter:
    """
    事件发射器

    使用示例:
        emitter = EventEmitter()

        @emitter.on(PipelineEventType.STEP_COMPLETE)
        async def on_step_complete(event: StepCompleteEvent):
            print(f"{event.step} done in {event.duration_ms}ms")

        emitter.on(PipelineEventType.STEP_RETRY, lambda e: print(e))

        await emitter.emit(StepCompleteEvent(execution_id="exec-1", step="call_ai", duration_ms=1200))
    """

    def __init__(
        self,
        keep_history: bool = False,
        max_history: int = 1000,
    ):
        """
        初始化事件发射器

        Args:
            keep_history: 是否保留事件历史
            max_history: 最大历史记录数
        """
        self._listeners: Dict[PipelineEventType, List[Listener]] = defaultdict(list)
        # once() 注册的包装函数 -> 原始监听器
        self._once_wrappers: Dict[Listener, Listener] = {}
        self._keep_history = keep_history
        self._max_history = max_history
        self._history: List[AnyPipelineEvent] = []

    def on(
        self,
        event_type: PipelineEventType,
        listener: Optional[Listener] = None,
    ):
        """
        注册事件监听器，不传 listener 时作为装饰器使用

        Example:
            @emitter.on(PipelineEventType.STEP_ERROR)
            async def handle_error(event):
                ...
        """
        event_type = PipelineEventType(event_type)

        if listener is not None:
            self._listeners[event_type].append(listener)
            return listener

        def decorator(func: Listener) -> Listener:
            self._listeners[event_type].append(func)
            return func
        return decorator

    def once(self, event_type: PipelineEventType, listener: Listener) -> Listener:
        """
        注册一次性监听器，首次触发后自动移除

        Returns:
            实际注册的包装函数
        """
        event_type = PipelineEventType(event_type)

        # 移除由 emit() 在调用前同步完成
        def wrapper(event: AnyPipelineEvent):
            return listener(event)

        self._once_wrappers[wrapper] = listener
        self._listeners[event_type].append(wrapper)
        return wrapper

    def off(self, event_type: PipelineEventType, listener: Listener) -> bool:
        """
        移除事件监听器（也可以传入 once() 注册的原始函数）

        Returns:
            是否成功移除
        """
        event_type = PipelineEventType(event_type)
        listeners = self._listeners.get(event_type, [])

        for registered in listeners:
            if registered is listener or self._once_wrappers.get(registered) is listener:
                listeners.remove(registered)
                self._once_wrappers.pop(registered, None)
                return True
        return False

    def _remove_once(self, event_type: PipelineEventType, wrapper: Listener) -> bool:
        listeners = self._listeners.get(event_type, [])
        if wrapper not in listeners:
            return False
        listeners.remove(wrapper)
        self._once_wrappers.pop(wrapper, None)
        return True

    async def emit(self, event: AnyPipelineEvent) -> None:
        """
        发射事件

        同步监听器直接调用，异步监听器并发执行并等待完成

        Args:
            event: 要发射的事件
        """
        if self._keep_history:
            self._history.append(event)
            if len(self._history) > self._max_history:
                self._history = self._history[-self._max_history:]

        listeners = list(self._listeners.get(event.event_type, []))

        tasks = []
        for listener in listeners:
            # 一次性监听器先移除再调用，并发的 emit 不会重复触发
            if listener in self._once_wrappers and not self._remove_once(event.event_type, listener):
                continue
            try:
                result = listener(event)
                if asyncio.iscoroutine(result):
                    tasks.append(asyncio.ensure_future(result))
            except Exception as e:
                logger.error(f"Error in event listener for {event.event_type.value}: {e}")

        if tasks:
            results = await asyncio.gather(*tasks, return_exceptions=True)
            for result in results:
                if isinstance(result, Exception):
                    logger.error(f"Error in async event listener for {event.event_type.value}: {result}")

    def get_history(
        self,
        event_type: Optional[PipelineEventType] = None,
        execution_id: Optional[str] = None,
        limit: int = 100,
    ) -> List[AnyPipelineEvent]:
        """
        获取事件历史

        Args:
            event_type: 过滤的事件类型（None 表示所有）
            execution_id: 过滤的执行 ID
            limit: 最大返回数量

        Returns:
            事件列表（按发生顺序）
        """
        if not self._keep_history:
            return []

        events = list(self._history)
        if event_type is not None:
            events = [e for e in events if e.event_type == event_type]
        if execution_id is not None:
            events = [e for e in events if e.execution_id == execution_id]

        return events[-limit:]

    def clear_history(self) -> int:
        count = len(self._history)
        self._history.clear()
        return count

    def listener_count(self, event_type: PipelineEventType) -> int:
        return len(self._listeners.get(PipelineEventType(event_type), []))

    def copy_listeners_to(self, other: "EventEmitter") -> None:
        """把当前监听器复制到另一个发射器（clone 流水线时使用）"""
        for event_type, listeners in self._listeners.items():
            other._listeners[event_type].extend(listeners)
        other._once_wrappers.update(self._once_wrappers)
