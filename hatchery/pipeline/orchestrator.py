"""
流水线编排器

按注册顺序依次执行步骤，每个步骤：
1. 发出 STEP_START，遥测开始计时
2. 与超时计时器赛跑，超时则取消步骤任务，迟到的结果丢弃
3. 失败时按指数退避重试（不可重试的错误直接失败）
4. 最终失败：可选步骤记录后继续；必需步骤终止流水线
5. 成功：写入 results、追加日志、发出 STEP_COMPLETE

execute() 不会因为步骤失败而抛出异常，而是返回描述失败的上下文。

使用示例:
    pipeline = TradePipeline().add_step(fetch_step).add_step(build_step)

    @pipeline.on(PipelineEventType.STEP_COMPLETE)
    def on_done(event):
        print(f"{event.step} done in {event.duration_ms}ms")

    ctx = await pipeline.execute({"strategy": {...}, "config": {...}})
"""
import asyncio
import dataclasses
import time
from typing import Any, Dict, List, Mapping, Optional, Union

from loguru import logger
from pydantic import BaseModel

from ..constants import DEFAULT_BACKOFF_BASE_MS, DEFAULT_MAX_BACKOFF_MS
from ..core.event import (
    EventEmitter,
    Listener,
    PipelineCompleteEvent,
    PipelineErrorEvent,
    PipelineEventType,
    PipelineStartEvent,
    StepCompleteEvent,
    StepErrorEvent,
    StepRetryEvent,
    StepStartEvent,
)
from ..errors import DuplicateStepError, PipelineAbortedError, StepTimeoutError
from ..models import PipelineInput, generate_execution_id, get_current_timestamp_ms
from ..telemetry import create_telemetry, sanitize_data
from .context import ExecutionContext, StepDefinition, StepFailure, StepLogEntry, StepRunner


class PipelineOptions(BaseModel):
    """流水线选项"""
    stop_on_error: bool = True
    enable_telemetry: bool = True
    backoff_base_ms: int = DEFAULT_BACKOFF_BASE_MS
    max_backoff_ms: int = DEFAULT_MAX_BACKOFF_MS
    keep_event_history: bool = False


def summarize_output(value: Any) -> Optional[Dict[str, Any]]:
    """输出的形状摘要（不含内容）"""
    if value is None:
        return None
    if isinstance(value, BaseModel):
        return {"type": type(value).__name__, "fields": list(type(value).model_fields)}
    if isinstance(value, (list, tuple)):
        return {"type": "array", "length": len(value)}
    if isinstance(value, Mapping):
        return {"type": "object", "keys": [str(k) for k in value.keys()]}
    return {"type": type(value).__name__}


def summarize_input(pipeline_input: PipelineInput) -> Dict[str, Any]:
    return sanitize_data({
        "strategy_name": pipeline_input.strategy.name,
        "config": pipeline_input.config.model_dump(mode="json", exclude={"api_key", "api_keys"}),
    })


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


def _discard_late_result(task: asyncio.Task) -> None:
    # 已超时/取消的步骤任务：取回结果以免未处理异常告警
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.debug(f"Discarded late step error: {exc!r}")
    else:
        logger.debug("Discarded late step result")


class TradePipeline:
    """
    可观察的交易生成流水线

    步骤列表只在组装阶段修改；同一实例上可以并发执行多次 execute()，
    所有运行状态都保存在各自的 ExecutionContext 中。
    """

    def __init__(self, options: Optional[PipelineOptions] = None, **kwargs):
        if options is None:
            options = PipelineOptions(**kwargs)
        elif kwargs:
            options = options.model_copy(update=kwargs)
        self.options = options
        self._steps: List[StepDefinition] = []
        self._emitter = EventEmitter(keep_history=options.keep_event_history)

    # ==================== 组装 ====================

    def _to_definition(self, step: Union[StepDefinition, StepRunner], position: int, options: Dict[str, Any]) -> StepDefinition:
        if isinstance(step, StepDefinition):
            return dataclasses.replace(step, **options) if options else step

        options = dict(options)
        name = options.pop("name", None) or getattr(step, "__name__", None) or f"step-{position + 1}"
        return StepDefinition(name=name, run=step, **options)

    def _check_unique(self, name: str) -> None:
        if any(s.name == name for s in self._steps):
            raise DuplicateStepError(name)

    def add_step(self, step: Union[StepDefinition, StepRunner], **options) -> "TradePipeline":
        """
        追加步骤

        Args:
            step: StepDefinition 或协程函数
            **options: 覆盖字段（name / description / optional / timeout_ms / max_retries）
        """
        definition = self._to_definition(step, len(self._steps), options)
        self._check_unique(definition.name)
        self._steps.append(definition)
        return self

    def insert_step(self, index: int, step: Union[StepDefinition, StepRunner], **options) -> "TradePipeline":
        definition = self._to_definition(step, index, options)
        self._check_unique(definition.name)
        self._steps.insert(index, definition)
        return self

    def remove_step(self, name: str) -> "TradePipeline":
        self._steps = [s for s in self._steps if s.name != name]
        return self

    def get_step(self, name: str) -> Optional[StepDefinition]:
        return next((s for s in self._steps if s.name == name), None)

    @property
    def steps(self) -> List[StepDefinition]:
        return list(self._steps)

    def clone(self) -> "TradePipeline":
        """复制步骤、选项和监听器"""
        cloned = TradePipeline(self.options.model_copy())
        cloned._steps = list(self._steps)
        self._emitter.copy_listeners_to(cloned._emitter)
        return cloned

    def get_info(self) -> Dict[str, Any]:
        return {
            "steps_count": len(self._steps),
            "steps": [
                {
                    "name": s.name,
                    "description": s.description,
                    "optional": s.optional,
                    "timeout_ms": s.timeout_ms,
                    "max_retries": s.max_retries,
                }
                for s in self._steps
            ],
            "options": self.options.model_dump(),
        }

    # ==================== 观察者 ====================

    def on(self, event_type: PipelineEventType, listener: Optional[Listener] = None):
        return self._emitter.on(event_type, listener)

    def off(self, event_type: PipelineEventType, listener: Listener) -> bool:
        return self._emitter.off(event_type, listener)

    def once(self, event_type: PipelineEventType, listener: Listener) -> Listener:
        return self._emitter.once(event_type, listener)

    @property
    def events(self) -> EventEmitter:
        return self._emitter

    # ==================== 执行 ====================

    async def execute(
        self,
        pipeline_input: Union[PipelineInput, Mapping[str, Any]],
        cancel_event: Optional[asyncio.Event] = None,
    ) -> ExecutionContext:
        """
        执行流水线

        Args:
            pipeline_input: PipelineInput 或 {"strategy": ..., "config": ...}
            cancel_event: 调用方设置后中止执行

        Returns:
            已封存的执行上下文（调用方通过 status / error 判断结果）
        """
        if not isinstance(pipeline_input, PipelineInput):
            pipeline_input = PipelineInput.model_validate(pipeline_input)

        steps = list(self._steps)
        execution_id = generate_execution_id()
        telemetry = create_telemetry(execution_id) if self.options.enable_telemetry else None
        ctx = ExecutionContext(execution_id, pipeline_input, telemetry)

        input_summary = summarize_input(pipeline_input)
        await self._emitter.emit(PipelineStartEvent(
            execution_id=execution_id,
            steps_count=len(steps),
            step_names=[s.name for s in steps],
            input=input_summary,
        ))
        if telemetry:
            telemetry.info("pipeline", "Pipeline execution started", {
                "steps_count": len(steps),
                "config": input_summary.get("config"),
            })

        for index, step in enumerate(steps):
            if cancel_event is not None and cancel_event.is_set():
                return await self._terminate(ctx, step.name, PipelineAbortedError(), aborted=True)

            ctx.current_step = step.name
            try:
                result = await self._run_step(step, ctx, index, cancel_event)
            except PipelineAbortedError as e:
                return await self._terminate(ctx, step.name, e, aborted=True)
            except Exception as e:
                if step.optional or not self.options.stop_on_error:
                    continue
                return await self._terminate(ctx, step.name, e)

            ctx.set_result(step.name, result)
            ctx.completed_steps.append(step.name)

        ctx.current_step = None
        ctx.end_time = get_current_timestamp_ms()

        await self._emitter.emit(PipelineCompleteEvent(
            execution_id=execution_id,
            duration_ms=ctx.duration_ms,
            completed_steps=list(ctx.completed_steps),
            failed_steps=list(ctx.failed_steps),
            results={name: summarize_output(value) for name, value in ctx.results.items()},
        ))
        if telemetry:
            telemetry.info("pipeline", "Pipeline execution completed", {
                "duration": ctx.duration_ms,
                "completed_steps": len(ctx.completed_steps),
            })
            telemetry.set_metadata("status", ctx.status)

        ctx.seal()
        return ctx

    async def _terminate(
        self,
        ctx: ExecutionContext,
        step_name: str,
        error: BaseException,
        aborted: bool = False,
    ) -> ExecutionContext:
        """必需步骤失败或被取消：标记终止并返回"""
        ctx.error = error
        ctx.error_step = step_name
        ctx.aborted = aborted
        ctx.end_time = get_current_timestamp_ms()
        message = ctx.redact(error)

        await self._emitter.emit(PipelineErrorEvent(
            execution_id=ctx.execution_id,
            step=step_name,
            error=message,
            error_type=type(error).__name__,
            aborted=aborted,
            duration_ms=ctx.duration_ms,
            completed_steps=list(ctx.completed_steps),
            failed_steps=list(ctx.failed_steps),
        ))
        if ctx.telemetry:
            verb = "cancelled" if aborted else "failed"
            ctx.telemetry.error("pipeline", f"Pipeline {verb} at step: {step_name}", {"error": message})
            ctx.telemetry.set_metadata("status", ctx.status)

        ctx.seal()
        return ctx

    async def _run_step(
        self,
        step: StepDefinition,
        ctx: ExecutionContext,
        index: int,
        cancel_event: Optional[asyncio.Event],
    ) -> Any:
        """执行单个步骤（含重试），最终失败时记录并重新抛出"""
        telemetry = ctx.telemetry

        await self._emitter.emit(StepStartEvent(
            execution_id=ctx.execution_id,
            step=step.name,
            index=index,
            description=step.description,
            optional=step.optional,
        ))
        if telemetry:
            telemetry.start_step(step.name)

        started = time.monotonic()
        max_attempts = step.max_retries + 1
        attempt = 0

        while True:
            attempt += 1
            ctx.attempts[step.name] = attempt
            try:
                result = await self._attempt(step, ctx, cancel_event)
                break
            except PipelineAbortedError as e:
                await self._step_failed(step, ctx, e, attempt, started)
                raise
            except Exception as e:
                if attempt >= max_attempts or not getattr(e, "retryable", True):
                    await self._step_failed(step, ctx, e, attempt, started)
                    raise

                delay_ms = self.backoff_ms(attempt)
                message = ctx.redact(e)
                if telemetry:
                    telemetry.warn(step.name, f"Step failed, retrying ({attempt}/{max_attempts})", {
                        "error": message,
                        "delay_ms": delay_ms,
                    })
                await self._emitter.emit(StepRetryEvent(
                    execution_id=ctx.execution_id,
                    step=step.name,
                    attempt=attempt,
                    max_attempts=max_attempts,
                    delay_ms=delay_ms,
                    error=message,
                ))

                try:
                    await self._backoff(delay_ms, cancel_event)
                except PipelineAbortedError as abort:
                    await self._step_failed(step, ctx, abort, attempt, started)
                    raise abort

        duration = _elapsed_ms(started)
        output = summarize_output(result)
        ctx.append_log(StepLogEntry(
            step=step.name,
            status="success",
            duration_ms=duration,
            attempts=attempt,
            output=output,
        ))
        if telemetry:
            telemetry.end_step(step.name, "success")

        await self._emitter.emit(StepCompleteEvent(
            execution_id=ctx.execution_id,
            step=step.name,
            duration_ms=duration,
            attempts=attempt,
            output=output,
        ))
        return result

    async def _attempt(
        self,
        step: StepDefinition,
        ctx: ExecutionContext,
        cancel_event: Optional[asyncio.Event],
    ) -> Any:
        """单次尝试：步骤任务与超时计时器、取消信号赛跑"""
        task = asyncio.ensure_future(step.run(ctx))
        waiters = {task}
        cancel_waiter = None
        if cancel_event is not None:
            cancel_waiter = asyncio.ensure_future(cancel_event.wait())
            waiters.add(cancel_waiter)

        try:
            done, _ = await asyncio.wait(
                waiters,
                timeout=step.timeout_ms / 1000,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            if cancel_waiter is not None:
                cancel_waiter.cancel()
            if not task.done():
                # 超时、取消或外部取消：取消进行中的请求，迟到结果丢弃
                task.cancel()
                task.add_done_callback(_discard_late_result)

        if task in done:
            return task.result()

        if cancel_event is not None and cancel_event.is_set():
            raise PipelineAbortedError()
        raise StepTimeoutError(step.name, step.timeout_ms)

    def backoff_ms(self, attempt: int) -> int:
        """第 attempt 次失败后的等待时间（attempt 从 1 开始）"""
        return min(self.options.backoff_base_ms * (2 ** attempt), self.options.max_backoff_ms)

    @staticmethod
    async def _backoff(delay_ms: int, cancel_event: Optional[asyncio.Event]) -> None:
        if cancel_event is None:
            await asyncio.sleep(delay_ms / 1000)
            return
        try:
            await asyncio.wait_for(cancel_event.wait(), timeout=delay_ms / 1000)
        except asyncio.TimeoutError:
            return
        raise PipelineAbortedError()

    async def _step_failed(
        self,
        step: StepDefinition,
        ctx: ExecutionContext,
        error: BaseException,
        attempts: int,
        started: float,
    ) -> None:
        duration = _elapsed_ms(started)
        message = ctx.redact(error)

        ctx.failed_steps.append(step.name)
        ctx.failures.append(StepFailure(
            step=step.name,
            error=message,
            error_type=type(error).__name__,
            attempts=attempts,
            optional=step.optional,
        ))
        ctx.append_log(StepLogEntry(
            step=step.name,
            status="error",
            duration_ms=duration,
            attempts=attempts,
            error=message,
        ))
        if ctx.telemetry:
            ctx.telemetry.error(step.name, f"Step failed: {message}", {
                "error_type": type(error).__name__,
                "attempts": attempts,
                "optional": step.optional,
            })
            ctx.telemetry.end_step(step.name, "error")

        await self._emitter.emit(StepErrorEvent(
            execution_id=ctx.execution_id,
            step=step.name,
            error=message,
            error_type=type(error).__name__,
            duration_ms=duration,
            attempts=attempts,
            optional=step.optional,
        ))


def create_pipeline(options: Optional[PipelineOptions] = None, **kwargs) -> TradePipeline:
    """创建空流水线"""
    return TradePipeline(options, **kwargs)
