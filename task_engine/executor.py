"""
子操作管线执行器

一条高层指令对应一个 Executor：按顺序运行 ExecutionTask，
记录每个子操作的状态、计时、用量与缓存命中。
子操作失败只记录在 Executor 上，是否致命由调用方决定。
"""
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional

from loguru import logger

from .models import ExecutionTask, TaskStatus

OnTaskStart = Callable[[ExecutionTask], Awaitable[None]]


def _now_ms() -> int:
    return int(time.time() * 1000)


class Executor:
    """
    子操作执行器（每次调用创建，用完即弃）

    使用方式：
        executor = Executor("Tap - the login button", tasks)
        output = await executor.flush()
        if executor.is_in_error_state():
            print(executor.latest_error_task().error)
    """

    def __init__(
        self,
        name: str,
        tasks: Optional[List[ExecutionTask]] = None,
        on_task_start: Optional[OnTaskStart] = None,
    ):
        self.name = name
        self.tasks: List[ExecutionTask] = []
        self.on_task_start = on_task_start
        if tasks:
            self.append(tasks)

    def append(self, tasks: List[ExecutionTask]) -> None:
        """追加 pending 子操作"""
        for task in tasks:
            if task.status != TaskStatus.PENDING:
                raise ValueError(
                    f"only pending tasks can be appended, got {task.type.value} in {task.status.value}"
                )
            self.tasks.append(task)

    async def flush(self) -> Any:
        """
        依次运行所有 pending 子操作

        某个子操作失败后停止，后续子操作保持 pending。
        已处于错误状态的执行器不再运行任何子操作。

        Returns:
            最后一个成功子操作的 output
        """
        if self.is_in_error_state():
            logger.debug(f"⚙️ [Executor] {self.name}: 已处于错误状态，跳过 flush")
            return None

        last_output = None
        for index, task in enumerate(self.tasks):
            if task.status != TaskStatus.PENDING:
                continue

            if not await self._run_task(index, task):
                break
            last_output = task.output

        return last_output

    async def _run_task(self, index: int, task: ExecutionTask) -> bool:
        label = f"{task.type.value}/{task.sub_type}" if task.sub_type else task.type.value

        task.status = TaskStatus.RUNNING
        task.timing.start = _now_ms()
        logger.debug(f"⚙️ [Executor] {self.name}: Task[{index}] {label} 开始")

        try:
            if self.on_task_start:
                await self.on_task_start(task)

            outcome = await task.executor(task)
            if outcome is not None:
                task.output = outcome.output
                if outcome.thought is not None:
                    task.thought = outcome.thought
                if outcome.locate is not None:
                    task.locate = outcome.locate
                if outcome.usage is not None:
                    task.usage = outcome.usage
                if outcome.cache is not None:
                    task.cache = outcome.cache
                if outcome.plans is not None:
                    task.param["plans"] = outcome.plans
            task.status = TaskStatus.SUCCESS
        except Exception as e:
            task.status = TaskStatus.FAILED
            task.error = str(e) or type(e).__name__
            logger.warning(f"❌ [Executor] {self.name}: Task[{index}] {label} 失败: {task.error}")
        finally:
            task.timing.end = _now_ms()
            task.timing.cost = task.timing.end - task.timing.start

        if task.status == TaskStatus.SUCCESS:
            logger.debug(
                f"✅ [Executor] {self.name}: Task[{index}] {label} 完成 ({task.timing.cost}ms)"
            )
            return True
        return False

    def is_in_error_state(self) -> bool:
        return any(task.status == TaskStatus.FAILED for task in self.tasks)

    def latest_error_task(self) -> Optional[ExecutionTask]:
        """管线顺序中最后一个失败的子操作"""
        for task in reversed(self.tasks):
            if task.status == TaskStatus.FAILED:
                return task
        return None

    def dump(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "tasks": [task.to_dict() for task in self.tasks],
        }
