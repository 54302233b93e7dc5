"""
指令结果信封

每次 ai_* 调用返回 AITaskResult(result, metadata)，
metadata 只由 Executor 的子操作列表推导，不会重新执行任何子操作。
序列化后的字段名供报告 / 调试工具使用，保持不变。
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .executor import Executor
from .models import ExecutionTask, TaskType


def _dump(value: Any) -> Any:
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if isinstance(value, list):
        return [_dump(v) for v in value]
    if isinstance(value, dict):
        return {k: _dump(v) for k, v in value.items()}
    return value


@dataclass
class TaskMetadata:
    status: Optional[str] = None
    start: Optional[int] = None
    end: Optional[int] = None
    total_time: Optional[int] = None
    cache: Optional[Dict[str, bool]] = None
    usage: Optional[Dict[str, int]] = None
    thought: Optional[str] = None
    locate: Any = None
    plan: Any = None
    planning: Optional[Dict[str, Any]] = None
    insight: Optional[Dict[str, Any]] = None
    action: Optional[Dict[str, Any]] = None
    action_details: List[Dict[str, Any]] = field(default_factory=list)
    tasks: List[Dict[str, Any]] = field(default_factory=list)
    deepthink: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "status": self.status,
            "start": self.start,
            "end": self.end,
            "totalTime": self.total_time,
            "cache": self.cache,
            "usage": self.usage,
            "thought": self.thought,
            "locate": self.locate,
            "plan": self.plan,
            "planning": self.planning,
            "insight": self.insight,
            "action": self.action,
            "actionDetails": self.action_details,
            "tasks": self.tasks,
        }
        if self.deepthink is not None:
            data["deepthink"] = self.deepthink
        return data


@dataclass
class AITaskResult:
    result: Any
    metadata: TaskMetadata

    def to_dict(self) -> Dict[str, Any]:
        return {"result": _dump(self.result), "metadata": self.metadata.to_dict()}


def _of_type(tasks: List[ExecutionTask], task_type: TaskType) -> List[ExecutionTask]:
    return [task for task in tasks if task.type == task_type]


def build_task_metadata(executor: Executor) -> TaskMetadata:
    """
    从子操作列表推导结果元数据

    - status / start / end / totalTime / cache / usage 取最后一个子操作
    - thought 拼接所有非空 thought
    - locate / plan 收集所有子操作的定位描述和生成的计划
    - planning / insight / action 按类型分组的概览
    - actionDetails / tasks 每个子操作的明细
    """
    tasks = executor.tasks
    last = tasks[-1] if tasks else None

    thoughts = [task.thought for task in tasks if task.thought]
    locates = [task.locate for task in tasks if task.locate]
    plans = [_dump(task.param["plans"]) for task in tasks if task.param.get("plans")]

    planning_tasks = _of_type(tasks, TaskType.PLANNING)
    insight_tasks = _of_type(tasks, TaskType.INSIGHT)
    action_tasks = _of_type(tasks, TaskType.ACTION)

    planning = None
    if planning_tasks:
        planning = {
            "type": "Planning",
            "description": "Planning for task execution",
            "steps": [task.thought or "Planning step" for task in planning_tasks],
        }

    insight = None
    if insight_tasks:
        insight = {
            "type": "Insight",
            "description": "Insight for task execution",
            "elements": [task.thought or "Insight element" for task in insight_tasks],
        }

    action = None
    if action_tasks:
        action = {
            "type": "Action",
            "description": "Action for task execution",
            "result": _dump(last.output) if last else None,
        }

    return TaskMetadata(
        status=last.status.value if last else None,
        start=last.timing.start if last else None,
        end=last.timing.end if last else None,
        total_time=last.timing.cost if last else None,
        cache=last.cache.to_dict() if last and last.cache else None,
        usage=last.usage.to_dict() if last and last.usage else None,
        thought="\n".join(thoughts) if thoughts else (last.thought if last else None),
        locate=locates if locates else (last.locate if last else None),
        plan=plans if plans else None,
        planning=planning,
        insight=insight,
        action=action,
        action_details=[
            {
                "type": task.type.value,
                "subType": task.sub_type,
                "status": task.status.value,
                "thought": task.thought,
            }
            for task in tasks
        ],
        tasks=[
            {
                "type": task.type.value,
                "subType": task.sub_type,
                "status": task.status.value,
                "thought": task.thought,
                "locate": task.locate,
                "timing": task.timing.to_dict(),
                "usage": task.usage.to_dict() if task.usage else None,
                "cache": task.cache.to_dict() if task.cache else None,
                "error": task.error,
            }
            for task in tasks
        ],
    )
