"""
子操作（ExecutionTask）数据模型

定义任务执行管线的核心数据结构，包括：
- TaskType / TaskStatus：子操作类型与状态枚举
- TaskTiming / TaskUsage / CacheInfo：计时、token 用量、缓存命中
- LocatedElement / PlanAction：元素定位结果与规划出的原子动作
- TaskOutcome：子操作执行体的返回值
- ExecutionTask：管线中的单个子操作
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional


class TaskType(str, Enum):
    """子操作类型"""
    PLANNING = "Planning"
    INSIGHT = "Insight"
    ACTION = "Action"
    ASSERT = "Assert"


class TaskStatus(str, Enum):
    """子操作状态：pending → running → success | failed"""
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"


@dataclass
class TaskTiming:
    """毫秒时间戳与耗时"""
    start: Optional[int] = None
    end: Optional[int] = None
    cost: Optional[int] = None

    def to_dict(self) -> Dict[str, Optional[int]]:
        return {"start": self.start, "end": self.end, "cost": self.cost}


@dataclass
class TaskUsage:
    """推理调用的 token 用量"""
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["TaskUsage"]:
        if not data:
            return None
        prompt = int(data.get("prompt_tokens", 0) or 0)
        completion = int(data.get("completion_tokens", 0) or 0)
        return cls(
            prompt_tokens=prompt,
            completion_tokens=completion,
            total_tokens=int(data.get("total_tokens", prompt + completion) or 0),
        )


@dataclass
class CacheInfo:
    hit: bool

    def to_dict(self) -> Dict[str, bool]:
        return {"hit": self.hit}


@dataclass
class LocatedElement:
    """
    元素定位结果

    Attributes:
        id: 元素在快照中的 id
        text: 元素文本
        rect: {"left", "top", "width", "height"}
        center: (x, y)
    """
    id: str
    text: str = ""
    rect: Dict[str, float] = field(default_factory=dict)
    center: Optional[List[float]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "text": self.text, "rect": self.rect, "center": self.center}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["LocatedElement"]:
        if not data:
            return None
        center = data.get("center")
        return cls(
            id=str(data.get("id", "")),
            text=data.get("text", "") or "",
            rect=dict(data.get("rect") or {}),
            center=list(center) if center is not None else None,
        )


@dataclass
class PlanAction:
    """
    规划出的原子动作

    Attributes:
        type: Locate / Tap / Hover / Input / KeyboardPress / Scroll / Sleep / Finished / Error
        param: 动作参数（如 value、direction、timeMs）
        locate: 目标元素描述 {"prompt": ...}，不需要目标时为 None
        thought: 推理服务给出的理由
    """
    type: str
    param: Dict[str, Any] = field(default_factory=dict)
    locate: Optional[Dict[str, Any]] = None
    thought: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "param": self.param,
            "locate": self.locate,
            "thought": self.thought,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PlanAction":
        return cls(
            type=data["type"],
            param=dict(data.get("param") or {}),
            locate=data.get("locate"),
            thought=data.get("thought"),
        )


@dataclass
class TaskOutcome:
    """子操作执行体的返回值，由 Executor 合并回 ExecutionTask"""
    output: Any = None
    thought: Optional[str] = None
    locate: Optional[Dict[str, Any]] = None
    usage: Optional[TaskUsage] = None
    cache: Optional[CacheInfo] = None
    plans: Optional[List[PlanAction]] = None


TaskBody = Callable[["ExecutionTask"], Awaitable[Optional[TaskOutcome]]]


@dataclass
class ExecutionTask:
    """
    管线中的单个子操作

    只属于一个 Executor，不在管线之间共享。
    """
    type: TaskType
    executor: TaskBody
    sub_type: Optional[str] = None
    param: Dict[str, Any] = field(default_factory=dict)
    thought: Optional[str] = None
    locate: Optional[Dict[str, Any]] = None
    status: TaskStatus = TaskStatus.PENDING
    output: Any = None
    timing: TaskTiming = field(default_factory=TaskTiming)
    usage: Optional[TaskUsage] = None
    cache: Optional[CacheInfo] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        param = dict(self.param)
        if "plans" in param:
            param["plans"] = [p.to_dict() for p in param["plans"]]
        return {
            "type": self.type.value,
            "subType": self.sub_type,
            "status": self.status.value,
            "thought": self.thought,
            "locate": self.locate,
            "param": param,
            "timing": self.timing.to_dict(),
            "usage": self.usage.to_dict() if self.usage else None,
            "cache": self.cache.to_dict() if self.cache else None,
            "error": self.error,
        }
