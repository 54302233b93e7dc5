"""
Run / Step 数据模型

定义上下文引擎的核心数据结构，包括：
- StepStatus：步骤状态枚举
- StepMetadata：步骤附加信息（固定的可选字段 + extra 扩展槽）
- StepContext：单个已记录的动作
- RunContext：一次多步骤运行
- ContextSnapshot：对外暴露的只读快照
"""
import time
import uuid
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Any, Dict, List, Optional


def now_ms() -> int:
    return int(time.time() * 1000)


def _new_id() -> str:
    return str(uuid.uuid4())


class StepStatus(str, Enum):
    """步骤 / 运行结果"""
    PENDING = "pending"
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass
class StepMetadata:
    """
    步骤附加信息

    Attributes:
        prompt: 发送给推理服务的指令文本
        locate: 元素定位描述
        value: 输入值 / 按键名
        url: 执行时的页面地址
        attempt: 重试场景下的第几次尝试
        sub_type: 动作子类型（Tap / Input / Scroll ...）
        extra: 不属于以上字段的其他信息
    """
    prompt: Optional[str] = None
    locate: Optional[str] = None
    value: Optional[str] = None
    url: Optional[str] = None
    attempt: Optional[int] = None
    sub_type: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "StepMetadata":
        """从普通字典创建，未知字段放入 extra"""
        if not data:
            return cls()
        known = {f.name for f in fields(cls)} - {"extra"}
        kwargs = {k: v for k, v in data.items() if k in known}
        extra = {k: v for k, v in data.items() if k not in known and k != "extra"}
        extra.update(data.get("extra") or {})
        return cls(extra=extra, **kwargs)

    def to_dict(self) -> Dict[str, Any]:
        result = {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if f.name != "extra" and getattr(self, f.name) is not None
        }
        result.update(self.extra)
        return result


@dataclass
class StepContext:
    """
    单个执行步骤

    创建时为 pending，之后只会被修改一次为 success / failure。
    """
    action: str
    description: str
    id: str = field(default_factory=_new_id)
    result: StepStatus = StepStatus.PENDING
    error: Optional[str] = None
    action_result: Any = None
    summary: Optional[str] = None
    metadata: Optional[StepMetadata] = None
    timestamp: int = field(default_factory=now_ms)

    @property
    def is_completed(self) -> bool:
        return self.result != StepStatus.PENDING

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "action": self.action,
            "description": self.description,
            "result": self.result.value,
            "error": self.error,
            "actionResult": self.action_result,
            "summary": self.summary,
            "metadata": self.metadata.to_dict() if self.metadata else None,
            "timestamp": self.timestamp,
        }


@dataclass
class RunContext:
    """
    一次运行（多个步骤的有序集合）

    result 在 complete_run 时根据步骤结果计算并固定。
    """
    name: str
    description: Optional[str] = None
    id: str = field(default_factory=_new_id)
    steps: List[StepContext] = field(default_factory=list)
    result: StepStatus = StepStatus.PENDING
    summary: Optional[str] = None
    timestamp: int = field(default_factory=now_ms)
    completed_timestamp: Optional[int] = None

    @property
    def has_failures(self) -> bool:
        return any(step.result == StepStatus.FAILURE for step in self.steps)

    def copy(self) -> "RunContext":
        """步骤列表与步骤对象均复制，调用方修改不会影响引擎内部状态"""
        return replace(self, steps=[replace(step) for step in self.steps])

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "steps": [step.to_dict() for step in self.steps],
            "result": self.result.value,
            "summary": self.summary,
            "timestamp": self.timestamp,
            "completedTimestamp": self.completed_timestamp,
        }


@dataclass
class ContextSnapshot:
    """ContextEngine 状态的只读快照"""
    current_run: Optional[RunContext]
    history: List[RunContext] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "currentRun": self.current_run.to_dict() if self.current_run else None,
            "history": [run.to_dict() for run in self.history],
        }
