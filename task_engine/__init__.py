"""
任务引擎模块 - AI 驱动的页面自动化执行管线

每条高层指令被分解为子操作管线：
Planning（规划）→ Insight（元素定位 / 数据提取）→ Action（执行）/ Assert（断言）

核心组件：
- Executor：子操作状态机，记录状态、计时、用量与缓存命中
- PageTaskExecutor：把指令转换为子操作管线，规划与定位前先查缓存
- PageAgent：面向调用方的入口，结合上下文引擎生成结果信封
"""
from .agent import PageAgent, race_with_timeout
from .cache import TaskCache, create_task_cache, fingerprint
from .errors import AssertionFailedError, TaskExecutionError, TaskTimeoutError
from .executor import Executor
from .inference import (
    AssertResult,
    ChatCompletionInference,
    ExtractResult,
    InferenceError,
    InferenceService,
    LocateResult,
    PlanResult,
)
from .metadata import AITaskResult, TaskMetadata, build_task_metadata
from .models import (
    CacheInfo,
    ExecutionTask,
    LocatedElement,
    PlanAction,
    TaskOutcome,
    TaskStatus,
    TaskTiming,
    TaskType,
    TaskUsage,
)
from .page import AbstractPage, PageSnapshot
from .planner import build_plans, parse_json_content
from .tasks import ExecutorResult, PageTaskExecutor
from .verifier import verify

__all__ = [
    "PageAgent",
    "race_with_timeout",
    "TaskCache",
    "create_task_cache",
    "fingerprint",
    "AssertionFailedError",
    "TaskExecutionError",
    "TaskTimeoutError",
    "Executor",
    "AssertResult",
    "ChatCompletionInference",
    "ExtractResult",
    "InferenceError",
    "InferenceService",
    "LocateResult",
    "PlanResult",
    "AITaskResult",
    "TaskMetadata",
    "build_task_metadata",
    "CacheInfo",
    "ExecutionTask",
    "LocatedElement",
    "PlanAction",
    "TaskOutcome",
    "TaskStatus",
    "TaskTiming",
    "TaskType",
    "TaskUsage",
    "AbstractPage",
    "PageSnapshot",
    "build_plans",
    "parse_json_content",
    "ExecutorResult",
    "PageTaskExecutor",
    "verify",
]
