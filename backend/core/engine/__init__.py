"""
core/engine - 核心引擎模块

包含与业务无关的引擎组件：
- state_machine: 状态机引擎（状态转换校验）
- snapshot: 快照序列化（审计日志的前后值）

使用方式:
    >>> from core.engine import StateMachine, StateMachineConfig, StateTransition
    >>> from core.engine import to_snapshot
"""

# 状态机引擎
from core.engine.state_machine import (
    TransitionNotAllowed,
    StateTransition,
    StateMachineConfig,
    StateMachine,
)

# 快照序列化
from core.engine.snapshot import (
    CIRCULAR_MARKER,
    MAX_DEPTH_MARKER,
    ERROR_MARKER,
    DEFAULT_MAX_DEPTH,
    to_snapshot,
)

__all__ = [
    # 状态机
    "TransitionNotAllowed",
    "StateTransition",
    "StateMachineConfig",
    "StateMachine",
    # 快照
    "CIRCULAR_MARKER",
    "MAX_DEPTH_MARKER",
    "ERROR_MARKER",
    "DEFAULT_MAX_DEPTH",
    "to_snapshot",
]
