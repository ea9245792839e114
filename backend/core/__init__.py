"""
core - 与领域无关的框架层

- engine: 核心引擎（状态机, 快照序列化）

使用方式:
    >>> from core.engine import StateMachine, to_snapshot
"""

__version__ = "0.1.0"
