"""
core/engine/state_machine.py

状态机引擎 - 基于转换表校验状态变更
"""
from typing import Dict, List, Optional
from dataclasses import dataclass, field
import logging

logger = logging.getLogger(__name__)


class TransitionNotAllowed(Exception):
    """当前状态下不允许该触发动作"""

    def __init__(self, machine: str, from_state: str, trigger: str):
        self.machine = machine
        self.from_state = from_state
        self.trigger = trigger
        super().__init__(
            f"{machine}: trigger '{trigger}' is not allowed from state '{from_state}'"
        )


@dataclass(frozen=True)
class StateTransition:
    """
    状态转换定义

    Attributes:
        from_state: 源状态
        to_state: 目标状态
        trigger: 触发动作
    """

    from_state: str
    to_state: str
    trigger: str


@dataclass
class StateMachineConfig:
    """
    状态机配置

    Attributes:
        name: 状态机名称
        states: 所有状态的列表
        transitions: 转换列表
        initial_state: 初始状态
        terminal_states: 终态（没有任何出边）
    """

    name: str
    states: List[str]
    transitions: List[StateTransition]
    initial_state: str
    terminal_states: List[str] = field(default_factory=list)

    def __post_init__(self):
        for t in self.transitions:
            if t.from_state not in self.states or t.to_state not in self.states:
                raise ValueError(f"{self.name}: transition {t} references an unknown state")
            if t.from_state in self.terminal_states:
                raise ValueError(f"{self.name}: terminal state '{t.from_state}' cannot have transitions")


class StateMachine:
    """
    状态机

    状态机本身不持久化，调用方用实体当前状态构造后执行 fire()，
    再把返回的目标状态写回实体。

    Example:
        >>> machine = StateMachine(REGISTRATION_STATUS, current_state="pending")
        >>> if machine.can_fire("approve"):
        ...     registration.status = machine.fire("approve")
    """

    def __init__(self, config: StateMachineConfig, current_state: Optional[str] = None):
        self._config = config
        self._current_state = current_state if current_state is not None else config.initial_state
        if self._current_state not in config.states:
            raise ValueError(f"{config.name}: unknown state '{self._current_state}'")

        # 构建转换映射: from_state -> trigger -> transition
        self._transition_map: Dict[str, Dict[str, StateTransition]] = {}
        for t in config.transitions:
            self._transition_map.setdefault(t.from_state, {})[t.trigger] = t

    @property
    def current_state(self) -> str:
        """获取当前状态"""
        return self._current_state

    @property
    def config(self) -> StateMachineConfig:
        """获取状态机配置"""
        return self._config

    def is_terminal(self) -> bool:
        return self._current_state in self._config.terminal_states

    def allowed_triggers(self) -> List[str]:
        """当前状态下可用的触发动作"""
        return sorted(self._transition_map.get(self._current_state, {}))

    def can_fire(self, trigger: str) -> bool:
        """检查当前状态下是否可以执行触发动作"""
        return trigger in self._transition_map.get(self._current_state, {})

    def fire(self, trigger: str) -> str:
        """
        执行状态转换

        Args:
            trigger: 触发动作

        Returns:
            转换后的状态

        Raises:
            TransitionNotAllowed: 当前状态下不存在该触发动作
        """
        transition = self._transition_map.get(self._current_state, {}).get(trigger)
        if transition is None:
            logger.warning(
                f"Invalid transition: {self._config.name} {self._current_state} (trigger: {trigger})"
            )
            raise TransitionNotAllowed(self._config.name, self._current_state, trigger)

        previous_state = self._current_state
        self._current_state = transition.to_state
        logger.debug(
            f"State transition: {self._config.name} {previous_state} -> {self._current_state} (trigger: {trigger})"
        )
        return self._current_state


__all__ = [
    "TransitionNotAllowed",
    "StateTransition",
    "StateMachineConfig",
    "StateMachine",
]
