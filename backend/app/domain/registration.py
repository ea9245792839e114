"""
Registration 领域实体 - 报名审核生命周期

封装 ORM 模型，通过状态机校验状态变更；
违反规则时抛出 ConflictError，消息指明被违反的规则
"""
from typing import Optional, TYPE_CHECKING
import logging

from core.engine.state_machine import StateMachine, StateMachineConfig, StateTransition
from app.models.ontology import RegistrationStatus, DocumentStatus, utcnow
from app.security.actor import Actor
from app.services.exceptions import ConflictError

if TYPE_CHECKING:
    from app.models.ontology import Registration

logger = logging.getLogger(__name__)


# ============== 状态机配置 ==============

REGISTRATION_STATUS = StateMachineConfig(
    name="Registration",
    states=[s.value for s in RegistrationStatus],
    transitions=[
        StateTransition(
            from_state=RegistrationStatus.PENDING.value,
            to_state=RegistrationStatus.APPROVED.value,
            trigger="approve",
        ),
        StateTransition(
            from_state=RegistrationStatus.REJECTED.value,
            to_state=RegistrationStatus.APPROVED.value,
            trigger="approve",
        ),
        StateTransition(
            from_state=RegistrationStatus.PENDING.value,
            to_state=RegistrationStatus.REJECTED.value,
            trigger="reject",
        ),
        StateTransition(
            from_state=RegistrationStatus.PENDING.value,
            to_state=RegistrationStatus.CANCELLED.value,
            trigger="cancel",
        ),
        StateTransition(
            from_state=RegistrationStatus.APPROVED.value,
            to_state=RegistrationStatus.CANCELLED.value,
            trigger="cancel",
        ),
        # 修改已通过的报名需要重新审核
        StateTransition(
            from_state=RegistrationStatus.APPROVED.value,
            to_state=RegistrationStatus.PENDING.value,
            trigger="edit",
        ),
    ],
    initial_state=RegistrationStatus.PENDING.value,
    terminal_states=[RegistrationStatus.CANCELLED.value],
)

DOCUMENT_STATUS = StateMachineConfig(
    name="RegistrationDocuments",
    states=[s.value for s in DocumentStatus],
    transitions=[
        StateTransition(
            from_state=DocumentStatus.PENDING.value,
            to_state=DocumentStatus.APPROVED.value,
            trigger="approve",
        ),
        StateTransition(
            from_state=DocumentStatus.PENDING.value,
            to_state=DocumentStatus.REJECTED.value,
            trigger="reject",
        ),
        StateTransition(
            from_state=DocumentStatus.REJECTED.value,
            to_state=DocumentStatus.PENDING.value,
            trigger="resubmit",
        ),
    ],
    initial_state=DocumentStatus.PENDING.value,
)


# ============== Registration 领域实体 ==============

class RegistrationEntity:
    """
    报名领域实体

    只修改报名本身的字段；朝圣者状态镜像与日志由服务层在同一事务中处理
    """

    def __init__(self, orm_model: "Registration"):
        self._orm_model = orm_model

    @property
    def status(self) -> str:
        return RegistrationStatus(self._orm_model.status).value

    @property
    def document_status(self) -> str:
        return DocumentStatus(self._orm_model.document_status).value

    def _machine(self) -> StateMachine:
        return StateMachine(REGISTRATION_STATUS, current_state=self.status)

    def _document_machine(self) -> StateMachine:
        return StateMachine(DOCUMENT_STATUS, current_state=self.document_status)

    # ============== 审核状态 ==============

    def approve(self, actor: Actor, comments: Optional[str] = None) -> None:
        """
        通过报名

        Raises:
            ConflictError: 已通过或已取消
        """
        if self.status == RegistrationStatus.APPROVED.value:
            raise ConflictError("Registration is already approved")
        if self.status == RegistrationStatus.CANCELLED.value:
            raise ConflictError("Cannot approve a cancelled registration")

        self._orm_model.status = RegistrationStatus(self._machine().fire("approve"))
        self._orm_model.approved_by = actor.id
        self._orm_model.approved_at = utcnow()
        if comments is not None:
            self._orm_model.admin_comments = comments

    def reject(self, actor: Actor, reason: str, comments: Optional[str] = None) -> None:
        """
        拒绝报名（仅待审核状态）

        Raises:
            ConflictError: 已拒绝、已取消或已通过
        """
        if self.status == RegistrationStatus.REJECTED.value:
            raise ConflictError("Registration is already rejected")
        if self.status == RegistrationStatus.CANCELLED.value:
            raise ConflictError("Cannot reject a cancelled registration")
        if self.status == RegistrationStatus.APPROVED.value:
            raise ConflictError("Cannot reject an approved registration")

        self._orm_model.status = RegistrationStatus(self._machine().fire("reject"))
        self._orm_model.rejection_reason = reason
        self._orm_model.rejected_by = actor.id
        self._orm_model.rejected_at = utcnow()
        if comments is not None:
            self._orm_model.admin_comments = comments

    def cancel(self, actor: Actor, reason: Optional[str] = None) -> None:
        """
        取消报名

        Raises:
            ConflictError: 已取消或已拒绝
        """
        if self.status == RegistrationStatus.CANCELLED.value:
            raise ConflictError("Registration is already cancelled")
        if self.status == RegistrationStatus.REJECTED.value:
            raise ConflictError("Cannot cancel a rejected registration")

        self._orm_model.status = RegistrationStatus(self._machine().fire("cancel"))
        self._stamp_cancelled(actor, reason)

    def ensure_editable(self) -> None:
        """已拒绝/已取消的报名不可修改"""
        if self.status in (RegistrationStatus.REJECTED.value, RegistrationStatus.CANCELLED.value):
            raise ConflictError(f"Cannot update a {self.status} registration")

    def mark_edited(self) -> bool:
        """内容被修改：已通过的报名退回待审核，返回是否发生了回退"""
        self.ensure_editable()
        machine = self._machine()
        if not machine.can_fire("edit"):
            return False
        self._orm_model.status = RegistrationStatus(machine.fire("edit"))
        logger.info(f"Registration {self._orm_model.id} reverted to pending after edit")
        return True

    # ============== 证明文件审核 ==============

    def approve_document(self, actor: Actor) -> None:
        """
        通过证明文件

        Raises:
            ConflictError: 报名已取消，或文件不处于待审核状态
        """
        if self.status == RegistrationStatus.CANCELLED.value:
            raise ConflictError("Cannot review documents of a cancelled registration")
        if self.document_status == DocumentStatus.APPROVED.value:
            raise ConflictError("Documents are already approved")
        if self.document_status == DocumentStatus.REJECTED.value:
            raise ConflictError("Rejected documents must be re-uploaded before approval")

        self._orm_model.document_status = DocumentStatus(self._document_machine().fire("approve"))
        self._orm_model.document_rejection_reason = None

    def reject_document(self, actor: Actor, reason: Optional[str] = None) -> None:
        """
        拒绝证明文件，并强制取消报名（不论当前审核状态）

        Raises:
            ConflictError: 报名已取消，或文件已通过
        """
        if self.status == RegistrationStatus.CANCELLED.value:
            raise ConflictError("Cannot reject documents of a cancelled registration")
        if self.document_status == DocumentStatus.REJECTED.value:
            raise ConflictError("Documents are already rejected")
        if self.document_status == DocumentStatus.APPROVED.value:
            raise ConflictError("Documents are already approved")

        self._orm_model.document_status = DocumentStatus(self._document_machine().fire("reject"))
        self._orm_model.document_rejection_reason = reason

        # 文件被拒绝直接取消报名，绕过审核状态转换表
        self._orm_model.status = RegistrationStatus.CANCELLED
        cancel_reason = f"Documents rejected: {reason}" if reason else "Documents rejected"
        self._stamp_cancelled(actor, cancel_reason)

    def resubmit_documents(self) -> bool:
        """上传新的证明文件：已拒绝的文件审核重置为待审核，返回是否重置"""
        machine = self._document_machine()
        if not machine.can_fire("resubmit"):
            return False
        self._orm_model.document_status = DocumentStatus(machine.fire("resubmit"))
        self._orm_model.document_rejection_reason = None
        return True

    def _stamp_cancelled(self, actor: Actor, reason: Optional[str]) -> None:
        self._orm_model.cancellation_reason = reason or "No reason provided"
        self._orm_model.cancelled_by = actor.id
        self._orm_model.cancelled_at = utcnow()
