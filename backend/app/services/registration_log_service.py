"""
报名审计日志服务
每个报名写操作在同一事务内追加一条日志，日志写入后不可修改
"""
from typing import Any, List, Optional
import logging
from sqlalchemy.orm import Session

from app.config import settings
from app.models.ontology import Registration, RegistrationAction, RegistrationLog
from app.security.actor import Actor
from app.services.exceptions import NotFoundError
from core.engine.snapshot import to_snapshot

logger = logging.getLogger(__name__)

SNAPSHOT_EXCLUDE = ("logs", "registrations")


def snapshot_registration(registration: Registration) -> Any:
    """报名快照：有界深度，跳过日志集合；出行人明细先加载以纳入快照"""
    list(registration.persons)
    return to_snapshot(
        registration,
        max_depth=settings.SNAPSHOT_MAX_DEPTH,
        exclude=SNAPSHOT_EXCLUDE,
    )


def _truncate(value: Optional[str], limit: int) -> Optional[str]:
    if value is None:
        return None
    return value[:limit]


class RegistrationLogService:
    """报名日志服务"""

    def __init__(self, db: Session):
        self.db = db

    def record(
        self,
        registration: Registration,
        action: RegistrationAction,
        actor: Optional[Actor] = None,
        old_values: Any = None,
        new_values: Any = None,
        reason: Optional[str] = None,
        comments: Optional[str] = None,
    ) -> RegistrationLog:
        """
        追加一条日志（不提交，由调用方的工作单元统一提交）

        Args:
            registration: 已持久化（已 flush）的报名
            action: 操作类型
            actor: 操作人，None 视为匿名自助用户
            old_values: 操作前快照
            new_values: 操作后快照，缺省时对当前报名取快照
        """
        actor = actor or Actor()
        if new_values is None:
            new_values = snapshot_registration(registration)

        entry = RegistrationLog(
            registration_id=registration.id,
            action=action,
            changed_by=actor.id,
            changed_by_type=actor.kind,
            old_values=old_values,
            new_values=new_values,
            reason=reason,
            comments=comments,
            ip_address=_truncate(actor.ip_address, settings.LOG_IP_MAX_LENGTH),
            user_agent=actor.user_agent,
        )
        self.db.add(entry)
        logger.debug(
            f"Registration log queued: registration={registration.id} action={action.value} "
            f"actor={actor.kind.value}:{actor.id}"
        )
        return entry

    def get_logs(self, registration_id: int) -> List[RegistrationLog]:
        """获取报名日志（最新在前）"""
        exists = self.db.query(Registration.id).filter(Registration.id == registration_id).first()
        if not exists:
            raise NotFoundError(f"Registration {registration_id} not found")

        return self.db.query(RegistrationLog).filter(
            RegistrationLog.registration_id == registration_id
        ).order_by(RegistrationLog.created_at.desc(), RegistrationLog.id.desc()).all()
