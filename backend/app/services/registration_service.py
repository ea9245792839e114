"""
报名服务 - 报名审核生命周期
每个写操作在一个事务内完成：状态变更、朝圣者状态镜像、审计日志要么全部提交，要么全部回滚
"""
from typing import Any, Dict, List, Optional, Tuple
import logging
from sqlalchemy.orm import Session
from sqlalchemy import or_, func
from sqlalchemy.exc import IntegrityError

from app.config import settings
from app.database import atomic
from app.domain.registration import RegistrationEntity
from app.models.ontology import (
    Registration, RegistrationPerson, RegistrationLog, Pilgrim, Yatra, Hotel,
    RegistrationStatus, RegistrationAction, PilgrimStatus, TicketType
)
from app.models.schemas import (
    RegistrationBase, RegistrationCreate, SplitRegistrationCreate, RegistrationUpdate
)
from app.security.actor import Actor
from app.services.exceptions import NotFoundError, ConflictError, ValidationError
from app.services.pnr_generator import generate_internal_pnr
from app.services.registration_log_service import RegistrationLogService, snapshot_registration
from app.services.room_assignment_service import RoomAssignmentService

logger = logging.getLogger(__name__)

DUPLICATE_ACTIVE_PNR = "PNR already registered for this yatra and is currently active"
TICKET_TYPE_NOT_ADDED = "Not added"
TICKET_TYPE_ALL = "all"
FILTER_MODES = ("general", "cancelled", "all")

HOTEL_SUMMARY_FIELDS = (
    "id", "name", "address", "map_link", "distance_from_bhavan", "hotel_type",
    "manager_name", "manager_contact", "number_of_days", "start_date", "end_date",
    "check_in_time", "check_out_time", "has_elevator", "total_floors", "is_active",
)


class RegistrationService:
    """报名服务"""

    def __init__(self, db: Session):
        self.db = db
        self.logs = RegistrationLogService(db)
        self.assignments = RoomAssignmentService(db)

    # ============== 查询 ==============

    def get_registration(self, registration_id: int) -> Registration:
        registration = self.db.query(Registration).filter(Registration.id == registration_id).first()
        if not registration:
            raise NotFoundError(f"Registration {registration_id} not found")
        return registration

    def list_registrations(
        self,
        yatra_id: Optional[int] = None,
        filter_mode: str = "general",
        status: Optional[RegistrationStatus] = None,
        pnr: Optional[str] = None,
        state: Optional[str] = None,
        ticket_type: Optional[str] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 10
    ) -> Tuple[List[Registration], int]:
        """
        报名列表（最新在前）

        Args:
            filter_mode: general=未取消, cancelled=已取消, all=全部；status 仅在 all 模式下生效
            ticket_type: 车票类型；"Not added" 表示未填写，"all" 表示不过滤
            search: 按姓名 / PNR / WhatsApp 号码模糊搜索

        Returns:
            (当前页, 总数)
        """
        if filter_mode not in FILTER_MODES:
            raise ValidationError(f"Unknown filter mode '{filter_mode}'")

        query = self.db.query(Registration)
        if yatra_id is not None:
            query = query.filter(Registration.yatra_id == yatra_id)

        if filter_mode == "general":
            query = query.filter(Registration.status != RegistrationStatus.CANCELLED)
        elif filter_mode == "cancelled":
            query = query.filter(Registration.status == RegistrationStatus.CANCELLED)
        elif status is not None:
            query = query.filter(Registration.status == status)

        if pnr:
            query = query.filter(Registration.pnr == pnr.upper())
        if state:
            query = query.filter(Registration.boarding_state == state)
        if ticket_type and ticket_type != TICKET_TYPE_ALL:
            if ticket_type == TICKET_TYPE_NOT_ADDED:
                query = query.filter(Registration.ticket_type.is_(None))
            else:
                try:
                    query = query.filter(Registration.ticket_type == TicketType(ticket_type))
                except ValueError:
                    raise ValidationError(f"Unknown ticket type '{ticket_type}'")
        if search:
            pattern = f"%{search}%"
            query = query.filter(or_(
                Registration.name.ilike(pattern),
                Registration.pnr.ilike(pattern),
                Registration.whatsapp_number.ilike(pattern),
            ))

        total = query.count()
        items = query.order_by(
            Registration.created_at.desc(), Registration.id.desc()
        ).offset((page - 1) * limit).limit(limit).all()
        return items, total

    def resolve_by_pnr(self, pnr: str) -> Dict[str, Any]:
        """
        按 PNR 查询最近一次报名，以及朝圣者当前的分房情况

        Returns:
            registration / registration_status / room_assignment_status / hotel / room / rooms
        """
        normalized = pnr.strip().upper()
        registration = self.db.query(Registration).filter(
            Registration.pnr == normalized
        ).order_by(Registration.created_at.desc(), Registration.id.desc()).first()
        if not registration:
            raise NotFoundError(f"Registration not found for PNR: {pnr}")

        pilgrim = registration.pilgrim
        rooms = self.assignments.get_pilgrim_rooms(pilgrim.id) if pilgrim else []
        room = None
        if pilgrim and pilgrim.assigned_room_id:
            room = next((r for r in rooms if r.id == pilgrim.assigned_room_id), None)
        if room is None and rooms:
            room = rooms[0]

        hotel = None
        if room is not None:
            hotel_obj = self.db.query(Hotel).filter(Hotel.id == room.hotel_id).first()
            hotel = {key: getattr(hotel_obj, key) for key in HOTEL_SUMMARY_FIELDS}

        return {
            "registration": registration,
            "registration_status": pilgrim.registration_status if pilgrim else None,
            "room_assignment_status": pilgrim.room_assignment_status if pilgrim else None,
            "hotel": hotel,
            "room": room,
            "rooms": rooms,
        }

    def count_splits_by_original_pnr(self, original_pnr: str) -> int:
        """统计同一真实 PNR 下未取消的拆分报名数"""
        return self.db.query(func.count(Registration.id)).filter(
            Registration.original_pnr == original_pnr.strip().upper(),
            Registration.split_pnr.isnot(None),
            Registration.status != RegistrationStatus.CANCELLED
        ).scalar() or 0

    def get_logs(self, registration_id: int) -> List[RegistrationLog]:
        return self.logs.get_logs(registration_id)

    # ============== 创建 ==============

    def create(self, data: RegistrationCreate, actor: Optional[Actor] = None) -> Registration:
        """
        创建报名

        Raises:
            NotFoundError: 活动不存在
            ConflictError: 同一活动下该 PNR 已有未取消的报名
        """
        pnr = data.pnr.upper()
        self._ensure_yatra(data.yatra_id)
        active = self.db.query(Registration.id).filter(
            Registration.pnr == pnr,
            Registration.yatra_id == data.yatra_id,
            Registration.status != RegistrationStatus.CANCELLED
        ).first()
        if active:
            logger.warning(f"Duplicate active registration rejected: pnr={pnr} yatra={data.yatra_id}")
            raise ConflictError(DUPLICATE_ACTIVE_PNR)

        registration = self._persist_new(data, pnr=pnr, actor=actor)
        logger.info(f"Registration created: id={registration.id} pnr={pnr} yatra={data.yatra_id}")
        return registration

    def create_split(self, data: SplitRegistrationCreate, actor: Actor) -> Registration:
        """
        创建拆分报名：报名自身的 PNR 为系统生成的内部 PNR，真实订票号存为 original_pnr

        Raises:
            NotFoundError: 活动不存在
            ConflictError: 多次生成的内部 PNR 均已被占用
        """
        self._ensure_yatra(data.yatra_id)
        internal_pnr = self._unique_internal_pnr()
        registration = self._persist_new(
            data, pnr=internal_pnr, actor=actor,
            split_pnr=internal_pnr, original_pnr=data.original_pnr.upper()
        )
        logger.info(
            f"Split registration created: id={registration.id} pnr={internal_pnr} "
            f"original={registration.original_pnr}"
        )
        return registration

    # ============== 修改 ==============

    def update(self, registration_id: int, data: RegistrationUpdate,
               actor: Optional[Actor] = None) -> Registration:
        """
        修改报名内容

        已通过的报名修改后退回待审核；文件被拒绝时上传新文件会重置文件审核
        """
        registration = self.get_registration(registration_id)
        entity = RegistrationEntity(registration)
        entity.ensure_editable()
        update_data = data.model_dump(exclude_unset=True)
        old_values = snapshot_registration(registration)

        with atomic(self.db):
            for key in ("name", "whatsapp_number", "number_of_persons",
                        "arrival_date", "return_date", "ticket_type"):
                if key in update_data:
                    setattr(registration, key, update_data[key])

            boarding = update_data.get("boarding_point")
            if boarding:
                registration.boarding_city = boarding.get("city") or registration.boarding_city
                registration.boarding_state = boarding.get("state") or registration.boarding_state

            if update_data.get("ticket_images") is not None:
                registration.ticket_images = list(update_data["ticket_images"])
                entity.resubmit_documents()

            if data.persons:
                registration.persons.clear()
                self.db.flush()
                for person in data.persons:
                    registration.persons.append(RegistrationPerson(**person.model_dump()))

            entity.mark_edited()
            self._sync_pilgrim_details(registration, update_data)
            self.db.flush()
            self.logs.record(
                registration, RegistrationAction.UPDATED, actor, old_values=old_values
            )

        self.db.refresh(registration)
        logger.info(f"Registration updated: id={registration.id} status={registration.status.value}")
        return registration

    def update_ticket_type(self, registration_id: int, ticket_type: TicketType,
                           actor: Optional[Actor] = None) -> Registration:
        """单字段修改车票类型，无状态副作用"""
        registration = self.get_registration(registration_id)
        old_values = snapshot_registration(registration)
        ticket_type = TicketType(ticket_type)

        with atomic(self.db):
            registration.ticket_type = ticket_type
            self.db.flush()
            self.logs.record(
                registration, RegistrationAction.UPDATED, actor, old_values=old_values,
                reason=f"Ticket type updated to {ticket_type.value}"
            )

        self.db.refresh(registration)
        return registration

    # ============== 审核状态变更 ==============

    def cancel(self, registration_id: int, reason: Optional[str] = None,
               actor: Optional[Actor] = None) -> Registration:
        """取消报名，朝圣者状态镜像为 cancelled"""
        actor = actor or Actor()

        def apply(entity: RegistrationEntity, registration: Registration) -> None:
            entity.cancel(actor, reason)
            self._mirror_pilgrim(registration, PilgrimStatus.CANCELLED)

        return self._transition(
            registration_id, RegistrationAction.CANCELLED, actor, apply,
            reason=lambda r: r.cancellation_reason
        )

    def approve(self, registration_id: int, comments: Optional[str] = None,
                actor: Optional[Actor] = None) -> Registration:
        """通过报名，朝圣者状态镜像为 confirmed"""
        actor = actor or Actor()

        def apply(entity: RegistrationEntity, registration: Registration) -> None:
            entity.approve(actor, comments)
            self._mirror_pilgrim(registration, PilgrimStatus.CONFIRMED)

        return self._transition(
            registration_id, RegistrationAction.APPROVED, actor, apply, comments=comments
        )

    def reject(self, registration_id: int, reason: str, comments: Optional[str] = None,
               actor: Optional[Actor] = None) -> Registration:
        """拒绝报名（不改变分房状态）"""
        actor = actor or Actor()

        def apply(entity: RegistrationEntity, registration: Registration) -> None:
            entity.reject(actor, reason, comments)

        return self._transition(
            registration_id, RegistrationAction.REJECTED, actor, apply,
            reason=lambda r: reason, comments=comments
        )

    def approve_document(self, registration_id: int, comments: Optional[str] = None,
                         actor: Optional[Actor] = None) -> Registration:
        """通过证明文件"""
        actor = actor or Actor()

        def apply(entity: RegistrationEntity, registration: Registration) -> None:
            entity.approve_document(actor)

        return self._transition(
            registration_id, RegistrationAction.DOCUMENT_APPROVED, actor, apply, comments=comments
        )

    def reject_document(self, registration_id: int, reason: Optional[str] = None,
                        comments: Optional[str] = None, actor: Optional[Actor] = None) -> Registration:
        """拒绝证明文件：报名被强制取消，朝圣者状态镜像为 cancelled"""
        actor = actor or Actor()

        def apply(entity: RegistrationEntity, registration: Registration) -> None:
            entity.reject_document(actor, reason)
            self._mirror_pilgrim(registration, PilgrimStatus.CANCELLED)

        return self._transition(
            registration_id, RegistrationAction.DOCUMENT_REJECTED, actor, apply,
            reason=lambda r: r.cancellation_reason, comments=comments
        )

    # ============== 内部方法 ==============

    def _transition(self, registration_id: int, action: RegistrationAction, actor: Actor,
                    apply, reason=None, comments: Optional[str] = None) -> Registration:
        """校验并执行一次状态变更，同一事务内写入日志"""
        registration = self.get_registration(registration_id)
        old_values = snapshot_registration(registration)
        previous = registration.status

        with atomic(self.db):
            apply(RegistrationEntity(registration), registration)
            self.db.flush()
            self.logs.record(
                registration, action, actor,
                old_values=old_values,
                reason=reason(registration) if reason else None,
                comments=comments,
            )

        self.db.refresh(registration)
        logger.info(
            f"Registration {registration.id} {action.value}: "
            f"{previous.value} -> {registration.status.value} by {actor.kind.value}:{actor.id}"
        )
        return registration

    def _ensure_yatra(self, yatra_id: int) -> None:
        if not self.db.query(Yatra.id).filter(Yatra.id == yatra_id).first():
            raise NotFoundError(f"Yatra {yatra_id} not found")

    def _pnr_in_use(self, pnr: str) -> bool:
        """内部 PNR 是否已被占用：报名 PNR、拆分 PNR 与朝圣者 PNR 三个命名空间"""
        taken = self.db.query(Registration.id).filter(
            or_(Registration.pnr == pnr, Registration.split_pnr == pnr)
        ).first()
        if taken:
            return True
        return self.db.query(Pilgrim.id).filter(Pilgrim.pnr == pnr).first() is not None

    def _unique_internal_pnr(self) -> str:
        attempts = settings.INTERNAL_PNR_MAX_ATTEMPTS
        for attempt in range(1, attempts + 1):
            candidate = generate_internal_pnr()
            if not self._pnr_in_use(candidate):
                return candidate
            logger.warning(f"Internal PNR collision on attempt {attempt}: {candidate}")
        raise ConflictError(f"Could not generate a unique internal PNR after {attempts} attempts")

    def _persist_new(self, data: RegistrationBase, pnr: str, actor: Optional[Actor],
                     split_pnr: Optional[str] = None,
                     original_pnr: Optional[str] = None) -> Registration:
        try:
            with atomic(self.db):
                pilgrim = self._find_or_create_pilgrim(pnr, data)
                registration = Registration(
                    pilgrim_id=pilgrim.id,
                    yatra_id=data.yatra_id,
                    pnr=pnr,
                    split_pnr=split_pnr,
                    original_pnr=original_pnr,
                    ticket_type=data.ticket_type,
                    name=data.name,
                    whatsapp_number=data.whatsapp_number,
                    number_of_persons=data.number_of_persons,
                    boarding_city=data.boarding_point.city,
                    boarding_state=data.boarding_point.state,
                    arrival_date=data.arrival_date,
                    return_date=data.return_date,
                    ticket_images=list(data.ticket_images),
                    status=RegistrationStatus.PENDING,
                )
                for person in data.persons:
                    registration.persons.append(RegistrationPerson(**person.model_dump()))
                self.db.add(registration)
                self.db.flush()
                self.logs.record(registration, RegistrationAction.CREATED, actor, old_values=None)
        except IntegrityError as e:
            logger.warning(f"Registration insert rejected by constraint: pnr={pnr} error={e.orig}")
            raise ConflictError(DUPLICATE_ACTIVE_PNR) from e

        self.db.refresh(registration)
        return registration

    def _find_or_create_pilgrim(self, pnr: str, data: RegistrationBase) -> Pilgrim:
        """按 PNR 查找朝圣者并刷新资料；不存在时以第一位出行人的信息创建"""
        boarding = data.boarding_point
        details = dict(
            name=data.name,
            contact_number=data.whatsapp_number,
            number_of_persons=data.number_of_persons,
            boarding_state=boarding.state,
            boarding_city=boarding.city,
            boarding_point=f"{boarding.city}, {boarding.state}",
            arrival_date=data.arrival_date,
            return_date=data.return_date,
            ticket_images=list(data.ticket_images),
            registration_status=PilgrimStatus.PENDING,
        )

        pilgrim = self.db.query(Pilgrim).filter(Pilgrim.pnr == pnr).with_for_update().first()
        if pilgrim:
            for key, value in details.items():
                setattr(pilgrim, key, value)
        else:
            first = data.persons[0]
            pilgrim = Pilgrim(pnr=pnr, gender=first.gender, age=first.age, **details)
            self.db.add(pilgrim)
        self.db.flush()
        return pilgrim

    def _sync_pilgrim_details(self, registration: Registration, update_data: Dict[str, Any]) -> None:
        pilgrim = registration.pilgrim
        if pilgrim is None:
            return
        if "name" in update_data:
            pilgrim.name = update_data["name"]
        if "whatsapp_number" in update_data:
            pilgrim.contact_number = update_data["whatsapp_number"]
        if "number_of_persons" in update_data:
            pilgrim.number_of_persons = update_data["number_of_persons"]
        if update_data.get("boarding_point"):
            pilgrim.boarding_city = registration.boarding_city
            pilgrim.boarding_state = registration.boarding_state
            pilgrim.boarding_point = f"{registration.boarding_city}, {registration.boarding_state}"
        if update_data.get("arrival_date"):
            pilgrim.arrival_date = update_data["arrival_date"]
        if update_data.get("return_date"):
            pilgrim.return_date = update_data["return_date"]
        if update_data.get("ticket_images") is not None:
            pilgrim.ticket_images = list(update_data["ticket_images"])

    def _mirror_pilgrim(self, registration: Registration, status: PilgrimStatus) -> None:
        if registration.pilgrim is not None:
            registration.pilgrim.registration_status = status
