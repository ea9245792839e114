"""
本体对象定义 (Ontology Objects)
朝圣活动（Yatra）的住宿库存与报名记录：Hotel / Room / Pilgrim / Registration
房间占用状态与酒店聚合计数、报名状态与审计日志通过约束保持一致
"""
from datetime import datetime, UTC
from enum import Enum
from sqlalchemy import (
    Column, Integer, String, DateTime, Date, ForeignKey, Text, Boolean, Numeric,
    JSON, Enum as SQLEnum, UniqueConstraint, CheckConstraint, Index, text, event
)
from sqlalchemy.orm import relationship
from app.database import Base


def utcnow() -> datetime:
    """当前 UTC 时间（无时区信息，便于各数据库统一存储）"""
    return datetime.now(UTC).replace(tzinfo=None)


# ============== 枚举定义 ==============

class RegistrationStatus(str, Enum):
    """报名审核状态"""
    PENDING = "pending"        # 待审核
    APPROVED = "approved"      # 已通过
    REJECTED = "rejected"      # 已拒绝
    CANCELLED = "cancelled"    # 已取消（终态）


class DocumentStatus(str, Enum):
    """行程证明文件审核状态"""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class PilgrimStatus(str, Enum):
    """朝圣者账户上的报名状态镜像"""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class RoomAssignmentStatus(str, Enum):
    """分房确认程度：草稿 -> 已确认 -> 已分配"""
    DRAFT = "draft"
    CONFIRMED = "confirmed"
    ALLOTED = "alloted"


class ToiletType(str, Enum):
    """卫生间类型"""
    WESTERN = "western"
    INDIAN = "indian"


class Gender(str, Enum):
    """性别"""
    MALE = "male"
    FEMALE = "female"
    OTHER = "other"


class TicketType(str, Enum):
    """车票/行程分类"""
    FLIGHT = "FLIGHT"
    BUS = "BUS"
    FIRST_AC = "FIRST_AC"
    SECOND_AC = "SECOND_AC"
    THIRD_AC = "THIRD_AC"
    SLEEPER = "SLEEPER"
    GENERAL = "GENERAL"
    TBS = "TBS"
    WL = "WL"
    RAC = "RAC"


class RegistrationAction(str, Enum):
    """报名日志操作类型"""
    CREATED = "created"
    UPDATED = "updated"
    CANCELLED = "cancelled"
    APPROVED = "approved"
    REJECTED = "rejected"
    DOCUMENT_APPROVED = "document_approved"
    DOCUMENT_REJECTED = "document_rejected"


class ActorKind(str, Enum):
    """操作人类型：后台管理员 / 自助用户"""
    ADMIN = "admin"
    USER = "user"


# ============== 本体对象定义 ==============

class Yatra(Base):
    """
    朝圣活动对象 - 酒店与报名的分区单位
    """
    __tablename__ = "yatras"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), unique=True, nullable=False)
    banner_image = Column(String(500))
    description = Column(Text)
    start_date = Column(DateTime)
    end_date = Column(DateTime)
    registration_start_date = Column(DateTime)
    registration_end_date = Column(DateTime)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # 链接
    hotels = relationship("Hotel", back_populates="yatra")
    registrations = relationship("Registration", back_populates="yatra")


class Hotel(Base):
    """
    酒店对象
    total_rooms / occupied_rooms / available_rooms 是由 Room 集合推导的聚合值，
    只能通过 RoomAssignmentService.recompute_hotel_aggregates 重写
    """
    __tablename__ = "hotels"

    id = Column(Integer, primary_key=True, index=True)
    yatra_id = Column(Integer, ForeignKey("yatras.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), unique=True, nullable=False)
    address = Column(Text)
    map_link = Column(String(5000))
    distance_from_bhavan = Column(String(50))
    hotel_type = Column(String(10))                       # 分类 A/B/C
    manager_name = Column(String(255))
    manager_contact = Column(String(20))
    number_of_days = Column(Integer)
    start_date = Column(DateTime)
    end_date = Column(DateTime)
    check_in_time = Column(String(10))
    check_out_time = Column(String(10))
    has_elevator = Column(Boolean, default=False)
    total_floors = Column(Integer, default=0)
    floors = Column(JSON, default=list)                   # 楼层布局 [{floor_number, room_numbers}]
    total_rooms = Column(Integer, default=0)
    occupied_rooms = Column(Integer, default=0)
    available_rooms = Column(Integer, default=0)
    is_active = Column(Boolean, default=True, index=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # 链接
    yatra = relationship("Yatra", back_populates="hotels")
    rooms = relationship(
        "Room", back_populates="hotel",
        cascade="all, delete-orphan", order_by="Room.id"
    )


class Room(Base):
    """
    房间对象
    is_occupied 与 assigned_pilgrim_id 非空严格等价（数据库 CHECK 约束）
    (hotel_id, floor, room_number) 为自然键
    """
    __tablename__ = "rooms"
    __table_args__ = (
        UniqueConstraint("hotel_id", "floor", "room_number", name="uq_room_hotel_floor_number"),
        CheckConstraint(
            "is_occupied = (assigned_pilgrim_id IS NOT NULL)",
            name="ck_room_occupancy_link"
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    hotel_id = Column(Integer, ForeignKey("hotels.id", ondelete="CASCADE"), nullable=False, index=True)
    room_number = Column(String(20), nullable=False)
    floor = Column(String(10), nullable=False)
    toilet_type = Column(SQLEnum(ToiletType), default=ToiletType.WESTERN)
    number_of_beds = Column(Integer, default=1)
    charge_per_day = Column(Numeric(10, 2), default=0)
    is_occupied = Column(Boolean, default=False, nullable=False, index=True)
    assigned_pilgrim_id = Column(
        Integer, ForeignKey("pilgrims.id", ondelete="SET NULL"), nullable=True, index=True
    )
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # 链接
    hotel = relationship("Hotel", back_populates="rooms")
    assigned_pilgrim = relationship(
        "Pilgrim", foreign_keys=[assigned_pilgrim_id], back_populates="rooms"
    )


class Pilgrim(Base):
    """
    朝圣者账户（按 PNR 唯一）
    权威的持有关系是 Room.assigned_pilgrim_id；assigned_room_id 仅为旧版单房间视图
    """
    __tablename__ = "pilgrims"

    id = Column(Integer, primary_key=True, index=True)
    pnr = Column(String(12), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    contact_number = Column(String(15))
    email = Column(String(255))
    gender = Column(SQLEnum(Gender))
    age = Column(Integer)
    number_of_persons = Column(Integer, default=1)
    boarding_state = Column(String(100))
    boarding_city = Column(String(100))
    boarding_point = Column(String(255))
    arrival_date = Column(Date)
    return_date = Column(Date)
    ticket_images = Column(JSON, default=list)
    registration_status = Column(SQLEnum(PilgrimStatus), default=PilgrimStatus.PENDING, index=True)
    room_assignment_status = Column(SQLEnum(RoomAssignmentStatus), nullable=True, index=True)
    assigned_room_id = Column(
        Integer,
        ForeignKey("rooms.id", ondelete="SET NULL", use_alter=True, name="fk_pilgrim_assigned_room"),
        nullable=True
    )
    is_room_assigned = Column(Boolean, default=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # 链接
    rooms = relationship(
        "Room", foreign_keys="Room.assigned_pilgrim_id", back_populates="assigned_pilgrim"
    )
    assigned_room = relationship("Room", foreign_keys=[assigned_room_id], post_update=True)
    registrations = relationship("Registration", back_populates="pilgrim")


class Registration(Base):
    """
    报名对象 - 审核生命周期的聚合根
    拥有有序的出行人明细与只追加的日志
    拆分报名：pnr / split_pnr 为系统生成的内部 PNR，original_pnr 为真实订票号
    """
    __tablename__ = "yatra_registrations"

    id = Column(Integer, primary_key=True, index=True)
    pilgrim_id = Column(Integer, ForeignKey("pilgrims.id", ondelete="CASCADE"), nullable=False, index=True)
    yatra_id = Column(Integer, ForeignKey("yatras.id", ondelete="CASCADE"), nullable=False, index=True)
    pnr = Column(String(12), nullable=False, index=True)
    split_pnr = Column(String(10), nullable=True, index=True)
    original_pnr = Column(String(12), nullable=True, index=True)
    ticket_type = Column(SQLEnum(TicketType), nullable=True)
    name = Column(String(255), nullable=False)
    whatsapp_number = Column(String(15), index=True)
    number_of_persons = Column(Integer, nullable=False)
    boarding_city = Column(String(100))
    boarding_state = Column(String(100))
    arrival_date = Column(Date)
    return_date = Column(Date)
    ticket_images = Column(JSON, default=list)
    status = Column(SQLEnum(RegistrationStatus), default=RegistrationStatus.PENDING, nullable=False, index=True)
    document_status = Column(SQLEnum(DocumentStatus), default=DocumentStatus.PENDING, nullable=False)
    document_rejection_reason = Column(Text)
    cancellation_reason = Column(Text)
    rejection_reason = Column(Text)
    admin_comments = Column(Text)
    approved_by = Column(Integer)
    approved_at = Column(DateTime)
    rejected_by = Column(Integer)
    rejected_at = Column(DateTime)
    cancelled_by = Column(Integer)
    cancelled_at = Column(DateTime)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # 链接
    pilgrim = relationship("Pilgrim", back_populates="registrations")
    yatra = relationship("Yatra", back_populates="registrations")
    persons = relationship(
        "RegistrationPerson", back_populates="registration",
        cascade="all, delete-orphan", order_by="RegistrationPerson.id"
    )
    logs = relationship(
        "RegistrationLog", back_populates="registration",
        order_by="RegistrationLog.id", passive_deletes=True
    )


# 同一 (PNR, 活动) 最多一条未取消报名；SQLEnum 以枚举名存储
Index(
    "uq_registration_active_pnr",
    Registration.pnr, Registration.yatra_id,
    unique=True,
    sqlite_where=text("status != 'CANCELLED'"),
    postgresql_where=text("status != 'CANCELLED'"),
)


class RegistrationPerson(Base):
    """
    出行人明细（每位旅客一行）
    """
    __tablename__ = "registration_persons"

    id = Column(Integer, primary_key=True, index=True)
    registration_id = Column(
        Integer, ForeignKey("yatra_registrations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name = Column(String(255), nullable=False)
    age = Column(Integer)
    gender = Column(SQLEnum(Gender), nullable=False)
    is_handicapped = Column(Boolean, default=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    registration = relationship("Registration", back_populates="persons")


class RegistrationLog(Base):
    """
    报名审计日志 - 写入后不可修改
    """
    __tablename__ = "registration_logs"

    id = Column(Integer, primary_key=True, index=True)
    registration_id = Column(
        Integer, ForeignKey("yatra_registrations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    action = Column(SQLEnum(RegistrationAction), nullable=False, index=True)
    changed_by = Column(Integer, nullable=True, index=True)
    changed_by_type = Column(SQLEnum(ActorKind), nullable=True)
    old_values = Column(JSON)
    new_values = Column(JSON)
    reason = Column(Text)
    comments = Column(Text)
    ip_address = Column(String(128))
    user_agent = Column(Text)
    created_at = Column(DateTime, default=utcnow, index=True)

    registration = relationship("Registration", back_populates="logs")


@event.listens_for(RegistrationLog, "before_update")
def _reject_log_update(mapper, connection, target):
    raise ValueError("Registration log entries are immutable")
