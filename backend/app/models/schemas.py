"""
Pydantic 模式定义
用于 API 请求/响应验证，服务层直接接收这些模式对象
"""
from datetime import datetime, date
from decimal import Decimal
from typing import Optional, List, Any, Dict
from pydantic import BaseModel, Field, field_validator, ConfigDict
from app.models.ontology import (
    RegistrationStatus, DocumentStatus, PilgrimStatus, RoomAssignmentStatus,
    ToiletType, Gender, TicketType, RegistrationAction, ActorKind
)


def _floor_to_str(value: Any) -> Any:
    """楼层允许传数字或字符串，统一存为字符串"""
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    if isinstance(value, str):
        return value.strip()
    return value


# ============== 酒店 / 房间 Schemas ==============

class FloorRoomDetail(BaseModel):
    """楼层布局中按位置给出的房间明细"""
    toilet_type: Optional[ToiletType] = None
    number_of_beds: Optional[int] = Field(None, ge=1)
    charge_per_day: Optional[Decimal] = Field(None, ge=0)


class FloorLayout(BaseModel):
    floor_number: str = Field(..., min_length=1, max_length=10)
    room_numbers: List[str] = Field(default_factory=list)
    rooms: Optional[List[FloorRoomDetail]] = None

    @field_validator("floor_number", mode="before")
    @classmethod
    def normalize_floor(cls, value):
        return _floor_to_str(value)


class RoomSpec(BaseModel):
    """扁平房间列表项：作为房间明细的主要来源"""
    room_number: str = Field(..., min_length=1, max_length=20)
    floor: Optional[str] = Field(None, max_length=10)
    toilet_type: Optional[ToiletType] = None
    number_of_beds: Optional[int] = Field(None, ge=1)
    charge_per_day: Optional[Decimal] = Field(None, ge=0)

    @field_validator("floor", mode="before")
    @classmethod
    def normalize_floor(cls, value):
        return _floor_to_str(value)


class HotelBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    address: Optional[str] = None
    map_link: Optional[str] = Field(None, max_length=5000)
    distance_from_bhavan: Optional[str] = Field(None, max_length=50)
    hotel_type: Optional[str] = Field(None, max_length=10)
    manager_name: Optional[str] = None
    manager_contact: Optional[str] = Field(None, max_length=20)
    number_of_days: Optional[int] = Field(None, ge=1)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    check_in_time: Optional[str] = Field(None, max_length=10)
    check_out_time: Optional[str] = Field(None, max_length=10)
    has_elevator: bool = False
    total_floors: Optional[int] = Field(None, ge=1, le=100)


class HotelCreate(HotelBase):
    yatra_id: int
    floors: List[FloorLayout] = Field(default_factory=list)
    rooms: List[RoomSpec] = Field(default_factory=list)


class HotelUpdate(BaseModel):
    """
    酒店更新
    floors / rooms 属于结构性修改：酒店有任何已占用房间时会被拒绝
    """
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    address: Optional[str] = None
    map_link: Optional[str] = Field(None, max_length=5000)
    distance_from_bhavan: Optional[str] = Field(None, max_length=50)
    hotel_type: Optional[str] = Field(None, max_length=10)
    manager_name: Optional[str] = None
    manager_contact: Optional[str] = Field(None, max_length=20)
    number_of_days: Optional[int] = Field(None, ge=1)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    check_in_time: Optional[str] = Field(None, max_length=10)
    check_out_time: Optional[str] = Field(None, max_length=10)
    has_elevator: Optional[bool] = None
    total_floors: Optional[int] = Field(None, ge=1, le=100)
    is_active: Optional[bool] = None
    floors: Optional[List[FloorLayout]] = None
    rooms: Optional[List[RoomSpec]] = None


class RoomResponse(BaseModel):
    id: int
    hotel_id: int
    room_number: str
    floor: str
    toilet_type: Optional[ToiletType] = None
    number_of_beds: Optional[int] = None
    charge_per_day: Optional[Decimal] = None
    is_occupied: bool
    assigned_pilgrim_id: Optional[int] = None
    model_config = ConfigDict(from_attributes=True)


class HotelResponse(BaseModel):
    id: int
    yatra_id: int
    name: str
    address: Optional[str] = None
    map_link: Optional[str] = None
    distance_from_bhavan: Optional[str] = None
    hotel_type: Optional[str] = None
    manager_name: Optional[str] = None
    manager_contact: Optional[str] = None
    number_of_days: Optional[int] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    check_in_time: Optional[str] = None
    check_out_time: Optional[str] = None
    has_elevator: Optional[bool] = None
    total_floors: Optional[int] = None
    floors: List[Dict[str, Any]] = Field(default_factory=list)
    total_rooms: int
    occupied_rooms: int
    available_rooms: int
    is_active: bool
    created_at: datetime
    rooms: List[RoomResponse] = Field(default_factory=list)
    model_config = ConfigDict(from_attributes=True)


class Pagination(BaseModel):
    total: int
    page: int
    limit: int
    total_pages: int


class HotelListResponse(BaseModel):
    data: List[HotelResponse]
    pagination: Pagination


# ============== 分房 Schemas ==============

class RoomSelection(BaseModel):
    """按物理位置（酒店、楼层、房号）指定的房间"""
    hotel_id: int
    floor: str = Field(..., min_length=1, max_length=10)
    room_number: str = Field(..., min_length=1, max_length=20)

    @field_validator("floor", mode="before")
    @classmethod
    def normalize_floor(cls, value):
        return _floor_to_str(value)


class RoomAssignmentRequest(BaseModel):
    pilgrim_id: int
    assignments: List[RoomSelection] = Field(default_factory=list)


class RoomAssignmentResult(BaseModel):
    pilgrim_id: int
    rooms_assigned: int
    primary_room_id: Optional[int] = None
    room_assignment_status: Optional[RoomAssignmentStatus] = None


class BulkAssignmentStatusResult(BaseModel):
    yatra_id: int
    updated: int


# ============== 报名 Schemas ==============

class BoardingPoint(BaseModel):
    city: str = Field(..., min_length=1, max_length=100)
    state: str = Field(..., min_length=1, max_length=100)


class BoardingPointUpdate(BaseModel):
    city: Optional[str] = Field(None, max_length=100)
    state: Optional[str] = Field(None, max_length=100)


class PersonDetail(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    age: int = Field(..., ge=1, le=120)
    gender: Gender
    is_handicapped: bool = False


class RegistrationBase(BaseModel):
    yatra_id: int
    ticket_type: Optional[TicketType] = None
    name: str = Field(..., min_length=1, max_length=255)
    whatsapp_number: str = Field(..., min_length=1, max_length=15)
    number_of_persons: int = Field(..., ge=1)
    boarding_point: BoardingPoint
    arrival_date: date
    return_date: date
    ticket_images: List[str] = Field(default_factory=list)
    persons: List[PersonDetail] = Field(..., min_length=1)


class RegistrationCreate(RegistrationBase):
    pnr: str = Field(..., pattern=r"^[A-Za-z0-9]{6,12}$")


class SplitRegistrationCreate(RegistrationBase):
    original_pnr: str = Field(..., pattern=r"^[A-Za-z0-9]{6,12}$")


class RegistrationUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    whatsapp_number: Optional[str] = Field(None, min_length=1, max_length=15)
    number_of_persons: Optional[int] = Field(None, ge=1)
    boarding_point: Optional[BoardingPointUpdate] = None
    arrival_date: Optional[date] = None
    return_date: Optional[date] = None
    ticket_images: Optional[List[str]] = None
    ticket_type: Optional[TicketType] = None
    persons: Optional[List[PersonDetail]] = None


class CancelRegistrationRequest(BaseModel):
    reason: Optional[str] = None


class ApproveRegistrationRequest(BaseModel):
    comments: Optional[str] = None


class RejectRegistrationRequest(BaseModel):
    reason: str = Field(..., min_length=1)
    comments: Optional[str] = None


class DocumentReviewRequest(BaseModel):
    reason: Optional[str] = None
    comments: Optional[str] = None


class TicketTypeUpdate(BaseModel):
    ticket_type: TicketType


class PersonDetailResponse(PersonDetail):
    id: int
    model_config = ConfigDict(from_attributes=True)


class RegistrationResponse(BaseModel):
    id: int
    pilgrim_id: int
    yatra_id: int
    pnr: str
    split_pnr: Optional[str] = None
    original_pnr: Optional[str] = None
    ticket_type: Optional[TicketType] = None
    name: str
    whatsapp_number: Optional[str] = None
    number_of_persons: int
    boarding_city: Optional[str] = None
    boarding_state: Optional[str] = None
    arrival_date: Optional[date] = None
    return_date: Optional[date] = None
    ticket_images: List[str] = Field(default_factory=list)
    status: RegistrationStatus
    document_status: DocumentStatus
    document_rejection_reason: Optional[str] = None
    cancellation_reason: Optional[str] = None
    rejection_reason: Optional[str] = None
    admin_comments: Optional[str] = None
    approved_by: Optional[int] = None
    approved_at: Optional[datetime] = None
    rejected_by: Optional[int] = None
    rejected_at: Optional[datetime] = None
    cancelled_by: Optional[int] = None
    cancelled_at: Optional[datetime] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    persons: List[PersonDetailResponse] = Field(default_factory=list)
    model_config = ConfigDict(from_attributes=True)


class RegistrationListResponse(BaseModel):
    data: List[RegistrationResponse]
    pagination: Pagination


class RegistrationLogResponse(BaseModel):
    id: int
    registration_id: int
    action: RegistrationAction
    changed_by: Optional[int] = None
    changed_by_type: Optional[ActorKind] = None
    old_values: Optional[Any] = None
    new_values: Optional[Any] = None
    reason: Optional[str] = None
    comments: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


class PnrLookupResponse(BaseModel):
    """按 PNR 查询：报名 + 朝圣者当前的分房情况"""
    registration: RegistrationResponse
    room_assignment_status: Optional[RoomAssignmentStatus] = None
    registration_status: Optional[PilgrimStatus] = None
    hotel: Optional[Dict[str, Any]] = None
    room: Optional[RoomResponse] = None
    rooms: List[RoomResponse] = Field(default_factory=list)


class SplitCountResponse(BaseModel):
    original_pnr: str
    count: int
