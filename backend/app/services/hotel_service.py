"""
酒店服务 - 酒店与房间库存
创建酒店时按楼层布局展开为房间记录；结构性修改在有房间被占用时拒绝
"""
from typing import Dict, List, Optional, Tuple
from decimal import Decimal
import logging
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError

from app.database import atomic
from app.models.ontology import Hotel, Room, Yatra, ToiletType
from app.models.schemas import FloorLayout, RoomSpec, HotelCreate, HotelUpdate
from app.services.exceptions import NotFoundError, ConflictError, ValidationError
from app.services.room_assignment_service import RoomAssignmentService

logger = logging.getLogger(__name__)

DEFAULT_FLOOR = "1"
STRUCTURAL_FIELDS = ("floors", "rooms")


def build_room_layout(floors: List[FloorLayout], specs: List[RoomSpec]) -> Tuple[List[dict], List[dict]]:
    """
    把楼层布局展开为房间明细

    扁平房间列表按房号作为明细的主要来源；其次取楼层内按位置给出的明细；
    都没有时使用默认值（西式卫生间、1 张床、日费 0）。
    未提供楼层时直接使用扁平列表，楼层缺省为 "1"。

    Returns:
        (房间字段字典列表, 规范化后的楼层布局)

    Raises:
        ValidationError: 同一楼层出现重复房号
    """
    details: Dict[str, RoomSpec] = {spec.room_number: spec for spec in specs}
    rooms: List[dict] = []

    def add(floor: str, number: str, source) -> None:
        rooms.append({
            "floor": floor,
            "room_number": number,
            "toilet_type": (source.toilet_type if source and source.toilet_type else ToiletType.WESTERN),
            "number_of_beds": (source.number_of_beds if source and source.number_of_beds else 1),
            "charge_per_day": (source.charge_per_day if source and source.charge_per_day is not None
                               else Decimal("0")),
        })

    if floors:
        for layout in floors:
            for index, number in enumerate(layout.room_numbers):
                spec = details.get(number)
                if spec is not None:
                    add(spec.floor or layout.floor_number, number, spec)
                    continue
                positional = None
                if layout.rooms and index < len(layout.rooms):
                    positional = layout.rooms[index]
                add(layout.floor_number, number, positional)
        layout_json = [
            {"floor_number": f.floor_number, "room_numbers": list(f.room_numbers)} for f in floors
        ]
    else:
        grouped: Dict[str, List[str]] = {}
        for spec in specs:
            floor = spec.floor or DEFAULT_FLOOR
            add(floor, spec.room_number, spec)
            grouped.setdefault(floor, []).append(spec.room_number)
        layout_json = [
            {"floor_number": floor, "room_numbers": numbers} for floor, numbers in grouped.items()
        ]

    keys = set()
    for room in rooms:
        key = (room["floor"], room["room_number"])
        if key in keys:
            raise ValidationError(f"Duplicate room {room['room_number']} on floor {room['floor']}")
        keys.add(key)

    return rooms, layout_json


class HotelService:
    """酒店服务"""

    def __init__(self, db: Session):
        self.db = db
        self.assignments = RoomAssignmentService(db)

    def get_hotels(
        self,
        yatra_id: Optional[int] = None,
        is_active: Optional[bool] = None,
        page: int = 1,
        limit: int = 10
    ) -> Tuple[List[Hotel], int]:
        """获取酒店列表（最新在前），返回 (当前页, 总数)"""
        query = self.db.query(Hotel)
        if yatra_id is not None:
            query = query.filter(Hotel.yatra_id == yatra_id)
        if is_active is not None:
            query = query.filter(Hotel.is_active == is_active)

        total = query.count()
        hotels = query.order_by(Hotel.created_at.desc(), Hotel.id.desc()).offset(
            (page - 1) * limit
        ).limit(limit).all()
        return hotels, total

    def get_hotel(self, hotel_id: int) -> Hotel:
        hotel = self.db.query(Hotel).filter(Hotel.id == hotel_id).first()
        if not hotel:
            raise NotFoundError(f"Hotel {hotel_id} not found")
        return hotel

    def create_hotel(self, data: HotelCreate) -> Hotel:
        """
        创建酒店并展开房间

        新建房间一律为空闲状态，聚合计数由房间扫描得出
        """
        if not self.db.query(Yatra.id).filter(Yatra.id == data.yatra_id).first():
            raise NotFoundError(f"Yatra {data.yatra_id} not found")
        if self.db.query(Hotel.id).filter(Hotel.name == data.name).first():
            raise ConflictError(f"Hotel name '{data.name}' already exists")

        room_rows, layout_json = build_room_layout(data.floors, data.rooms)
        fields = data.model_dump(exclude={"floors", "rooms"})
        if not fields.get("total_floors"):
            fields["total_floors"] = len(layout_json)

        try:
            with atomic(self.db):
                hotel = Hotel(**fields, floors=layout_json)
                self.db.add(hotel)
                self.db.flush()
                for row in room_rows:
                    self.db.add(Room(hotel_id=hotel.id, is_occupied=False, **row))
                self.db.flush()
                self.assignments.refresh_aggregates(hotel.id)
        except IntegrityError as e:
            raise ConflictError(f"Hotel could not be created: {e.orig}") from e

        self.db.refresh(hotel)
        logger.info(f"Hotel created: id={hotel.id} name={hotel.name} rooms={hotel.total_rooms}")
        return hotel

    def update_hotel(self, hotel_id: int, data: HotelUpdate) -> Hotel:
        """
        更新酒店

        描述性字段直接更新；提供 floors/rooms 时重建房间，
        酒店有任何已占用房间时拒绝结构性修改
        """
        hotel = self.get_hotel(hotel_id)
        update_data = data.model_dump(exclude_unset=True)
        structural = any(update_data.get(key) is not None for key in STRUCTURAL_FIELDS)

        if 'name' in update_data:
            existing = self.db.query(Hotel.id).filter(
                Hotel.name == update_data['name'], Hotel.id != hotel_id
            ).first()
            if existing:
                raise ConflictError(f"Hotel name '{update_data['name']}' already exists")

        room_rows = layout_json = None
        if structural:
            occupied = self.db.query(Room.id).filter(
                Room.hotel_id == hotel_id, Room.is_occupied == True
            ).count()
            if occupied:
                raise ConflictError(
                    f"Cannot change the room layout of hotel {hotel_id} while {occupied} rooms are occupied"
                )
            room_rows, layout_json = build_room_layout(
                data.floors or [], data.rooms or []
            )

        try:
            with atomic(self.db):
                for key, value in update_data.items():
                    if key in STRUCTURAL_FIELDS:
                        continue
                    setattr(hotel, key, value)
                if structural:
                    hotel.rooms.clear()
                    self.db.flush()
                    hotel.floors = layout_json
                    if 'total_floors' not in update_data:
                        hotel.total_floors = len(layout_json)
                    for row in room_rows:
                        hotel.rooms.append(Room(is_occupied=False, **row))
                    self.db.flush()
                    self.assignments.refresh_aggregates(hotel.id)
        except IntegrityError as e:
            raise ConflictError(f"Hotel could not be updated: {e.orig}") from e

        self.db.refresh(hotel)
        logger.info(f"Hotel updated: id={hotel.id} structural={structural}")
        return hotel

    def delete_hotel(self, hotel_id: int) -> bool:
        """删除酒店（级联删除房间），先释放入住者的持有关系"""
        hotel = self.get_hotel(hotel_id)
        with atomic(self.db):
            self.assignments.vacate_hotel(hotel.id)
            self.db.delete(hotel)
        logger.info(f"Hotel deleted: id={hotel_id}")
        return True
