"""
分房服务 - 房间库存与朝圣者分房
房间按自然键（酒店、楼层、房号）定位；分房为整体替换语义：
先校验全部目标房间，再释放旧房间、占用新房间，最后重算受影响酒店的聚合计数
"""
from typing import Iterable, List, Set
import logging
from sqlalchemy.orm import Session
from sqlalchemy import func, update, exists

from app.database import atomic
from app.models.ontology import (
    Hotel, Room, Pilgrim, Registration, Yatra,
    RegistrationStatus, RoomAssignmentStatus, utcnow
)
from app.models.schemas import RoomSelection, RoomAssignmentResult
from app.services.exceptions import NotFoundError, ConflictError

logger = logging.getLogger(__name__)


class RoomAssignmentService:
    """分房服务"""

    def __init__(self, db: Session):
        self.db = db

    # ============== 查询 ==============

    def get_pilgrim(self, pilgrim_id: int) -> Pilgrim:
        pilgrim = self.db.query(Pilgrim).filter(Pilgrim.id == pilgrim_id).first()
        if not pilgrim:
            raise NotFoundError(f"Pilgrim {pilgrim_id} not found")
        return pilgrim

    def get_pilgrim_rooms(self, pilgrim_id: int) -> List[Room]:
        """朝圣者当前持有的全部房间（权威关系）"""
        self.get_pilgrim(pilgrim_id)
        return self.db.query(Room).filter(
            Room.assigned_pilgrim_id == pilgrim_id
        ).order_by(Room.id).all()

    # ============== 分房操作 ==============

    def assign(self, pilgrim_id: int, selections: Iterable[RoomSelection]) -> RoomAssignmentResult:
        """
        为朝圣者分配一组房间（整体替换）

        Args:
            pilgrim_id: 朝圣者ID
            selections: 目标房间 (hotel_id, floor, room_number) 列表

        Returns:
            当前持有房间数与主房间ID

        Raises:
            NotFoundError: 朝圣者或任一房间不存在
            ConflictError: 任一房间已被其他朝圣者占用
        """
        with atomic(self.db):
            result = self._replace_rooms(pilgrim_id, list(selections))
        logger.info(
            f"Rooms assigned: pilgrim={pilgrim_id} count={result.rooms_assigned} "
            f"primary={result.primary_room_id}"
        )
        return result

    def reassign(self, pilgrim_id: int, selections: Iterable[RoomSelection]) -> RoomAssignmentResult:
        """先释放再分配，作为一个事务执行"""
        with atomic(self.db):
            result = self._replace_rooms(pilgrim_id, list(selections))
        logger.info(f"Rooms reassigned: pilgrim={pilgrim_id} count={result.rooms_assigned}")
        return result

    def release(self, pilgrim_id: int) -> RoomAssignmentResult:
        """释放朝圣者持有的全部房间；没有房间时直接成功"""
        with atomic(self.db):
            pilgrim = self._lock_pilgrim(pilgrim_id)
            touched = self._release_rooms(pilgrim.id)
            for hotel_id in touched:
                self.refresh_aggregates(hotel_id)
            self._set_holdings(pilgrim, [])
        if touched:
            logger.info(f"Rooms released: pilgrim={pilgrim_id} hotels={sorted(touched)}")
        return RoomAssignmentResult(
            pilgrim_id=pilgrim_id, rooms_assigned=0,
            primary_room_id=None, room_assignment_status=None
        )

    def finalize_draft_assignments(self, yatra_id: int) -> int:
        """草稿分房批量确认：draft -> confirmed，返回受影响人数"""
        return self._advance_status(
            yatra_id, RoomAssignmentStatus.DRAFT, RoomAssignmentStatus.CONFIRMED
        )

    def allot_confirmed_assignments(self, yatra_id: int) -> int:
        """已确认分房批量下发：confirmed -> alloted，返回受影响人数"""
        return self._advance_status(
            yatra_id, RoomAssignmentStatus.CONFIRMED, RoomAssignmentStatus.ALLOTED
        )

    def recompute_hotel_aggregates(self, hotel_id: int) -> Hotel:
        """按房间扫描结果重写酒店聚合计数"""
        with atomic(self.db):
            hotel = self.refresh_aggregates(hotel_id)
        self.db.refresh(hotel)
        return hotel

    # ============== 内部方法（不提交，由调用方事务包裹） ==============

    def _lock_pilgrim(self, pilgrim_id: int) -> Pilgrim:
        pilgrim = self.db.query(Pilgrim).filter(
            Pilgrim.id == pilgrim_id
        ).with_for_update().first()
        if not pilgrim:
            raise NotFoundError(f"Pilgrim {pilgrim_id} not found")
        return pilgrim

    def _resolve_rooms(self, pilgrim_id: int, selections: List[RoomSelection]) -> List[Room]:
        """校验阶段：解析全部目标房间，任何修改之前完成"""
        rooms: List[Room] = []
        seen: Set[int] = set()
        for sel in selections:
            room = self.db.query(Room).filter(
                Room.hotel_id == sel.hotel_id,
                Room.floor == sel.floor,
                Room.room_number == sel.room_number
            ).with_for_update().first()
            if not room:
                raise NotFoundError(
                    f"Room {sel.room_number} on floor {sel.floor} not found in hotel {sel.hotel_id}"
                )
            if room.assigned_pilgrim_id is not None and room.assigned_pilgrim_id != pilgrim_id:
                logger.warning(
                    f"Room {room.id} already held by pilgrim {room.assigned_pilgrim_id}, "
                    f"requested for pilgrim {pilgrim_id}"
                )
                raise ConflictError(
                    f"Room {room.room_number} on floor {room.floor} is already assigned to another pilgrim"
                )
            if room.id not in seen:
                seen.add(room.id)
                rooms.append(room)
        return rooms

    def _release_rooms(self, pilgrim_id: int) -> Set[int]:
        """释放朝圣者持有的房间，返回受影响的酒店ID"""
        hotel_ids = {
            row[0] for row in self.db.query(Room.hotel_id).filter(
                Room.assigned_pilgrim_id == pilgrim_id
            ).distinct().all()
        }
        if hotel_ids:
            self.db.execute(
                update(Room)
                .where(Room.assigned_pilgrim_id == pilgrim_id)
                .values(is_occupied=False, assigned_pilgrim_id=None, updated_at=utcnow())
            )
        return hotel_ids

    def _claim_room(self, room: Room, pilgrim_id: int) -> None:
        """条件更新占用房间：仅当房间仍空闲时成功，封闭并发分房的竞态窗口"""
        result = self.db.execute(
            update(Room)
            .where(Room.id == room.id, Room.assigned_pilgrim_id.is_(None))
            .values(is_occupied=True, assigned_pilgrim_id=pilgrim_id, updated_at=utcnow())
        )
        if result.rowcount != 1:
            logger.warning(f"Concurrent claim lost: room={room.id} pilgrim={pilgrim_id}")
            raise ConflictError(
                f"Room {room.room_number} on floor {room.floor} is already assigned to another pilgrim"
            )

    def _replace_rooms(self, pilgrim_id: int, selections: List[RoomSelection]) -> RoomAssignmentResult:
        pilgrim = self._lock_pilgrim(pilgrim_id)
        rooms = self._resolve_rooms(pilgrim.id, selections)

        touched = self._release_rooms(pilgrim.id)
        for room in rooms:
            self._claim_room(room, pilgrim.id)
            touched.add(room.hotel_id)
        for hotel_id in touched:
            self.refresh_aggregates(hotel_id)

        self._set_holdings(pilgrim, rooms)
        return RoomAssignmentResult(
            pilgrim_id=pilgrim.id,
            rooms_assigned=len(rooms),
            primary_room_id=pilgrim.assigned_room_id,
            room_assignment_status=pilgrim.room_assignment_status,
        )

    def vacate_hotel(self, hotel_id: int) -> Set[int]:
        """
        释放某酒店内的全部占用（酒店删除前调用，不提交）
        受影响朝圣者的主房间指针与分房状态按剩余房间重新计算

        Returns:
            受影响的朝圣者ID
        """
        pilgrim_ids = {
            row[0] for row in self.db.query(Room.assigned_pilgrim_id).filter(
                Room.hotel_id == hotel_id,
                Room.assigned_pilgrim_id.isnot(None)
            ).distinct().all()
        }
        if not pilgrim_ids:
            return pilgrim_ids

        self.db.execute(
            update(Room)
            .where(Room.hotel_id == hotel_id, Room.assigned_pilgrim_id.isnot(None))
            .values(is_occupied=False, assigned_pilgrim_id=None, updated_at=utcnow())
        )
        for pilgrim_id in pilgrim_ids:
            pilgrim = self._lock_pilgrim(pilgrim_id)
            remaining = self.db.query(Room).filter(
                Room.assigned_pilgrim_id == pilgrim_id
            ).order_by(Room.id).all()
            if remaining:
                pilgrim.assigned_room_id = remaining[0].id
            else:
                self._set_holdings(pilgrim, [])
        self.refresh_aggregates(hotel_id)
        self.db.flush()
        logger.info(f"Hotel {hotel_id} vacated: pilgrims={sorted(pilgrim_ids)}")
        return pilgrim_ids

    def _set_holdings(self, pilgrim: Pilgrim, rooms: List[Room]) -> None:
        if rooms:
            pilgrim.assigned_room_id = rooms[0].id
            pilgrim.is_room_assigned = True
            pilgrim.room_assignment_status = RoomAssignmentStatus.DRAFT
        else:
            pilgrim.assigned_room_id = None
            pilgrim.is_room_assigned = False
            pilgrim.room_assignment_status = None
        self.db.flush()

    def refresh_aggregates(self, hotel_id: int) -> Hotel:
        """重算聚合计数（不提交，供其它服务在自身事务内调用）"""
        hotel = self.db.query(Hotel).filter(Hotel.id == hotel_id).with_for_update().first()
        if not hotel:
            raise NotFoundError(f"Hotel {hotel_id} not found")

        total = self.db.query(func.count(Room.id)).filter(Room.hotel_id == hotel_id).scalar() or 0
        occupied = self.db.query(func.count(Room.id)).filter(
            Room.hotel_id == hotel_id,
            Room.is_occupied == True
        ).scalar() or 0

        hotel.total_rooms = total
        hotel.occupied_rooms = occupied
        hotel.available_rooms = total - occupied
        self.db.flush()
        return hotel

    def _advance_status(self, yatra_id: int, from_status: RoomAssignmentStatus,
                        to_status: RoomAssignmentStatus) -> int:
        if not self.db.query(Yatra.id).filter(Yatra.id == yatra_id).first():
            raise NotFoundError(f"Yatra {yatra_id} not found")

        active_registration = exists().where(
            Registration.pilgrim_id == Pilgrim.id,
            Registration.yatra_id == yatra_id,
            Registration.status != RegistrationStatus.CANCELLED
        )
        with atomic(self.db):
            pilgrims = self.db.query(Pilgrim).filter(
                Pilgrim.room_assignment_status == from_status,
                active_registration
            ).with_for_update().all()
            for pilgrim in pilgrims:
                pilgrim.room_assignment_status = to_status

        logger.info(
            f"Room assignments advanced: yatra={yatra_id} {from_status.value} -> "
            f"{to_status.value} count={len(pilgrims)}"
        )
        return len(pilgrims)

