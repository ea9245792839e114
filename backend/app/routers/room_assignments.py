"""
分房路由
"""
from typing import List
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from app.database import get_db
from app.models.schemas import (
    RoomAssignmentRequest, RoomAssignmentResult, BulkAssignmentStatusResult,
    RoomResponse, HotelResponse
)
from app.security.actor import Actor
from app.security.auth import require_admin
from app.services.room_assignment_service import RoomAssignmentService

router = APIRouter(prefix="/room-assignments", tags=["分房管理"])


@router.post("", response_model=RoomAssignmentResult)
def assign_rooms(
    data: RoomAssignmentRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_admin)
):
    """为朝圣者分配房间（整体替换已有房间）"""
    return RoomAssignmentService(db).assign(data.pilgrim_id, data.assignments)


@router.put("", response_model=RoomAssignmentResult)
def reassign_rooms(
    data: RoomAssignmentRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_admin)
):
    """重新分房"""
    return RoomAssignmentService(db).reassign(data.pilgrim_id, data.assignments)


@router.delete("/{pilgrim_id}", response_model=RoomAssignmentResult)
def release_rooms(
    pilgrim_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_admin)
):
    """释放朝圣者的全部房间"""
    return RoomAssignmentService(db).release(pilgrim_id)


@router.get("/{pilgrim_id}/rooms", response_model=List[RoomResponse])
def get_pilgrim_rooms(
    pilgrim_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_admin)
):
    """朝圣者当前持有的房间"""
    return RoomAssignmentService(db).get_pilgrim_rooms(pilgrim_id)


@router.post("/yatras/{yatra_id}/finalize", response_model=BulkAssignmentStatusResult)
def finalize_draft_assignments(
    yatra_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_admin)
):
    """草稿分房批量确认"""
    updated = RoomAssignmentService(db).finalize_draft_assignments(yatra_id)
    return BulkAssignmentStatusResult(yatra_id=yatra_id, updated=updated)


@router.post("/yatras/{yatra_id}/allot", response_model=BulkAssignmentStatusResult)
def allot_confirmed_assignments(
    yatra_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_admin)
):
    """已确认分房批量下发"""
    updated = RoomAssignmentService(db).allot_confirmed_assignments(yatra_id)
    return BulkAssignmentStatusResult(yatra_id=yatra_id, updated=updated)


@router.post("/hotels/{hotel_id}/recompute", response_model=HotelResponse)
def recompute_hotel_aggregates(
    hotel_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_admin)
):
    """按房间扫描重算酒店聚合计数（修复工具）"""
    return RoomAssignmentService(db).recompute_hotel_aggregates(hotel_id)
