"""
酒店管理路由
领域异常由 app.main 中注册的处理器统一映射为 HTTP 状态码
"""
from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from app.database import get_db
from app.models.schemas import (
    HotelCreate, HotelUpdate, HotelResponse, HotelListResponse, Pagination
)
from app.security.actor import Actor
from app.security.auth import require_admin
from app.services.hotel_service import HotelService

router = APIRouter(prefix="/hotels", tags=["酒店管理"])


def _pagination(total: int, page: int, limit: int) -> Pagination:
    return Pagination(total=total, page=page, limit=limit, total_pages=(total + limit - 1) // limit)


@router.get("", response_model=HotelListResponse)
def list_hotels(
    yatra_id: Optional[int] = None,
    is_active: Optional[bool] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_admin)
):
    """获取酒店列表"""
    hotels, total = HotelService(db).get_hotels(yatra_id, is_active, page, limit)
    return HotelListResponse(
        data=[HotelResponse.model_validate(h) for h in hotels],
        pagination=_pagination(total, page, limit)
    )


@router.get("/{hotel_id}", response_model=HotelResponse)
def get_hotel(
    hotel_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_admin)
):
    """获取酒店详情（含房间）"""
    return HotelService(db).get_hotel(hotel_id)


@router.post("", response_model=HotelResponse, status_code=201)
def create_hotel(
    data: HotelCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_admin)
):
    """创建酒店并按楼层布局生成房间"""
    return HotelService(db).create_hotel(data)


@router.put("/{hotel_id}", response_model=HotelResponse)
def update_hotel(
    hotel_id: int,
    data: HotelUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_admin)
):
    """更新酒店；修改楼层/房间时要求没有已占用房间"""
    return HotelService(db).update_hotel(hotel_id, data)


@router.delete("/{hotel_id}")
def delete_hotel(
    hotel_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_admin)
):
    """删除酒店"""
    HotelService(db).delete_hotel(hotel_id)
    return {"message": "Hotel deleted"}
