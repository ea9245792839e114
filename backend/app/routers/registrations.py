"""
报名路由
自助用户可创建/修改/取消自己的报名并按 PNR 查询；审核类操作需要管理员身份
"""
from typing import List, Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from app.database import get_db
from app.models.ontology import RegistrationStatus
from app.models.schemas import (
    RegistrationCreate, SplitRegistrationCreate, RegistrationUpdate, RegistrationResponse,
    RegistrationListResponse, RegistrationLogResponse, CancelRegistrationRequest,
    ApproveRegistrationRequest, RejectRegistrationRequest, DocumentReviewRequest,
    TicketTypeUpdate, PnrLookupResponse, SplitCountResponse, Pagination
)
from app.security.actor import Actor
from app.security.auth import get_current_actor, require_admin
from app.services.registration_service import RegistrationService

router = APIRouter(prefix="/registrations", tags=["报名管理"])


# ============== 自助操作 ==============

@router.post("", response_model=RegistrationResponse, status_code=201)
def create_registration(
    data: RegistrationCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor)
):
    """创建报名"""
    return RegistrationService(db).create(data, actor)


@router.get("/pnr/{pnr}", response_model=PnrLookupResponse)
def get_by_pnr(pnr: str, db: Session = Depends(get_db)):
    """按 PNR 查询报名与分房情况"""
    result = RegistrationService(db).resolve_by_pnr(pnr)
    return PnrLookupResponse.model_validate(result, from_attributes=True)


@router.put("/{registration_id}", response_model=RegistrationResponse)
def update_registration(
    registration_id: int,
    data: RegistrationUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor)
):
    """修改报名（已通过的报名会退回待审核）"""
    return RegistrationService(db).update(registration_id, data, actor)


@router.post("/{registration_id}/cancel", response_model=RegistrationResponse)
def cancel_registration(
    registration_id: int,
    data: CancelRegistrationRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor)
):
    """取消报名"""
    return RegistrationService(db).cancel(registration_id, data.reason, actor)


# ============== 管理操作 ==============

@router.post("/split", response_model=RegistrationResponse, status_code=201)
def create_split_registration(
    data: SplitRegistrationCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_admin)
):
    """创建拆分报名（系统生成内部 PNR）"""
    return RegistrationService(db).create_split(data, actor)


@router.get("/splits/{original_pnr}/count", response_model=SplitCountResponse)
def count_splits(
    original_pnr: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_admin)
):
    """统计同一真实 PNR 下未取消的拆分报名数"""
    count = RegistrationService(db).count_splits_by_original_pnr(original_pnr)
    return SplitCountResponse(original_pnr=original_pnr.upper(), count=count)


@router.get("", response_model=RegistrationListResponse)
def list_registrations(
    yatra_id: Optional[int] = None,
    filter_mode: str = Query("general", pattern="^(general|cancelled|all)$"),
    status: Optional[RegistrationStatus] = None,
    pnr: Optional[str] = None,
    state: Optional[str] = None,
    ticket_type: Optional[str] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_admin)
):
    """报名列表"""
    items, total = RegistrationService(db).list_registrations(
        yatra_id=yatra_id, filter_mode=filter_mode, status=status, pnr=pnr,
        state=state, ticket_type=ticket_type, search=search, page=page, limit=limit
    )
    return RegistrationListResponse(
        data=[RegistrationResponse.model_validate(r) for r in items],
        pagination=Pagination(
            total=total, page=page, limit=limit, total_pages=(total + limit - 1) // limit
        )
    )


@router.get("/{registration_id}", response_model=RegistrationResponse)
def get_registration(
    registration_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_admin)
):
    """报名详情"""
    return RegistrationService(db).get_registration(registration_id)


@router.post("/{registration_id}/approve", response_model=RegistrationResponse)
def approve_registration(
    registration_id: int,
    data: ApproveRegistrationRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_admin)
):
    """通过报名"""
    return RegistrationService(db).approve(registration_id, data.comments, actor)


@router.post("/{registration_id}/reject", response_model=RegistrationResponse)
def reject_registration(
    registration_id: int,
    data: RejectRegistrationRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_admin)
):
    """拒绝报名"""
    return RegistrationService(db).reject(registration_id, data.reason, data.comments, actor)


@router.post("/{registration_id}/documents/approve", response_model=RegistrationResponse)
def approve_documents(
    registration_id: int,
    data: DocumentReviewRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_admin)
):
    """通过证明文件"""
    return RegistrationService(db).approve_document(registration_id, data.comments, actor)


@router.post("/{registration_id}/documents/reject", response_model=RegistrationResponse)
def reject_documents(
    registration_id: int,
    data: DocumentReviewRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_admin)
):
    """拒绝证明文件（报名随之取消）"""
    return RegistrationService(db).reject_document(
        registration_id, data.reason, data.comments, actor
    )


@router.patch("/{registration_id}/ticket-type", response_model=RegistrationResponse)
def update_ticket_type(
    registration_id: int,
    data: TicketTypeUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_admin)
):
    """修改车票类型"""
    return RegistrationService(db).update_ticket_type(registration_id, data.ticket_type, actor)


@router.get("/{registration_id}/logs", response_model=List[RegistrationLogResponse])
def get_registration_logs(
    registration_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_admin)
):
    """报名日志（最新在前）"""
    return RegistrationService(db).get_logs(registration_id)
