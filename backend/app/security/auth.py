"""
调用方身份解析
令牌由外部认证服务签发；这里只解析出操作人（ID + 类型）与请求来源，
作为显式参数传给每个写操作
"""
import logging
from datetime import datetime, timedelta, UTC
from typing import Optional
from fastapi import Depends, HTTPException, status, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt

from app.config import settings
from app.models.ontology import ActorKind
from app.security.actor import Actor

logger = logging.getLogger(__name__)

# 未携带令牌的请求视为匿名自助用户
security = HTTPBearer(auto_error=False)


def create_access_token(actor_id: int, kind: ActorKind = ActorKind.ADMIN,
                        expires_hours: Optional[int] = None) -> str:
    """创建 JWT token（测试与内部工具使用）"""
    expire = datetime.now(UTC) + timedelta(hours=expires_hours or settings.ACCESS_TOKEN_EXPIRE_HOURS)
    to_encode = {
        "sub": str(actor_id),
        "kind": ActorKind(kind).value,
        "exp": expire
    }
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_token(token: str) -> dict:
    """解码 JWT token"""
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials"
        )


def _request_origin(request: Request) -> Optional[str]:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


async def get_current_actor(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Actor:
    """解析当前操作人；无令牌时返回匿名自助用户"""
    ip_address = _request_origin(request)
    user_agent = request.headers.get("User-Agent")

    if credentials is None:
        return Actor.self_service(ip_address=ip_address, user_agent=user_agent)

    payload = decode_token(credentials.credentials)
    try:
        actor_id = int(payload.get("sub"))
        kind = ActorKind(payload.get("kind", ActorKind.USER.value))
    except (TypeError, ValueError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials"
        )
    return Actor(id=actor_id, kind=kind, ip_address=ip_address, user_agent=user_agent)


async def require_admin(actor: Actor = Depends(get_current_actor)) -> Actor:
    """后台管理操作：必须是管理员令牌"""
    if not actor.is_admin:
        logger.warning(f"Admin operation refused for actor {actor.kind.value}:{actor.id}")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin privileges required"
        )
    return actor
