"""
操作人身份

每个写操作显式接收 Actor 参数，而不是从线程/请求上下文中隐式读取。
认证服务决定调用方能否执行操作，这里只记录“谁”以及请求来源。
"""
from typing import Optional
from dataclasses import dataclass

from app.models.ontology import ActorKind


@dataclass(frozen=True)
class Actor:
    """
    操作人

    Attributes:
        id: 操作人ID；匿名自助用户为 None
        kind: 管理员 / 自助用户
        ip_address: 请求来源地址
        user_agent: 请求 User-Agent
    """

    id: Optional[int] = None
    kind: ActorKind = ActorKind.USER
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.kind == ActorKind.ADMIN

    @classmethod
    def admin(cls, admin_id: int, ip_address: Optional[str] = None,
              user_agent: Optional[str] = None) -> "Actor":
        return cls(id=admin_id, kind=ActorKind.ADMIN, ip_address=ip_address, user_agent=user_agent)

    @classmethod
    def self_service(cls, user_id: Optional[int] = None, ip_address: Optional[str] = None,
                     user_agent: Optional[str] = None) -> "Actor":
        return cls(id=user_id, kind=ActorKind.USER, ip_address=ip_address, user_agent=user_agent)
