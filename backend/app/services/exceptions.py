"""
领域异常
服务层抛出具体类型，路由层统一映射为 HTTP 状态码：
NotFoundError -> 404, ConflictError -> 409, ValidationError -> 400
"""


class DomainError(ValueError):
    """所有业务异常的基类"""

    status_code = 400

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class NotFoundError(DomainError):
    """引用的酒店/房间/报名/朝圣者/活动不存在"""

    status_code = 404


class ConflictError(DomainError):
    """违反业务不变量：重复的有效 PNR、房间被他人占用、非法状态转换等"""

    status_code = 409


class ValidationError(DomainError):
    """输入结构不合法"""

    status_code = 400
