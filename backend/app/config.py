"""
应用配置
从环境变量读取配置，支持 .env 文件
"""
from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """应用设置"""

    # 应用基础配置
    APP_NAME: str = "Yatra Lodging"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # 数据库配置
    DATABASE_URL: str = "sqlite:///./yatra.db"

    # JWT 配置（仅用于解析调用方身份，签发由认证服务负责）
    SECRET_KEY: str = "your-secret-key-change-in-production"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_HOURS: int = 24

    # 内部 PNR 生成：碰撞后最多重试次数
    INTERNAL_PNR_MAX_ATTEMPTS: int = 10

    # 审计日志
    LOG_IP_MAX_LENGTH: int = 128     # 来源地址截断长度（与列宽一致）
    SNAPSHOT_MAX_DEPTH: int = 3      # 快照最大嵌套深度

    model_config = ConfigDict(env_file=".env", case_sensitive=True)


# 全局设置实例
settings = Settings()
