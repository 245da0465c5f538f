"""
ShopHub Configuration Management
遵循约束：环境变量前缀 SH__
"""
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator
from functools import lru_cache


class Settings(BaseSettings):
    """全局配置类"""
    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="SH__",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    db_host: str = Field(default="localhost")
    db_port: int = Field(default=5432)
    db_name: str = Field(default="shophub")
    db_user: str = Field(default="shophub")
    db_password: str = Field(default="")
    db_pool_size: int = Field(default=20)
    db_max_overflow: int = Field(default=40)
    # 显式连接串（本地开发 / 测试使用 sqlite+aiosqlite）
    db_url: Optional[str] = Field(default=None)

    # API Settings
    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=8000)
    api_prefix: str = Field(default="/api/sh/v1")
    api_title: str = Field(default="ShopHub API")
    api_version: str = Field(default="1.0.0")
    api_debug: bool = Field(default=False)
    cors_origins: list[str] = Field(default=["https://www.anxinshophub.com", "http://localhost:5173"])

    # Monitoring
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json")  # json or text

    # 站点
    site_timezone: str = Field(default="Asia/Taipei")
    order_no_prefix: str = Field(default="ORD")
    order_no_seq_width: int = Field(default=3)

    # 运费规则
    cvs_fee: int = Field(default=60)
    cvs_free_threshold: int = Field(default=500)
    home_free_threshold: int = Field(default=1000)
    home_delivery_fee_default: int = Field(default=100)

    # 会员点数：每满 N 元 1 点
    points_per_amount: int = Field(default=100)

    # ECPay 金流
    ecpay_stage: bool = Field(default=True)
    ecpay_merchant_id: str = Field(default="3002607")
    ecpay_hash_key: str = Field(default="pwFHCqoQZGmho4w6")
    ecpay_hash_iv: str = Field(default="EkRm7iFT261dpevs")
    ecpay_choose_payment: str = Field(default="ALL")
    ecpay_trade_desc: str = Field(default="ShopHub Order")
    ecpay_return_url: str = Field(default="https://www.anxinshophub.com/api/sh/v1/ecpay/callback")
    ecpay_client_back_url: str = Field(default="https://www.anxinshophub.com/member/orders")
    ecpay_order_result_url: Optional[str] = Field(default=None)

    # ECPay 物流
    ecpay_logistics_merchant_id: str = Field(default="2000933")
    ecpay_logistics_hash_key: str = Field(default="XBERn1YOvpM9nfZc")
    ecpay_logistics_hash_iv: str = Field(default="h1ONHk4P4yqbl5LK")
    ecpay_logistics_reply_url: str = Field(
        default="https://www.anxinshophub.com/api/sh/v1/ecpay/logistics-callback"
    )
    ecpay_map_reply_url: str = Field(default="https://www.anxinshophub.com/api/sh/v1/ecpay/map-callback")
    ecpay_sender_name: str = Field(default="ShopHub")
    ecpay_sender_cellphone: str = Field(default="0912345678")
    ecpay_timeout: float = Field(default=15.0)
    # 建立物流单占用标记的有效期，超时视为进程中断可重新占用
    shipment_claim_ttl_seconds: int = Field(default=300)

    @field_validator("api_prefix")
    @classmethod
    def validate_api_prefix(cls, v):
        """确保 API 前缀符合规范"""
        if not v.startswith("/api/"):
            raise ValueError("API prefix must start with /api/")
        return v

    @field_validator("ecpay_timeout")
    @classmethod
    def validate_ecpay_timeout(cls, v):
        """外部调用必须有超时上限"""
        if v <= 0:
            raise ValueError("ecpay_timeout must be positive")
        return v

    @property
    def database_url(self) -> str:
        """构建数据库连接字符串"""
        if self.db_url:
            return self.db_url
        return f"postgresql+asyncpg://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"

    @property
    def sync_database_url(self) -> str:
        """构建同步数据库连接字符串（用于 Alembic）"""
        if self.db_url:
            return self.db_url.replace("+aiosqlite", "").replace("+asyncpg", "")
        return f"postgresql://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")


@lru_cache()
def get_settings() -> Settings:
    """获取配置单例"""
    return Settings()
