"""配置模块：负责加载和缓存基于环境变量的应用设置。"""

import os
from functools import lru_cache
from pathlib import Path
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# 探测项目根目录并加载环境文件，支持通过 ENV_FILE/ENVIRONMENT 定制优先级。
def _detect_base_dir() -> Path:
    """向上遍历目录树，寻找包含 `app` 目录的项目根路径。"""
    current = Path(__file__).resolve()
    for candidate in current.parents:
        if (candidate / "app").is_dir():
            return candidate
    return current.parent


BASE_DIR = _detect_base_dir()


def _as_bool(value: Optional[str]) -> bool:
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _load_environment() -> None:
    env_file_override = os.getenv("ENV_FILE")
    if env_file_override:
        candidate = BASE_DIR / env_file_override
        if candidate.exists():
            load_dotenv(candidate, override=True, encoding="utf-8")
        return

    base_env = BASE_DIR / ".env"
    if base_env.exists():
        load_dotenv(base_env, override=False, encoding="utf-8")

    environment = os.getenv("ENVIRONMENT")
    if environment is None and _as_bool(os.getenv("DEBUG")):
        environment = "development"

    if environment:
        if environment.startswith(".env"):
            candidate_name = environment
        else:
            candidate_name = f".env.{environment}"
        candidate_path = BASE_DIR / candidate_name
        if candidate_path.exists():
            load_dotenv(candidate_path, override=True, encoding="utf-8")


_load_environment()


class Settings(BaseSettings):
    """
    封装应用运行所需的所有配置项，每个字段都可以通过环境变量重写。
    该类支持被 FastAPI 及其它模块直接注入使用，避免在代码中散落魔法字符串。
    """

    project_name: str = Field(default="Sharebox API", alias="PROJECT_NAME")
    api_v1_str: str = Field(default="/api/v1", alias="API_V1_STR")
    debug: bool = Field(default=False, alias="DEBUG")

    # 显式指定时优先使用（例如测试中的 sqlite），否则按下列字段拼接 PostgreSQL 连接串
    database_url: Optional[str] = Field(default=None, alias="DATABASE_URL")
    database_host: str = Field(default="localhost", alias="DATABASE_HOST")
    database_port: int = Field(default=5432, alias="DATABASE_PORT")
    database_user: str = Field(default="postgres", alias="DATABASE_USER")
    database_password: str = Field(default="postgres", alias="DATABASE_PASSWORD")
    database_name: str = Field(default="sharebox", alias="DATABASE_NAME")
    database_echo: bool = Field(default=False, alias="DATABASE_ECHO")

    redis_host: str = Field(default="localhost", alias="REDIS_HOST")
    redis_port: int = Field(default=6379, alias="REDIS_PORT")
    redis_db: int = Field(default=0, alias="REDIS_DB")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_dir: str = Field(default="log", alias="LOG_DIR")
    log_file_name: str = Field(default="app.log", alias="LOG_FILE_NAME")
    log_json: bool = Field(default=False, alias="LOG_JSON")
    app_port: int = Field(default=8000, alias="APP_PORT")
    timezone: str = Field(default="Asia/Shanghai", alias="TIMEZONE")

    # 对象存储：LOCAL 用于开发与测试，S3 兼容阿里云 OSS / MinIO 等端点
    storage_type: str = Field(default="LOCAL", alias="STORAGE_TYPE")
    storage_local_root: str = Field(default="storage", alias="STORAGE_LOCAL_ROOT")
    storage_bucket: Optional[str] = Field(default=None, alias="STORAGE_BUCKET")
    storage_region: Optional[str] = Field(default=None, alias="STORAGE_REGION")
    storage_endpoint_url: Optional[str] = Field(default=None, alias="STORAGE_ENDPOINT_URL")
    storage_access_key_id: Optional[str] = Field(default=None, alias="STORAGE_ACCESS_KEY_ID")
    storage_secret_access_key: Optional[str] = Field(default=None, alias="STORAGE_SECRET_ACCESS_KEY")
    storage_path_prefix: str = Field(default="websharex", alias="STORAGE_PATH_PREFIX")
    storage_list_page_size: int = Field(default=1000, alias="STORAGE_LIST_PAGE_SIZE")
    storage_max_workers: int = Field(default=8, alias="STORAGE_MAX_WORKERS")
    storage_operation_timeout_seconds: float = Field(default=120.0, alias="STORAGE_OPERATION_TIMEOUT_SECONDS")
    storage_connect_timeout_seconds: float = Field(default=5.0, alias="STORAGE_CONNECT_TIMEOUT_SECONDS")
    storage_read_timeout_seconds: float = Field(default=30.0, alias="STORAGE_READ_TIMEOUT_SECONDS")
    storage_max_attempts: int = Field(default=3, alias="STORAGE_MAX_ATTEMPTS")
    signed_url_ttl_seconds: int = Field(default=3600, alias="SIGNED_URL_TTL_SECONDS")

    # 同步策略：仅含占位对象的文件夹是否保留（默认视为空文件夹并清理）
    sync_keep_marker_folders: bool = Field(default=False, alias="SYNC_KEEP_MARKER_FOLDERS")

    # 房间级串行化：auto 优先 Redis，不可用时回退到进程内锁
    room_lock_backend: str = Field(default="auto", alias="ROOM_LOCK_BACKEND")
    room_lock_timeout_seconds: float = Field(default=30.0, alias="ROOM_LOCK_TIMEOUT_SECONDS")

    model_config = SettingsConfigDict(extra='ignore')

    @property
    def sql_database_url(self) -> str:
        """返回数据库连接串；未显式配置时拼接 PostgreSQL 连接串。"""
        if self.database_url:
            return self.database_url
        return (
            f"postgresql+psycopg2://{self.database_user}:{self.database_password}"
            f"@{self.database_host}:{self.database_port}/{self.database_name}"
        )

    @property
    def redis_url(self) -> str:
        """根据当前配置生成 Redis 连接地址。"""
        return f"redis://{self.redis_host}:{self.redis_port}/{self.redis_db}"

    def _resolve_path(self, raw: str) -> Path:
        path = Path(raw)
        if not path.is_absolute():
            path = BASE_DIR / path
        return path

    @property
    def log_directory(self) -> Path:
        """返回日志目录的绝对路径，支持相对路径配置。"""
        return self._resolve_path(self.log_dir)

    @property
    def log_file_path(self) -> Path:
        """组合日志目录与文件名，得到完整的日志文件路径。"""
        return self.log_directory / self.log_file_name

    @property
    def storage_local_directory(self) -> Path:
        return self._resolve_path(self.storage_local_root)

    @property
    def timezone_info(self) -> ZoneInfo:
        """返回当前配置对应的时区信息，无法解析时回退到 UTC。"""
        try:
            return ZoneInfo(self.timezone)
        except ZoneInfoNotFoundError:
            return ZoneInfo("UTC")


@lru_cache
def get_settings() -> Settings:
    """返回单例化的配置对象，避免重复解析环境变量造成性能浪费。"""
    return Settings()
