"""配置管理 - 排期服务配置"""
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
load_dotenv()


def _default_data_dir() -> Path:
    return Path.home() / ".signage" / "data"


@dataclass
class Settings:
    """服务配置"""

    # 服务配置
    host: str = "0.0.0.0"
    port: int = 8790
    debug: bool = False  # 开启后 uvicorn 热重载
    log_level: str = "INFO"

    # 数据目录
    data_dir: Path = field(default_factory=_default_data_dir)
    db_path: Optional[Path] = None
    assets_path: Optional[Path] = None
    auto_export_json: bool = False

    # 排期
    list_page_future_items: int = 5
    timezone: str = "UTC"

    # 定时器
    safety_net_interval_seconds: float = 30.0
    timer_retry_attempts: int = 5
    timer_retry_base_delay: float = 0.5
    timer_retry_max_delay: float = 30.0

    def __post_init__(self):
        if self.db_path is None:
            self.db_path = self.data_dir / "schedules.db"
        if self.assets_path is None:
            self.assets_path = self.data_dir / "assets.json"

    @property
    def json_export_path(self) -> Path:
        return self.data_dir / "schedules.json"

    @classmethod
    def from_env(cls) -> "Settings":
        """从环境变量加载配置"""
        db_path = os.getenv("SIGNAGE_DB_PATH")
        assets_path = os.getenv("SIGNAGE_ASSETS_PATH")

        return cls(
            # 服务
            host=os.getenv("HOST", "0.0.0.0"),
            port=int(os.getenv("PORT", "8790")),
            debug=os.getenv("DEBUG", "").lower() in ("1", "true"),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),

            # 路径
            data_dir=Path(os.getenv(
                "SIGNAGE_DATA_DIR", str(_default_data_dir())
            )).expanduser(),
            db_path=Path(db_path).expanduser() if db_path else None,
            assets_path=Path(assets_path).expanduser() if assets_path else None,
            auto_export_json=os.getenv("AUTO_EXPORT_JSON", "").lower() in ("1", "true"),

            # 排期
            list_page_future_items=int(os.getenv("LIST_PAGE_FUTURE_ITEMS", "5")),
            timezone=os.getenv("SIGNAGE_TIMEZONE", "UTC"),

            # 定时器
            safety_net_interval_seconds=float(os.getenv("SAFETY_NET_INTERVAL_SECONDS", "30")),
            timer_retry_attempts=int(os.getenv("TIMER_RETRY_ATTEMPTS", "5")),
            timer_retry_base_delay=float(os.getenv("TIMER_RETRY_BASE_DELAY", "0.5")),
            timer_retry_max_delay=float(os.getenv("TIMER_RETRY_MAX_DELAY", "30")),
        )


# 全局配置实例
settings = Settings.from_env()
