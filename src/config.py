# src/config.py
from dataclasses import dataclass, field
import os

from dotenv import load_dotenv

# Загружаем .env
load_dotenv()


@dataclass
class DatabaseConfig:
    url: str = os.getenv("DATABASE_URL", "sqlite:///pharmacy_dashboard/data/dashboard.db")
    echo: bool = os.getenv("DATABASE_ECHO", "0") == "1"


@dataclass
class RetryConfig:
    max_retries: int = 3
    backoff_factor: float = 0.5  # секунды между повторами
    retry_on_5xx: bool = True
    retry_on_429: bool = True
    retry_on_timeout: bool = True


@dataclass
class ApiClientConfig:
    """
    Конфиг HTTP-клиента дашборда.
    """
    base_url: str = os.getenv("DASHBOARD_API_URL", "http://localhost:8000")
    timeout_seconds: float = 30.0
    retry: RetryConfig = field(default_factory=RetryConfig)
    # Больше кодов - отправляем фильтр в теле POST, а не в query string
    post_threshold: int = 20


@dataclass
class AnalyticsConfig:
    # Если продаж за окно не было, считаем 2 шт./мес., чтобы не получить бесконечный запас
    default_monthly_sales: float = 2.0
    sales_window_months: int = 3
    # False = берём самый свежий снимок вообще, без ограничения концом периода
    snapshot_bounded_by_period: bool = False
    uncategorized_label: str = "Uncategorized"


@dataclass
class AppConfig:
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    api_client: ApiClientConfig = field(default_factory=ApiClientConfig)
    analytics: AnalyticsConfig = field(default_factory=AnalyticsConfig)


# Глобальный объект конфига, который можно импортировать как `from src.config import config`
config = AppConfig()
