"""
Candlestick Fetcher Configuration Settings

Settings are read from CANDLE_FETCHER_* environment variables and an optional
.env file. Values found in the YAML config directory (see yaml_loader) are
passed in explicitly and take precedence over the environment.
"""

from datetime import date, datetime
from enum import Enum
from typing import List, Optional, Union
from urllib.parse import quote

from loguru import logger
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from candlefetcher.exceptions import ConfigurationError

DEFAULT_WORKERS = 5
DEFAULT_REQUESTS_PER_SECOND = 10.0
DEFAULT_TIMEOUT_MS = 10000


class Period(str, Enum):
    """Supported candlestick sampling periods"""
    ONE_MINUTE = "OneMinute"
    FIVE_MINUTE = "FiveMinute"
    FIFTEEN_MINUTE = "FifteenMinute"
    THIRTY_MINUTE = "ThirtyMinute"


class AdjustMode(str, Enum):
    """Supported price adjustment modes"""
    NO = "No"
    FORWARD_ADJUST = "ForwardAdjust"


def _split_csv(v):
    if isinstance(v, str):
        return [item.strip() for item in v.split(',') if item.strip()]
    return v


class FetcherSettings(BaseSettings):
    """Configuration settings for a fetch run"""

    # Task set
    symbols: Union[List[str], str] = Field(default_factory=list, description="Symbols such as AAPL.US, 0700.HK")
    dates: Union[List[str], str] = Field(default_factory=list, description="Trading dates as YYYY-MM-DD")
    period: str = Field(default=Period.ONE_MINUTE.value)
    adjust_type: str = Field(default=AdjustMode.NO.value)

    # Processing configuration
    workers: int = Field(default=DEFAULT_WORKERS, description="Concurrent workers")
    requests_per_second: float = Field(default=DEFAULT_REQUESTS_PER_SECOND, description="Shared quote API rate")
    timeout_ms: int = Field(default=DEFAULT_TIMEOUT_MS, description="Timeout for a single quote call")
    retry_max_attempts: int = Field(default=3)
    retry_base_delay_ms: int = Field(default=500)
    retry_max_delay_ms: int = Field(default=2000)

    # PostgreSQL
    db_host: str = Field(default="127.0.0.1")
    db_port: int = Field(default=5432)
    db_user: str = Field(default="postgres")
    db_password: str = Field(default="")
    db_name: str = Field(default="postgres")
    db_sslmode: str = Field(default="disable")
    db_pool_min_size: int = Field(default=1)
    db_pool_max_size: int = Field(default=10)

    # LongPort credentials
    longport_app_key: str = Field(default="")
    longport_app_secret: str = Field(default="")
    longport_access_token: str = Field(default="")
    longport_region: Optional[str] = Field(default=None)

    # Logging
    log_level: str = Field(default="INFO")
    log_file_path: str = Field(default="logs/candle_fetcher.log")
    log_rotation: str = Field(default="100 MB")
    log_retention: str = Field(default="30 days")

    model_config = SettingsConfigDict(
        env_prefix='CANDLE_FETCHER_',
        env_file='.env',
        env_file_encoding='utf-8',
        case_sensitive=False,
        extra='ignore',
    )

    @field_validator('symbols', 'dates', mode='before')
    @classmethod
    def parse_list(cls, v):
        """Accept comma separated strings as well as lists"""
        return _split_csv(v)

    @field_validator('workers', mode='after')
    @classmethod
    def default_workers(cls, v):
        return v if v > 0 else DEFAULT_WORKERS

    @field_validator('requests_per_second', mode='after')
    @classmethod
    def default_rps(cls, v):
        return v if v > 0 else DEFAULT_REQUESTS_PER_SECOND

    @field_validator('timeout_ms', mode='after')
    @classmethod
    def default_timeout(cls, v):
        return v if v > 0 else DEFAULT_TIMEOUT_MS

    @field_validator('retry_max_attempts', mode='after')
    @classmethod
    def at_least_one_attempt(cls, v):
        return max(v, 1)

    def parse_dates(self) -> List[date]:
        """Convert configured date strings to date objects"""
        parsed = []
        for date_str in self.dates:
            try:
                parsed.append(datetime.strptime(date_str, "%Y-%m-%d").date())
            except ValueError as e:
                raise ConfigurationError(f"Failed to parse date '{date_str}': {e}") from e
        return parsed

    def get_period(self) -> Period:
        try:
            return Period(self.period)
        except ValueError:
            logger.warning(f"Unknown period '{self.period}', falling back to {Period.ONE_MINUTE.value}")
            return Period.ONE_MINUTE

    def get_adjust_mode(self) -> AdjustMode:
        try:
            return AdjustMode(self.adjust_type)
        except ValueError:
            logger.warning(f"Unknown adjust type '{self.adjust_type}', falling back to {AdjustMode.NO.value}")
            return AdjustMode.NO

    def get_database_dsn(self) -> str:
        """PostgreSQL connection string for asyncpg"""
        return (
            f"postgresql://{quote(self.db_user, safe='')}:{quote(self.db_password, safe='')}"
            f"@{self.db_host}:{self.db_port}/{self.db_name}?sslmode={self.db_sslmode}"
        )

    def redacted(self) -> dict:
        """Settings safe to log"""
        data = self.model_dump()
        for key in ('db_password', 'longport_app_secret', 'longport_access_token'):
            if data.get(key):
                data[key] = '********'
        return data
