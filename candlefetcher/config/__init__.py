"""Configuration management for the candlestick fetcher"""

from .fetcher_settings import FetcherSettings, Period, AdjustMode
from .yaml_loader import resolve_config_path, load_settings

__all__ = ['FetcherSettings', 'Period', 'AdjustMode', 'resolve_config_path', 'load_settings']
