"""PostgreSQL persistence for candlesticks"""

from .table_manager import CandleTableManager, CandleTableSchemas, TableNamingStrategy, safe_table_name
from .postgres_store import PostgresCandleStore

__all__ = [
    'CandleTableManager',
    'CandleTableSchemas',
    'TableNamingStrategy',
    'PostgresCandleStore',
    'safe_table_name'
]
