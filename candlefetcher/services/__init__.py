"""Remote quote service adapters"""

from .longport_quote_service import LongportQuoteService

__all__ = ['LongportQuoteService']
