"""Provider-specific adapter implementations."""

from .aliexpress import AliExpressAdapter
from .banggood import BanggoodAdapter
from .sheets import SpreadsheetAdapter

__all__ = ["AliExpressAdapter", "BanggoodAdapter", "SpreadsheetAdapter"]
