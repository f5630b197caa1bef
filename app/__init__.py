"""Weekly sales reconciliation and inventory velocity service"""

__version__ = "1.0.0"
