# =============================================================================
# fin_core/__init__.py
# Finance data layer: API client, cache, offline sync queue
# =============================================================================
"""
fin_core - client-side data access for the personal finance app.

The main entry point is :class:`fin_core.data_layer.DataLayer`.
"""

__version__ = "0.1.0"
