"""
Inventory Sync Service

Resumable bulk ingestion of inventory-variant data and forecast-accuracy metrics.
"""

__version__ = "1.0.0"
