"""
Data Manager Module
===================

Responsibility:
- Loading of the raw candidate table (CSV, Excel, Parquet).
- Validation of required columns and NaN/Inf statistics.
- Removal of configured columns and rows without a classification target.
- Persistence of validated data for downstream consumption.
"""

from .data_manager import DataManager

__all__ = ['DataManager']
