"""
Logging Configuration Module
============================

Responsibility:
- Root logger setup with coloured console output (colorama).
- Rotating UTF-8 log file for full DEBUG traces.
"""

from .logging_config import LoggingConfigurator, ColoredFormatter

__all__ = ['LoggingConfigurator', 'ColoredFormatter']
