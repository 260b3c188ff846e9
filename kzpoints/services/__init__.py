"""
Services package for the points engine.
"""

from .base import BaseService
from .configuration import ConfigurationService

__all__ = ['BaseService', 'ConfigurationService']
