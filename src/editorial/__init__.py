"""
Editorial Core

Role-based authorization, paper lifecycle, DOI allocation and audit trail
for the academic paper platform.
"""

from .config import Settings
from .core import EditorialCore

__version__ = "1.0.0"

__all__ = ['Settings', 'EditorialCore', '__version__']
