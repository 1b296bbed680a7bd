"""
Status App Module

Provides the local HTTP status surface for POS UI processes.
"""

from .app import create_app

__all__ = ['create_app']
