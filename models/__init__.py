"""
Database models package for Identity Reconciliation System
Contains SQLAlchemy models for contact information and relationships
"""

from .base import Base, BaseModel, create_database_engine
from .contact import Contact, LinkPrecedence

__all__ = ['Base', 'BaseModel', 'create_database_engine', 'Contact', 'LinkPrecedence']
