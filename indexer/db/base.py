"""Declarative base shared by all metadata models."""

from sqlalchemy.orm import declarative_base

Base = declarative_base()
