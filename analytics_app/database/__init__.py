"""
Database module: engine, session factory and declarative base.
"""

from .connection import Base, SessionLocal, engine, build_engine

__all__ = ["Base", "SessionLocal", "engine", "build_engine"]
