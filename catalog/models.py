"""
Catalog Database Models
SQLite-first relational schema for bases, items, tags and app metadata
"""

from datetime import datetime

from sqlalchemy import (
    Column, Integer, String, Text, Boolean, DateTime, ForeignKey, Index, UniqueConstraint
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


# =============================================================================
# Bases (scan roots)
# =============================================================================

class CatalogBase(Base):
    __tablename__ = "base"

    id = Column(Integer, primary_key=True, autoincrement=True)
    label = Column(Text, nullable=False)
    is_checked = Column(Boolean, nullable=False, default=True, server_default="1")

    __table_args__ = (
        UniqueConstraint("label", name="base_pk"),
    )


# =============================================================================
# Items (files and directories under a base)
# =============================================================================

class Item(Base):
    __tablename__ = "item"

    id = Column(Integer, primary_key=True, autoincrement=True)
    path = Column(Text, nullable=False)
    base_id = Column(
        Integer,
        ForeignKey("base.id", ondelete="CASCADE", onupdate="CASCADE"),
        nullable=False,
    )
    hash = Column(Text, nullable=False, default="", server_default="")
    is_checked = Column(Boolean, nullable=False, default=True, server_default="1")
    parent = Column(Integer, ForeignKey("item.id", ondelete="CASCADE"), nullable=True)
    name = Column(Text)
    note = Column(Text)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow)
    model_name = Column(Text)

    __table_args__ = (
        UniqueConstraint("path", "base_id", name="item_path_base_id_uindex"),
        UniqueConstraint("path", "parent", name="item_path_parent_uindex"),
        Index("ix_item_parent", "parent"),
    )


# =============================================================================
# Tags
# =============================================================================

class Tag(Base):
    __tablename__ = "tag"

    name = Column(Text, primary_key=True)
    # Opaque; legacy catalogs declared this column as integer.
    description = Column(Text)


class TagItem(Base):
    __tablename__ = "tag_item"

    tag = Column(
        Text,
        ForeignKey("tag.name", ondelete="CASCADE", onupdate="CASCADE"),
        primary_key=True,
    )
    item = Column(
        Integer,
        ForeignKey("item.id", ondelete="CASCADE", onupdate="CASCADE"),
        primary_key=True,
    )

    __table_args__ = (
        Index("tag_item_item_tag_uindex", "item", "tag", unique=True),
    )


class TagTag(Base):
    """Directed edge: ``tag`` implies ``depend``."""

    __tablename__ = "tag_tag"

    tag = Column(
        Text,
        ForeignKey("tag.name", ondelete="CASCADE", onupdate="CASCADE"),
        primary_key=True,
    )
    depend = Column(
        Text,
        ForeignKey("tag.name", ondelete="CASCADE", onupdate="CASCADE"),
        primary_key=True,
    )


# =============================================================================
# App metadata
# =============================================================================

class AppInfo(Base):
    __tablename__ = "app_info"

    label = Column(Text, primary_key=True)
    value = Column(Text)
