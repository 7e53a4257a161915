# models.py

from __future__ import annotations

from sqlalchemy import (
    DDL,
    Boolean,
    CheckConstraint,
    Index,
    Integer,
    PrimaryKeyConstraint,
    Text,
    event,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


# Ids and hashes are opaque text so ids can be derived deterministically from
# natural keys. Booleans are stored as 0/1 integers.


class Person(Base):
    __tablename__ = "person"
    id: Mapped[str] = mapped_column(Text, primary_key=True)
    first_name: Mapped[str | None] = mapped_column(Text)
    middle_name: Mapped[str | None] = mapped_column(Text)
    last_name: Mapped[str | None] = mapped_column(Text)
    suffix: Mapped[str | None] = mapped_column(Text)
    display_name: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    slug: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    bio: Mapped[str | None] = mapped_column(Text)
    is_faculty: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="0")
    created_at: Mapped[str | None] = mapped_column(Text)
    updated_at: Mapped[str | None] = mapped_column(Text)


class Cohort(Base):
    __tablename__ = "cohort"
    id: Mapped[str] = mapped_column(Text, primary_key=True)
    year: Mapped[int | None] = mapped_column(Integer, unique=True)
    label: Mapped[str | None] = mapped_column(Text)


class PersonCohort(Base):
    # No foreign keys: dangling references are reported by the integrity checker
    __tablename__ = "person_cohort"
    person_id: Mapped[str] = mapped_column(Text, nullable=False)
    cohort_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    is_class_president: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default="0", index=True
    )
    homeroom: Mapped[str | None] = mapped_column(Text)
    notes: Mapped[str | None] = mapped_column(Text)

    __table_args__ = (PrimaryKeyConstraint("person_id", "cohort_id"),)


class Photo(Base):
    __tablename__ = "photo"
    id: Mapped[str] = mapped_column(Text, primary_key=True)
    sha256: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    ext: Mapped[str] = mapped_column(Text, nullable=False)
    width: Mapped[int | None] = mapped_column(Integer)
    height: Mapped[int | None] = mapped_column(Integer)
    bytes: Mapped[int | None] = mapped_column(Integer)
    caption: Mapped[str | None] = mapped_column(Text)
    credit: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[str | None] = mapped_column(Text)


class PersonPhoto(Base):
    __tablename__ = "person_photo"
    person_id: Mapped[str] = mapped_column(Text, nullable=False)
    photo_id: Mapped[str] = mapped_column(Text, nullable=False)
    kind: Mapped[str | None] = mapped_column(Text)
    is_primary: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="0")

    __table_args__ = (
        PrimaryKeyConstraint("person_id", "photo_id"),
        CheckConstraint("kind IN ('portrait','candid','other')", name="ck_person_photo_kind"),
    )


class Publication(Base):
    __tablename__ = "publication"
    id: Mapped[str] = mapped_column(Text, primary_key=True)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    issue_date: Mapped[str | None] = mapped_column(Text)
    volume: Mapped[str | None] = mapped_column(Text)
    number: Mapped[str | None] = mapped_column(Text)
    slug: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    cover_photo_id: Mapped[str | None] = mapped_column(Text)
    flipbook_manifest_path: Mapped[str | None] = mapped_column(Text)


class ArchiveItem(Base):
    __tablename__ = "archive_item"
    id: Mapped[str] = mapped_column(Text, primary_key=True)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    year: Mapped[int | None] = mapped_column(Integer)
    kind: Mapped[str | None] = mapped_column(Text, index=True)
    photo_id: Mapped[str | None] = mapped_column(Text)
    flipbook_manifest_path: Mapped[str | None] = mapped_column(Text)
    description: Mapped[str | None] = mapped_column(Text)

    __table_args__ = (
        CheckConstraint("kind IN ('photo','flipbook')", name="ck_archive_item_kind"),
    )


Index("idx_publication_issue_date", Publication.issue_date.desc())
Index("idx_archive_item_year", ArchiveItem.year.desc())


class Meta(Base):
    __tablename__ = "meta"
    key: Mapped[str] = mapped_column(Text, primary_key=True)
    value: Mapped[str | None] = mapped_column(Text)


CONTENT_TABLES = (
    Person.__table__,
    Cohort.__table__,
    PersonCohort.__table__,
    Photo.__table__,
    PersonPhoto.__table__,
    Publication.__table__,
    ArchiveItem.__table__,
)

SEARCH_INDEX_TABLE = "person_fts"

# Person ids are text, so the search index carries the id as an unindexed
# column instead of mapping onto an integer rowid.
event.listen(
    Base.metadata,
    "after_create",
    DDL(
        """
CREATE VIRTUAL TABLE IF NOT EXISTS person_fts USING fts5(
    person_id UNINDEXED,
    display_name,
    last_name,
    first_name
)
        """
    ).execute_if(dialect="sqlite"),
)
