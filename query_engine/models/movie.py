from datetime import date
from decimal import Decimal

from sqlalchemy import Boolean, Date, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from query_engine.db.session import Base
from query_engine.models.common import SoftDeleteMixin, TimestampMixin, UUIDMixin

class Movie(Base, UUIDMixin, TimestampMixin, SoftDeleteMixin):
    __tablename__ = "movies"
    title: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    genre: Mapped[str | None] = mapped_column(String(50), nullable=True, index=True)
    synopsis: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active", index=True)
    rating: Mapped[Decimal | None] = mapped_column(Numeric(3, 1), nullable=True)
    release_year: Mapped[int | None] = mapped_column(Integer, nullable=True)
    release_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    is_featured: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    imdb_code: Mapped[str | None] = mapped_column(String(20), nullable=True, unique=True)
    internal_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
