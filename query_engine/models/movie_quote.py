import uuid

from sqlalchemy import ForeignKey, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column
from query_engine.db.session import Base
from query_engine.models.common import SoftDeleteMixin, TimestampMixin, UUIDMixin

class MovieQuote(Base, UUIDMixin, TimestampMixin, SoftDeleteMixin):
    __tablename__ = "movie_quotes"
    movie_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("movies.id"), nullable=False, index=True)
    quote: Mapped[str] = mapped_column(Text, nullable=False)
    character: Mapped[str | None] = mapped_column(String(200), nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
