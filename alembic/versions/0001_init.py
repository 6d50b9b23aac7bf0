"""init
Revision ID: 0001_init
Revises:
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None

def upgrade():
    op.create_table(
        "movies",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("genre", sa.String(length=50), nullable=True),
        sa.Column("synopsis", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="active"),
        sa.Column("rating", sa.Numeric(3, 1), nullable=True),
        sa.Column("release_year", sa.Integer(), nullable=True),
        sa.Column("release_date", sa.Date(), nullable=True),
        sa.Column("is_featured", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("imdb_code", sa.String(length=20), nullable=True, unique=True),
        sa.Column("internal_notes", sa.Text(), nullable=True),
    )
    op.create_index("ix_movies_title", "movies", ["title"])
    op.create_index("ix_movies_genre", "movies", ["genre"])
    op.create_index("ix_movies_status", "movies", ["status"])
    op.create_index("ix_movies_deleted_at", "movies", ["deleted_at"])

    op.create_table(
        "movie_quotes",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("movie_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("movies.id"), nullable=False),
        sa.Column("quote", sa.Text(), nullable=False),
        sa.Column("character", sa.String(length=200), nullable=True),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
    )
    op.create_index("ix_movie_quotes_movie_id", "movie_quotes", ["movie_id"])
    op.create_index("ix_movie_quotes_deleted_at", "movie_quotes", ["deleted_at"])

def downgrade():
    op.drop_index("ix_movie_quotes_deleted_at", table_name="movie_quotes")
    op.drop_index("ix_movie_quotes_movie_id", table_name="movie_quotes")
    op.drop_table("movie_quotes")
    op.drop_index("ix_movies_deleted_at", table_name="movies")
    op.drop_index("ix_movies_status", table_name="movies")
    op.drop_index("ix_movies_genre", table_name="movies")
    op.drop_index("ix_movies_title", table_name="movies")
    op.drop_table("movies")
