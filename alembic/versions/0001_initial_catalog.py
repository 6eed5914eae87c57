"""Create catalog tables.

Revision ID: 0001_initial_catalog
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


revision = "0001_initial_catalog"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "base",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("label", sa.Text(), nullable=False),
        sa.Column("is_checked", sa.Boolean(), nullable=False, server_default="1"),
        sa.UniqueConstraint("label", name="base_pk"),
    )

    op.create_table(
        "item",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("path", sa.Text(), nullable=False),
        sa.Column(
            "base_id",
            sa.Integer(),
            sa.ForeignKey("base.id", ondelete="CASCADE", onupdate="CASCADE"),
            nullable=False,
        ),
        sa.Column("hash", sa.Text(), nullable=False, server_default=""),
        sa.Column("is_checked", sa.Boolean(), nullable=False, server_default="1"),
        sa.Column("parent", sa.Integer(), sa.ForeignKey("item.id", ondelete="CASCADE")),
        sa.Column("name", sa.Text()),
        sa.Column("note", sa.Text()),
        sa.Column("created_at", sa.DateTime(timezone=True)),
        sa.Column("updated_at", sa.DateTime(timezone=True)),
        sa.Column("model_name", sa.Text()),
        sa.UniqueConstraint("path", "base_id", name="item_path_base_id_uindex"),
        sa.UniqueConstraint("path", "parent", name="item_path_parent_uindex"),
    )
    op.create_index("ix_item_parent", "item", ["parent"])

    op.create_table(
        "tag",
        sa.Column("name", sa.Text(), primary_key=True),
        sa.Column("description", sa.Text()),
    )

    op.create_table(
        "tag_item",
        sa.Column(
            "tag",
            sa.Text(),
            sa.ForeignKey("tag.name", ondelete="CASCADE", onupdate="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "item",
            sa.Integer(),
            sa.ForeignKey("item.id", ondelete="CASCADE", onupdate="CASCADE"),
            primary_key=True,
        ),
    )
    op.create_index("tag_item_item_tag_uindex", "tag_item", ["item", "tag"], unique=True)

    op.create_table(
        "tag_tag",
        sa.Column(
            "tag",
            sa.Text(),
            sa.ForeignKey("tag.name", ondelete="CASCADE", onupdate="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "depend",
            sa.Text(),
            sa.ForeignKey("tag.name", ondelete="CASCADE", onupdate="CASCADE"),
            primary_key=True,
        ),
    )

    op.create_table(
        "app_info",
        sa.Column("label", sa.Text(), primary_key=True),
        sa.Column("value", sa.Text()),
    )


def downgrade() -> None:
    op.drop_table("app_info")
    op.drop_table("tag_tag")
    op.drop_index("tag_item_item_tag_uindex", table_name="tag_item")
    op.drop_table("tag_item")
    op.drop_table("tag")
    op.drop_index("ix_item_parent", table_name="item")
    op.drop_table("item")
    op.drop_table("base")
