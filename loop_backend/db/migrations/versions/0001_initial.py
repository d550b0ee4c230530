"""initial story graph and approval schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19 00:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

from loop_backend.db.types import GUID


revision: str = "0001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", GUID(), nullable=False),
        sa.Column("username", sa.String(length=64), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("role", sa.String(length=16), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_users_username", "users", ["username"], unique=True)
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_role", "users", ["role"], unique=False)
    op.create_index("ix_users_created_at", "users", ["created_at"], unique=False)

    op.create_table(
        "user_profiles",
        sa.Column("id", GUID(), nullable=False),
        sa.Column("user_id", GUID(), nullable=False),
        sa.Column("display_name", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_user_profiles_user_id", "user_profiles", ["user_id"], unique=True)

    op.create_table(
        "creator_profiles",
        sa.Column("id", GUID(), nullable=False),
        sa.Column("user_id", GUID(), nullable=False),
        sa.Column("pen_name", sa.String(length=255), nullable=True),
        sa.Column("contact_email", sa.String(length=255), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_creator_profiles_user_id", "creator_profiles", ["user_id"], unique=True)
    op.create_index("ix_creator_profiles_status", "creator_profiles", ["status"], unique=False)

    op.create_table(
        "stories",
        sa.Column("id", GUID(), nullable=False),
        sa.Column("slug", sa.String(length=128), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("summary", sa.Text(), nullable=True),
        sa.Column("tags", sa.JSON(), nullable=False),
        sa.Column("visibility", sa.String(length=16), nullable=False),
        sa.Column("ownership_status", sa.String(length=32), nullable=False),
        sa.Column("owner_id", GUID(), nullable=True),
        sa.Column("original_creator_id", GUID(), nullable=True),
        sa.Column("original_creator_profile_id", GUID(), nullable=True),
        sa.Column("credit_text", sa.String(length=255), nullable=True),
        sa.Column("approval_token", sa.String(length=128), nullable=True),
        sa.Column("approval_token_expires_at", sa.DateTime(), nullable=True),
        sa.Column("submitted_at", sa.DateTime(), nullable=True),
        sa.Column("transfer_consent_at", sa.DateTime(), nullable=True),
        sa.Column("transfer_consent_ip", sa.String(length=64), nullable=True),
        sa.Column("transfer_consent_user_agent", sa.String(length=512), nullable=True),
        sa.Column("latest_version_id", GUID(), nullable=True),
        sa.Column("approved_at", sa.DateTime(), nullable=True),
        sa.Column("approved_by_id", GUID(), nullable=True),
        sa.Column("review_comment", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["owner_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["original_creator_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["original_creator_profile_id"], ["creator_profiles.id"]),
        sa.ForeignKeyConstraint(["approved_by_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_stories_slug", "stories", ["slug"], unique=True)
    op.create_index("ix_stories_title", "stories", ["title"], unique=False)
    op.create_index("ix_stories_visibility", "stories", ["visibility"], unique=False)
    op.create_index("ix_stories_ownership_status", "stories", ["ownership_status"], unique=False)
    op.create_index("ix_stories_owner_id", "stories", ["owner_id"], unique=False)
    op.create_index("ix_stories_approval_token", "stories", ["approval_token"], unique=False)
    op.create_index("ix_stories_created_at", "stories", ["created_at"], unique=False)
    op.create_index("ix_stories_updated_at", "stories", ["updated_at"], unique=False)

    op.create_table(
        "story_nodes",
        sa.Column("id", GUID(), nullable=False),
        sa.Column("story_id", GUID(), nullable=False),
        sa.Column("key", sa.String(length=191), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=True),
        sa.Column("synopsis", sa.Text(), nullable=True),
        sa.Column("type", sa.String(length=16), nullable=False),
        sa.Column("content", sa.JSON(), nullable=True),
        sa.Column("media", sa.JSON(), nullable=True),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["story_id"], ["stories.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("story_id", "key", name="uq_story_nodes_story_key"),
    )
    op.create_index("ix_story_nodes_story_id", "story_nodes", ["story_id"], unique=False)

    op.create_table(
        "story_paths",
        sa.Column("id", GUID(), nullable=False),
        sa.Column("story_id", GUID(), nullable=False),
        sa.Column("key", sa.String(length=191), nullable=False),
        sa.Column("label", sa.String(length=255), nullable=False),
        sa.Column("summary", sa.Text(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["story_id"], ["stories.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("story_id", "key", name="uq_story_paths_story_key"),
    )
    op.create_index("ix_story_paths_story_id", "story_paths", ["story_id"], unique=False)

    op.create_table(
        "story_transitions",
        sa.Column("id", GUID(), nullable=False),
        sa.Column("story_id", GUID(), nullable=False),
        sa.Column("from_node_id", GUID(), nullable=False),
        sa.Column("to_node_id", GUID(), nullable=True),
        sa.Column("path_id", GUID(), nullable=False),
        sa.Column("ordering", sa.Integer(), nullable=True),
        sa.Column("condition", sa.JSON(), nullable=True),
        sa.Column("effect", sa.JSON(), nullable=True),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["story_id"], ["stories.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["from_node_id"], ["story_nodes.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["to_node_id"], ["story_nodes.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["path_id"], ["story_paths.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_story_transitions_story_id", "story_transitions", ["story_id"], unique=False)
    op.create_index("ix_story_transitions_from_node_id", "story_transitions", ["from_node_id"], unique=False)
    op.create_index("ix_story_transitions_to_node_id", "story_transitions", ["to_node_id"], unique=False)
    op.create_index("ix_story_transitions_path_id", "story_transitions", ["path_id"], unique=False)

    op.create_table(
        "story_versions",
        sa.Column("id", GUID(), nullable=False),
        sa.Column("story_id", GUID(), nullable=False),
        sa.Column("author_id", GUID(), nullable=True),
        sa.Column("version_number", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("ownership_status", sa.String(length=32), nullable=False),
        sa.Column("changelog", sa.Text(), nullable=True),
        sa.Column("content", sa.JSON(), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=False),
        sa.Column("consent_snapshot", sa.JSON(), nullable=False),
        sa.Column("submitted_at", sa.DateTime(), nullable=False),
        sa.Column("reviewer_id", GUID(), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["story_id"], ["stories.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["author_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["reviewer_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("story_id", "version_number", name="uq_story_versions_story_number"),
    )
    op.create_index("ix_story_versions_story_id", "story_versions", ["story_id"], unique=False)
    op.create_index("ix_story_versions_version_number", "story_versions", ["version_number"], unique=False)
    op.create_index("ix_story_versions_status", "story_versions", ["status"], unique=False)
    op.create_index("ix_story_versions_submitted_at", "story_versions", ["submitted_at"], unique=False)

    op.create_table(
        "story_audit_logs",
        sa.Column("id", GUID(), nullable=False),
        sa.Column("story_id", GUID(), nullable=False),
        sa.Column("actor_id", GUID(), nullable=True),
        sa.Column("action", sa.String(length=64), nullable=False),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["story_id"], ["stories.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["actor_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_story_audit_logs_story_id", "story_audit_logs", ["story_id"], unique=False)
    op.create_index("ix_story_audit_logs_actor_id", "story_audit_logs", ["actor_id"], unique=False)
    op.create_index("ix_story_audit_logs_action", "story_audit_logs", ["action"], unique=False)
    op.create_index("ix_story_audit_logs_created_at", "story_audit_logs", ["created_at"], unique=False)

    op.create_table(
        "avatar_profiles",
        sa.Column("id", GUID(), nullable=False),
        sa.Column("story_id", GUID(), nullable=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("background", sa.Text(), nullable=True),
        sa.Column("initial_resources", sa.JSON(), nullable=False),
        sa.Column("social_context", sa.JSON(), nullable=False),
        sa.Column("appearance", sa.JSON(), nullable=False),
        sa.Column("is_playable", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["story_id"], ["stories.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_avatar_profiles_story_id", "avatar_profiles", ["story_id"], unique=False)
    op.create_index("ix_avatar_profiles_is_playable", "avatar_profiles", ["is_playable"], unique=False)


def downgrade() -> None:
    op.drop_table("avatar_profiles")
    op.drop_table("story_audit_logs")
    op.drop_table("story_versions")
    op.drop_table("story_transitions")
    op.drop_table("story_paths")
    op.drop_table("story_nodes")
    op.drop_table("stories")
    op.drop_table("creator_profiles")
    op.drop_table("user_profiles")
    op.drop_table("users")
