"""Initial migration: create tournament, competition, registration, phase,
bracketconfiguration, poule, pouleassignment, directeliminationbracket tables

Revision ID: 001_initial
Revises:
Create Date: 2026-10-18 00:00:00.000000

"""

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision = "001_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "tournament",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("organization_id", sa.String(), nullable=False),
        sa.Column("is_public", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_tournament_organization_id", "tournament", ["organization_id"])

    op.create_table(
        "competition",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tournament_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("weapon", sa.String(), nullable=False),
        sa.Column("category", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="DRAFT"),
        sa.Column("generation_version", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["tournament_id"], ["tournament.id"]),
    )
    op.create_index("ix_competition_tournament_id", "competition", ["tournament_id"])

    op.create_table(
        "registration",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("competition_id", sa.Integer(), nullable=False),
        sa.Column("athlete_id", sa.String(), nullable=False),
        sa.Column("seed_rank", sa.Integer(), nullable=True),
        sa.Column("club", sa.String(), nullable=True),
        sa.Column("country", sa.String(), nullable=True),
        sa.Column("is_present", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["competition_id"], ["competition.id"]),
        sa.UniqueConstraint("competition_id", "athlete_id", name="uq_competition_athlete"),
    )
    op.create_index("ix_registration_competition_id", "registration", ["competition_id"])

    op.create_table(
        "phase",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("competition_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("phase_type", sa.String(), nullable=False),
        sa.Column("sequence_order", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="SCHEDULED"),
        sa.Column("configuration", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["competition_id"], ["competition.id"]),
        sa.UniqueConstraint("competition_id", "sequence_order", name="uq_competition_phase_order"),
    )
    op.create_index("ix_phase_competition_id", "phase", ["competition_id"])

    op.create_table(
        "bracketconfiguration",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("phase_id", sa.Integer(), nullable=False),
        sa.Column("bracket_type", sa.String(), nullable=False),
        sa.Column("size", sa.Integer(), nullable=False),
        sa.Column("seeding_method", sa.String(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["phase_id"], ["phase.id"]),
    )
    op.create_index("ix_bracketconfiguration_phase_id", "bracketconfiguration", ["phase_id"])

    op.create_table(
        "poule",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("phase_id", sa.Integer(), nullable=False),
        sa.Column("number", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="SCHEDULED"),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["phase_id"], ["phase.id"]),
        sa.UniqueConstraint("phase_id", "number", name="uq_phase_poule_number"),
    )
    op.create_index("ix_poule_phase_id", "poule", ["phase_id"])

    op.create_table(
        "pouleassignment",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("poule_id", sa.Integer(), nullable=False),
        sa.Column("athlete_id", sa.String(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("seed_number", sa.Integer(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["poule_id"], ["poule.id"]),
        sa.UniqueConstraint("poule_id", "position", name="uq_poule_position"),
        sa.UniqueConstraint("poule_id", "athlete_id", name="uq_poule_athlete"),
    )
    op.create_index("ix_pouleassignment_poule_id", "pouleassignment", ["poule_id"])

    op.create_table(
        "directeliminationbracket",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("phase_id", sa.Integer(), nullable=False),
        sa.Column("bracket_config_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("bracket_type", sa.String(), nullable=False),
        sa.Column("seeding_method", sa.String(), nullable=False),
        sa.Column("draw_size", sa.Integer(), nullable=False),
        sa.Column("competitor_count", sa.Integer(), nullable=False),
        sa.Column("bye_count", sa.Integer(), nullable=False),
        sa.Column("slots", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["phase_id"], ["phase.id"]),
        sa.ForeignKeyConstraint(["bracket_config_id"], ["bracketconfiguration.id"]),
    )
    op.create_index("ix_directeliminationbracket_phase_id", "directeliminationbracket", ["phase_id"])


def downgrade() -> None:
    op.drop_index("ix_directeliminationbracket_phase_id", table_name="directeliminationbracket")
    op.drop_table("directeliminationbracket")
    op.drop_index("ix_pouleassignment_poule_id", table_name="pouleassignment")
    op.drop_table("pouleassignment")
    op.drop_index("ix_poule_phase_id", table_name="poule")
    op.drop_table("poule")
    op.drop_index("ix_bracketconfiguration_phase_id", table_name="bracketconfiguration")
    op.drop_table("bracketconfiguration")
    op.drop_index("ix_phase_competition_id", table_name="phase")
    op.drop_table("phase")
    op.drop_index("ix_registration_competition_id", table_name="registration")
    op.drop_table("registration")
    op.drop_index("ix_competition_tournament_id", table_name="competition")
    op.drop_table("competition")
    op.drop_index("ix_tournament_organization_id", table_name="tournament")
    op.drop_table("tournament")
