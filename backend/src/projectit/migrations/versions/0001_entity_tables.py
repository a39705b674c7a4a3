"""create entity tables"""

revision = "0001"
down_revision = None

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# Frozen at the time of this revision; later types get their own migration
ENTITY_TYPES = [
    "AppSettings", "AuditLog", "ChangeOrder", "CommunicationLog", "CustomRole",
    "Customer", "DashboardView", "EmailTemplate", "Feedback", "FileFolder",
    "IncomingQuote", "IntegrationSettings", "InventoryItem", "InventoryTransaction",
    "NotificationSettings", "Part", "Product", "ProgressUpdate", "Project",
    "ProjectActivity", "ProjectFile", "ProjectNote", "ProjectStack", "ProjectStatus",
    "ProjectTag", "ProjectTemplate", "Proposal", "ProposalSettings", "QuoteRequest",
    "SavedReport", "Service", "ServiceBundle", "Site", "Task", "TaskComment", "Ticket",
    "TaskGroup", "TeamMember", "TimeEntry", "UserGroup", "UserNotification",
    "UserSecuritySettings", "Workflow", "WorkflowLog",
]

DATA_OBJECT_CHECKS = {
    "postgresql": "jsonb_typeof(data) = 'object'",
    "sqlite": "json_type(data) = 'object'",
}


def upgrade():
    dialect = op.get_bind().dialect.name
    check = DATA_OBJECT_CHECKS.get(dialect)
    for name in ENTITY_TYPES:
        constraints = [sa.CheckConstraint(check, name=f"ck_{name}_data_object")] if check else []
        op.create_table(
            name,
            sa.Column('id', sa.Text().with_variant(postgresql.UUID(as_uuid=False), "postgresql"), primary_key=True),
            sa.Column('data', sa.JSON().with_variant(postgresql.JSONB(), "postgresql"), nullable=False),
            sa.Column('created_date', sa.Text().with_variant(sa.DateTime(timezone=True), "postgresql"), nullable=False),
            sa.Column('updated_date', sa.Text().with_variant(sa.DateTime(timezone=True), "postgresql"), nullable=False),
            sa.Column('created_by', sa.Text(), nullable=True),
            *constraints,
        )
        if dialect == "postgresql":
            op.create_index(f"ix_{name}_data", name, ["data"], postgresql_using="gin")


def downgrade():
    for name in reversed(ENTITY_TYPES):
        op.drop_table(name)
