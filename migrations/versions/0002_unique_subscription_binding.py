"""one application per billing subscription

Revision ID: 0002_unique_subscription
Revises: 0001_initial
Create Date: 2026-10-19

"""

from typing import Sequence, Union

from alembic import op
from sqlalchemy import inspect


# revision identifiers, used by Alembic.
revision: str = "0002_unique_subscription"
down_revision: Union[str, Sequence[str], None] = "0001_initial"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _index_names(insp, table: str) -> set[str]:
    try:
        return {ix.get("name") for ix in insp.get_indexes(table)}
    except Exception:
        return set()


def upgrade() -> None:
    insp = inspect(op.get_bind())
    names = _index_names(insp, "member_applications")

    if "idx_member_applications_subscription" in names:
        op.drop_index("idx_member_applications_subscription", table_name="member_applications")
    if "uq_member_applications_subscription" not in names:
        # Fails loudly if two rows already share a subscription; those need manual cleanup first.
        op.create_index(
            "uq_member_applications_subscription",
            "member_applications",
            ["billing_subscription_id"],
            unique=True,
        )


def downgrade() -> None:
    insp = inspect(op.get_bind())
    names = _index_names(insp, "member_applications")

    if "uq_member_applications_subscription" in names:
        op.drop_index("uq_member_applications_subscription", table_name="member_applications")
    if "idx_member_applications_subscription" not in names:
        op.create_index("idx_member_applications_subscription", "member_applications", ["billing_subscription_id"])
