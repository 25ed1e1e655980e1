"""
Group Directory

Lists the groups a principal belongs to and answers membership checks
for workspace switches.

CRITICAL: Membership checks always go to the store. A cached group list
could let a removed member keep switching into a group.
"""

from typing import Optional

import structlog

from src.models.records import Group, PersonalScope, Table, WorkspaceScope
from src.repositories.base import Repository, filters_for
from src.services.storage.interface import Filter, Order


logger = structlog.get_logger(__name__)


class GroupDirectory(Repository[Group]):
    """Groups the principal is a member of."""

    table = Table.GROUPS
    order = Order(column="created_at", descending=True)

    async def list_groups(self) -> list[Group]:
        """
        Fetch the principal's groups fresh and keep them as the snapshot.

        Raises:
            QueryError: if the directory cannot be read
        """
        await self.refresh(PersonalScope(principal_id=self._principal_id))
        return list(self.snapshot)

    async def find_membership(self, group_id: str) -> Optional[Group]:
        """
        Look up one group, returning it only if the principal is a member.

        Raises:
            QueryError: if the lookup fails (callers must fail closed)
        """
        scope: WorkspaceScope = PersonalScope(principal_id=self._principal_id)
        filters = filters_for(self.table, scope, self._principal_id) + (
            Filter(column="id", value=group_id),
        )
        rows, _ = await self._retry.run(
            f"membership:{group_id}",
            lambda: self._store.select(self.table, filters, None, 1),
        )
        result = self._validator.validate(self.table, rows, scope, self._principal_id)
        for group in result.records:
            if group.id == group_id and group.has_member(self._principal_id):
                return group

        logger.info("membership_missing", group_id=group_id, principal=self._principal_id)
        return None
