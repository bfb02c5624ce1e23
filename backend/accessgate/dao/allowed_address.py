"""
Allowed address DAO.

WHAT: Queries for the allow-list table.
"""

from typing import List
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from accessgate.dao.base import BaseDAO
from accessgate.models.allowed_address import AllowedAddressModel


class AllowedAddressDAO(BaseDAO[AllowedAddressModel]):
    """Data Access Object for allow-list entries."""

    def __init__(self, session: AsyncSession):
        super().__init__(AllowedAddressModel, session)

    async def list_newest_first(self) -> List[AllowedAddressModel]:
        """All entries ordered by added_at descending."""
        result = await self.session.execute(
            select(AllowedAddressModel).order_by(AllowedAddressModel.added_at.desc())
        )
        return list(result.scalars().all())
