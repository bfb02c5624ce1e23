"""
Public access configuration DAO.

WHAT: Reads and replaces the singleton public-access row.
"""

from datetime import datetime
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession

from accessgate.dao.base import BaseDAO
from accessgate.models.public_access import PublicAccessConfigModel, SINGLETON_ID


class PublicAccessConfigDAO(BaseDAO[PublicAccessConfigModel]):
    """Data Access Object for the public-access singleton."""

    def __init__(self, session: AsyncSession):
        super().__init__(PublicAccessConfigModel, session)

    async def get_singleton(self) -> Optional[PublicAccessConfigModel]:
        return await self.get_by_id(SINGLETON_ID)

    async def replace(
        self,
        enabled: bool,
        enabled_by: str,
        enabled_at: datetime,
        reason: str,
    ) -> PublicAccessConfigModel:
        """
        Replace the whole record.

        HOW: session.merge() turns into INSERT or UPDATE on the fixed key,
        so there is never a second row.
        """
        row = await self.session.merge(
            PublicAccessConfigModel(
                id=SINGLETON_ID,
                enabled=enabled,
                enabled_by=enabled_by,
                enabled_at=enabled_at,
                reason=reason,
            )
        )
        await self.session.flush()
        return row
