from fastapi import Depends, Header
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from livechat.actions.exceptions import ForbiddenError
from livechat.db.database import get_db
from livechat.db.models import Visitor


async def get_current_visitor(
    x_visitor_id: str = Header(None, alias="X-Visitor-Id"),
    db: AsyncSession = Depends(get_db),
) -> Visitor:
    """Resolve the widget's X-Visitor-Id header (the public visitor_uid) to a Visitor row.

    Visitors carry no JWT. Whether this visitor may touch a given conversation is
    decided by the services, which compare against conversation.visitor_id.
    """
    if not x_visitor_id:
        raise ForbiddenError("Visitor identification required")

    result = await db.execute(select(Visitor).where(Visitor.visitor_uid == x_visitor_id))
    visitor = result.scalar_one_or_none()
    if not visitor:
        raise ForbiddenError("Unknown visitor")
    return visitor
