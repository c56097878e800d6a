# shop/utils/activity_helpers.py
from sqlalchemy.ext.asyncio import AsyncSession
from shop.models.activity_models import UserActivity

SYSTEM_ACTOR = "system"


async def log_user_activity(db: AsyncSession, actor, message: str) -> UserActivity:
    """
    Stage an audit row for `actor` (a User, or None for background jobs).
    Nothing is flushed; the row commits with the change it describes.
    """
    activity = UserActivity(
        user_id=getattr(actor, "id", None),
        username=getattr(actor, "username", None) or SYSTEM_ACTOR,
        message=message,
    )
    db.add(activity)
    return activity
