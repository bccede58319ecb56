"""
Filters for bot handlers
"""
from typing import Sequence, Union

from aiogram.filters import Filter
from aiogram.types import CallbackQuery, Message

from config import settings


class IsAdmin(Filter):
    """Allow only users from the admin allow-list."""

    def __init__(self, admin_ids: Sequence[int] | None = None) -> None:
        self._admin_ids = tuple(admin_ids) if admin_ids is not None else None

    async def __call__(self, event: Union[Message, CallbackQuery]) -> bool:
        user_id = event.from_user.id if event.from_user else None
        if user_id is None:
            return False
        allowed = self._admin_ids if self._admin_ids is not None else settings.ADMIN_CHAT_IDS
        return user_id in allowed
