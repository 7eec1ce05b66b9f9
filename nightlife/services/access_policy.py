from __future__ import annotations

import logging
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from nightlife.models import Club, User, UserRole

logger = logging.getLogger(__name__)


class AccessPolicy:
    """Single place that decides whether a staff member may act on a club's purchases."""

    ASSIGNED_ROLES = frozenset({UserRole.BOUNCER.value, UserRole.WAITER.value})

    def __init__(self, db_session: Session):
        self.db = db_session

    def can_act(self, user: Optional[User], club_id: Optional[str]) -> bool:
        if user is None or not club_id:
            return False

        role = (user.role or "").lower()
        if role in self.ASSIGNED_ROLES:
            return bool(user.club_id) and user.club_id == club_id

        if role == UserRole.CLUBOWNER.value:
            # Always looked up; ownership may change between requests
            owned = (
                self.db.query(Club.id)
                .filter(Club.id == club_id, Club.owner_id == user.id)
                .first()
            )
            return owned is not None

        logger.info("Access denied for role %s on club %s", role or "<none>", club_id)
        return False

    @staticmethod
    def has_role(user: Optional[User], roles: Iterable[UserRole]) -> bool:
        if user is None:
            return False
        return (user.role or "").lower() in {r.value for r in roles}
