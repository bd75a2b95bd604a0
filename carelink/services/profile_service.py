from __future__ import annotations

from typing import Optional

from sqlalchemy.orm import Session

from carelink.models.user import Profile, UserRole


class ProfileService:
    @staticmethod
    def get_profile(db: Session, user_id: str) -> Optional[Profile]:
        return db.get(Profile, user_id)

    @staticmethod
    def resolve_display_name(db: Session, user_id: str, role: UserRole | str) -> str:
        """Name shown for a user in community contexts.

        Students are only ever shown under their anonymous handle.
        """
        profile = db.get(Profile, user_id)
        if UserRole(role) == UserRole.student:
            if profile and profile.anonymous_username:
                return profile.anonymous_username
            return "Anonymous"
        if profile is None:
            return "Unknown"
        return profile.name or profile.email or "Admin"
