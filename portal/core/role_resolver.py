"""
Role resolution for portal sessions.

Loads the caller's profile, derives permissions from ``profiles.role`` only,
and tracks the view mode (``admin`` or ``client``) the user has chosen. The
effective mode is clamped by permission: a user who cannot switch roles is
always treated as ``client`` whatever the stored preference says.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional, Tuple

from ..db import DatabaseClient
from ..db.models import LegacyUserProfile, Profile, Project, ViewMode
from ..errors import DataSourceError
from .preferences import ViewModeStore


logger = logging.getLogger(__name__)

PRIVILEGED_ROLES = frozenset({"admin", "owner"})


def evaluate_permissions(profile: Profile) -> Tuple[bool, bool, bool]:
    """Return ``(is_admin, is_owner, can_switch_roles)`` for an authoritative profile."""
    if not isinstance(profile, Profile):
        raise TypeError(f"permissions are derived from Profile only, got {type(profile).__name__}")
    is_owner = profile.role == "owner"
    is_admin = profile.role == "admin"
    return is_admin, is_owner, is_owner or is_admin


@dataclass(frozen=True)
class RoleState:
    profile: Optional[Profile] = None
    legacy_profile: Optional[LegacyUserProfile] = None
    view_mode: ViewMode = ViewMode.CLIENT
    can_switch_roles: bool = False
    assigned_project_id: Optional[str] = None
    is_owner: bool = False
    is_admin: bool = False
    loading: bool = True

    @property
    def effective_mode(self) -> ViewMode:
        if self.view_mode is ViewMode.ADMIN and self.can_switch_roles:
            return ViewMode.ADMIN
        return ViewMode.CLIENT

    @property
    def is_privileged(self) -> bool:
        """Whether the stored role is admin or owner, independent of view mode."""
        return self.is_admin or self.is_owner

    @property
    def has_access(self) -> bool:
        return self.profile is not None

    @property
    def tenant_id(self) -> Optional[str]:
        return self.profile.tenant_id if self.profile else None

    @classmethod
    def no_access(cls) -> "RoleState":
        return cls(loading=False)

    def to_dict(self) -> Dict[str, Any]:
        profile = self.profile
        return {
            "user_id": profile.id if profile else None,
            "email": profile.email if profile else None,
            "full_name": profile.full_name if profile else None,
            "role": profile.role if profile else None,
            "tenant_id": self.tenant_id,
            "assigned_project_id": self.assigned_project_id,
            "view_mode": self.view_mode.value,
            "effective_mode": self.effective_mode.value,
            "can_switch_roles": self.can_switch_roles,
            "is_admin": self.is_admin,
            "is_owner": self.is_owner,
            "has_access": self.has_access,
            "loading": self.loading,
            "legacy_role": self.legacy_profile.legacy_role if self.legacy_profile else None,
        }


class RoleResolver:
    """Resolves and holds the role state for one authenticated user."""

    def __init__(self, db: DatabaseClient, preferences: ViewModeStore) -> None:
        self.db = db
        self.preferences = preferences
        self.user_id: Optional[str] = None
        self._state = RoleState()

    @property
    def state(self) -> RoleState:
        return self._state

    @property
    def loading(self) -> bool:
        return self._state.loading

    async def resolve(self, user_id: str) -> RoleState:
        """
        Load the profile for ``user_id`` and derive permissions.

        Never raises for lookup problems: a failed or empty lookup yields a
        zero-access state with ``loading=False``.
        """
        self.user_id = user_id
        self._state = replace(self._state, loading=True)

        try:
            record = await self.db.get_profile(user_id)
        except DataSourceError as exc:
            logger.error("Profile lookup failed for user %s: %s", user_id, exc)
            record = None

        if not record:
            logger.warning("No profile found for user %s; treating as zero access", user_id)
            self._state = RoleState.no_access()
            return self._state

        profile = Profile.from_record(record)

        legacy_profile: Optional[LegacyUserProfile] = None
        try:
            legacy_record = await self.db.get_legacy_user_profile(user_id)
        except DataSourceError as exc:
            logger.debug("Legacy user_profile lookup failed for user %s: %s", user_id, exc)
            legacy_record = None
        if legacy_record:
            legacy_profile = LegacyUserProfile.from_record(legacy_record)

        is_admin, is_owner, can_switch_roles = evaluate_permissions(profile)

        stored_mode = self.preferences.get(user_id)
        if stored_mode is None:
            view_mode = ViewMode.ADMIN if can_switch_roles else ViewMode.CLIENT
        else:
            view_mode = stored_mode

        self._state = RoleState(
            profile=profile,
            legacy_profile=legacy_profile,
            view_mode=view_mode,
            can_switch_roles=can_switch_roles,
            assigned_project_id=profile.project_id,
            is_owner=is_owner,
            is_admin=is_admin,
            loading=False,
        )
        logger.info(
            "Resolved role for user %s: role=%s switch=%s mode=%s project=%s",
            user_id,
            profile.role,
            can_switch_roles,
            self._state.effective_mode.value,
            profile.project_id,
        )
        return self._state

    async def refresh(self) -> RoleState:
        if not self.user_id:
            return self._state
        return await self.resolve(self.user_id)

    def switch_view_mode(self, mode: ViewMode) -> bool:
        """
        Change the view mode and persist it.

        Returns ``False`` without touching state or storage when ``admin`` is
        requested by a user who cannot switch roles.
        """
        mode = ViewMode(mode)
        if mode is ViewMode.ADMIN and not self._state.can_switch_roles:
            logger.warning("User %s cannot switch to admin mode", self.user_id)
            return False

        self._state = replace(self._state, view_mode=mode)
        if self.user_id:
            self.preferences.set(self.user_id, mode)
        logger.info("Switched user %s to view mode %s", self.user_id, mode.value)
        return True

    def current_access_level(self) -> ViewMode:
        return self._state.effective_mode

    def should_show_admin_features(self) -> bool:
        return self._state.effective_mode is ViewMode.ADMIN

    async def get_accessible_projects(self) -> List[Project]:
        """Projects visible under the effective view mode, sorted by name."""
        state = self._state
        if not state.has_access:
            return []

        try:
            if state.effective_mode is ViewMode.CLIENT:
                if not state.assigned_project_id:
                    return []
                records = await self.db.list_projects(project_id=state.assigned_project_id)
            elif not state.tenant_id:
                logger.warning("Admin-mode user %s has no tenant; no projects listed", self.user_id)
                return []
            else:
                records = await self.db.list_projects(account_id=state.tenant_id)
        except DataSourceError as exc:
            logger.error("Error fetching accessible projects for user %s: %s", self.user_id, exc)
            return []

        projects = [Project.from_record(record) for record in records]
        return sorted(projects, key=lambda project: project.name)
