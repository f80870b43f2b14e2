"""Organization access gate for search and autocomplete."""

from enum import Enum
from typing import NamedTuple, Protocol

import structlog

from orgdir.db import Database
from orgdir.errors import ForbiddenError, NotFoundError

logger = structlog.get_logger()


class Role(str, Enum):
    """Organization roles, lowest privilege first."""

    VIEWER = "viewer"
    EDITOR = "editor"
    ADMIN = "admin"
    OWNER = "owner"

    @property
    def level(self) -> int:
        """Position of the role in the privilege hierarchy."""
        return _ROLE_LEVELS[self]


_ROLE_LEVELS: dict[Role, int] = {
    Role.VIEWER: 0,
    Role.EDITOR: 1,
    Role.ADMIN: 2,
    Role.OWNER: 3,
}


class OrgAccess(NamedTuple):
    """Resolved access of a user to an organization."""

    has_access: bool
    role: Role | None
    is_owner: bool


NO_ACCESS = OrgAccess(has_access=False, role=None, is_owner=False)


class MembershipResolver(Protocol):
    """Resolves a user's role within an organization."""

    def resolve_access(self, org_id: str, user_id: str) -> OrgAccess: ...


class OrganizationLookup(Protocol):
    """Answers existence and visibility questions about organizations."""

    def exists(self, org_id: str) -> bool: ...

    def is_public(self, org_id: str) -> bool: ...


class SqliteOrganizations:
    """Organization and membership lookups backed by the directory database."""

    def __init__(self, database: Database) -> None:
        """Initialize lookups.

        Args:
            database: Directory database.
        """
        self._database = database

    def exists(self, org_id: str) -> bool:
        with self._database.session() as conn:
            row = conn.execute(
                "SELECT 1 FROM organizations WHERE id = ?", (org_id,)
            ).fetchone()
        return row is not None

    def is_public(self, org_id: str) -> bool:
        with self._database.session() as conn:
            row = conn.execute(
                "SELECT is_public FROM organizations WHERE id = ?", (org_id,)
            ).fetchone()
        return bool(row and row["is_public"])

    def resolve_access(self, org_id: str, user_id: str) -> OrgAccess:
        """Resolve the effective role of a user in an organization.

        Superusers act as owners of every organization. The creator of an
        organization is its owner. Everyone else needs a membership row.

        Args:
            org_id: Organization identifier.
            user_id: User identifier.

        Returns:
            Access record; has_access is False when nothing resolves.
        """
        with self._database.session() as conn:
            org = conn.execute(
                "SELECT created_by_id FROM organizations WHERE id = ?", (org_id,)
            ).fetchone()
            user = conn.execute(
                "SELECT role FROM users WHERE id = ?", (user_id,)
            ).fetchone()

            if user is not None and user["role"] == "superuser":
                is_owner = org is not None and org["created_by_id"] == user_id
                return OrgAccess(has_access=True, role=Role.OWNER, is_owner=is_owner)

            if org is None:
                return NO_ACCESS

            if org["created_by_id"] == user_id:
                return OrgAccess(has_access=True, role=Role.OWNER, is_owner=True)

            member = conn.execute(
                """
                SELECT role FROM organization_members
                WHERE organization_id = ? AND user_id = ?
                """,
                (org_id, user_id),
            ).fetchone()

        if member is None:
            return NO_ACCESS

        try:
            role = Role(member["role"]) if member["role"] else None
        except ValueError:
            logger.warning("unknown_member_role", org_id=org_id, role=member["role"])
            role = None
        return OrgAccess(has_access=True, role=role, is_owner=False)


class AccessGate:
    """Decides whether a possibly anonymous caller may read an organization."""

    def __init__(
        self,
        organizations: OrganizationLookup,
        membership: MembershipResolver,
    ) -> None:
        """Initialize gate.

        Args:
            organizations: Organization existence and visibility lookup.
            membership: Role resolver for authenticated callers.
        """
        self._organizations = organizations
        self._membership = membership

    def require(
        self,
        org_id: str,
        user_id: str | None,
        min_role: Role = Role.VIEWER,
        allow_public: bool = True,
    ) -> OrgAccess | None:
        """Admit the caller or raise.

        Args:
            org_id: Organization being read.
            user_id: Caller identifier, None for anonymous callers.
            min_role: Lowest role that is admitted.
            allow_public: Admit anyone when the organization is public.

        Returns:
            Resolved access, or None when admitted through public visibility.

        Raises:
            NotFoundError: Organization missing, or private with no access record.
            ForbiddenError: Anonymous caller on a private organization, or the
                resolved role is missing or below min_role.
        """
        if not self._organizations.exists(org_id):
            raise NotFoundError("Organization not found")

        if allow_public and self._organizations.is_public(org_id):
            return None

        if user_id is None:
            logger.info("access_denied_anonymous", org_id=org_id)
            raise ForbiddenError("Authentication required")

        access = self._membership.resolve_access(org_id, user_id)
        if not access.has_access:
            raise NotFoundError("Organization not found")

        if access.role is None or access.role.level < min_role.level:
            logger.warning(
                "access_denied_role",
                org_id=org_id,
                user_id=user_id,
                role=access.role.value if access.role else None,
                required=min_role.value,
            )
            raise ForbiddenError("Insufficient permissions")

        return access
