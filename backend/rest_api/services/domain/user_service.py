"""
User Domain Service.

Users and their per-tenant role assignments.
"""

from typing import Any

from sqlalchemy import delete, func, or_, select
from sqlalchemy.orm import Session, selectinload

from rest_api.models import Athlete, MessageParticipant, User, UserRole
from shared.config.constants import Limits, Roles
from shared.config.logging import get_logger, mask_email
from shared.infrastructure.db import safe_commit
from shared.security.password import hash_password
from shared.utils.exceptions import DuplicateEntityError, NotFoundError, ValidationError
from shared.utils.validators import escape_like_pattern, sanitize_search_term

logger = get_logger(__name__)


def _validate_role(role: str) -> str:
    if role not in Roles.ALL:
        raise ValidationError(f"Invalid role: {role}", role=role)
    return role


class UserService:
    """Domain service for users and role assignments."""

    def __init__(self, db: Session):
        self._db = db

    def _get_user(self, user_id: int) -> User:
        user = self._db.scalar(
            select(User)
            .options(selectinload(User.roles))
            .where(User.id == user_id, User.is_active.is_(True))
        )
        if not user:
            raise NotFoundError("User", user_id)
        return user

    @staticmethod
    def to_output(user: User, tenant_id: int | None = None) -> dict[str, Any]:
        roles = [
            r.role for r in user.roles
            if r.is_active and (tenant_id is None or r.tenant_id == tenant_id)
        ]
        return {
            "id": user.id,
            "tenant_id": user.tenant_id,
            "email": user.email,
            "first_name": user.first_name,
            "last_name": user.last_name,
            "full_name": user.full_name,
            "phone": user.phone,
            "avatar_url": user.avatar_url,
            "roles": sorted(set(roles)),
            "created_at": user.created_at,
        }

    # =========================================================================
    # Queries
    # =========================================================================

    def list_users(
        self,
        tenant_id: int,
        search: str | None = None,
        role: str | None = None,
        limit: int = Limits.DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        """Users holding any active role in the tenant, or belonging to it."""
        in_tenant = select(UserRole.user_id).where(
            UserRole.tenant_id == tenant_id,
            UserRole.is_active.is_(True),
        )
        if role:
            in_tenant = in_tenant.where(UserRole.role == _validate_role(role))

        query = (
            select(User)
            .options(selectinload(User.roles))
            .where(User.is_active.is_(True))
            .order_by(User.last_name, User.first_name, User.id)
            .limit(min(limit, Limits.MAX_PAGE_SIZE))
            .offset(offset)
        )
        if role:
            query = query.where(User.id.in_(in_tenant))
        else:
            query = query.where(or_(User.tenant_id == tenant_id, User.id.in_(in_tenant)))

        term = sanitize_search_term(search)
        if term:
            pattern = f"%{escape_like_pattern(term)}%"
            query = query.where(
                or_(
                    User.email.ilike(pattern, escape="\\"),
                    User.first_name.ilike(pattern, escape="\\"),
                    User.last_name.ilike(pattern, escape="\\"),
                )
            )

        return [self.to_output(u, tenant_id) for u in self._db.execute(query).scalars()]

    def get_user_details(self, user_id: int) -> dict[str, Any]:
        user = self._get_user(user_id)
        athlete_count = self._db.scalar(
            select(func.count(Athlete.id)).where(
                Athlete.parent_id == user_id,
                Athlete.is_active.is_(True),
            )
        ) or 0
        output = self.to_output(user)
        output["role_assignments"] = [
            {"tenant_id": r.tenant_id, "role": r.role, "is_active": r.is_active}
            for r in user.roles
        ]
        output["athlete_count"] = athlete_count
        return output

    # =========================================================================
    # Mutations
    # =========================================================================

    def create_user(
        self,
        tenant_id: int,
        email: str,
        first_name: str | None = None,
        last_name: str | None = None,
        phone: str | None = None,
        password: str | None = None,
        role: str = Roles.PARENT,
        created_by_id: int | None = None,
    ) -> dict[str, Any]:
        """Create a user and its first role in one transaction."""
        _validate_role(role)
        email = email.strip().lower()

        existing = self._db.scalar(
            select(User).where(User.tenant_id == tenant_id, User.email == email)
        )
        if existing:
            raise DuplicateEntityError("User", email)

        user = User(
            tenant_id=tenant_id,
            email=email,
            first_name=first_name,
            last_name=last_name,
            phone=phone,
            password=hash_password(password) if password else None,
        )
        user.set_created_by(created_by_id)
        self._db.add(user)
        self._db.flush()

        self._db.add(UserRole(user_id=user.id, tenant_id=tenant_id, role=role))
        safe_commit(self._db)
        self._db.refresh(user)

        logger.info("User created", user_id=user.id, email=mask_email(email), role=role)
        return self.to_output(user, tenant_id)

    def update_profile(
        self,
        user_id: int,
        first_name: str | None = None,
        last_name: str | None = None,
        phone: str | None = None,
        avatar_url: str | None = None,
        updated_by_id: int | None = None,
    ) -> dict[str, Any]:
        user = self._get_user(user_id)
        if first_name is not None:
            user.first_name = first_name
        if last_name is not None:
            user.last_name = last_name
        if phone is not None:
            user.phone = phone
        if avatar_url is not None:
            user.avatar_url = avatar_url
        user.set_updated_by(updated_by_id)
        safe_commit(self._db)
        return self.to_output(user)

    def assign_role(
        self,
        user_id: int,
        tenant_id: int,
        role: str,
        assigned_by_id: int | None = None,
    ) -> dict[str, Any]:
        """
        Grant a role in a tenant.

        Assigning a role the user already holds is a success with a message.
        """
        _validate_role(role)
        self._get_user(user_id)

        assignment = self._db.scalar(
            select(UserRole).where(
                UserRole.user_id == user_id,
                UserRole.tenant_id == tenant_id,
                UserRole.role == role,
            )
        )
        if assignment is not None and assignment.is_active:
            return {"assigned": False, "message": "User already has this role", "role": role}

        if assignment is not None:
            assignment.restore(assigned_by_id)
        else:
            assignment = UserRole(user_id=user_id, tenant_id=tenant_id, role=role)
            assignment.set_created_by(assigned_by_id)
            self._db.add(assignment)
        safe_commit(self._db)

        logger.info("Role assigned", user_id=user_id, tenant_id=tenant_id, role=role)
        return {"assigned": True, "role": role}

    def update_role(
        self,
        user_id: int,
        tenant_id: int,
        role: str,
        updated_by_id: int | None = None,
    ) -> dict[str, Any]:
        """Replace every active role the user holds in the tenant with `role`."""
        _validate_role(role)
        self._get_user(user_id)

        assignments = self._db.execute(
            select(UserRole).where(UserRole.user_id == user_id, UserRole.tenant_id == tenant_id)
        ).scalars().all()

        target = None
        for assignment in assignments:
            if assignment.role == role:
                target = assignment
            elif assignment.is_active:
                assignment.soft_delete(updated_by_id)

        if target is None:
            target = UserRole(user_id=user_id, tenant_id=tenant_id, role=role)
            target.set_created_by(updated_by_id)
            self._db.add(target)
        elif not target.is_active:
            target.restore(updated_by_id)
        safe_commit(self._db)

        logger.info("Role updated", user_id=user_id, tenant_id=tenant_id, role=role)
        return {"updated": True, "role": role}

    def deactivate_role(
        self,
        user_id: int,
        tenant_id: int,
        role: str | None = None,
        deactivated_by_id: int | None = None,
    ) -> dict[str, Any]:
        """Deactivate one role, or every role when `role` is None."""
        query = select(UserRole).where(
            UserRole.user_id == user_id,
            UserRole.tenant_id == tenant_id,
            UserRole.is_active.is_(True),
        )
        if role:
            query = query.where(UserRole.role == role)

        assignments = self._db.execute(query).scalars().all()
        for assignment in assignments:
            assignment.soft_delete(deactivated_by_id)
        safe_commit(self._db)

        return {"deactivated": len(assignments)}

    def remove_from_tenant(
        self,
        user_id: int,
        tenant_id: int,
        removed_by_id: int | None = None,
    ) -> dict[str, Any]:
        self._get_user(user_id)
        result = self.deactivate_role(user_id, tenant_id, None, removed_by_id)
        logger.info("User removed from tenant", user_id=user_id, tenant_id=tenant_id)
        return {"removed": True, **result}

    def delete_user(self, user_id: int, deleted_by_id: int | None = None) -> dict[str, Any]:
        """Remove roles and thread memberships and soft-delete the user, atomically."""
        user = self._get_user(user_id)

        self._db.execute(delete(UserRole).where(UserRole.user_id == user_id))
        self._db.execute(delete(MessageParticipant).where(MessageParticipant.user_id == user_id))
        user.soft_delete(deleted_by_id)
        safe_commit(self._db)

        logger.info("User deleted", user_id=user_id, deleted_by=deleted_by_id)
        return {"deleted": True}

    def ensure_parent_role(self, user_id: int, tenant_id: int, commit: bool = True) -> bool:
        """
        Give the user an active parent role if missing. Never replaces roles.

        Returns True when a role was added or reactivated.
        """
        assignment = self._db.scalar(
            select(UserRole).where(
                UserRole.user_id == user_id,
                UserRole.tenant_id == tenant_id,
                UserRole.role == Roles.PARENT,
            )
        )
        if assignment is not None and assignment.is_active:
            return False

        if assignment is not None:
            assignment.restore(user_id)
        else:
            self._db.add(UserRole(user_id=user_id, tenant_id=tenant_id, role=Roles.PARENT))
        if commit:
            safe_commit(self._db)
        else:
            self._db.flush()

        logger.info("Parent role added", user_id=user_id, tenant_id=tenant_id)
        return True
