"""
Auth Models — users, roles, permissions and their junction tables.

Permissions reach a user two ways:
    user → user_roles → roles → role_permissions → permissions
    user → user_permissions → permissions          (direct grant)

The effective set is the union of both (see services/permission_service.py).
"""

from datetime import datetime, timezone

from tracker.models import db


def _utcnow():
    return datetime.now(timezone.utc)


# ═══════════════════════════════════════════════════════════════
# 1. USERS
# ═══════════════════════════════════════════════════════════════
class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(256), nullable=False)
    email_verified_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=_utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=_utcnow, onupdate=_utcnow)

    # Relationships
    user_roles = db.relationship(
        "UserRole", back_populates="user", lazy="dynamic",
        cascade="all, delete-orphan", foreign_keys="UserRole.user_id",
    )
    user_permissions = db.relationship(
        "UserPermission", back_populates="user", lazy="dynamic",
        cascade="all, delete-orphan", foreign_keys="UserPermission.user_id",
    )
    roles = db.relationship(
        "Role", secondary="user_roles", viewonly=True, order_by="Role.name",
        primaryjoin="User.id == UserRole.user_id",
        secondaryjoin="Role.id == UserRole.role_id",
    )
    permissions = db.relationship(
        "Permission", secondary="user_permissions", viewonly=True, order_by="Permission.name",
        primaryjoin="User.id == UserPermission.user_id",
        secondaryjoin="Permission.id == UserPermission.permission_id",
    )

    @property
    def role_names(self):
        """Sorted role names held by this user."""
        return [r.name for r in self.roles]

    @property
    def direct_permission_names(self):
        return [p.name for p in self.permissions]

    def to_dict(self, include_roles=False, include_permissions=False):
        d = {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "email_verified_at": self.email_verified_at.isoformat() if self.email_verified_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_roles:
            d["roles"] = [r.to_dict(include_permissions=include_permissions) for r in self.roles]
        if include_permissions:
            d["permissions"] = [p.to_dict() for p in self.permissions]
        return d

    def to_brief(self):
        return {"id": self.id, "name": self.name, "email": self.email}

    def __repr__(self):
        return f"<User {self.id}: {self.email}>"


# ═══════════════════════════════════════════════════════════════
# 2. ROLES
# ═══════════════════════════════════════════════════════════════
class Role(db.Model):
    __tablename__ = "roles"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), unique=True, nullable=False)
    created_at = db.Column(db.DateTime, default=_utcnow)
    updated_at = db.Column(db.DateTime, default=_utcnow, onupdate=_utcnow)

    # Relationships
    role_permissions = db.relationship(
        "RolePermission", back_populates="role", lazy="dynamic", cascade="all, delete-orphan"
    )
    user_roles = db.relationship("UserRole", back_populates="role", lazy="dynamic")
    permissions = db.relationship(
        "Permission", secondary="role_permissions", viewonly=True, order_by="Permission.name",
    )

    def to_dict(self, include_permissions=False):
        d = {
            "id": self.id,
            "name": self.name,
        }
        if include_permissions:
            d["permissions"] = [p.name for p in self.permissions]
        return d


# ═══════════════════════════════════════════════════════════════
# 3. PERMISSIONS
# ═══════════════════════════════════════════════════════════════
class Permission(db.Model):
    __tablename__ = "permissions"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), unique=True, nullable=False)  # e.g. "view systems"
    created_at = db.Column(db.DateTime, default=_utcnow)

    # Relationships
    role_permissions = db.relationship("RolePermission", back_populates="permission", lazy="dynamic")

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
        }


# ═══════════════════════════════════════════════════════════════
# 4. ROLE_PERMISSIONS (Junction table)
# ═══════════════════════════════════════════════════════════════
class RolePermission(db.Model):
    __tablename__ = "role_permissions"

    id = db.Column(db.Integer, primary_key=True)
    role_id = db.Column(
        db.Integer, db.ForeignKey("roles.id", ondelete="CASCADE"), nullable=False
    )
    permission_id = db.Column(
        db.Integer, db.ForeignKey("permissions.id", ondelete="CASCADE"), nullable=False
    )

    __table_args__ = (
        db.UniqueConstraint("role_id", "permission_id", name="uq_role_permission"),
    )

    # Relationships
    role = db.relationship("Role", back_populates="role_permissions")
    permission = db.relationship("Permission", back_populates="role_permissions")


# ═══════════════════════════════════════════════════════════════
# 5. USER_ROLES (Junction table)
# ═══════════════════════════════════════════════════════════════
class UserRole(db.Model):
    __tablename__ = "user_roles"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    role_id = db.Column(
        db.Integer, db.ForeignKey("roles.id", ondelete="CASCADE"), nullable=False
    )
    assigned_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    assigned_at = db.Column(db.DateTime, default=_utcnow)

    __table_args__ = (
        db.UniqueConstraint("user_id", "role_id", name="uq_user_role"),
    )

    # Relationships
    user = db.relationship("User", back_populates="user_roles", foreign_keys=[user_id])
    role = db.relationship("Role", back_populates="user_roles")


# ═══════════════════════════════════════════════════════════════
# 6. USER_PERMISSIONS (Direct grants)
# ═══════════════════════════════════════════════════════════════
class UserPermission(db.Model):
    __tablename__ = "user_permissions"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    permission_id = db.Column(
        db.Integer, db.ForeignKey("permissions.id", ondelete="CASCADE"), nullable=False
    )
    assigned_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    assigned_at = db.Column(db.DateTime, default=_utcnow)

    __table_args__ = (
        db.UniqueConstraint("user_id", "permission_id", name="uq_user_permission"),
    )

    user = db.relationship("User", back_populates="user_permissions", foreign_keys=[user_id])
    permission = db.relationship("Permission")
