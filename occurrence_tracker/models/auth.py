"""
Directory Models — roles, users, departments, locations.

These tables are read-only to the occurrence workflow: the lifecycle and
notification services query them for candidate pools (users by role, users by
department) and for referral targets, but never mutate them.
"""

import uuid
from datetime import datetime, timezone

from occurrence_tracker.models import db


def _uuid():
    return str(uuid.uuid4())


def _utcnow():
    return datetime.now(timezone.utc)


# ═══════════════════════════════════════════════════════════════
# 1. ROLES
# ═══════════════════════════════════════════════════════════════
class Role(db.Model):
    __tablename__ = "roles"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    name = db.Column(db.String(100), unique=True, nullable=False,
                     comment="QUALITY_ASSURANCE, ADMIN, QUALITY_MANAGER, DEPARTMENT_MANAGER, STAFF ...")
    description = db.Column(db.Text, default="")
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    users = db.relationship("User", back_populates="role", lazy="dynamic")

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
        }

    def __repr__(self):
        return f"<Role {self.name}>"


# ═══════════════════════════════════════════════════════════════
# 2. DEPARTMENTS
# ═══════════════════════════════════════════════════════════════
class Department(db.Model):
    """Organizational unit an occurrence can be referred to."""

    __tablename__ = "departments"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    name = db.Column(db.String(200), unique=True, nullable=False)
    description = db.Column(db.Text, default="")
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    users = db.relationship("User", back_populates="department", lazy="dynamic")

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Department {self.name}>"


# ═══════════════════════════════════════════════════════════════
# 3. LOCATIONS
# ═══════════════════════════════════════════════════════════════
class Location(db.Model):
    __tablename__ = "locations"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default="")
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def to_dict(self):
        return {"id": self.id, "name": self.name, "description": self.description}


# ═══════════════════════════════════════════════════════════════
# 4. USERS
# ═══════════════════════════════════════════════════════════════
class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    name = db.Column(db.String(200), nullable=False)
    email = db.Column(db.String(200), unique=True, nullable=False)
    mobile_no = db.Column(db.String(30), nullable=True,
                          comment="Local mobile number, validated before SMS delivery")
    role_id = db.Column(
        db.String(36), db.ForeignKey("roles.id", ondelete="RESTRICT"), nullable=False, index=True,
    )
    department_id = db.Column(
        db.String(36), db.ForeignKey("departments.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    role = db.relationship("Role", back_populates="users")
    department = db.relationship("Department", back_populates="users")
    notification_preference = db.relationship(
        "NotificationPreference", back_populates="user", uselist=False,
        cascade="all, delete-orphan",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "mobile_no": self.mobile_no,
            "role": self.role.name if self.role else None,
            "department_id": self.department_id,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<User {self.email}>"
