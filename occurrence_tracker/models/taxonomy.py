"""
Incident Taxonomy Models — severities and the incident category tree.

Each Incident node carries its own severity; children do not inherit the
parent's severity. The tree is read-only to the occurrence workflow, which
only needs the severity of a node and its top-level ancestor.
"""

import uuid
from datetime import datetime, timezone

from occurrence_tracker.models import db


def _uuid():
    return str(uuid.uuid4())


class Severity(db.Model):
    __tablename__ = "severities"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    name = db.Column(db.String(100), unique=True, nullable=False)
    level = db.Column(db.Integer, nullable=False, comment="Higher level = more severe")
    description = db.Column(db.Text, default="")

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "level": self.level,
            "description": self.description,
        }

    def __repr__(self):
        return f"<Severity {self.name} L{self.level}>"


class Incident(db.Model):
    """Node in the incident category tree."""

    __tablename__ = "incidents"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default="")
    parent_id = db.Column(
        db.String(36), db.ForeignKey("incidents.id", ondelete="CASCADE"), nullable=True, index=True,
    )
    severity_id = db.Column(
        db.String(36), db.ForeignKey("severities.id", ondelete="RESTRICT"), nullable=False, index=True,
    )
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    severity = db.relationship("Severity")
    parent = db.relationship("Incident", remote_side=[id], back_populates="children")
    children = db.relationship(
        "Incident", back_populates="parent", order_by="Incident.name",
        cascade="all, delete-orphan",
    )

    def ancestors(self):
        """Return the parent chain, nearest first, root last."""
        chain = []
        seen = {self.id}
        node = self.parent
        while node is not None and node.id not in seen:
            chain.append(node)
            seen.add(node.id)
            node = node.parent
        return chain

    def top_level(self):
        """Return the root of this node's branch (the node itself for roots)."""
        chain = self.ancestors()
        return chain[-1] if chain else self

    def to_dict(self, include_children=False):
        d = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "parent_id": self.parent_id,
            "severity": self.severity.to_dict() if self.severity else None,
        }
        if include_children:
            d["children"] = [c.to_dict() for c in self.children]
        return d

    def __repr__(self):
        return f"<Incident {self.name}>"
