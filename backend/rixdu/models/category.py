from datetime import datetime

import sqlalchemy as sa

from rixdu.extensions import db


FIELD_TYPES = (
    "text",
    "number",
    "select",
    "date",
    "checkbox",
    "radio",
    "file",
    "image",
    "input",
    "point",
)


class Category(db.Model):
    __tablename__ = "categories"
    __table_args__ = (
        db.UniqueConstraint("store_id", "slug", name="uq_categories_store_slug"),
        db.Index("ix_categories_store_parent", "store_id", "parent_id"),
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    name = db.Column(db.String(120), nullable=False)
    slug = db.Column(db.String(140), nullable=False, index=True)
    parent_id = db.Column(db.Integer, db.ForeignKey("categories.id"), nullable=True, index=True)

    # Denormalized tree position: root level is 0 and path is "".
    level = db.Column(db.Integer, nullable=False, default=0, server_default="0")
    path = db.Column(db.String(1024), nullable=False, default="", server_default="")
    children_count = db.Column(db.Integer, nullable=False, default=0, server_default="0")

    is_leaf = db.Column(db.Boolean, nullable=False, default=False, server_default=sa.text("false"))
    kind = db.Column(db.String(24), nullable=True, index=True)
    icon_url = db.Column(db.String(1024), nullable=True)
    sort_order = db.Column(db.Integer, nullable=False, default=0, server_default="0")
    is_active = db.Column(db.Boolean, nullable=False, default=True, server_default=sa.text("true"))

    # Ordered field-schema descriptors, only meaningful on leaves.
    fields = db.Column(db.JSON, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    children = db.relationship(
        "Category",
        backref=db.backref("parent", remote_side=[id]),
        order_by="Category.sort_order",
        lazy="select",
    )

    def path_ids(self) -> list[int]:
        raw = (self.path or "").strip()
        if not raw:
            return []
        return [int(part) for part in raw.split(",") if part.strip()]

    def field_list(self) -> list[dict]:
        if not self.is_leaf:
            return []
        return list(self.fields or [])

    def to_dict(self, *, include_fields: bool = True) -> dict:
        payload = {
            "id": int(self.id),
            "store_id": int(self.store_id),
            "name": self.name or "",
            "slug": self.slug or "",
            "parent_id": int(self.parent_id) if self.parent_id is not None else None,
            "level": int(self.level or 0),
            "path": self.path or "",
            "children_count": int(self.children_count or 0),
            "is_leaf": bool(self.is_leaf),
            "kind": self.kind or "",
            "icon_url": self.icon_url or "",
            "sort_order": int(self.sort_order or 0),
            "is_active": bool(self.is_active),
        }
        if include_fields:
            payload["fields"] = self.field_list()
        return payload
