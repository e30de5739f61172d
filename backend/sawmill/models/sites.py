from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Site(db.Model):
    """
    A sawmill (operating site).

    Every lot, shift, sale and expense is scoped to exactly one site. The site
    id is resolved upstream and passed explicitly into every operation.
    """
    __tablename__ = "sites"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False, unique=True)
    code = db.Column(db.String(32), nullable=True, unique=True, index=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Site id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Product(db.Model):
    """
    Catalog entry for finished goods (boards, beams, plywood...).

    Catalog maintenance and pricing live elsewhere; this table exists so that
    lots and sale lines can be checked against a real product of the site.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("site_id", "sku", name="uq_products_site_sku"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    site_id = db.Column(db.Integer, db.ForeignKey("sites.id"), nullable=False, index=True)
    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    site = db.relationship("Site", backref=db.backref("products", lazy=True))

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} site_id={self.site_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "site_id": self.site_id,
            "sku": self.sku,
            "name": self.name,
            "description": self.description,
            "is_active": self.is_active,
        }
