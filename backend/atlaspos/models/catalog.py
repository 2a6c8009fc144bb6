from __future__ import annotations

from ..extensions import db
from ..money import to_decimal
from ..time_utils import to_utc_z


# Catalog rows are maintained by the back office; the POS core only reads
# them, with one exception: Product.ensure_default_variant().

product_categories = db.Table(
    "product_categories",
    db.Column("product_id", db.Integer, db.ForeignKey("products.id"), primary_key=True),
    db.Column("category_id", db.Integer, db.ForeignKey("categories.id"), primary_key=True),
)

product_taxes = db.Table(
    "product_taxes",
    db.Column("product_id", db.Integer, db.ForeignKey("products.id"), primary_key=True),
    db.Column("tax_id", db.Integer, db.ForeignKey("taxes.id"), primary_key=True),
)


class Category(db.Model):
    __tablename__ = "categories"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    name = db.Column(db.String(128), nullable=False)

    def to_dict(self) -> dict:
        return {"id": self.id, "tenant_id": self.tenant_id, "name": self.name}


class Tax(db.Model):
    """
    Tax rate assigned to products.

    Inclusive taxes are already part of the shelf price; exclusive taxes are
    added on top at checkout. rate is a percentage (8.25 = 8.25%).
    """
    __tablename__ = "taxes"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    name = db.Column(db.String(64), nullable=False)
    rate = db.Column(db.Numeric(6, 3), nullable=False, default=0)
    inclusive = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "rate": str(to_decimal(self.rate)),
            "inclusive": self.inclusive,
            "is_active": self.is_active,
        }


class Product(db.Model):
    """
    Sellable catalog item. Prices and stock live on its variants; every
    product has exactly one default variant, created lazily on first use.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_tenant_active", "tenant_id", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)

    title = db.Column(db.String(255), nullable=False)
    price = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    track_stock = db.Column(db.Boolean, nullable=False, default=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    variants = db.relationship(
        "Variant", back_populates="product", lazy=True, order_by="Variant.id"
    )
    option_groups = db.relationship(
        "OptionGroup", back_populates="product", lazy=True,
        order_by=lambda: (OptionGroup.sort_order, OptionGroup.id),
    )
    categories = db.relationship("Category", secondary=product_categories, lazy=True)
    taxes = db.relationship("Tax", secondary=product_taxes, lazy=True, order_by="Tax.id")

    def __repr__(self) -> str:
        return f"<Product id={self.id} title={self.title!r} tenant_id={self.tenant_id}>"

    def ensure_default_variant(self) -> "Variant":
        """
        Return the product's default variant, creating or promoting one if needed.

        - an existing is_default variant wins
        - otherwise the oldest variant is promoted
        - otherwise a variant is created from the product's own title/price/track_stock
        """
        existing = db.session.query(Variant).filter_by(
            product_id=self.id, is_default=True
        ).order_by(Variant.id).first()
        if existing:
            return existing

        first = db.session.query(Variant).filter_by(product_id=self.id).order_by(
            Variant.created_at, Variant.id
        ).first()
        if first:
            first.is_default = True
            db.session.flush()
            return first

        variant = Variant(
            product_id=self.id,
            name=self.title,
            price=self.price if self.price is not None else 0,
            cost=None,
            track_stock=bool(self.track_stock),
            is_default=True,
        )
        db.session.add(variant)
        db.session.flush()
        return variant

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "title": self.title,
            "price": str(to_decimal(self.price)),
            "track_stock": self.track_stock,
            "is_active": self.is_active,
            "category_ids": [c.id for c in self.categories],
            "tax_ids": [t.id for t in self.taxes],
            "created_at": to_utc_z(self.created_at),
        }


class Variant(db.Model):
    """Sellable unit of a product (size, flavour...), with its own price, cost and tracking flag."""
    __tablename__ = "variants"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    sku = db.Column(db.String(64), nullable=True)
    name = db.Column(db.String(255), nullable=True)
    price = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    cost = db.Column(db.Numeric(12, 2), nullable=True)
    track_stock = db.Column(db.Boolean, nullable=False, default=True)
    is_default = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product", back_populates="variants")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "sku": self.sku,
            "name": self.name,
            "price": str(to_decimal(self.price)),
            "cost": str(to_decimal(self.cost)) if self.cost is not None else None,
            "track_stock": self.track_stock,
            "is_default": self.is_default,
        }


class OptionGroup(db.Model):
    """
    Modifier group on a product (e.g. "Milk", "Extra shots").

    selection_type 'single' allows at most one option; min/max bound the
    number of options picked from the group on one order line.
    """
    __tablename__ = "option_groups"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    name = db.Column(db.String(128), nullable=False)
    selection_type = db.Column(db.String(16), nullable=False, default="multiple")  # single, multiple
    min = db.Column(db.Integer, nullable=True)
    max = db.Column(db.Integer, nullable=True)
    sort_order = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    product = db.relationship("Product", back_populates="option_groups")
    options = db.relationship(
        "Option", back_populates="group", lazy=True, order_by=lambda: (Option.sort_order, Option.id)
    )


class Option(db.Model):
    __tablename__ = "options"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    option_group_id = db.Column(db.Integer, db.ForeignKey("option_groups.id"), nullable=False, index=True)

    name = db.Column(db.String(128), nullable=False)
    price_delta = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    sort_order = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    group = db.relationship("OptionGroup", back_populates="options")


class Promotion(db.Model):
    """
    Tenant-wide discount rule.

    type: 'percent' (value is a percentage, capped at 100) or 'amount'
    (value is a per-unit amount). applies_to: 'all', 'category' or 'product'.
    starts_at/ends_at are optional and inclusive.
    """
    __tablename__ = "promotions"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    type = db.Column(db.String(16), nullable=False)  # percent, amount
    value = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    applies_to = db.Column(db.String(16), nullable=False, default="all")  # all, category, product
    category_id = db.Column(db.Integer, db.ForeignKey("categories.id"), nullable=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True)

    starts_at = db.Column(db.DateTime, nullable=True)
    ends_at = db.Column(db.DateTime, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "type": self.type,
            "value": str(to_decimal(self.value)),
            "applies_to": self.applies_to,
            "category_id": self.category_id,
            "product_id": self.product_id,
            "starts_at": to_utc_z(self.starts_at),
            "ends_at": to_utc_z(self.ends_at),
            "is_active": self.is_active,
        }


class Customer(db.Model):
    """Customer with a loyalty points balance (1 point per whole currency unit spent)."""
    __tablename__ = "customers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=True)

    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(32), nullable=True)
    loyalty_points = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "store_id": self.store_id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "loyalty_points": self.loyalty_points,
        }
