import logging
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .errors import NotFound, ValidationFailed
from .models import OrderItem, Product
from .schemas import ProductCreate, ProductOut, ProductUpdate

logger = logging.getLogger(__name__)

SAMPLE_PRODUCTS = [
    {
        "name": "Glow Serum",
        "description": "Brightening vitamin C serum for radiant skin",
        "price": Decimal("2500.00"),
        "image_url": "https://images.pexels.com/photos/7755515/pexels-photo-7755515.jpeg",
        "category": "skincare",
        "stock_quantity": 50,
    },
    {
        "name": "Lip Balm Set",
        "description": "Moisturizing lip balm in 3 natural flavors",
        "price": Decimal("800.00"),
        "image_url": "https://images.pexels.com/photos/8129903/pexels-photo-8129903.jpeg",
        "category": "lip-care",
        "stock_quantity": 100,
    },
    {
        "name": "Face Mask",
        "description": "Hydrating clay mask for all skin types",
        "price": Decimal("1200.00"),
        "image_url": "https://images.pexels.com/photos/7755515/pexels-photo-7755515.jpeg",
        "category": "skincare",
        "stock_quantity": 30,
    },
]


def to_out(p: Product) -> ProductOut:
    return ProductOut(
        id=p.id,
        name=p.name,
        description=p.description or "",
        price=float(p.price),
        category=p.category,
        stock_quantity=p.stock_quantity,
        image_url=p.image_url,
        created_at=p.created_at,
    )


def seed_sample_products(db: Session) -> int:
    """Insert the sample catalog when the products table is empty."""
    if db.scalar(select(func.count(Product.id))):
        return 0
    db.add_all(Product(**row) for row in SAMPLE_PRODUCTS)
    db.commit()
    logger.info("Sample products inserted")
    return len(SAMPLE_PRODUCTS)


def list_products(db: Session, category: str | None = None) -> list[Product]:
    stmt = select(Product)
    if category:
        stmt = stmt.where(Product.category == category)
    return list(db.scalars(stmt.order_by(Product.created_at.desc(), Product.id.desc())))


def get_product(db: Session, product_id: int) -> Product:
    p = db.get(Product, product_id)
    if not p:
        raise NotFound("Product not found")
    return p


def create_product(db: Session, payload: ProductCreate) -> Product:
    p = Product(**payload.model_dump())
    db.add(p)
    db.commit()
    db.refresh(p)
    return p


def update_product(db: Session, product_id: int, payload: ProductUpdate) -> Product:
    p = get_product(db, product_id)
    for field, value in payload.model_dump(exclude_unset=True).items():
        if value is None and field != "image_url":
            continue
        setattr(p, field, value)
    db.commit()
    db.refresh(p)
    return p


def delete_product(db: Session, product_id: int) -> None:
    p = get_product(db, product_id)
    ordered = db.scalar(select(func.count(OrderItem.id)).where(OrderItem.product_id == product_id))
    if ordered:
        db.rollback()
        raise ValidationFailed(
            "Cannot delete product that has been ordered. Consider marking it as out of stock instead."
        )
    db.delete(p)
    db.commit()
