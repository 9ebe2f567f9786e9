from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from .. import catalog
from ..deps import get_db
from ..schemas import ProductCreate, ProductOut, ProductUpdate
from ..security import require_admin

router = APIRouter(tags=["products"])


@router.get("/products", response_model=list[ProductOut])
def list_products(category: str | None = None, db: Session = Depends(get_db)):
    return [catalog.to_out(p) for p in catalog.list_products(db, category)]


@router.get("/products/{product_id}", response_model=ProductOut)
def get_product(product_id: int, db: Session = Depends(get_db)):
    return catalog.to_out(catalog.get_product(db, product_id))


# Admin endpoints
@router.post("/admin/products", response_model=ProductOut, status_code=201)
def admin_create(payload: ProductCreate, claims: dict = Depends(require_admin), db: Session = Depends(get_db)):
    return catalog.to_out(catalog.create_product(db, payload))


@router.patch("/admin/products/{product_id}", response_model=ProductOut)
def admin_update(
    product_id: int,
    payload: ProductUpdate,
    claims: dict = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return catalog.to_out(catalog.update_product(db, product_id, payload))


@router.delete("/admin/products/{product_id}")
def admin_delete(product_id: int, claims: dict = Depends(require_admin), db: Session = Depends(get_db)):
    catalog.delete_product(db, product_id)
    return {"ok": True}
