from __future__ import annotations

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.orm import Session

from almacen.app.api.deps import get_db
from almacen.app.db.models.models_v1 import Category
from almacen.services.catalog_import import import_categories, read_table

router = APIRouter(prefix="/categories")


class CategoryCreate(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    description: str | None = None


@router.get("")
def list_categories(db: Session = Depends(get_db)):
    rows = db.execute(select(Category).order_by(Category.name)).scalars().all()
    return [{"id": c.id, "name": c.name, "description": c.description} for c in rows]


@router.post("")
def create_category(payload: CategoryCreate, db: Session = Depends(get_db)):
    name = payload.name.strip().upper()
    exists = db.execute(select(Category).where(Category.name == name)).scalar_one_or_none()
    if exists:
        raise HTTPException(status_code=409, detail="Category already exists")

    c = Category(name=name, description=payload.description)
    db.add(c)
    db.commit()
    db.refresh(c)
    return {"id": c.id, "name": c.name}


@router.delete("/{category_id}", status_code=204)
def delete_category(category_id: int, db: Session = Depends(get_db)):
    c = db.get(Category, category_id)
    if not c:
        raise HTTPException(status_code=404, detail="Category not found")
    db.delete(c)
    db.commit()


@router.post("/import")
def import_categories_file(file: UploadFile = File(...), db: Session = Depends(get_db)):
    try:
        rows = read_table(file.file, file.filename or "")
        report = import_categories(db, rows)
    except ValueError as exc:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(exc))

    db.commit()
    return report
