from __future__ import annotations

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.orm import Session

from almacen.app.api.deps import get_dashboards, get_db, get_gateway
from almacen.app.db.models.models_v1 import Category, Material
from almacen.services.catalog_import import import_materials, read_table
from almacen.services.dashboard import DashboardRegistry
from almacen.services.gateway import SqlWarehouseGateway

router = APIRouter(prefix="/materials")


class MaterialCreate(BaseModel):
    description: str = Field(min_length=1, max_length=255)
    category_id: int | None = None
    unit: str = Field(default="UND", min_length=1, max_length=32)
    max_stock: float | None = Field(default=None, ge=0)


class MaterialUpdate(BaseModel):
    description: str | None = Field(default=None, min_length=1, max_length=255)
    category_id: int | None = None
    unit: str | None = Field(default=None, min_length=1, max_length=32)
    max_stock: float | None = Field(default=None, ge=0)


def _serialize(m: Material) -> dict:
    return {
        "id": m.id,
        "category_id": m.category_id,
        "category": m.category.name if m.category else None,
        "description": m.description,
        "unit": m.unit,
        "max_stock": float(m.max_stock) if m.max_stock is not None else None,
    }


def _check_category(db: Session, category_id: int | None) -> None:
    if category_id is not None and not db.get(Category, category_id):
        raise HTTPException(status_code=404, detail="Category not found")


def _catalog_changed(gateway: SqlWarehouseGateway, dashboards: DashboardRegistry) -> None:
    gateway.catalog.invalidate()
    # noms et stocks max sont figés dans les jeux déjà chargés
    dashboards.invalidate()


@router.get("")
def list_materials(db: Session = Depends(get_db)):
    rows = (
        db.execute(
            select(Material)
            .outerjoin(Category, Category.id == Material.category_id)
            .order_by(Category.name, Material.description)
        )
        .scalars()
        .all()
    )
    return [_serialize(m) for m in rows]


@router.post("")
def create_material(
    payload: MaterialCreate,
    db: Session = Depends(get_db),
    gateway: SqlWarehouseGateway = Depends(get_gateway),
    dashboards: DashboardRegistry = Depends(get_dashboards),
):
    _check_category(db, payload.category_id)
    description = payload.description.strip().upper()
    exists = db.execute(
        select(Material)
        .where(Material.category_id == payload.category_id)
        .where(Material.description == description)
    ).scalar_one_or_none()
    if exists:
        raise HTTPException(status_code=409, detail="Material already exists in this category")

    m = Material(
        description=description,
        category_id=payload.category_id,
        unit=payload.unit.upper(),
        max_stock=payload.max_stock,
    )
    db.add(m)
    db.commit()
    db.refresh(m)
    _catalog_changed(gateway, dashboards)
    return _serialize(m)


@router.put("/{material_id}")
def update_material(
    material_id: int,
    payload: MaterialUpdate,
    db: Session = Depends(get_db),
    gateway: SqlWarehouseGateway = Depends(get_gateway),
    dashboards: DashboardRegistry = Depends(get_dashboards),
):
    m = db.get(Material, material_id)
    if not m:
        raise HTTPException(status_code=404, detail="Material not found")

    updates = payload.model_dump(exclude_unset=True)
    if "category_id" in updates:
        _check_category(db, updates["category_id"])
        m.category_id = updates["category_id"]
    if updates.get("description"):
        m.description = updates["description"].strip().upper()
    if updates.get("unit"):
        m.unit = updates["unit"].upper()
    if "max_stock" in updates:
        m.max_stock = updates["max_stock"]

    db.commit()
    db.refresh(m)
    _catalog_changed(gateway, dashboards)
    return _serialize(m)


@router.delete("/{material_id}", status_code=204)
def delete_material(
    material_id: int,
    db: Session = Depends(get_db),
    gateway: SqlWarehouseGateway = Depends(get_gateway),
    dashboards: DashboardRegistry = Depends(get_dashboards),
):
    m = db.get(Material, material_id)
    if not m:
        raise HTTPException(status_code=404, detail="Material not found")
    db.delete(m)
    db.commit()
    _catalog_changed(gateway, dashboards)


@router.post("/import")
def import_materials_file(
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    gateway: SqlWarehouseGateway = Depends(get_gateway),
    dashboards: DashboardRegistry = Depends(get_dashboards),
):
    """
    Import Excel/CSV (première feuille).
    Réponse : créés, doublons ignorés, lignes non reconnues (avec raison).
    """
    try:
        rows = read_table(file.file, file.filename or "")
        report = import_materials(db, rows)
    except ValueError as exc:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(exc))

    db.commit()
    _catalog_changed(gateway, dashboards)
    return report
