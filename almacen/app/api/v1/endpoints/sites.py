from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.orm import Session

from almacen.app.api.deps import get_db
from almacen.app.db.models.models_v1 import Site

router = APIRouter(prefix="/sites")


class SiteCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    active: bool = True


@router.get("")
def list_sites(db: Session = Depends(get_db)):
    rows = db.execute(select(Site).order_by(Site.name)).scalars().all()
    return [{"id": s.id, "name": s.name, "active": s.active} for s in rows]


@router.post("")
def create_site(payload: SiteCreate, db: Session = Depends(get_db)):
    exists = db.execute(select(Site).where(Site.name == payload.name)).scalar_one_or_none()
    if exists:
        raise HTTPException(status_code=409, detail="Site already exists")

    s = Site(name=payload.name, active=payload.active)
    db.add(s)
    db.commit()
    db.refresh(s)
    return {"id": s.id, "name": s.name}
