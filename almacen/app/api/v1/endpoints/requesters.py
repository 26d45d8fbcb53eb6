from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.orm import Session

from almacen.app.api.deps import get_db
from almacen.app.db.models.models_v1 import Requester

router = APIRouter(prefix="/requesters")


class RequesterCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)


@router.get("")
def list_requesters(db: Session = Depends(get_db)):
    rows = db.execute(select(Requester).order_by(Requester.name)).scalars().all()
    return [{"id": r.id, "name": r.name} for r in rows]


@router.post("")
def create_requester(payload: RequesterCreate, db: Session = Depends(get_db)):
    name = payload.name.strip()
    exists = db.execute(select(Requester).where(Requester.name == name)).scalar_one_or_none()
    if exists:
        raise HTTPException(status_code=409, detail="Requester already exists")

    r = Requester(name=name)
    db.add(r)
    db.commit()
    db.refresh(r)
    return {"id": r.id, "name": r.name}


@router.delete("/{requester_id}", status_code=204)
def delete_requester(requester_id: int, db: Session = Depends(get_db)):
    r = db.get(Requester, requester_id)
    if not r:
        raise HTTPException(status_code=404, detail="Requester not found")
    db.delete(r)
    db.commit()
