from __future__ import annotations

from sqlalchemy import select

from almacen.app.core.logging import configure_logging, get_logger
from almacen.app.db.session import SessionLocal
from almacen.app.db.models.models_v1 import Category, Site

logger = get_logger("db.seed")

DEFAULT_SITE = "OBRA PRINCIPAL"
DEFAULT_CATEGORIES = ("AGREGADOS", "ACERO", "CEMENTO", "ELECTRICOS", "SANITARIOS", "EPP")


def run_seed():
    db = SessionLocal()
    try:
        # 1) Obra par défaut
        site = db.scalar(select(Site).where(Site.name == DEFAULT_SITE))
        if not site:
            site = Site(name=DEFAULT_SITE, active=True)
            db.add(site)
            db.commit()

        # 2) Catégories de base (idempotent)
        existing = set(db.scalars(select(Category.name)))
        for name in DEFAULT_CATEGORIES:
            if name not in existing:
                db.add(Category(name=name))
        db.commit()

        logger.info("SEED OK: site=%s, %d categories", DEFAULT_SITE, len(DEFAULT_CATEGORIES))
    finally:
        db.close()


if __name__ == "__main__":
    configure_logging()
    run_seed()
