"""Typed access to the generic key/value configuration store."""
from typing import Optional

from sqlalchemy.orm import Session

from app.models import Configuracion


def get_valor(session: Session, clave: str) -> Optional[str]:
    """Return the raw stored value for a key, or None when absent."""
    config = session.query(Configuracion).filter(Configuracion.clave == clave).first()
    return config.valor if config else None


def upsert_valor(session: Session, clave: str, valor: str, descripcion: Optional[str] = None) -> Configuracion:
    """
    Insert or update a configuration row.

    Only flushes; the caller owns the transaction.
    """
    config = session.query(Configuracion).filter(Configuracion.clave == clave).first()
    if config:
        config.valor = valor
        if descripcion is not None:
            config.descripcion = descripcion
    else:
        config = Configuracion(clave=clave, valor=valor, descripcion=descripcion)
        session.add(config)
    session.flush()
    return config
