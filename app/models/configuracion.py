"""Configuracion model (generic key/value settings)."""
from sqlalchemy import Column, String, Text, DateTime
from sqlalchemy.sql import func
from app.database import Base, BigIntPK


class Configuracion(Base):
    """
    Generic key/value configuration row.

    Holds process-wide settings that must survive restarts, such as the
    general material margin or the global module overrides of each offer
    template. Values are stored as text; typed parsing happens in services.
    """

    __tablename__ = 'configuracion'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    clave = Column(String(120), nullable=False, unique=True)
    valor = Column(Text, nullable=False)
    descripcion = Column(String(255), nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<Configuracion(clave='{self.clave}', valor='{self.valor}')>"
