"""Material model (catalog of installation materials)."""
from sqlalchemy import Column, String, Boolean, Numeric, DateTime, Text, Integer
from sqlalchemy.sql import func
from app.database import Base, BigIntPK


class Material(Base):
    """
    Catalog material.

    `precio_venta` is derived from `coste_medio` and the effective margin
    (individual → category → general). It is only written by the margin
    recalculation; `coste_medio` and `precio_estandar` are never touched by it.
    Materials are never deleted, only deactivated.
    """

    __tablename__ = 'material'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    sku = Column(String(64), nullable=False, unique=True)
    descripcion = Column(String(255), nullable=False)
    categoria = Column(String(120), nullable=True, index=True)
    unidad = Column(String(20), nullable=False, default='UNIDAD')
    proveedor_habitual = Column(String(255), nullable=True)
    codigo_proveedor = Column(String(120), nullable=True)
    coste_medio = Column(Numeric(14, 4), nullable=False, default=0)
    precio_estandar = Column(Numeric(14, 4), nullable=False, default=0)  # Precio de lista
    precio_venta = Column(Numeric(14, 4), nullable=False, default=0)
    margen_personalizado = Column(Numeric(6, 2), nullable=True)
    stock_minimo = Column(Integer, nullable=True)
    notas = Column(Text, nullable=True)
    referencia_externa = Column(String(120), nullable=True, unique=True)  # id en el inventario externo
    origen_externo = Column(Boolean, nullable=False, default=False)
    activo = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<Material(id={self.id}, sku='{self.sku}', precio_venta={self.precio_venta})>"

    def to_dict(self):
        """Convert to dictionary for JSON serialization."""
        return {
            'id': self.id,
            'sku': self.sku,
            'descripcion': self.descripcion,
            'categoria': self.categoria,
            'unidad': self.unidad,
            'proveedor_habitual': self.proveedor_habitual,
            'codigo_proveedor': self.codigo_proveedor,
            'coste_medio': self.coste_medio,
            'precio_estandar': self.precio_estandar,
            'precio_venta': self.precio_venta,
            'margen_personalizado': self.margen_personalizado,
            'stock_minimo': self.stock_minimo,
            'origen_externo': self.origen_externo,
            'activo': self.activo,
        }
