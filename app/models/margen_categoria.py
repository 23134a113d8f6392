"""MargenCategoria model."""
from sqlalchemy import Column, String, Numeric, DateTime
from sqlalchemy.sql import func
from app.database import Base, BigIntPK


class MargenCategoria(Base):
    """Margin percentage applied to every material of a catalog category."""

    __tablename__ = 'margen_categoria'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    categoria = Column(String(120), nullable=False, unique=True)
    margen = Column(Numeric(6, 2), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<MargenCategoria(categoria='{self.categoria}', margen={self.margen})>"

    def to_dict(self):
        return {'id': self.id, 'categoria': self.categoria, 'margen': self.margen}
