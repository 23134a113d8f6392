"""PresupuestoTexto model (commercial texts attached to a quote)."""
from sqlalchemy import Column, BigInteger, String, Text, Integer, ForeignKey
from sqlalchemy.orm import relationship
from app.database import Base, BigIntPK


class PresupuestoTexto(Base):
    """Free commercial text rendered under "Textos adicionales"."""

    __tablename__ = 'presupuesto_texto'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    presupuesto_id = Column(BigInteger, ForeignKey('presupuesto.id'), nullable=False, index=True)
    titulo = Column(String(255), nullable=False)
    contenido = Column(Text, nullable=False)
    orden = Column(Integer, nullable=False, default=0)

    presupuesto = relationship('Presupuesto', back_populates='textos')

    def to_dict(self):
        return {'id': self.id, 'titulo': self.titulo, 'contenido': self.contenido, 'orden': self.orden}
