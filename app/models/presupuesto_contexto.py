"""PresupuestoContexto model (technical context of a quote)."""
from sqlalchemy import Column, BigInteger, String, Integer, Text, DateTime, ForeignKey, JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.database import Base, BigIntPK

# Reserved key of `extras_json` holding the quote-level module overrides
EXTRAS_KEY_MODULOS = 'ofertaModulos'


class PresupuestoContexto(Base):
    """
    Technical context of a quote: fleet size, vehicle type and selected
    solution. `extras_json` is an open bag; only `ofertaModulos` has a known
    shape, every other key is preserved verbatim on writes.
    """

    __tablename__ = 'presupuesto_contexto'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    presupuesto_id = Column(BigInteger, ForeignKey('presupuesto.id'), nullable=False, unique=True)
    num_vehiculos = Column(Integer, nullable=False, default=1)
    tipologia_vehiculo = Column(String(120), nullable=True)
    objetivo_proyecto = Column(Text, nullable=True)
    solucion_codigo = Column(String(64), nullable=True)
    extras_json = Column(JSON().with_variant(JSONB(), 'postgresql'), nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    presupuesto = relationship('Presupuesto', back_populates='contexto')

    def __repr__(self):
        return f"<PresupuestoContexto(presupuesto_id={self.presupuesto_id}, num_vehiculos={self.num_vehiculos})>"

    def to_dict(self):
        return {
            'num_vehiculos': self.num_vehiculos,
            'tipologia_vehiculo': self.tipologia_vehiculo,
            'objetivo_proyecto': self.objetivo_proyecto,
            'solucion_codigo': self.solucion_codigo,
            'extras': self.extras_json or {},
        }
