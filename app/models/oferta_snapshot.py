"""OfertaSnapshot model (last issued offer of a quote)."""
from sqlalchemy import Column, BigInteger, String, Integer, DateTime, ForeignKey, JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
from app.database import Base, BigIntPK


class OfertaSnapshot(Base):
    """Snapshot of the last issued offer: version, issue date and content hash."""

    __tablename__ = 'oferta_snapshot'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    presupuesto_id = Column(BigInteger, ForeignKey('presupuesto.id'), nullable=False, unique=True)
    codigo_oferta = Column(String(64), nullable=False)
    version_oferta = Column(Integer, nullable=False, default=1)
    fecha_emision = Column(DateTime(timezone=True), nullable=False)
    template_code = Column(String(64), nullable=False)
    content_hash = Column(String(64), nullable=False)
    payload_json = Column(JSON().with_variant(JSONB(), 'postgresql'), nullable=False)

    presupuesto = relationship('Presupuesto', back_populates='snapshot')

    def __repr__(self):
        return f"<OfertaSnapshot(codigo='{self.codigo_oferta}', version={self.version_oferta})>"

    def to_dict(self):
        return {
            'codigo_oferta': self.codigo_oferta,
            'version_oferta': self.version_oferta,
            'fecha_emision': self.fecha_emision.isoformat() if self.fecha_emision else None,
            'template_code': self.template_code,
            'content_hash': self.content_hash,
        }
