"""Presupuesto model (commercial quote) and its lifecycle states."""
import enum
from sqlalchemy import Column, String, Numeric, DateTime, Integer, Text, Enum as SQLEnum
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.database import Base, BigIntPK


class EstadoPresupuesto(enum.Enum):
    """Commercial lifecycle state of a quote."""
    BORRADOR = "BORRADOR"
    ENVIADO = "ENVIADO"
    NEGOCIACION = "NEGOCIACION"
    ACEPTADO = "ACEPTADO"
    RECHAZADO = "RECHAZADO"
    EXPIRADO = "EXPIRADO"


ESTADOS_TERMINALES = frozenset({
    EstadoPresupuesto.ACEPTADO,
    EstadoPresupuesto.RECHAZADO,
    EstadoPresupuesto.EXPIRADO,
})

ESTADOS_COMERCIALES_ACTIVOS = frozenset({
    EstadoPresupuesto.BORRADOR,
    EstadoPresupuesto.ENVIADO,
    EstadoPresupuesto.NEGOCIACION,
})


def _money():
    return Column(Numeric(14, 2), nullable=False, default=0)


class Presupuesto(Base):
    """
    Presupuesto (commercial quote).

    Totals stored here are a cache of what the lines produce. The legacy
    aggregates (`total_trabajos`, `total_cliente`, ...) are refreshed by
    `presupuesto_service.recalcular_totales`. The block and tax figures
    (`total_bloque_*`, `base_imponible`, `iva_importe`, ...) act as manual
    overrides: when positive they win over the figures derived from lines.
    """

    __tablename__ = 'presupuesto'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    codigo = Column(String(32), nullable=False, unique=True)
    estado = Column(SQLEnum(EstadoPresupuesto, name='estado_presupuesto'), nullable=False,
                    default=EstadoPresupuesto.BORRADOR, index=True)
    fecha = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    validez_dias = Column(Integer, nullable=False, default=30)
    fecha_envio = Column(DateTime(timezone=True), nullable=True)
    fecha_respuesta = Column(DateTime(timezone=True), nullable=True)

    cliente_nombre = Column(String(255), nullable=True)
    proyecto_nombre = Column(String(255), nullable=True)
    observaciones_cliente = Column(Text, nullable=True)
    observaciones_internas = Column(Text, nullable=True)
    template_code = Column(String(64), nullable=True)
    descuento_porcentaje = Column(Numeric(5, 2), nullable=False, default=0)

    # Legacy aggregates
    total_trabajos = _money()
    total_materiales = _money()
    total_desplazamientos = _money()
    total_cliente = _money()
    coste_trabajos = _money()
    coste_materiales = _money()
    coste_desplazamientos = _money()
    coste_total = _money()
    margen_bruto = _money()
    margen_porcentaje = Column(Numeric(7, 2), nullable=False, default=0)

    # Stored figures (positive value overrides the derived one)
    base_imponible = _money()
    iva_porcentaje = Column(Numeric(5, 2), nullable=True)
    iva_importe = _money()
    total_con_iva = _money()
    precio_unitario_vehiculo = _money()
    total_bloque_a = _money()
    total_bloque_b = _money()
    total_bloque_c = _money()
    total_bloque_d = _money()
    total_bloque_e = _money()

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationships
    contexto = relationship('PresupuestoContexto', uselist=False, back_populates='presupuesto',
                            cascade='all, delete-orphan')
    lineas_motor = relationship('PresupuestoLineaMotor', back_populates='presupuesto',
                                cascade='all, delete-orphan', order_by='PresupuestoLineaMotor.orden')
    lineas_trabajo = relationship('PresupuestoLineaTrabajo', back_populates='presupuesto',
                                  cascade='all, delete-orphan', order_by='PresupuestoLineaTrabajo.orden')
    lineas_material = relationship('PresupuestoLineaMaterial', back_populates='presupuesto',
                                   cascade='all, delete-orphan', order_by='PresupuestoLineaMaterial.orden')
    lineas_desplazamiento = relationship('PresupuestoLineaDesplazamiento', back_populates='presupuesto',
                                         cascade='all, delete-orphan',
                                         order_by='PresupuestoLineaDesplazamiento.orden')
    textos = relationship('PresupuestoTexto', back_populates='presupuesto',
                          cascade='all, delete-orphan', order_by='PresupuestoTexto.orden')
    snapshot = relationship('OfertaSnapshot', uselist=False, back_populates='presupuesto',
                            cascade='all, delete-orphan')

    def __repr__(self):
        return f"<Presupuesto(id={self.id}, codigo='{self.codigo}', estado='{self.estado}')>"

    @property
    def is_terminal(self):
        """Accepted, rejected and expired quotes are locked."""
        return self.estado in ESTADOS_TERMINALES

    @property
    def is_editable(self):
        return not self.is_terminal

    def to_dict(self):
        """Convert to dictionary for JSON serialization (header + cached totals)."""
        return {
            'id': self.id,
            'codigo': self.codigo,
            'estado': self.estado.value if self.estado else None,
            'fecha': self.fecha.isoformat() if self.fecha else None,
            'validez_dias': self.validez_dias,
            'fecha_envio': self.fecha_envio.isoformat() if self.fecha_envio else None,
            'fecha_respuesta': self.fecha_respuesta.isoformat() if self.fecha_respuesta else None,
            'cliente_nombre': self.cliente_nombre,
            'proyecto_nombre': self.proyecto_nombre,
            'observaciones_cliente': self.observaciones_cliente,
            'template_code': self.template_code,
            'descuento_porcentaje': self.descuento_porcentaje,
            'total_trabajos': self.total_trabajos,
            'total_materiales': self.total_materiales,
            'total_desplazamientos': self.total_desplazamientos,
            'total_cliente': self.total_cliente,
            'coste_total': self.coste_total,
            'margen_bruto': self.margen_bruto,
            'margen_porcentaje': self.margen_porcentaje,
            'editable': self.is_editable,
            'snapshot': self.snapshot.to_dict() if self.snapshot else None,
        }
