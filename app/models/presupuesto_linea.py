"""Line item models of a quote (engine lines and legacy collections)."""
import enum
from sqlalchemy import Column, BigInteger, String, Numeric, Integer, ForeignKey, Enum as SQLEnum
from sqlalchemy.orm import relationship
from app.database import Base, BigIntPK


class BloqueEconomico(enum.Enum):
    """
    Economic block of a line.

    The first five are the canonical blocks reported in the offer summary.
    DESPLAZAMIENTO (travel) is a pseudo-block: it is added to the taxable
    base but never appears among the canonical block totals.
    """
    A_SUMINISTRO_EQUIPOS = "A_SUMINISTRO_EQUIPOS"
    B_MATERIALES_INSTALACION = "B_MATERIALES_INSTALACION"
    C_MANO_OBRA = "C_MANO_OBRA"
    D_MANTENIMIENTO_1_3 = "D_MANTENIMIENTO_1_3"
    E_OPCIONALES_4_5 = "E_OPCIONALES_4_5"
    DESPLAZAMIENTO = "DESPLAZAMIENTO"

    @property
    def es_canonico(self):
        return self is not BloqueEconomico.DESPLAZAMIENTO

    @property
    def letra(self):
        """Short letter used in block summaries (None for DESPLAZAMIENTO)."""
        return self.value[0] if self.es_canonico else None


BLOQUES_CANONICOS = tuple(b for b in BloqueEconomico if b.es_canonico)


class PresupuestoLineaMotor(Base):
    """Line generated by the pricing engine, tagged with an economic block."""

    __tablename__ = 'presupuesto_linea_motor'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    presupuesto_id = Column(BigInteger, ForeignKey('presupuesto.id'), nullable=False, index=True)
    bloque = Column(SQLEnum(BloqueEconomico, name='bloque_economico'), nullable=False)
    codigo = Column(String(64), nullable=False)
    descripcion = Column(String(500), nullable=False)
    unidad = Column(String(20), nullable=False, default='UD')
    cantidad = Column(Numeric(12, 3), nullable=False)
    precio_unitario = Column(Numeric(14, 4), nullable=False)
    subtotal = Column(Numeric(14, 2), nullable=False)
    orden = Column(Integer, nullable=False, default=0)

    presupuesto = relationship('Presupuesto', back_populates='lineas_motor')

    def __repr__(self):
        return f"<PresupuestoLineaMotor(id={self.id}, bloque='{self.bloque}', subtotal={self.subtotal})>"

    def to_dict(self):
        return {
            'id': self.id,
            'bloque': self.bloque.value,
            'codigo': self.codigo,
            'descripcion': self.descripcion,
            'unidad': self.unidad,
            'cantidad': self.cantidad,
            'precio_unitario': self.precio_unitario,
            'subtotal': self.subtotal,
            'orden': self.orden,
        }


class PresupuestoLineaTrabajo(Base):
    """Legacy trade-work line (billed under C_MANO_OBRA)."""

    __tablename__ = 'presupuesto_linea_trabajo'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    presupuesto_id = Column(BigInteger, ForeignKey('presupuesto.id'), nullable=False, index=True)
    trabajo_id = Column(BigInteger, nullable=True)  # catálogo de trabajos (externo)
    descripcion_cliente = Column(String(500), nullable=True)
    cantidad = Column(Numeric(12, 3), nullable=False)
    precio_unitario_cliente = Column(Numeric(14, 4), nullable=False)
    total_cliente = Column(Numeric(14, 2), nullable=False)
    coste_unitario_interno = Column(Numeric(14, 4), nullable=False, default=0)
    total_interno = Column(Numeric(14, 2), nullable=False, default=0)
    margen = Column(Numeric(14, 2), nullable=False, default=0)
    orden = Column(Integer, nullable=False, default=0)

    presupuesto = relationship('Presupuesto', back_populates='lineas_trabajo')

    def to_dict(self):
        return {
            'id': self.id,
            'trabajo_id': self.trabajo_id,
            'descripcion_cliente': self.descripcion_cliente,
            'cantidad': self.cantidad,
            'precio_unitario_cliente': self.precio_unitario_cliente,
            'total_cliente': self.total_cliente,
            'orden': self.orden,
        }


class PresupuestoLineaMaterial(Base):
    """Legacy material line (billed under B_MATERIALES_INSTALACION)."""

    __tablename__ = 'presupuesto_linea_material'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    presupuesto_id = Column(BigInteger, ForeignKey('presupuesto.id'), nullable=False, index=True)
    material_id = Column(BigInteger, ForeignKey('material.id'), nullable=True)
    descripcion_cliente = Column(String(500), nullable=True)
    cantidad = Column(Numeric(12, 3), nullable=False)
    precio_unitario_cliente = Column(Numeric(14, 4), nullable=False)
    total_cliente = Column(Numeric(14, 2), nullable=False)
    coste_unitario_interno = Column(Numeric(14, 4), nullable=False, default=0)
    total_interno = Column(Numeric(14, 2), nullable=False, default=0)
    margen = Column(Numeric(14, 2), nullable=False, default=0)
    orden = Column(Integer, nullable=False, default=0)

    presupuesto = relationship('Presupuesto', back_populates='lineas_material')
    material = relationship('Material', foreign_keys=[material_id])

    def to_dict(self):
        return {
            'id': self.id,
            'material_id': self.material_id,
            'descripcion_cliente': self.descripcion_cliente,
            'cantidad': self.cantidad,
            'precio_unitario_cliente': self.precio_unitario_cliente,
            'total_cliente': self.total_cliente,
            'orden': self.orden,
        }


class PresupuestoLineaDesplazamiento(Base):
    """Displacement/travel line."""

    __tablename__ = 'presupuesto_linea_desplazamiento'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    presupuesto_id = Column(BigInteger, ForeignKey('presupuesto.id'), nullable=False, index=True)
    descripcion = Column(String(500), nullable=True)
    precio_cliente = Column(Numeric(14, 2), nullable=False)
    coste_interno = Column(Numeric(14, 2), nullable=False, default=0)
    margen = Column(Numeric(14, 2), nullable=False, default=0)
    orden = Column(Integer, nullable=False, default=0)

    presupuesto = relationship('Presupuesto', back_populates='lineas_desplazamiento')

    def to_dict(self):
        return {
            'id': self.id,
            'descripcion': self.descripcion,
            'precio_cliente': self.precio_cliente,
            'orden': self.orden,
        }
