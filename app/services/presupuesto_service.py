"""
Quote service: creation, header updates, line items, context, texts and the
legacy cached totals.

Every mutation is refused on terminal quotes (StateConflictError) and ends
with `recalcular_totales` when lines change, so the stored aggregates never
drift from the lines.
"""
import logging
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Any, Optional

from flask import current_app, has_app_context
from sqlalchemy import func
from sqlalchemy.orm import Session

from app.models import (
    Presupuesto, PresupuestoContexto, PresupuestoTexto, BloqueEconomico, Material, EXTRAS_KEY_MODULOS,
    PresupuestoLineaMotor, PresupuestoLineaTrabajo, PresupuestoLineaMaterial, PresupuestoLineaDesplazamiento,
)
from app.exceptions import ValidationError, NotFoundError
from app.services.presupuesto_estado_service import asegurar_editable, parse_estado
from app.utils.number_format import parse_non_negative, to_decimal

logger = logging.getLogger(__name__)

CENT = Decimal('0.01')

# Header fields a client may set through create/update
CAMPOS_EDITABLES = (
    'cliente_nombre', 'proyecto_nombre', 'observaciones_cliente', 'observaciones_internas',
    'template_code', 'validez_dias', 'descuento_porcentaje',
    'base_imponible', 'iva_porcentaje', 'iva_importe', 'total_con_iva', 'precio_unitario_vehiculo',
    'total_bloque_a', 'total_bloque_b', 'total_bloque_c', 'total_bloque_d', 'total_bloque_e',
)

CAMPOS_IMPORTE = (
    'base_imponible', 'iva_importe', 'total_con_iva', 'precio_unitario_vehiculo',
    'total_bloque_a', 'total_bloque_b', 'total_bloque_c', 'total_bloque_d', 'total_bloque_e',
)


def _money(value) -> Decimal:
    return Decimal(str(value or 0)).quantize(CENT, rounding=ROUND_HALF_UP)


def _validez_default() -> int:
    if has_app_context():
        return int(current_app.config.get('PRESUPUESTO_VALIDEZ_DIAS', 30))
    return 30


def get_presupuesto(session: Session, presupuesto_id: int) -> Presupuesto:
    presupuesto = session.query(Presupuesto).filter(Presupuesto.id == presupuesto_id).first()
    if not presupuesto:
        raise NotFoundError('Presupuesto no encontrado')
    return presupuesto


def list_presupuestos(session: Session, estado=None, q: Optional[str] = None):
    query = session.query(Presupuesto)
    if estado:
        query = query.filter(Presupuesto.estado == parse_estado(estado))
    if q:
        like = f'%{q.strip()}%'
        query = query.filter(
            (Presupuesto.codigo.ilike(like)) |
            (Presupuesto.cliente_nombre.ilike(like)) |
            (Presupuesto.proyecto_nombre.ilike(like))
        )
    return query.order_by(Presupuesto.created_at.desc(), Presupuesto.id.desc()).all()


def generar_codigo(session: Session, year: Optional[int] = None) -> str:
    """Next business code PRE-YYYY-NNNN for the given year."""
    year = year or datetime.now(timezone.utc).year
    prefix = f'PRE-{year}-'
    ultimo = session.query(func.max(Presupuesto.codigo)).filter(Presupuesto.codigo.like(f'{prefix}%')).scalar()
    siguiente = int(ultimo[len(prefix):]) + 1 if ultimo else 1
    return f'{prefix}{siguiente:04d}'


# ============================================================================
# CABECERA
# ============================================================================

def _apply_header(presupuesto: Presupuesto, data: Dict[str, Any]) -> None:
    for field in CAMPOS_EDITABLES:
        if field not in data:
            continue
        value = data[field]

        if field == 'validez_dias':
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                raise ValidationError('validez_dias debe ser un entero positivo')
        elif field == 'descuento_porcentaje':
            value = parse_non_negative(value, field)
            if value > 100:
                raise ValidationError('descuento_porcentaje debe estar entre 0 y 100')
        elif field == 'iva_porcentaje':
            value = parse_non_negative(value, field) if value is not None else None
        elif field in CAMPOS_IMPORTE:
            value = parse_non_negative(value if value is not None else 0, field)
        elif value is not None:
            value = str(value).strip() or None

        setattr(presupuesto, field, value)


def create_presupuesto(session: Session, data: Dict[str, Any]) -> Presupuesto:
    """Create a draft quote with a generated code."""
    try:
        presupuesto = Presupuesto(
            codigo=generar_codigo(session),
            validez_dias=_validez_default(),
            fecha=datetime.now(timezone.utc),
        )
        _apply_header(presupuesto, data or {})
        session.add(presupuesto)
        session.commit()
    except Exception:
        session.rollback()
        raise

    logger.info(f"[PRESUPUESTO] Creado {presupuesto.codigo}")
    return presupuesto


def update_presupuesto(session: Session, presupuesto_id: int, data: Dict[str, Any]) -> Presupuesto:
    """Update header fields; last write wins."""
    presupuesto = get_presupuesto(session, presupuesto_id)
    asegurar_editable(presupuesto)
    try:
        _apply_header(presupuesto, data or {})
        session.flush()
        _recalcular(presupuesto)
        session.commit()
    except Exception:
        session.rollback()
        raise
    return presupuesto


def delete_presupuesto(session: Session, presupuesto_id: int) -> None:
    presupuesto = get_presupuesto(session, presupuesto_id)
    asegurar_editable(presupuesto)
    try:
        session.delete(presupuesto)
        session.commit()
    except Exception:
        session.rollback()
        raise


# ============================================================================
# TOTALES (caché de las líneas)
# ============================================================================

def _recalcular(presupuesto: Presupuesto) -> None:
    total_trabajos = sum((_money(l.total_cliente) for l in presupuesto.lineas_trabajo), Decimal('0'))
    total_materiales = sum((_money(l.total_cliente) for l in presupuesto.lineas_material), Decimal('0'))
    total_desplazamientos = sum((_money(l.precio_cliente) for l in presupuesto.lineas_desplazamiento), Decimal('0'))
    coste_trabajos = sum((_money(l.total_interno) for l in presupuesto.lineas_trabajo), Decimal('0'))
    coste_materiales = sum((_money(l.total_interno) for l in presupuesto.lineas_material), Decimal('0'))
    coste_desplazamientos = sum((_money(l.coste_interno) for l in presupuesto.lineas_desplazamiento), Decimal('0'))

    if presupuesto.lineas_motor:
        # Engine lines replace the legacy collections; optional years (E) stay out of the total
        subtotal_cliente = sum(
            (_money(l.subtotal) for l in presupuesto.lineas_motor if l.bloque != BloqueEconomico.E_OPCIONALES_4_5),
            Decimal('0'),
        )
    else:
        subtotal_cliente = total_trabajos + total_materiales + total_desplazamientos

    descuento = _money(subtotal_cliente * _money(presupuesto.descuento_porcentaje) / Decimal('100'))
    total_cliente = subtotal_cliente - descuento
    coste_total = coste_trabajos + coste_materiales + coste_desplazamientos
    margen_bruto = total_cliente - coste_total
    margen_porcentaje = (margen_bruto / total_cliente * 100) if total_cliente > 0 else Decimal('0')

    presupuesto.total_trabajos = total_trabajos
    presupuesto.total_materiales = total_materiales
    presupuesto.total_desplazamientos = total_desplazamientos
    presupuesto.coste_trabajos = coste_trabajos
    presupuesto.coste_materiales = coste_materiales
    presupuesto.coste_desplazamientos = coste_desplazamientos
    presupuesto.total_cliente = total_cliente
    presupuesto.coste_total = coste_total
    presupuesto.margen_bruto = margen_bruto
    presupuesto.margen_porcentaje = _money(margen_porcentaje)


def recalcular_totales(session: Session, presupuesto_id: int) -> Presupuesto:
    """Refresh the cached aggregates from the current lines."""
    presupuesto = get_presupuesto(session, presupuesto_id)
    try:
        _recalcular(presupuesto)
        session.commit()
    except Exception:
        session.rollback()
        raise
    return presupuesto


# ============================================================================
# LÍNEAS
# ============================================================================

def _editable(session: Session, presupuesto_id: int) -> Presupuesto:
    presupuesto = get_presupuesto(session, presupuesto_id)
    asegurar_editable(presupuesto)
    return presupuesto


def _linea(session: Session, model, presupuesto_id: int, linea_id: int):
    linea = session.query(model).filter(model.id == linea_id, model.presupuesto_id == presupuesto_id).first()
    if not linea:
        raise NotFoundError('Línea no encontrada')
    return linea


def _siguiente_orden(lineas) -> int:
    return max((l.orden for l in lineas), default=-1) + 1


def _commit_lineas(session: Session, presupuesto: Presupuesto) -> None:
    try:
        session.flush()
        session.expire(presupuesto)
        _recalcular(presupuesto)
        session.commit()
    except Exception:
        session.rollback()
        raise


def _parse_bloque(value) -> BloqueEconomico:
    try:
        return BloqueEconomico(value)
    except ValueError:
        raise ValidationError(
            f'Bloque inválido: {value}',
            payload={'bloques_validos': [b.value for b in BloqueEconomico]},
        )


def _set_linea_cliente(linea, data: Dict[str, Any]) -> None:
    """Common fields of trabajo/material lines: client and internal totals."""
    if 'cantidad' in data:
        linea.cantidad = parse_non_negative(data['cantidad'], 'cantidad')
    if 'precio_unitario_cliente' in data:
        linea.precio_unitario_cliente = parse_non_negative(data['precio_unitario_cliente'], 'precio_unitario_cliente')
    if 'coste_unitario_interno' in data:
        linea.coste_unitario_interno = parse_non_negative(data['coste_unitario_interno'], 'coste_unitario_interno')
    if 'descripcion_cliente' in data:
        linea.descripcion_cliente = data['descripcion_cliente']
    if 'orden' in data:
        linea.orden = int(data['orden'])

    if linea.cantidad is None or linea.precio_unitario_cliente is None:
        raise ValidationError('cantidad y precio_unitario_cliente son obligatorios')

    cantidad = Decimal(str(linea.cantidad))
    linea.total_cliente = _money(cantidad * Decimal(str(linea.precio_unitario_cliente)))
    linea.total_interno = _money(cantidad * Decimal(str(linea.coste_unitario_interno or 0)))
    linea.margen = linea.total_cliente - linea.total_interno


def add_linea_motor(session: Session, presupuesto_id: int, data: Dict[str, Any]) -> PresupuestoLineaMotor:
    presupuesto = _editable(session, presupuesto_id)
    for field in ('bloque', 'codigo', 'descripcion', 'cantidad', 'precio_unitario'):
        if data.get(field) in (None, ''):
            raise ValidationError(f'{field} es obligatorio')

    cantidad = parse_non_negative(data['cantidad'], 'cantidad')
    precio = parse_non_negative(data['precio_unitario'], 'precio_unitario')
    linea = PresupuestoLineaMotor(
        presupuesto_id=presupuesto.id,
        bloque=_parse_bloque(data['bloque']),
        codigo=str(data['codigo']),
        descripcion=str(data['descripcion']),
        unidad=data.get('unidad') or 'UD',
        cantidad=cantidad,
        precio_unitario=precio,
        subtotal=_money(cantidad * precio),
        orden=int(data.get('orden', _siguiente_orden(presupuesto.lineas_motor))),
    )
    session.add(linea)
    _commit_lineas(session, presupuesto)
    return linea


def update_linea_motor(session: Session, presupuesto_id: int, linea_id: int, data: Dict[str, Any]):
    presupuesto = _editable(session, presupuesto_id)
    linea = _linea(session, PresupuestoLineaMotor, presupuesto_id, linea_id)

    if 'bloque' in data:
        linea.bloque = _parse_bloque(data['bloque'])
    for field in ('codigo', 'descripcion', 'unidad'):
        if field in data and data[field]:
            setattr(linea, field, str(data[field]))
    if 'cantidad' in data:
        linea.cantidad = parse_non_negative(data['cantidad'], 'cantidad')
    if 'precio_unitario' in data:
        linea.precio_unitario = parse_non_negative(data['precio_unitario'], 'precio_unitario')
    if 'orden' in data:
        linea.orden = int(data['orden'])
    linea.subtotal = _money(Decimal(str(linea.cantidad)) * Decimal(str(linea.precio_unitario)))

    _commit_lineas(session, presupuesto)
    return linea


def add_linea_trabajo(session: Session, presupuesto_id: int, data: Dict[str, Any]) -> PresupuestoLineaTrabajo:
    presupuesto = _editable(session, presupuesto_id)
    linea = PresupuestoLineaTrabajo(
        presupuesto_id=presupuesto.id,
        trabajo_id=data.get('trabajo_id'),
        orden=_siguiente_orden(presupuesto.lineas_trabajo),
    )
    _set_linea_cliente(linea, data)
    session.add(linea)
    _commit_lineas(session, presupuesto)
    return linea


def update_linea_trabajo(session: Session, presupuesto_id: int, linea_id: int, data: Dict[str, Any]):
    presupuesto = _editable(session, presupuesto_id)
    linea = _linea(session, PresupuestoLineaTrabajo, presupuesto_id, linea_id)
    _set_linea_cliente(linea, data)
    _commit_lineas(session, presupuesto)
    return linea


def add_linea_material(session: Session, presupuesto_id: int, data: Dict[str, Any]) -> PresupuestoLineaMaterial:
    """
    Add a material line. When the client price is omitted the material's
    current sale price is used, and its average cost as internal cost.
    """
    presupuesto = _editable(session, presupuesto_id)
    data = dict(data)

    material_id = data.get('material_id')
    if material_id is not None:
        material = session.query(Material).filter(Material.id == material_id).first()
        if not material:
            raise NotFoundError('Material no encontrado')
        data.setdefault('precio_unitario_cliente', material.precio_venta)
        data.setdefault('coste_unitario_interno', material.coste_medio)
        data.setdefault('descripcion_cliente', material.descripcion)

    linea = PresupuestoLineaMaterial(
        presupuesto_id=presupuesto.id,
        material_id=material_id,
        orden=_siguiente_orden(presupuesto.lineas_material),
    )
    _set_linea_cliente(linea, data)
    session.add(linea)
    _commit_lineas(session, presupuesto)
    return linea


def update_linea_material(session: Session, presupuesto_id: int, linea_id: int, data: Dict[str, Any]):
    presupuesto = _editable(session, presupuesto_id)
    linea = _linea(session, PresupuestoLineaMaterial, presupuesto_id, linea_id)
    _set_linea_cliente(linea, data)
    _commit_lineas(session, presupuesto)
    return linea


def add_linea_desplazamiento(session: Session, presupuesto_id: int, data: Dict[str, Any]):
    presupuesto = _editable(session, presupuesto_id)
    if data.get('precio_cliente') is None:
        raise ValidationError('precio_cliente es obligatorio')

    precio = _money(parse_non_negative(data['precio_cliente'], 'precio_cliente'))
    coste = _money(parse_non_negative(data.get('coste_interno') or 0, 'coste_interno'))
    linea = PresupuestoLineaDesplazamiento(
        presupuesto_id=presupuesto.id,
        descripcion=data.get('descripcion'),
        precio_cliente=precio,
        coste_interno=coste,
        margen=precio - coste,
        orden=_siguiente_orden(presupuesto.lineas_desplazamiento),
    )
    session.add(linea)
    _commit_lineas(session, presupuesto)
    return linea


LINEA_MODELS = {
    'motor': PresupuestoLineaMotor,
    'trabajo': PresupuestoLineaTrabajo,
    'material': PresupuestoLineaMaterial,
    'desplazamiento': PresupuestoLineaDesplazamiento,
}


def delete_linea(session: Session, presupuesto_id: int, tipo: str, linea_id: int) -> None:
    model = LINEA_MODELS.get(tipo)
    if model is None:
        raise NotFoundError(f'Tipo de línea desconocido: {tipo}')

    presupuesto = _editable(session, presupuesto_id)
    linea = _linea(session, model, presupuesto_id, linea_id)
    session.delete(linea)
    _commit_lineas(session, presupuesto)


# ============================================================================
# CONTEXTO Y TEXTOS
# ============================================================================

def upsert_contexto(session: Session, presupuesto_id: int, data: Dict[str, Any]) -> PresupuestoContexto:
    """
    Create or update the technical context.

    `extras` is merged key by key into the stored bag; the module override
    key is managed by oferta_modules_service and ignored here.
    """

    presupuesto = _editable(session, presupuesto_id)
    try:
        contexto = presupuesto.contexto
        if contexto is None:
            contexto = PresupuestoContexto(presupuesto_id=presupuesto.id, num_vehiculos=1)
            session.add(contexto)

        if 'num_vehiculos' in data:
            num = to_decimal(data['num_vehiculos'], 'num_vehiculos')
            if num != num.to_integral_value() or num < 0:
                raise ValidationError('num_vehiculos debe ser un entero >= 0')
            contexto.num_vehiculos = int(num)
        for field in ('tipologia_vehiculo', 'objetivo_proyecto', 'solucion_codigo'):
            if field in data:
                setattr(contexto, field, (str(data[field]).strip() or None) if data[field] is not None else None)

        extras = data.get('extras')
        if extras is not None:
            if not isinstance(extras, dict):
                raise ValidationError('extras debe ser un objeto')
            merged = dict(contexto.extras_json or {})
            merged.update({k: v for k, v in extras.items() if k != EXTRAS_KEY_MODULOS})
            contexto.extras_json = merged

        session.commit()
    except Exception:
        session.rollback()
        raise
    return contexto


def add_texto(session: Session, presupuesto_id: int, titulo: str, contenido: str, orden=None) -> PresupuestoTexto:
    presupuesto = _editable(session, presupuesto_id)
    if not (titulo or '').strip() or not (contenido or '').strip():
        raise ValidationError('titulo y contenido son obligatorios')

    try:
        texto = PresupuestoTexto(
            presupuesto_id=presupuesto.id,
            titulo=titulo.strip(),
            contenido=contenido,
            orden=int(orden) if orden is not None else _siguiente_orden(presupuesto.textos),
        )
        session.add(texto)
        session.commit()
    except Exception:
        session.rollback()
        raise
    return texto


def delete_texto(session: Session, presupuesto_id: int, texto_id: int) -> None:
    _editable(session, presupuesto_id)
    texto = session.query(PresupuestoTexto).filter(
        PresupuestoTexto.id == texto_id,
        PresupuestoTexto.presupuesto_id == presupuesto_id,
    ).first()
    if not texto:
        raise NotFoundError('Texto no encontrado')
    try:
        session.delete(texto)
        session.commit()
    except Exception:
        session.rollback()
        raise


# ============================================================================
# VISTAS
# ============================================================================

def presupuesto_detalle(presupuesto: Presupuesto) -> Dict[str, Any]:
    """Full internal view: header, context, every line collection and texts."""
    data = presupuesto.to_dict()
    data['observaciones_internas'] = presupuesto.observaciones_internas
    data['contexto'] = presupuesto.contexto.to_dict() if presupuesto.contexto else None
    data['lineas'] = {
        'motor': [l.to_dict() for l in presupuesto.lineas_motor],
        'trabajo': [l.to_dict() for l in presupuesto.lineas_trabajo],
        'material': [l.to_dict() for l in presupuesto.lineas_material],
        'desplazamiento': [l.to_dict() for l in presupuesto.lineas_desplazamiento],
    }
    data['textos'] = [t.to_dict() for t in presupuesto.textos]
    return data


CAMPOS_INTERNOS = ('coste_total', 'margen_bruto', 'margen_porcentaje', 'observaciones_internas')


def vista_cliente(presupuesto: Presupuesto) -> Dict[str, Any]:
    """Client-facing view: internal costs and margins removed."""
    data = presupuesto_detalle(presupuesto)
    for field in CAMPOS_INTERNOS:
        data.pop(field, None)
    return data
