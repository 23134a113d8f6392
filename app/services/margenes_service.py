"""
Margin service: margin cascade and sale price recalculation for materials.

Effective margin of a material:
    1. margen_personalizado of the material (if set)
    2. margin of its category (if configured)
    3. general margin (configuration row, default 30%)

precio_venta = coste_medio × (1 + margen / 100), rounded half-up to 4 decimals.
"""

import logging
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Dict, Any, Optional, Tuple, Mapping

from flask import current_app, has_app_context
from sqlalchemy.orm import Session

from app.models import Material, MargenCategoria
from app.exceptions import NotFoundError, ValidationError
from app.services import configuracion_service
from app.utils.number_format import parse_margen
from app.blueprints.metrics import precios_recalculados_total

logger = logging.getLogger(__name__)

CLAVE_MARGEN_GENERAL = 'margen_general_materiales'
MARGEN_GENERAL_DEFAULT = Decimal('30')
PRECIO_QUANTUM = Decimal('0.0001')


def _to_decimal(value) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


def _margen_general_default() -> Decimal:
    if has_app_context():
        return _to_decimal(current_app.config.get('MARGEN_GENERAL_DEFAULT', MARGEN_GENERAL_DEFAULT))
    return MARGEN_GENERAL_DEFAULT


# ============================================================================
# RESOLUCIÓN DE MARGEN (cascada)
# ============================================================================

def _resolve_con_origen(material, mapa_categorias: Mapping[str, Decimal],
                        margen_general: Decimal) -> Tuple[Decimal, str]:
    """Resolve the margin and a label describing where it came from."""
    if material.margen_personalizado is not None:
        margen = _to_decimal(material.margen_personalizado)
        return margen, f'Individual ({margen.normalize():f}%)'

    if material.categoria and material.categoria in mapa_categorias:
        return _to_decimal(mapa_categorias[material.categoria]), material.categoria

    return _to_decimal(margen_general), 'General'


def resolve_margen(material, mapa_categorias: Mapping[str, Decimal], margen_general: Decimal) -> Decimal:
    """
    Effective margin (%) for a material. Pure function, never fails:
    a missing override or category margin simply falls through.
    """
    margen, _ = _resolve_con_origen(material, mapa_categorias, margen_general)
    return margen


def calcular_precio_venta(coste_medio, margen) -> Decimal:
    """precio_venta = coste_medio × (1 + margen / 100), 4 decimals, half-up."""
    coste = _to_decimal(coste_medio or 0)
    factor = Decimal('1') + _to_decimal(margen) / Decimal('100')
    return (coste * factor).quantize(PRECIO_QUANTUM, rounding=ROUND_HALF_UP)


# ============================================================================
# MARGEN GENERAL
# ============================================================================

def get_margen_general(session: Session) -> Decimal:
    """General margin for materials (%), default when not configured."""
    valor = configuracion_service.get_valor(session, CLAVE_MARGEN_GENERAL)
    if valor is None:
        return _margen_general_default()
    try:
        return Decimal(valor)
    except InvalidOperation:
        logger.warning(f"[MARGENES] Valor inválido en {CLAVE_MARGEN_GENERAL}: {valor!r}. Usando default.")
        return _margen_general_default()


def set_margen_general(session: Session, margen) -> Dict[str, Any]:
    """Set the general margin and recompute every sale price."""
    margen = parse_margen(margen)
    try:
        configuracion_service.upsert_valor(
            session,
            CLAVE_MARGEN_GENERAL,
            str(margen),
            'Margen general aplicado a todos los materiales (%)',
        )
        recalculo = _recalcular_todos(session)
        session.commit()
    except Exception:
        session.rollback()
        raise

    precios_recalculados_total.inc(recalculo['actualizados'])
    logger.info(f"[MARGENES] Margen general = {margen}% ({recalculo['actualizados']} materiales)")
    return {'margen_general': margen, 'recalculo': recalculo}


# ============================================================================
# MÁRGENES POR CATEGORÍA
# ============================================================================

def get_margenes_categoria(session: Session):
    return session.query(MargenCategoria).order_by(MargenCategoria.categoria.asc()).all()


def get_mapa_categorias(session: Session) -> Dict[str, Decimal]:
    return {mc.categoria: _to_decimal(mc.margen) for mc in get_margenes_categoria(session)}


def set_margen_categoria(session: Session, categoria: str, margen) -> Dict[str, Any]:
    """Create or update the margin of a category and recompute every sale price."""
    margen = parse_margen(margen)
    categoria = (categoria or '').strip()
    if not categoria:
        raise ValidationError('Categoría requerida')

    try:
        margen_cat = session.query(MargenCategoria).filter(MargenCategoria.categoria == categoria).first()
        if margen_cat:
            margen_cat.margen = margen
        else:
            margen_cat = MargenCategoria(categoria=categoria, margen=margen)
            session.add(margen_cat)
        session.flush()

        recalculo = _recalcular_todos(session)
        session.commit()
    except Exception:
        session.rollback()
        raise

    precios_recalculados_total.inc(recalculo['actualizados'])
    logger.info(f"[MARGENES] Margen categoría '{categoria}' = {margen}%")
    return {'categoria': categoria, 'margen': margen, 'recalculo': recalculo}


def delete_margen_categoria(session: Session, categoria: str) -> Dict[str, Any]:
    """Remove a category margin; its materials fall back to the general margin."""
    margen_cat = session.query(MargenCategoria).filter(MargenCategoria.categoria == categoria).first()
    if not margen_cat:
        raise NotFoundError(f'Categoría {categoria} no encontrada')

    try:
        session.delete(margen_cat)
        session.flush()
        recalculo = _recalcular_todos(session)
        session.commit()
    except Exception:
        session.rollback()
        raise

    precios_recalculados_total.inc(recalculo['actualizados'])
    logger.info(f"[MARGENES] Margen categoría '{categoria}' eliminado")
    return {'categoria': categoria, 'recalculo': recalculo}


# ============================================================================
# MARGEN INDIVIDUAL
# ============================================================================

def set_margen_material(session: Session, material_id: int, margen) -> Material:
    """
    Set (or clear with None) the individual margin of a material and
    recompute its sale price.
    """
    if margen is not None:
        margen = parse_margen(margen)

    material = session.query(Material).filter(Material.id == material_id).first()
    if not material:
        raise NotFoundError('Material no encontrado')

    try:
        material.margen_personalizado = margen
        session.flush()
        _recalcular_material(session, material)
        session.commit()
    except Exception:
        session.rollback()
        raise

    precios_recalculados_total.inc()
    return material


# ============================================================================
# RECÁLCULO
# ============================================================================

def _recalcular_material(session: Session, material: Material) -> Decimal:
    margen = resolve_margen(material, get_mapa_categorias(session), get_margen_general(session))
    material.precio_venta = calcular_precio_venta(material.coste_medio, margen)
    session.flush()
    return material.precio_venta


def _recalcular_todos(session: Session) -> Dict[str, Any]:
    """Recompute precio_venta of every active material inside the current transaction."""
    margen_general = get_margen_general(session)
    mapa_categorias = get_mapa_categorias(session)

    materiales = session.query(Material).filter(Material.activo.is_(True)).order_by(Material.id).all()

    resumen_map: Dict[str, Dict[str, Any]] = {}
    for material in materiales:
        margen, label = _resolve_con_origen(material, mapa_categorias, margen_general)
        material.precio_venta = calcular_precio_venta(material.coste_medio, margen)

        entry = resumen_map.setdefault(label, {'margen': margen, 'count': 0})
        entry['count'] += 1

    session.flush()

    resumen = [
        {'categoria': label, 'margen': data['margen'], 'count': data['count']}
        for label, data in resumen_map.items()
    ]
    return {'actualizados': len(materiales), 'resumen': resumen}


def recalcular_todos_los_precios(session: Session) -> Dict[str, Any]:
    """
    Recompute precio_venta for ALL active materials.

    Idempotent; only precio_venta is written (coste_medio and precio_estandar
    are left untouched).

    Returns:
        dict with keys:
            - actualizados: int
            - resumen: list of {categoria, margen, count}
    """
    try:
        result = _recalcular_todos(session)
        session.commit()
    except Exception:
        session.rollback()
        raise

    precios_recalculados_total.inc(result['actualizados'])
    logger.info(f"[MARGENES] Precios recalculados: {result['actualizados']} materiales")
    return result


def recalcular_precio_material(session: Session, material_id: int) -> Material:
    """Recompute precio_venta of a single material."""
    material = session.query(Material).filter(Material.id == material_id).first()
    if not material:
        raise NotFoundError('Material no encontrado')

    try:
        _recalcular_material(session, material)
        session.commit()
    except Exception:
        session.rollback()
        raise

    precios_recalculados_total.inc()
    return material


def get_resumen_margenes(session: Session) -> Dict[str, Any]:
    """General margin, category margins and categories present in the catalog."""
    categorias_existentes = session.query(Material.categoria).filter(
        Material.activo.is_(True),
        Material.categoria.isnot(None)
    ).distinct().order_by(Material.categoria.asc()).all()

    return {
        'margen_general': get_margen_general(session),
        'categorias': [mc.to_dict() for mc in get_margenes_categoria(session)],
        'categorias_disponibles': [c[0] for c in categorias_existentes if c[0]],
    }


def margen_efectivo(session: Session, material: Material) -> Optional[Decimal]:
    """Effective margin of one material, resolved against current configuration."""
    return resolve_margen(material, get_mapa_categorias(session), get_margen_general(session))
