"""
Material catalog sync from the external inventory feed.

Records arrive as dicts with the inventory field names:

    id                   → referencia_externa
    sku                  → sku
    name                 → descripcion
    family               → categoria
    unit                 → unidad (mapped to the catalog vocabulary)
    unitCost             → coste_medio
    observations         → notas
    minThreshold         → stock_minimo
    supplierProductCode  → codigo_proveedor
    supplier             → proveedor_habitual

Upsert is by referencia_externa, then by sku. precio_estandar is local ERP
data and is never overwritten.
"""
import logging
from typing import Dict, Any, Iterable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models import Material
from app.exceptions import ValidationError
from app.services.margenes_service import recalcular_todos_los_precios
from app.utils.number_format import to_decimal

logger = logging.getLogger(__name__)


_UNIDADES = {
    'm': 'METRO', 'metro': 'METRO', 'metros': 'METRO',
    'm2': 'METRO_CUADRADO', 'm²': 'METRO_CUADRADO',
    'kg': 'KILOGRAMO', 'kilogramo': 'KILOGRAMO',
    'l': 'LITRO', 'litro': 'LITRO',
    'rollo': 'ROLLO',
    'caja': 'CAJA',
    'bolsa': 'BOLSA',
}


def map_unidad(unit: Optional[str]) -> str:
    """Map an inventory unit to the catalog unit (ud, pcs, unknown → UNIDAD)."""
    if not unit:
        return 'UNIDAD'
    return _UNIDADES.get(str(unit).strip().lower(), 'UNIDAD')


def _material_data(registro: Dict[str, Any]) -> Dict[str, Any]:
    sku = str(registro['sku']).strip()
    referencia = registro.get('id')
    min_threshold = registro.get('minThreshold')
    return {
        'sku': sku,
        'descripcion': registro.get('name') or sku,
        'categoria': registro.get('family') or None,
        'unidad': map_unidad(registro.get('unit')),
        'proveedor_habitual': registro.get('supplier') or None,
        'codigo_proveedor': registro.get('supplierProductCode') or None,
        'coste_medio': to_decimal(registro.get('unitCost') or 0, 'unitCost'),
        'stock_minimo': int(min_threshold) if min_threshold is not None else None,
        'notas': registro.get('observations') or None,
        'referencia_externa': str(referencia) if referencia is not None else None,
        'origen_externo': True,
    }


def _find_existing(session: Session, data: Dict[str, Any]) -> Optional[Material]:
    """Match by referencia_externa first, then by sku."""
    if data['referencia_externa']:
        existing = session.query(Material).filter(
            Material.referencia_externa == data['referencia_externa']
        ).first()
        if existing:
            return existing
    return session.query(Material).filter(Material.sku == data['sku']).first()


def _upsert(session: Session, data: Dict[str, Any]) -> bool:
    """Create or update one material. Returns True when created."""
    existing = _find_existing(session, data)

    if existing:
        otro = session.query(Material.id).filter(
            Material.sku == data['sku'], Material.id != existing.id
        ).first()
        if otro:
            raise ValidationError(f"SKU {data['sku']} pertenece a otro material")

        for field, value in data.items():
            setattr(existing, field, value)
        return False

    session.add(Material(activo=True, **data))
    return True


def sync_materiales(session: Session, registros: Iterable[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Upsert catalog materials from inventory records.

    Records without sku are skipped. Each record is written inside its own
    savepoint; a record that fails (bad values, sku owned by another
    material, constraint violation) is collected in `errors` and the rest
    of the batch is kept. Sale prices are recomputed when anything was
    created or updated.

    Returns:
        dict: {total, created, updated, skipped, errors}
    """
    result = {'total': 0, 'created': 0, 'updated': 0, 'skipped': 0, 'errors': []}

    try:
        for registro in registros:
            result['total'] += 1
            if not isinstance(registro, dict) or not registro.get('sku'):
                result['skipped'] += 1
                continue

            try:
                data = _material_data(registro)
                # Flush per record so a repeated sku inside the batch resolves to the same row
                with session.begin_nested():
                    created = _upsert(session, data)
                    session.flush()
            except (ValidationError, TypeError, ValueError, SQLAlchemyError) as e:
                message = getattr(e, 'message', str(e))
                logger.warning(f"[SYNC] Registro {registro.get('id')} descartado: {message}")
                result['errors'].append(f"Registro {registro.get('id')} (SKU: {registro.get('sku')}): {message}")
                continue

            result['created' if created else 'updated'] += 1

        session.commit()
    except Exception:
        session.rollback()
        raise

    logger.info(
        f"[SYNC] Sync completado: {result['created']} creados, {result['updated']} actualizados, "
        f"{result['skipped']} omitidos, {len(result['errors'])} errores"
    )

    if result['created'] > 0 or result['updated'] > 0:
        recalculo = recalcular_todos_los_precios(session)
        result['precios_recalculados'] = recalculo['actualizados']

    return result
