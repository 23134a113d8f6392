"""
Offer document modules: template defaults layered with overrides.

Layers, in increasing precedence:
    1. template defaults (oferta_template_spec)
    2. global overrides per template, stored in Configuracion under
       `oferta_template_modules:<codigo>`
    3. quote overrides, stored in PresupuestoContexto.extras_json['ofertaModulos']

An override is {key, title?, content?, enabled?, order?}; present fields
replace the module's, absent ones pass through. Stored overrides are parsed
fail-open: malformed data means "no overrides", never an error at render time.

Resolution always reads both layers; nothing here is cached.
"""
import json
import math
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from app.models import Presupuesto, PresupuestoContexto, EXTRAS_KEY_MODULOS
from app.exceptions import ValidationError, NotFoundError, StateConflictError
from app.services import configuracion_service
from app.services.oferta_template_spec import resolve_template_spec, resolve_template_default_modules

logger = logging.getLogger(__name__)

CONFIG_KEY_PREFIX = 'oferta_template_modules:'

_CAMPOS_TEXTO = ('title', 'content')


def config_key(template_code: Optional[str]) -> str:
    return f"{CONFIG_KEY_PREFIX}{resolve_template_spec(template_code)['codigo']}"


def _normalize_override(item: Dict[str, Any]) -> Dict[str, Any]:
    """Keep the key and every correctly typed field; drop the rest."""
    override = {'key': item['key']}
    for field in _CAMPOS_TEXTO:
        if isinstance(item.get(field), str):
            override[field] = item[field]
    if isinstance(item.get('enabled'), bool):
        override['enabled'] = item['enabled']
    order = item.get('order')
    if isinstance(order, (int, float)) and not isinstance(order, bool):
        override['order'] = order
    return override


def parse_overrides(value) -> List[Dict[str, Any]]:
    """
    Parse stored overrides (JSON text or an already decoded list).

    Anything that is not a list yields []; entries without a string key are
    dropped.
    """
    if not value:
        return []

    if isinstance(value, (str, bytes)):
        try:
            value = json.loads(value)
        except ValueError:
            logger.warning("[MODULOS] Overrides almacenados no son JSON válido, se ignoran")
            return []

    if not isinstance(value, list):
        return []

    return [
        _normalize_override(item)
        for item in value
        if isinstance(item, dict) and isinstance(item.get('key'), str)
    ]


def _check_field_types(item: Dict[str, Any], index: int) -> None:
    """Reject present fields whose type would otherwise be dropped silently."""
    def _reject(campo, esperado):
        raise ValidationError(
            f"Override {index}: '{campo}' debe ser {esperado}",
            payload={'indice': index, 'campo': campo},
        )

    for campo in _CAMPOS_TEXTO:
        if campo in item and not isinstance(item[campo], str):
            _reject(campo, 'texto')

    if 'enabled' in item and not isinstance(item['enabled'], bool):
        _reject('enabled', 'booleano')

    if 'order' in item:
        order = item['order']
        if isinstance(order, bool) or not isinstance(order, (int, float)) or (
                isinstance(order, float) and not math.isfinite(order)):
            _reject('order', 'un número finito')


def validate_overrides(overrides) -> List[Dict[str, Any]]:
    """
    Strict counterpart of parse_overrides for writes.

    Raises:
        ValidationError: if overrides is not a list, an entry lacks a string key
            or a present field has the wrong type
    """
    if not isinstance(overrides, list):
        raise ValidationError('overrides debe ser una lista')

    for index, item in enumerate(overrides):
        if not isinstance(item, dict) or not isinstance(item.get('key'), str) or not item['key'].strip():
            raise ValidationError(
                'Cada override debe incluir una key de texto',
                payload={'indice': index},
            )
        _check_field_types(item, index)
    return [_normalize_override(item) for item in overrides]


def merge_modules(defaults: List[Dict[str, Any]], overrides: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Apply one override layer on top of a module list and sort by order."""
    override_by_key = {o['key']: o for o in overrides}

    merged = []
    for module in defaults:
        result = dict(module)
        override = override_by_key.get(module['key'])
        if override:
            for field in ('title', 'content', 'enabled', 'order'):
                if override.get(field) is not None:
                    result[field] = override[field]
        merged.append(result)

    return sorted(merged, key=lambda m: m['order'])


# ============================================================================
# CAPA GLOBAL
# ============================================================================

def get_global_overrides(session: Session, template_code: Optional[str]) -> List[Dict[str, Any]]:
    return parse_overrides(configuracion_service.get_valor(session, config_key(template_code)))


def save_global_overrides(session: Session, template_code: Optional[str], overrides) -> List[Dict[str, Any]]:
    """Replace the global override list of a template. Returns the resolved modules."""
    normalized = validate_overrides(overrides)
    codigo = resolve_template_spec(template_code)['codigo']

    try:
        configuracion_service.upsert_valor(
            session,
            config_key(codigo),
            json.dumps(normalized, ensure_ascii=False),
            f'Overrides de módulos documentales para plantilla {codigo}',
        )
        session.commit()
    except Exception:
        session.rollback()
        raise

    logger.info(f"[MODULOS] Overrides globales guardados para {codigo} ({len(normalized)} módulos)")
    return resolve_modules(session, codigo)


# ============================================================================
# CAPA PRESUPUESTO
# ============================================================================

def get_presupuesto_overrides(contexto: Optional[PresupuestoContexto]) -> List[Dict[str, Any]]:
    if contexto is None or not isinstance(contexto.extras_json, dict):
        return []
    return parse_overrides(contexto.extras_json.get(EXTRAS_KEY_MODULOS))


def save_presupuesto_overrides(session: Session, presupuesto_id: int, overrides) -> List[Dict[str, Any]]:
    """
    Replace the quote-level override list.

    Other keys of extras_json are preserved. The context row is created
    (num_vehiculos=1) if the quote has none. Terminal quotes are locked.
    """
    normalized = validate_overrides(overrides)

    presupuesto = session.query(Presupuesto).filter(Presupuesto.id == presupuesto_id).first()
    if not presupuesto:
        raise NotFoundError('Presupuesto no encontrado')
    if not presupuesto.is_editable:
        raise StateConflictError(presupuesto.estado)

    try:
        contexto = presupuesto.contexto
        if contexto is None:
            contexto = PresupuestoContexto(presupuesto_id=presupuesto.id, num_vehiculos=1)
            session.add(contexto)
            presupuesto.contexto = contexto

        extras = dict(contexto.extras_json) if isinstance(contexto.extras_json, dict) else {}
        extras[EXTRAS_KEY_MODULOS] = normalized
        # New dict so the JSON column is flagged dirty
        contexto.extras_json = extras
        session.commit()
    except Exception:
        session.rollback()
        raise

    logger.info(f"[MODULOS] Overrides del presupuesto {presupuesto.codigo} guardados ({len(normalized)} módulos)")
    return resolve_modules(session, presupuesto.template_code, contexto)


# ============================================================================
# RESOLUCIÓN
# ============================================================================

def resolve_modules(session: Session, template_code: Optional[str], contexto: Optional[PresupuestoContexto] = None,
                    solo_habilitados: bool = False) -> List[Dict[str, Any]]:
    """
    Final module list: defaults → global overrides → quote overrides.

    Args:
        template_code: template to resolve (unknown/empty → default template)
        contexto: quote context carrying the quote-level overrides, if any
        solo_habilitados: drop disabled modules
    """
    modules = resolve_template_default_modules(template_code)
    modules = merge_modules(modules, get_global_overrides(session, template_code))
    modules = merge_modules(modules, get_presupuesto_overrides(contexto))

    if solo_habilitados:
        modules = [m for m in modules if m['enabled']]
    return modules
