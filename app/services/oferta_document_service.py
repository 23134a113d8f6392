"""
Offer document assembly: payload, content hash, HTML and emission.

The payload is the single source for every rendering (HTML, PDF) and for
the snapshot stored on emission. It is JSON-serialisable once Decimals are
turned into strings, and its serialisation is deterministic (sorted keys,
compact separators) so the SHA-256 of it identifies the offer content.
"""
import hashlib
import json
import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional

from flask import current_app, has_app_context
from jinja2 import Environment, FileSystemLoader, select_autoescape
from sqlalchemy.orm import Session

from app.models import Presupuesto, OfertaSnapshot, BloqueEconomico
from app.exceptions import ValidationError
from app.services.economico_service import build_lineas_oferta, compute_economico
from app.services.oferta_modules_service import resolve_modules
from app.services.oferta_template_spec import resolve_template_spec, is_known_template, MODULO_ACEPTACION
from app.services.presupuesto_estado_service import check_emision
from app.services.presupuesto_service import get_presupuesto
from app.utils.formatters import money_es, num_es, date_es
from app.blueprints.metrics import ofertas_emitidas_total

logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).resolve().parent.parent / 'templates'

BLOQUES_LABEL = {
    BloqueEconomico.A_SUMINISTRO_EQUIPOS.value: 'A · Suministro de equipos',
    BloqueEconomico.B_MATERIALES_INSTALACION.value: 'B · Materiales de instalación',
    BloqueEconomico.C_MANO_OBRA.value: 'C · Mano de obra',
    BloqueEconomico.D_MANTENIMIENTO_1_3.value: 'D · Mantenimiento (1-3)',
    BloqueEconomico.E_OPCIONALES_4_5.value: 'E · Opcionales (4-5)',
    BloqueEconomico.DESPLAZAMIENTO.value: 'Desplazamientos',
}

# Blocks listed under "Partidas"; optional years (E) get their own section
BLOQUES_PARTIDAS = (
    BloqueEconomico.A_SUMINISTRO_EQUIPOS.value,
    BloqueEconomico.B_MATERIALES_INSTALACION.value,
    BloqueEconomico.C_MANO_OBRA.value,
    BloqueEconomico.D_MANTENIMIENTO_1_3.value,
    BloqueEconomico.DESPLAZAMIENTO.value,
)

# Cabecera fields that change on every emission without changing the content
CAMPOS_VOLATILES = ('version_oferta', 'fecha_emision')

_jinja_env = None


def _env() -> Environment:
    global _jinja_env
    if _jinja_env is None:
        _jinja_env = Environment(
            loader=FileSystemLoader(str(TEMPLATES_DIR)),
            autoescape=select_autoescape(['html', 'xml']),
            trim_blocks=True,
            lstrip_blocks=True,
        )
        _jinja_env.filters['money_es'] = money_es
        _jinja_env.filters['num_es'] = num_es
        _jinja_env.filters['date_es'] = date_es
    return _jinja_env


def _business_name() -> str:
    if has_app_context():
        return current_app.config.get('BUSINESS_NAME') or 'EMT 360'
    return 'EMT 360'


# ============================================================================
# PAYLOAD
# ============================================================================

def codigo_oferta_para(presupuesto: Presupuesto) -> str:
    """Offer code derived from the quote code: PRE-2026-0001 → OF-2026-0001."""
    codigo = presupuesto.codigo or f'PRE-{presupuesto.id}'
    return 'OF-' + codigo[4:] if codigo.startswith('PRE-') else f'OF-{codigo}'


def resolve_template_code(presupuesto: Presupuesto, template_code: Optional[str] = None) -> str:
    """Explicit code → quote template → context solution (if it names a template) → default."""
    candidatos = [template_code, presupuesto.template_code]
    if presupuesto.contexto is not None:
        candidatos.append(presupuesto.contexto.solucion_codigo)
    for code in candidatos:
        if is_known_template(code):
            return code
    return resolve_template_spec(template_code)['codigo']


def normalize_anexos(anexos) -> List[Dict[str, Any]]:
    """Technical annexes as [{titulo, url, orden}] sorted by orden; invalid entries dropped."""
    if not isinstance(anexos, list):
        return []
    result = []
    for index, anexo in enumerate(anexos):
        if not isinstance(anexo, dict) or not isinstance(anexo.get('titulo'), str) or not anexo['titulo'].strip():
            continue
        orden = anexo.get('orden')
        result.append({
            'titulo': anexo['titulo'].strip(),
            'url': anexo.get('url') if isinstance(anexo.get('url'), str) else '',
            'orden': orden if isinstance(orden, int) and not isinstance(orden, bool) else index,
        })
    return sorted(result, key=lambda a: a['orden'])


def build_oferta_payload(presupuesto: Presupuesto, codigo_oferta: str, version_oferta: int,
                         fecha_emision_iso: Optional[str], template_code: Optional[str],
                         anexos: Optional[List[Dict[str, Any]]], modulos: Optional[List[Dict[str, Any]]]) -> Dict[str, Any]:
    """
    Structured offer content.

    Args:
        presupuesto: quote with its lines, context and texts loaded
        codigo_oferta / version_oferta / fecha_emision_iso: document identity
        template_code: unknown or empty → default template
        anexos: technical annexes [{titulo, url, orden}]
        modulos: resolved module list; only enabled modules are included
    """
    spec = resolve_template_spec(template_code)
    lineas = build_lineas_oferta(presupuesto)
    economico = compute_economico(presupuesto, lineas)
    opcionales = [l for l in lineas if l['bloque'] == BloqueEconomico.E_OPCIONALES_4_5.value]

    return {
        'template': {
            'codigo': spec['codigo'],
            'version': spec['version'],
            'secciones': spec['secciones'],
            'etiquetas': spec['etiquetas'],
        },
        'cabecera': {
            'presupuesto_id': presupuesto.id,
            'codigo': presupuesto.codigo,
            'codigo_oferta': codigo_oferta,
            'version_oferta': version_oferta,
            'fecha_emision': fecha_emision_iso,
            'template_code': spec['codigo'],
            'cliente': presupuesto.cliente_nombre,
            'proyecto': presupuesto.proyecto_nombre,
            'validez_dias': presupuesto.validez_dias,
        },
        'contexto': presupuesto.contexto.to_dict() if presupuesto.contexto else None,
        'economico': economico,
        'lineas': {
            'oferta': lineas,
            'motor': [l.to_dict() for l in presupuesto.lineas_motor],
            'trabajo': [l.to_dict() for l in presupuesto.lineas_trabajo],
            'material': [l.to_dict() for l in presupuesto.lineas_material],
            'desplazamiento': [l.to_dict() for l in presupuesto.lineas_desplazamiento],
            'opcionales': opcionales,
        },
        'opcionales': {
            'total_opcionales': economico['total_opcionales'],
            'incluidos_en_total': False,
        },
        'modulos_documento': [m for m in (modulos or []) if m.get('enabled')],
        'anexos_tecnicos': list(anexos or []),
        'textos': [t.to_dict() for t in presupuesto.textos],
    }


def _json_default(obj):
    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def serializar_payload(payload: Dict[str, Any]) -> str:
    """Deterministic JSON: sorted keys, compact separators, Decimal as string."""
    return json.dumps(payload, sort_keys=True, separators=(',', ':'), ensure_ascii=False, default=_json_default)


def content_hash(payload: Dict[str, Any]) -> str:
    """SHA-256 hex digest of the serialised payload."""
    return hashlib.sha256(serializar_payload(payload).encode('utf-8')).hexdigest()


def content_hash_documento(payload: Dict[str, Any]) -> str:
    """Content hash ignoring the fields that change on every emission (version, date)."""
    cabecera = {k: v for k, v in payload['cabecera'].items() if k not in CAMPOS_VOLATILES}
    return content_hash({**payload, 'cabecera': cabecera})


def payload_jsonable(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Payload with Decimals and dates converted, ready for a JSON column or response."""
    return json.loads(serializar_payload(payload))


# ============================================================================
# DOCUMENTO
# ============================================================================

def prepare_oferta(session: Session, presupuesto_id: int, template_code: Optional[str] = None,
                   anexos=None) -> Dict[str, Any]:
    """
    Current offer payload of a quote (not persisted).

    Uses the last snapshot's code and version when one exists.
    """
    presupuesto = get_presupuesto(session, presupuesto_id)
    codigo = resolve_template_code(presupuesto, template_code)
    modulos = resolve_modules(session, codigo, presupuesto.contexto)
    snapshot = presupuesto.snapshot

    payload = build_oferta_payload(
        presupuesto,
        codigo_oferta=snapshot.codigo_oferta if snapshot else codigo_oferta_para(presupuesto),
        version_oferta=snapshot.version_oferta if snapshot else 1,
        fecha_emision_iso=snapshot.fecha_emision.isoformat() if snapshot else None,
        template_code=codigo,
        anexos=normalize_anexos(anexos),
        modulos=modulos,
    )
    return payload


def build_oferta_html(payload: Dict[str, Any], fecha_documento=None) -> str:
    """Render the offer payload into a standalone printable HTML document."""
    lineas = payload['lineas']['oferta']
    lineas_por_bloque = {}
    for linea in lineas:
        lineas_por_bloque.setdefault(linea['bloque'], []).append(linea)

    bloques = [
        {'codigo': bloque, 'label': BLOQUES_LABEL[bloque], 'lineas': lineas_por_bloque[bloque]}
        for bloque in BLOQUES_PARTIDAS
        if lineas_por_bloque.get(bloque)
    ]

    modulos = sorted(payload['modulos_documento'], key=lambda m: m['order'])
    modulo_aceptacion = next((m for m in modulos if m['key'] == MODULO_ACEPTACION), None)
    modulos_generales = [m for m in modulos if m['key'] != MODULO_ACEPTACION]

    cabecera = payload['cabecera']
    template = _env().get_template('oferta/documento.html')
    return template.render(
        business_name=_business_name(),
        template=payload['template'],
        etiquetas=payload['template']['etiquetas'],
        cabecera=cabecera,
        contexto=payload['contexto'] or {},
        economico=payload['economico'],
        bloques=bloques,
        opcionales=payload['lineas']['opcionales'],
        modulos_generales=modulos_generales,
        modulo_aceptacion=modulo_aceptacion,
        anexos=payload['anexos_tecnicos'],
        textos=payload['textos'],
        fecha_documento=cabecera.get('fecha_emision') or fecha_documento,
    )


def render_oferta_html(session: Session, presupuesto_id: int, template_code: Optional[str] = None, anexos=None) -> str:
    presupuesto = get_presupuesto(session, presupuesto_id)
    payload = prepare_oferta(session, presupuesto_id, template_code, anexos)
    return build_oferta_html(payload, fecha_documento=presupuesto.fecha)


# ============================================================================
# EMISIÓN
# ============================================================================

def emitir_oferta(session: Session, presupuesto_id: int, template_code: Optional[str] = None,
                  anexos=None) -> Dict[str, Any]:
    """
    Issue the formal offer of a quote and store its snapshot.

    The version increments only when the content hash differs from the last
    snapshot; re-issuing identical content keeps version and date.

    Raises:
        ValidationError: the quote fails the emission checklist (pendientes in payload)
    """
    presupuesto = get_presupuesto(session, presupuesto_id)

    validacion = check_emision(presupuesto)
    if not validacion['ready']:
        raise ValidationError(
            'El presupuesto no está listo para emitir la oferta',
            payload={'pendientes': validacion['pendientes'], 'checks': validacion['checks']},
        )

    codigo_template = resolve_template_code(presupuesto, template_code)
    modulos = resolve_modules(session, codigo_template, presupuesto.contexto)
    anexos = normalize_anexos(anexos)
    snapshot = presupuesto.snapshot
    ahora = datetime.now(timezone.utc)

    codigo_oferta = snapshot.codigo_oferta if snapshot else codigo_oferta_para(presupuesto)
    version = snapshot.version_oferta if snapshot else 1

    payload = build_oferta_payload(
        presupuesto, codigo_oferta, version, ahora.isoformat(), codigo_template, anexos, modulos
    )
    hash_nuevo = content_hash_documento(payload)

    if snapshot and snapshot.content_hash == hash_nuevo:
        resultado = 'sin_cambios'
    else:
        try:
            if snapshot:
                resultado = 'version'
                version += 1
                payload['cabecera']['version_oferta'] = version
            else:
                resultado = 'nueva'
                snapshot = OfertaSnapshot(presupuesto_id=presupuesto.id, codigo_oferta=codigo_oferta)
                session.add(snapshot)
                presupuesto.snapshot = snapshot

            snapshot.version_oferta = version
            snapshot.fecha_emision = ahora
            snapshot.template_code = codigo_template
            snapshot.content_hash = hash_nuevo
            snapshot.payload_json = payload_jsonable(payload)
            session.commit()
        except Exception:
            session.rollback()
            raise

    ofertas_emitidas_total.labels(resultado=resultado).inc()
    logger.info(f"[OFERTA] {codigo_oferta} v{snapshot.version_oferta} ({resultado}) hash={snapshot.content_hash[:12]}")

    return {
        'resultado': resultado,
        'snapshot': snapshot.to_dict(),
        'payload': snapshot.payload_json,
    }
