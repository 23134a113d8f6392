"""
Economic summary of a quote.

Reconciles the two line shapes of a quote:
    - engine lines (PresupuestoLineaMotor), tagged with a BloqueEconomico
    - legacy collections (trabajo, material, desplazamiento), used only when
      the quote has no engine lines

Every computed figure follows "prefer stored, else derive": a positive value
already stored on the quote wins over the one derived from lines.
Output is plain Decimal values rounded to 2 decimals; formatting is left to
the document layer.
"""
import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Callable, Dict, List, Optional

from flask import current_app, has_app_context

from app.models import BloqueEconomico, BLOQUES_CANONICOS
from app.exceptions import ComputationError

logger = logging.getLogger(__name__)

CENT = Decimal('0.01')
IVA_PORCENTAJE_DEFAULT = Decimal('21')
UNIDAD_LEGACY = 'UD'


def _dec(value) -> Decimal:
    if value is None:
        return Decimal('0')
    return value if isinstance(value, Decimal) else Decimal(str(value))


def redondear(value) -> Decimal:
    """Round half-up to cents."""
    return _dec(value).quantize(CENT, rounding=ROUND_HALF_UP)


def iva_porcentaje_default() -> Decimal:
    """Configured default IVA (%) for quotes that do not carry one."""
    if has_app_context():
        return _dec(current_app.config.get('IVA_PORCENTAJE_DEFAULT', IVA_PORCENTAJE_DEFAULT))
    return IVA_PORCENTAJE_DEFAULT


def es_positivo(value) -> bool:
    return value is not None and _dec(value) > 0


def preferir_guardado(stored, computed, predicate: Callable[[Any], bool] = es_positivo):
    """Return the stored value when it satisfies the predicate, else the computed one."""
    return stored if predicate(stored) else computed


# ============================================================================
# LÍNEAS DE OFERTA
# ============================================================================

def build_lineas_oferta(presupuesto) -> List[Dict[str, Any]]:
    """
    Normalized offer lines.

    Engine lines are the only source when at least one exists; otherwise the
    legacy collections are mapped:
        trabajo        → C_MANO_OBRA, code TRB-<trabajo_id>
        material       → B_MATERIALES_INSTALACION, code MAT-<material_id>
        desplazamiento → DESPLAZAMIENTO, code DSP, quantity 1
    """
    if presupuesto.lineas_motor:
        return [
            {
                'bloque': linea.bloque.value,
                'codigo': linea.codigo,
                'descripcion': linea.descripcion,
                'unidad': linea.unidad,
                'cantidad': _dec(linea.cantidad),
                'precio': _dec(linea.precio_unitario),
                'subtotal': _dec(linea.subtotal),
            }
            for linea in presupuesto.lineas_motor
        ]

    lineas = []
    for linea in presupuesto.lineas_trabajo:
        lineas.append({
            'bloque': BloqueEconomico.C_MANO_OBRA.value,
            'codigo': f'TRB-{linea.trabajo_id}',
            'descripcion': linea.descripcion_cliente or 'Trabajo',
            'unidad': UNIDAD_LEGACY,
            'cantidad': _dec(linea.cantidad),
            'precio': _dec(linea.precio_unitario_cliente),
            'subtotal': _dec(linea.total_cliente),
        })
    for linea in presupuesto.lineas_material:
        lineas.append({
            'bloque': BloqueEconomico.B_MATERIALES_INSTALACION.value,
            'codigo': f'MAT-{linea.material_id}',
            'descripcion': linea.descripcion_cliente or 'Material',
            'unidad': UNIDAD_LEGACY,
            'cantidad': _dec(linea.cantidad),
            'precio': _dec(linea.precio_unitario_cliente),
            'subtotal': _dec(linea.total_cliente),
        })
    for linea in presupuesto.lineas_desplazamiento:
        lineas.append({
            'bloque': BloqueEconomico.DESPLAZAMIENTO.value,
            'codigo': 'DSP',
            'descripcion': linea.descripcion or 'Desplazamiento',
            'unidad': UNIDAD_LEGACY,
            'cantidad': Decimal('1'),
            'precio': _dec(linea.precio_cliente),
            'subtotal': _dec(linea.precio_cliente),
        })
    return lineas


def sumar_bloque(lineas: List[Dict[str, Any]], bloque: BloqueEconomico) -> Decimal:
    return redondear(sum(
        (_dec(linea['subtotal']) for linea in lineas if linea['bloque'] == bloque.value),
        Decimal('0'),
    ))


# ============================================================================
# RESUMEN ECONÓMICO
# ============================================================================

def _num_vehiculos(presupuesto) -> int:
    contexto = presupuesto.contexto
    if contexto is None:
        return 0
    return contexto.num_vehiculos or 0


def _compute(presupuesto, lineas: List[Dict[str, Any]]) -> Dict[str, Any]:
    totales_bloque = {}
    for bloque in BLOQUES_CANONICOS:
        stored = getattr(presupuesto, f'total_bloque_{bloque.letra.lower()}')
        totales_bloque[bloque.letra] = redondear(preferir_guardado(stored, sumar_bloque(lineas, bloque)))

    total_desplazamientos = sumar_bloque(lineas, BloqueEconomico.DESPLAZAMIENTO)

    # E (optional years 4-5) is reported but never part of the base
    suma_bloques = (
        totales_bloque['A'] + totales_bloque['B'] + totales_bloque['C'] + totales_bloque['D']
        + total_desplazamientos
    )
    base_imponible = redondear(
        preferir_guardado(presupuesto.base_imponible, preferir_guardado(presupuesto.total_cliente, suma_bloques))
    )

    iva_porcentaje = (
        _dec(presupuesto.iva_porcentaje) if presupuesto.iva_porcentaje is not None else iva_porcentaje_default()
    )
    iva_importe = redondear(
        preferir_guardado(presupuesto.iva_importe, base_imponible * iva_porcentaje / Decimal('100'))
    )
    total_con_iva = redondear(preferir_guardado(presupuesto.total_con_iva, base_imponible + iva_importe))

    num_vehiculos = _num_vehiculos(presupuesto)
    derivado_vehiculo = base_imponible / num_vehiculos if num_vehiculos > 0 else Decimal('0')
    precio_unitario_vehiculo = redondear(
        preferir_guardado(presupuesto.precio_unitario_vehiculo, derivado_vehiculo)
    )

    return {
        'base_imponible': base_imponible,
        'iva_porcentaje': iva_porcentaje,
        'iva_importe': iva_importe,
        'total_con_iva': total_con_iva,
        'precio_unitario_vehiculo': precio_unitario_vehiculo,
        'totales_bloque': totales_bloque,
        'total_desplazamientos': total_desplazamientos,
        'total_opcionales': totales_bloque['E'],
    }


def compute_economico(presupuesto, lineas: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
    """
    Economic summary of a quote.

    Returns:
        dict with base_imponible, iva_porcentaje, iva_importe, total_con_iva,
        precio_unitario_vehiculo, totales_bloque {A..E},
        total_desplazamientos and total_opcionales.

    Raises:
        ComputationError: on any unexpected failure (logged with context).
    """
    try:
        if lineas is None:
            lineas = build_lineas_oferta(presupuesto)
        return _compute(presupuesto, lineas)
    except Exception as e:
        logger.exception(
            f"[ECONOMICO] Error calculando resumen del presupuesto "
            f"{getattr(presupuesto, 'id', None)} ({getattr(presupuesto, 'codigo', None)}): {e}"
        )
        raise ComputationError()
