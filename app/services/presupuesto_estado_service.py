"""
Commercial lifecycle of a quote.

    BORRADOR → ENVIADO → {NEGOCIACION, ACEPTADO, RECHAZADO, EXPIRADO}
    NEGOCIACION → {ACEPTADO, RECHAZADO, EXPIRADO}

ACEPTADO, RECHAZADO and EXPIRADO are terminal: no outbound transitions and
the quote's lines, context, texts and module overrides are locked.

The expiry sweep is the only path that may move BORRADOR straight to
EXPIRADO; user transitions always go through TRANSICIONES.
"""
import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Dict, Any, Optional

from sqlalchemy.orm import Session

from app.database import get_session
from app.models import Presupuesto, EstadoPresupuesto, ESTADOS_COMERCIALES_ACTIVOS
from app.exceptions import ValidationError, NotFoundError, StateConflictError
from app.services.economico_service import compute_economico, build_lineas_oferta
from app.blueprints.metrics import presupuestos_expirados_total

logger = logging.getLogger(__name__)

E = EstadoPresupuesto

TRANSICIONES = {
    E.BORRADOR: frozenset({E.ENVIADO}),
    E.ENVIADO: frozenset({E.NEGOCIACION, E.ACEPTADO, E.RECHAZADO, E.EXPIRADO}),
    E.NEGOCIACION: frozenset({E.ACEPTADO, E.RECHAZADO, E.EXPIRADO}),
    E.ACEPTADO: frozenset(),
    E.RECHAZADO: frozenset(),
    E.EXPIRADO: frozenset(),
}

DEFAULT_EXPIRY_INTERVAL_MINUTES = 15


def parse_estado(value) -> EstadoPresupuesto:
    """Parse a state name coming from the API."""
    if isinstance(value, EstadoPresupuesto):
        return value
    try:
        return EstadoPresupuesto(str(value).strip().upper())
    except ValueError:
        raise ValidationError(
            f'Estado inválido: {value}',
            payload={'estados_validos': [e.value for e in EstadoPresupuesto]},
        )


def puede_transicionar(origen: EstadoPresupuesto, destino: EstadoPresupuesto) -> bool:
    return destino in TRANSICIONES.get(origen, frozenset())


def es_editable(presupuesto: Presupuesto) -> bool:
    return presupuesto.is_editable


def asegurar_editable(presupuesto: Presupuesto) -> None:
    """Raise StateConflictError if the quote is in a terminal state."""
    if not presupuesto.is_editable:
        raise StateConflictError(presupuesto.estado)


def transicionar(session: Session, presupuesto_id: int, destino) -> Presupuesto:
    """
    Apply a user-initiated lifecycle transition.

    Raises:
        ValidationError: unknown state name
        NotFoundError: unknown quote
        StateConflictError: target not allowed from the current state
    """
    destino = parse_estado(destino)

    presupuesto = session.query(Presupuesto).filter(Presupuesto.id == presupuesto_id).first()
    if not presupuesto:
        raise NotFoundError('Presupuesto no encontrado')

    origen = presupuesto.estado
    if not puede_transicionar(origen, destino):
        raise StateConflictError(origen, target_state=destino)

    try:
        ahora = datetime.now(timezone.utc)
        presupuesto.estado = destino
        if destino == E.ENVIADO:
            presupuesto.fecha_envio = ahora
        if destino in (E.ACEPTADO, E.RECHAZADO):
            presupuesto.fecha_respuesta = ahora
        session.commit()
    except Exception:
        session.rollback()
        raise

    logger.info(f"[ESTADO] Presupuesto {presupuesto.codigo}: {origen.value} → {destino.value}")
    return presupuesto


# ============================================================================
# EXPIRACIÓN AUTOMÁTICA
# ============================================================================

def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; they are stored as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def fecha_caducidad(presupuesto: Presupuesto) -> datetime:
    return _as_utc(presupuesto.fecha) + timedelta(days=presupuesto.validez_dias or 0)


def expirar_presupuestos_vencidos(session: Session, ahora: Optional[datetime] = None) -> int:
    """
    Move every active quote past its validity window to EXPIRADO.

    Candidates are read first, then updated in a single batched UPDATE
    restricted to the active states, so a quote that changed state in
    between is left alone.

    Returns:
        int: number of quotes expired
    """
    ahora = _as_utc(ahora) if ahora else datetime.now(timezone.utc)
    activos = list(ESTADOS_COMERCIALES_ACTIVOS)

    candidatos = session.query(Presupuesto.id, Presupuesto.fecha, Presupuesto.validez_dias).filter(
        Presupuesto.estado.in_(activos)
    ).all()

    ids_expirados = [
        c.id for c in candidatos
        if c.fecha is not None and _as_utc(c.fecha) + timedelta(days=c.validez_dias or 0) < ahora
    ]
    if not ids_expirados:
        return 0

    try:
        total = session.query(Presupuesto).filter(
            Presupuesto.id.in_(ids_expirados),
            Presupuesto.estado.in_(activos),
        ).update({Presupuesto.estado: E.EXPIRADO}, synchronize_session=False)
        session.commit()
    except Exception:
        session.rollback()
        raise

    presupuestos_expirados_total.inc(total)
    logger.info(f"[EXPIRY] Presupuestos expirados automáticamente: {total}")
    return total


class ExpiryJob:
    """
    Background sweep running `expirar_presupuestos_vencidos` on a timer.

    Runs once on start and then every `interval_minutes`. A tick that finds
    the previous one still running is skipped. Failures are logged and the
    next tick retries.
    """

    def __init__(self, app, interval_minutes=DEFAULT_EXPIRY_INTERVAL_MINUTES):
        self.app = app
        self.interval_seconds = parse_interval_minutes(interval_minutes) * 60
        self._stop = threading.Event()
        self._lock = threading.Lock()
        self._thread = None
        self.last_run_at = None
        self.last_expirados = None

    @property
    def is_running(self) -> bool:
        return bool(self._thread and self._thread.is_alive())

    def run_once(self) -> Optional[int]:
        if not self._lock.acquire(blocking=False):
            logger.warning("[EXPIRY] Barrido anterior aún en curso, se omite este tick")
            return None
        try:
            with self.app.app_context():
                session = get_session()
                try:
                    self.last_expirados = expirar_presupuestos_vencidos(session)
                    self.last_run_at = datetime.now(timezone.utc)
                    return self.last_expirados
                finally:
                    session.remove()
        except Exception as e:
            logger.error(f"[EXPIRY] Error en job de expiración de presupuestos: {e}", exc_info=True)
            return None
        finally:
            self._lock.release()

    def _loop(self):
        self.run_once()
        while not self._stop.wait(self.interval_seconds):
            self.run_once()

    def start(self):
        if self.is_running:
            return self
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name='presupuesto-expiry', daemon=True)
        self._thread.start()
        logger.info(f"[EXPIRY] Job iniciado (cada {self.interval_seconds // 60} min)")
        return self

    def stop(self, timeout=None):
        self._stop.set()
        if self._thread:
            self._thread.join(timeout)


def parse_interval_minutes(value) -> int:
    """Positive integer minutes; anything else falls back to the default."""
    try:
        minutes = int(float(value))
    except (TypeError, ValueError, OverflowError):
        return DEFAULT_EXPIRY_INTERVAL_MINUTES
    return minutes if minutes > 0 else DEFAULT_EXPIRY_INTERVAL_MINUTES


def start_expiry_job(app) -> ExpiryJob:
    """Start the expiry sweep for this app process."""
    job = ExpiryJob(app, app.config.get('PRESUPUESTOS_EXPIRY_INTERVAL_MINUTES', DEFAULT_EXPIRY_INTERVAL_MINUTES))
    app.extensions['presupuesto_expiry_job'] = job
    return job.start()


# ============================================================================
# VALIDACIÓN DE EMISIÓN
# ============================================================================

def check_emision(presupuesto: Presupuesto) -> Dict[str, Any]:
    """
    Readiness checklist before a formal offer can be issued.

    Advisory for transitions; blocking for offer emission.

    Returns:
        dict: {ready, checks: [{key, label, ok}], pendientes: [label]}
    """
    lineas = build_lineas_oferta(presupuesto)
    economico = compute_economico(presupuesto, lineas)
    contexto = presupuesto.contexto

    checks = [
        {
            'key': 'cliente',
            'label': 'Cliente informado',
            'ok': bool((presupuesto.cliente_nombre or '').strip()),
        },
        {
            'key': 'lineas',
            'label': 'Al menos una línea económica',
            'ok': len(lineas) > 0,
        },
        {
            'key': 'totales',
            'label': 'Base imponible y total con IVA positivos',
            'ok': economico['base_imponible'] > 0 and economico['total_con_iva'] > 0,
        },
    ]

    if contexto is not None:
        checks.extend([
            {
                'key': 'solucion',
                'label': 'Solución / plantilla seleccionada',
                'ok': bool(contexto.solucion_codigo),
            },
            {
                'key': 'num_vehiculos',
                'label': 'Número de vehículos informado',
                'ok': (contexto.num_vehiculos or 0) > 0,
            },
            {
                'key': 'tipologia',
                'label': 'Tipología de vehículo informada',
                'ok': bool((contexto.tipologia_vehiculo or '').strip()),
            },
            {
                'key': 'textos',
                'label': 'Textos comerciales redactados',
                'ok': len(presupuesto.textos) > 0,
            },
        ])

    checks.append({
        'key': 'estado',
        'label': 'Estado comercial vigente (no rechazado ni expirado)',
        'ok': presupuesto.estado not in (E.RECHAZADO, E.EXPIRADO),
    })

    pendientes = [c['label'] for c in checks if not c['ok']]
    return {
        'ready': not pendientes,
        'checks': checks,
        'pendientes': pendientes,
    }
