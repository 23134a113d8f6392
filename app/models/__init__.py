"""Models package - exports all SQLAlchemy models."""
# Configuration
from app.models.configuracion import Configuracion

# Catalog & pricing
from app.models.material import Material
from app.models.margen_categoria import MargenCategoria

# Quotes
from app.models.presupuesto import Presupuesto, EstadoPresupuesto, ESTADOS_TERMINALES, ESTADOS_COMERCIALES_ACTIVOS
from app.models.presupuesto_contexto import PresupuestoContexto, EXTRAS_KEY_MODULOS
from app.models.presupuesto_linea import (
    BloqueEconomico, BLOQUES_CANONICOS,
    PresupuestoLineaMotor, PresupuestoLineaTrabajo, PresupuestoLineaMaterial, PresupuestoLineaDesplazamiento,
)
from app.models.presupuesto_texto import PresupuestoTexto
from app.models.oferta_snapshot import OfertaSnapshot

__all__ = [
    'Configuracion',
    'Material', 'MargenCategoria',
    'Presupuesto', 'EstadoPresupuesto', 'ESTADOS_TERMINALES', 'ESTADOS_COMERCIALES_ACTIVOS',
    'PresupuestoContexto', 'EXTRAS_KEY_MODULOS',
    'BloqueEconomico', 'BLOQUES_CANONICOS',
    'PresupuestoLineaMotor', 'PresupuestoLineaTrabajo', 'PresupuestoLineaMaterial', 'PresupuestoLineaDesplazamiento',
    'PresupuestoTexto', 'OfertaSnapshot',
]
