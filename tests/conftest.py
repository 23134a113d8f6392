import pytest
from datetime import datetime, timezone
from decimal import Decimal

from app import create_app
from app.database import get_session, create_schema, drop_schema
from app.models import (
    Material, MargenCategoria, Presupuesto, PresupuestoContexto, PresupuestoTexto,
    PresupuestoLineaMotor, BloqueEconomico, EstadoPresupuesto,
)


@pytest.fixture(scope='session')
def app():
    """Create application instance for testing (in-memory SQLite)."""
    app = create_app('config.TestConfig')
    return app


@pytest.fixture(autouse=True)
def app_context(app):
    """Fresh schema and an application context for every test."""
    with app.app_context():
        create_schema()
        yield
        get_session().remove()
        drop_schema()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def session():
    """Database session for testing."""
    session = get_session()
    yield session
    session.rollback()


@pytest.fixture(scope='function')
def material_factory(session):
    """Create catalog materials with sensible defaults."""
    counter = {'n': 0}

    def _create(**kwargs):
        counter['n'] += 1
        data = {
            'sku': f'SKU-{counter["n"]:03d}',
            'descripcion': f'Material {counter["n"]}',
            'unidad': 'UNIDAD',
            'coste_medio': Decimal('10'),
            'precio_estandar': Decimal('0'),
            'precio_venta': Decimal('0'),
            'activo': True,
        }
        data.update(kwargs)
        material = Material(**data)
        session.add(material)
        session.commit()
        return material

    return _create


@pytest.fixture(scope='function')
def presupuesto_factory(session):
    """Create quotes directly in the database."""
    counter = {'n': 0}

    def _create(**kwargs):
        counter['n'] += 1
        data = {
            'codigo': f'PRE-2026-{counter["n"]:04d}',
            'estado': EstadoPresupuesto.BORRADOR,
            'fecha': datetime.now(timezone.utc),
            'validez_dias': 30,
            'cliente_nombre': 'Transportes Norte SL',
            'proyecto_nombre': 'Flota urbana',
        }
        data.update(kwargs)
        presupuesto = Presupuesto(**data)
        session.add(presupuesto)
        session.commit()
        return presupuesto

    return _create


@pytest.fixture(scope='function')
def presupuesto_listo(session, presupuesto_factory):
    """A quote that passes the emission checklist."""
    presupuesto = presupuesto_factory(template_code='OFERTA_EMT_360_V2')
    session.add_all([
        PresupuestoContexto(
            presupuesto_id=presupuesto.id,
            num_vehiculos=4,
            tipologia_vehiculo='Autobús urbano',
            solucion_codigo='OFERTA_EMT_360_V2',
        ),
        PresupuestoTexto(presupuesto_id=presupuesto.id, titulo='Introducción',
                         contenido='Propuesta de instalación.', orden=0),
        PresupuestoLineaMotor(
            presupuesto_id=presupuesto.id, bloque=BloqueEconomico.A_SUMINISTRO_EQUIPOS,
            codigo='EQ-01', descripcion='Equipo embarcado', unidad='UD',
            cantidad=Decimal('4'), precio_unitario=Decimal('250'), subtotal=Decimal('1000'), orden=0,
        ),
        PresupuestoLineaMotor(
            presupuesto_id=presupuesto.id, bloque=BloqueEconomico.C_MANO_OBRA,
            codigo='MO-01', descripcion='Instalación', unidad='H',
            cantidad=Decimal('10'), precio_unitario=Decimal('40'), subtotal=Decimal('400'), orden=1,
        ),
        PresupuestoLineaMotor(
            presupuesto_id=presupuesto.id, bloque=BloqueEconomico.E_OPCIONALES_4_5,
            codigo='OPC-01', descripcion='Mantenimiento años 4-5', unidad='UD',
            cantidad=Decimal('1'), precio_unitario=Decimal('300'), subtotal=Decimal('300'), orden=2,
        ),
    ])
    session.commit()
    return presupuesto


@pytest.fixture(scope='function')
def margen_categoria(session):
    margen = MargenCategoria(categoria='Cableado', margen=Decimal('40'))
    session.add(margen)
    session.commit()
    return margen
