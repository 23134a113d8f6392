"""
Unit tests for quote header, lines, context, texts and cached totals.
"""

import pytest
from decimal import Decimal

from app.models import Presupuesto, EstadoPresupuesto, PresupuestoLineaTrabajo
from app.exceptions import ValidationError, NotFoundError, StateConflictError
from app.services import presupuesto_service
from app.services.presupuesto_service import generar_codigo


class TestCabecera:

    def test_create_generates_code_and_defaults(self, session):
        presupuesto = presupuesto_service.create_presupuesto(session, {'cliente_nombre': '  Bus Norte  '})

        assert presupuesto.codigo.startswith('PRE-')
        assert presupuesto.codigo.endswith('-0001')
        assert presupuesto.estado == EstadoPresupuesto.BORRADOR
        assert presupuesto.validez_dias == 30
        assert presupuesto.cliente_nombre == 'Bus Norte'

    def test_codes_are_sequential_per_year(self, session, presupuesto_factory):
        presupuesto_factory(codigo='PRE-2026-0007')
        presupuesto_factory(codigo='PRE-2025-0099')
        assert generar_codigo(session, 2026) == 'PRE-2026-0008'
        assert generar_codigo(session, 2027) == 'PRE-2027-0001'

    @pytest.mark.parametrize('data', [
        {'validez_dias': 0},
        {'validez_dias': '30'},
        {'descuento_porcentaje': 120},
        {'descuento_porcentaje': -1},
        {'base_imponible': -5},
    ])
    def test_invalid_header_values(self, session, data):
        with pytest.raises(ValidationError):
            presupuesto_service.create_presupuesto(session, data)

    def test_update_terminal_quote_refused(self, session, presupuesto_factory):
        presupuesto = presupuesto_factory(estado=EstadoPresupuesto.RECHAZADO)
        with pytest.raises(StateConflictError):
            presupuesto_service.update_presupuesto(session, presupuesto.id, {'cliente_nombre': 'X'})

    def test_delete(self, session, presupuesto_factory):
        presupuesto = presupuesto_factory()
        presupuesto_id = presupuesto.id
        presupuesto_service.delete_presupuesto(session, presupuesto_id)
        assert session.get(Presupuesto, presupuesto_id) is None

    def test_get_unknown(self, session):
        with pytest.raises(NotFoundError):
            presupuesto_service.get_presupuesto(session, 999)

    def test_list_filters(self, session, presupuesto_factory):
        presupuesto_factory(cliente_nombre='Autobuses Costa')
        presupuesto_factory(cliente_nombre='Metro Sur', estado=EstadoPresupuesto.ENVIADO)

        assert len(presupuesto_service.list_presupuestos(session)) == 2
        assert [p.cliente_nombre for p in presupuesto_service.list_presupuestos(session, estado='ENVIADO')] == ['Metro Sur']
        assert [p.cliente_nombre for p in presupuesto_service.list_presupuestos(session, q='costa')] == ['Autobuses Costa']


class TestLineas:

    def test_legacy_lines_update_cached_totals(self, session, presupuesto_factory):
        presupuesto = presupuesto_factory()
        pid = presupuesto.id

        presupuesto_service.add_linea_trabajo(session, pid, {
            'trabajo_id': 3, 'cantidad': 2, 'precio_unitario_cliente': 50, 'coste_unitario_interno': 30,
        })
        presupuesto_service.add_linea_desplazamiento(session, pid, {'precio_cliente': 80, 'coste_interno': 60})

        presupuesto = session.get(Presupuesto, pid)
        assert presupuesto.total_trabajos == Decimal('100')
        assert presupuesto.total_desplazamientos == Decimal('80')
        assert presupuesto.total_cliente == Decimal('180')
        assert presupuesto.coste_total == Decimal('120')
        assert presupuesto.margen_bruto == Decimal('60')
        assert presupuesto.margen_porcentaje == Decimal('33.33')

    def test_discount_applies_to_total(self, session, presupuesto_factory):
        presupuesto = presupuesto_factory(descuento_porcentaje=Decimal('10'))
        presupuesto_service.add_linea_trabajo(session, presupuesto.id, {'cantidad': 1, 'precio_unitario_cliente': 200})
        assert session.get(Presupuesto, presupuesto.id).total_cliente == Decimal('180')

    def test_material_line_defaults_from_catalog(self, session, presupuesto_factory, material_factory):
        material = material_factory(descripcion='Cable UTP', coste_medio=Decimal('1.5'), precio_venta=Decimal('2.1'))
        presupuesto = presupuesto_factory()

        linea = presupuesto_service.add_linea_material(session, presupuesto.id, {
            'material_id': material.id, 'cantidad': 100,
        })

        assert linea.descripcion_cliente == 'Cable UTP'
        assert linea.total_cliente == Decimal('210')
        assert linea.total_interno == Decimal('150')

    def test_material_line_unknown_material(self, session, presupuesto_factory):
        presupuesto = presupuesto_factory()
        with pytest.raises(NotFoundError):
            presupuesto_service.add_linea_material(session, presupuesto.id, {'material_id': 404, 'cantidad': 1})

    def test_engine_lines_exclude_optional_block_from_total(self, session, presupuesto_factory):
        presupuesto = presupuesto_factory()
        pid = presupuesto.id
        presupuesto_service.add_linea_motor(session, pid, {
            'bloque': 'A_SUMINISTRO_EQUIPOS', 'codigo': 'EQ', 'descripcion': 'Equipo',
            'cantidad': 2, 'precio_unitario': '125,5',
        })
        presupuesto_service.add_linea_motor(session, pid, {
            'bloque': 'E_OPCIONALES_4_5', 'codigo': 'OPC', 'descripcion': 'Opcional',
            'cantidad': 1, 'precio_unitario': 999,
        })

        assert session.get(Presupuesto, pid).total_cliente == Decimal('251')

    def test_engine_line_invalid_block(self, session, presupuesto_factory):
        presupuesto = presupuesto_factory()
        with pytest.raises(ValidationError) as exc_info:
            presupuesto_service.add_linea_motor(session, presupuesto.id, {
                'bloque': 'Z', 'codigo': 'X', 'descripcion': 'X', 'cantidad': 1, 'precio_unitario': 1,
            })
        assert 'A_SUMINISTRO_EQUIPOS' in exc_info.value.payload['bloques_validos']

    def test_update_and_delete_line(self, session, presupuesto_factory):
        presupuesto = presupuesto_factory()
        pid = presupuesto.id
        linea = presupuesto_service.add_linea_trabajo(session, pid, {'cantidad': 1, 'precio_unitario_cliente': 100})
        linea_id = linea.id

        presupuesto_service.update_linea_trabajo(session, pid, linea_id, {'cantidad': 3})
        assert session.get(Presupuesto, pid).total_trabajos == Decimal('300')

        presupuesto_service.delete_linea(session, pid, 'trabajo', linea_id)
        assert session.get(PresupuestoLineaTrabajo, linea_id) is None
        assert session.get(Presupuesto, pid).total_trabajos == Decimal('0')

    def test_lines_locked_on_terminal_quote(self, session, presupuesto_factory):
        presupuesto = presupuesto_factory(estado=EstadoPresupuesto.EXPIRADO)
        with pytest.raises(StateConflictError):
            presupuesto_service.add_linea_trabajo(session, presupuesto.id, {'cantidad': 1, 'precio_unitario_cliente': 1})

    def test_unknown_line_type(self, session, presupuesto_factory):
        presupuesto = presupuesto_factory()
        with pytest.raises(NotFoundError):
            presupuesto_service.delete_linea(session, presupuesto.id, 'otro', 1)


class TestContextoYTextos:

    def test_upsert_contexto_merges_extras_and_keeps_module_key(self, session, presupuesto_factory):
        presupuesto = presupuesto_factory()
        pid = presupuesto.id

        presupuesto_service.upsert_contexto(session, pid, {'num_vehiculos': 12, 'extras': {'a': 1}})
        contexto = presupuesto_service.upsert_contexto(session, pid, {
            'tipologia_vehiculo': 'Autobús', 'extras': {'b': 2, 'ofertaModulos': [{'key': 'X'}]},
        })

        assert contexto.num_vehiculos == 12
        assert contexto.tipologia_vehiculo == 'Autobús'
        assert contexto.extras_json == {'a': 1, 'b': 2}

    def test_num_vehiculos_must_be_integer(self, session, presupuesto_factory):
        presupuesto = presupuesto_factory()
        with pytest.raises(ValidationError):
            presupuesto_service.upsert_contexto(session, presupuesto.id, {'num_vehiculos': 2.5})

    def test_textos(self, session, presupuesto_factory):
        presupuesto = presupuesto_factory()
        pid = presupuesto.id

        primero = presupuesto_service.add_texto(session, pid, 'Intro', 'Texto 1')
        segundo = presupuesto_service.add_texto(session, pid, 'Cierre', 'Texto 2')
        assert (primero.orden, segundo.orden) == (0, 1)

        presupuesto_service.delete_texto(session, pid, primero.id)
        assert [t.titulo for t in session.get(Presupuesto, pid).textos] == ['Cierre']

    def test_texto_requires_title_and_content(self, session, presupuesto_factory):
        presupuesto = presupuesto_factory()
        with pytest.raises(ValidationError):
            presupuesto_service.add_texto(session, presupuesto.id, '', 'algo')


class TestVistas:

    def test_client_view_hides_internal_fields(self, session, presupuesto_factory):
        presupuesto = presupuesto_factory(observaciones_internas='margen ajustado')
        detalle = presupuesto_service.presupuesto_detalle(presupuesto)
        cliente = presupuesto_service.vista_cliente(presupuesto)

        assert detalle['observaciones_internas'] == 'margen ajustado'
        for field in ('coste_total', 'margen_bruto', 'margen_porcentaje', 'observaciones_internas'):
            assert field in detalle
            assert field not in cliente
        assert cliente['codigo'] == detalle['codigo']
