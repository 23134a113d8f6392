"""
Unit tests for the inventory → catalog material sync.
"""

import pytest
from decimal import Decimal

from app.models import Material, MargenCategoria
from app.services.material_sync_service import sync_materiales, map_unidad


def _registro(**kwargs):
    data = {
        'id': 'INV-1',
        'sku': 'CAM-001',
        'name': 'Cámara domo IP',
        'family': 'Videovigilancia',
        'unit': 'ud',
        'unitCost': 10,
        'supplier': 'Distribuciones Sur',
        'supplierProductCode': 'DS-778',
        'minThreshold': 5,
        'observations': 'Modelo exterior',
    }
    data.update(kwargs)
    return data


class TestMapUnidad:

    @pytest.mark.parametrize('unit,expected', [
        ('m', 'METRO'), ('Metros', 'METRO'), ('m2', 'METRO_CUADRADO'), ('KG', 'KILOGRAMO'),
        ('l', 'LITRO'), ('rollo', 'ROLLO'), ('caja', 'CAJA'), (None, 'UNIDAD'), ('pieza', 'UNIDAD'),
    ])
    def test_units(self, unit, expected):
        assert map_unidad(unit) == expected


class TestSync:

    def test_creates_material_and_prices_it(self, session):
        session.add(MargenCategoria(categoria='Videovigilancia', margen=Decimal('40')))
        session.commit()

        result = sync_materiales(session, [_registro()])

        assert result['created'] == 1
        assert result['updated'] == 0
        assert result['precios_recalculados'] == 1

        material = session.query(Material).filter_by(sku='CAM-001').one()
        assert material.descripcion == 'Cámara domo IP'
        assert material.categoria == 'Videovigilancia'
        assert material.referencia_externa == 'INV-1'
        assert material.codigo_proveedor == 'DS-778'
        assert material.stock_minimo == 5
        assert material.origen_externo is True
        assert material.precio_venta == Decimal('14.0000')

    def test_updates_by_external_reference(self, session):
        sync_materiales(session, [_registro()])
        result = sync_materiales(session, [_registro(sku='CAM-001-B', unitCost=20)])

        assert result['created'] == 0
        assert result['updated'] == 1
        material = session.query(Material).one()
        assert material.sku == 'CAM-001-B'
        assert material.coste_medio == Decimal('20')

    def test_updates_by_sku_when_reference_unknown(self, session, material_factory):
        material_factory(sku='CAM-001', precio_estandar=Decimal('55'))

        result = sync_materiales(session, [_registro(id='OTRO')])

        assert result['updated'] == 1
        material = session.query(Material).one()
        assert material.referencia_externa == 'OTRO'
        assert material.precio_estandar == Decimal('55')

    def test_records_without_sku_are_skipped(self, session):
        result = sync_materiales(session, [_registro(sku=''), {'id': 2}, 'basura'])
        assert result == {'total': 3, 'created': 0, 'updated': 0, 'skipped': 3, 'errors': []}
        assert session.query(Material).count() == 0

    def test_bad_record_collected_batch_continues(self, session):
        result = sync_materiales(session, [
            _registro(id='INV-1', sku='A', unitCost='no es número'),
            _registro(id='INV-2', sku='B'),
        ])

        assert result['created'] == 1
        assert len(result['errors']) == 1
        assert 'SKU: A' in result['errors'][0]
        assert [m.sku for m in session.query(Material).all()] == ['B']

    def test_repeated_sku_in_batch_resolves_to_one_row(self, session):
        result = sync_materiales(session, [_registro(id=None), _registro(id=None, unitCost=12)])
        assert result['created'] == 1
        assert result['updated'] == 1
        assert session.query(Material).count() == 1

    def test_sku_owned_by_other_material_does_not_abort_batch(self, session, material_factory):
        material_factory(sku='S1', referencia_externa='r1')
        material_factory(sku='S2')

        result = sync_materiales(session, [
            _registro(id='r1', sku='S2'),
            _registro(id='r9', sku='NEW'),
        ])

        assert result['created'] == 1
        assert result['updated'] == 0
        assert len(result['errors']) == 1
        assert 'SKU: S2' in result['errors'][0]
        assert session.query(Material).filter_by(sku='NEW').count() == 1
        assert session.query(Material).filter_by(referencia_externa='r1').one().sku == 'S1'
