"""
Unit tests for the margin cascade and sale price recalculation.
"""

import pytest
from decimal import Decimal
from types import SimpleNamespace

from prometheus_client import REGISTRY

from app.models import Material, MargenCategoria, Configuracion
from app.exceptions import ValidationError, NotFoundError
from app.services import margenes_service
from app.services.margenes_service import (
    resolve_margen, calcular_precio_venta, CLAVE_MARGEN_GENERAL,
)


def _material(margen_personalizado=None, categoria=None):
    return SimpleNamespace(margen_personalizado=margen_personalizado, categoria=categoria)


class TestResolveMargen:
    """Tests for the individual → category → general precedence."""

    def test_individual_wins_over_category_and_general(self):
        material = _material(margen_personalizado=Decimal('15'), categoria='Cableado')
        assert resolve_margen(material, {'Cableado': Decimal('40')}, Decimal('30')) == Decimal('15')

    def test_falls_through_to_category(self):
        material = _material(categoria='Cableado')
        assert resolve_margen(material, {'Cableado': Decimal('40')}, Decimal('30')) == Decimal('40')

    def test_falls_through_to_general(self):
        material = _material(categoria='Cableado')
        assert resolve_margen(material, {}, Decimal('30')) == Decimal('30')

    def test_material_without_category_uses_general(self):
        assert resolve_margen(_material(), {'Cableado': Decimal('40')}, Decimal('25')) == Decimal('25')

    def test_zero_individual_margin_is_still_an_override(self):
        material = _material(margen_personalizado=Decimal('0'), categoria='Cableado')
        assert resolve_margen(material, {'Cableado': Decimal('40')}, Decimal('30')) == Decimal('0')


class TestCalcularPrecioVenta:

    def test_four_decimals(self):
        assert calcular_precio_venta(Decimal('10'), Decimal('40')) == Decimal('14.0000')
        assert str(calcular_precio_venta(Decimal('10'), Decimal('40'))) == '14.0000'

    def test_half_up_rounding(self):
        # 0.12345 × 1.00 → 0.1235 (half-up, not banker's)
        assert calcular_precio_venta(Decimal('0.12345'), Decimal('0')) == Decimal('0.1235')

    def test_no_float_drift(self):
        assert calcular_precio_venta(Decimal('0.1'), Decimal('30')) == Decimal('0.1300')


class TestMargenGeneral:

    def test_default_when_not_configured(self, session):
        assert margenes_service.get_margen_general(session) == Decimal('30')

    def test_set_margen_general_persists_and_recomputes(self, session, material_factory):
        material = material_factory(coste_medio=Decimal('100'))
        result = margenes_service.set_margen_general(session, '25')

        assert result['margen_general'] == Decimal('25')
        assert result['recalculo']['actualizados'] == 1
        assert margenes_service.get_margen_general(session) == Decimal('25')

        session.refresh(material)
        assert material.precio_venta == Decimal('125.0000')

    def test_invalid_stored_value_falls_back_to_default(self, session):
        session.add(Configuracion(clave=CLAVE_MARGEN_GENERAL, valor='abc'))
        session.commit()
        assert margenes_service.get_margen_general(session) == Decimal('30')

    def test_negative_margin_rejected(self, session):
        with pytest.raises(ValidationError):
            margenes_service.set_margen_general(session, -5)

    def test_non_numeric_margin_rejected(self, session):
        with pytest.raises(ValidationError):
            margenes_service.set_margen_general(session, 'mucho')


class TestMargenCategoria:

    def test_end_to_end_category_margin_change(self, session, material_factory):
        """coste 10 at 40% → 14.0000; category moved to 50% → 15.0000, cost untouched."""
        material = material_factory(coste_medio=Decimal('10'), categoria='Videovigilancia')

        margenes_service.set_margen_categoria(session, 'Videovigilancia', 40)
        session.refresh(material)
        assert material.precio_venta == Decimal('14.0000')

        margenes_service.set_margen_categoria(session, 'Videovigilancia', 50)
        margenes_service.recalcular_todos_los_precios(session)
        session.refresh(material)
        assert material.precio_venta == Decimal('15.0000')
        assert material.coste_medio == Decimal('10')

    def test_empty_category_rejected(self, session):
        with pytest.raises(ValidationError):
            margenes_service.set_margen_categoria(session, '  ', 10)

    def test_delete_category_falls_back_to_general(self, session, material_factory, margen_categoria):
        material = material_factory(coste_medio=Decimal('10'), categoria='Cableado')
        margenes_service.recalcular_todos_los_precios(session)
        session.refresh(material)
        assert material.precio_venta == Decimal('14.0000')

        margenes_service.delete_margen_categoria(session, 'Cableado')
        session.refresh(material)
        assert material.precio_venta == Decimal('13.0000')
        assert session.query(MargenCategoria).count() == 0

    def test_delete_unknown_category(self, session):
        with pytest.raises(NotFoundError):
            margenes_service.delete_margen_categoria(session, 'Inexistente')


class TestMargenMaterial:

    def test_individual_margin_then_cleared(self, session, material_factory, margen_categoria):
        material = material_factory(coste_medio=Decimal('10'), categoria='Cableado')

        margenes_service.set_margen_material(session, material.id, 100)
        session.refresh(material)
        assert material.precio_venta == Decimal('20.0000')
        assert material.margen_personalizado == Decimal('100')

        margenes_service.set_margen_material(session, material.id, None)
        session.refresh(material)
        assert material.margen_personalizado is None
        assert material.precio_venta == Decimal('14.0000')

    def test_unknown_material(self, session):
        with pytest.raises(NotFoundError):
            margenes_service.set_margen_material(session, 9999, 10)


class TestRecalculo:

    def test_recompute_is_idempotent(self, session, material_factory, margen_categoria):
        material_factory(coste_medio=Decimal('12.3456'), categoria='Cableado')
        material_factory(coste_medio=Decimal('7.77'))
        material_factory(coste_medio=Decimal('3'), margen_personalizado=Decimal('12.5'))

        margenes_service.recalcular_todos_los_precios(session)
        primera = {m.sku: m.precio_venta for m in session.query(Material).all()}

        margenes_service.recalcular_todos_los_precios(session)
        segunda = {m.sku: m.precio_venta for m in session.query(Material).all()}

        assert primera == segunda

    def test_inactive_materials_are_skipped(self, session, material_factory):
        activo = material_factory(coste_medio=Decimal('10'))
        inactivo = material_factory(coste_medio=Decimal('10'), activo=False)

        result = margenes_service.recalcular_todos_los_precios(session)

        assert result['actualizados'] == 1
        session.refresh(activo)
        session.refresh(inactivo)
        assert activo.precio_venta == Decimal('13.0000')
        assert inactivo.precio_venta == Decimal('0')

    def test_summary_groups_by_margin_source(self, session, material_factory, margen_categoria):
        material_factory(categoria='Cableado')
        material_factory(categoria='Cableado')
        material_factory()

        result = margenes_service.recalcular_todos_los_precios(session)
        resumen = {item['categoria']: item['count'] for item in result['resumen']}

        assert resumen == {'Cableado': 2, 'General': 1}

    def test_precio_estandar_untouched(self, session, material_factory):
        material = material_factory(coste_medio=Decimal('10'), precio_estandar=Decimal('99'))
        margenes_service.recalcular_todos_los_precios(session)
        session.refresh(material)
        assert material.precio_estandar == Decimal('99')


class TestResumen:

    def test_resumen_lists_catalog_categories(self, session, material_factory, margen_categoria):
        material_factory(categoria='Cableado')
        material_factory(categoria='Videovigilancia')

        resumen = margenes_service.get_resumen_margenes(session)

        assert resumen['margen_general'] == Decimal('30')
        assert resumen['categorias_disponibles'] == ['Cableado', 'Videovigilancia']
        assert [c['categoria'] for c in resumen['categorias']] == ['Cableado']


class TestMetricas:

    @staticmethod
    def _recalculados():
        return REGISTRY.get_sample_value('presu_precios_recalculados_total') or 0

    def test_admin_mutations_count_recomputed_prices(self, session, material_factory):
        material_factory(categoria='Cableado')
        material_factory()
        antes = self._recalculados()

        margenes_service.set_margen_general(session, 25)
        margenes_service.set_margen_categoria(session, 'Cableado', 40)
        margenes_service.delete_margen_categoria(session, 'Cableado')

        assert self._recalculados() - antes == 6
