"""
Unit tests for the offer payload, content hash, HTML rendering and emission.
"""

import pytest
from collections import OrderedDict
from decimal import Decimal

from app.models import OfertaSnapshot, PresupuestoLineaMotor, BloqueEconomico
from app.exceptions import ValidationError, PdfRendererError
from app.services.oferta_document_service import (
    build_oferta_payload, content_hash, content_hash_documento, codigo_oferta_para,
    normalize_anexos, prepare_oferta, build_oferta_html, emitir_oferta, resolve_template_code,
    payload_jsonable,
)
from app.services.oferta_modules_service import resolve_modules
from app.services.pdf_renderer_service import render_oferta_pdf


def _payload(session, presupuesto, anexos=None, version=1):
    modulos = resolve_modules(session, 'OFERTA_EMT_360_V2', presupuesto.contexto)
    return build_oferta_payload(
        presupuesto, 'OF-2026-0001', version, '2026-03-01T10:00:00+00:00', 'OFERTA_EMT_360_V2',
        anexos or [], modulos,
    )


class TestPayload:

    def test_structure(self, session, presupuesto_listo):
        payload = _payload(session, presupuesto_listo)

        assert payload['template']['codigo'] == 'OFERTA_EMT_360_V2'
        assert payload['cabecera']['codigo_oferta'] == 'OF-2026-0001'
        assert payload['cabecera']['cliente'] == 'Transportes Norte SL'
        assert payload['economico']['base_imponible'] == Decimal('1400.00')
        assert payload['economico']['precio_unitario_vehiculo'] == Decimal('350.00')
        assert payload['opcionales'] == {'total_opcionales': Decimal('300.00'), 'incluidos_en_total': False}
        assert [l['codigo'] for l in payload['lineas']['opcionales']] == ['OPC-01']
        assert all(m['enabled'] for m in payload['modulos_documento'])

    def test_disabled_modules_excluded(self, session, presupuesto_listo):
        modulos = resolve_modules(session, 'OFERTA_EMT_360_V2')
        modulos[0]['enabled'] = False
        payload = build_oferta_payload(presupuesto_listo, 'OF-1', 1, None, None, [], modulos)
        assert modulos[0]['key'] not in [m['key'] for m in payload['modulos_documento']]

    def test_jsonable(self, session, presupuesto_listo):
        data = payload_jsonable(_payload(session, presupuesto_listo))
        assert data['economico']['base_imponible'] == '1400.00'

    def test_codigo_oferta_from_quote_code(self, presupuesto_factory):
        presupuesto = presupuesto_factory(codigo='PRE-2026-0042')
        assert codigo_oferta_para(presupuesto) == 'OF-2026-0042'


class TestContentHash:

    def test_same_inputs_same_hash(self, session, presupuesto_listo):
        assert content_hash(_payload(session, presupuesto_listo)) == content_hash(_payload(session, presupuesto_listo))

    def test_key_order_does_not_matter(self):
        a = {'b': 1, 'a': {'y': Decimal('2.50'), 'x': [1, 2]}}
        b = OrderedDict([('a', OrderedDict([('x', [1, 2]), ('y', Decimal('2.50'))])), ('b', 1)])
        assert content_hash(a) == content_hash(b)

    def test_content_change_changes_hash(self, session, presupuesto_listo):
        antes = content_hash(_payload(session, presupuesto_listo))
        despues = content_hash(_payload(session, presupuesto_listo, anexos=[{'titulo': 'Plano', 'url': '', 'orden': 0}]))
        assert antes != despues

    def test_document_hash_ignores_version_and_date(self, session, presupuesto_listo):
        v1 = _payload(session, presupuesto_listo, version=1)
        v2 = _payload(session, presupuesto_listo, version=2)
        v2['cabecera']['fecha_emision'] = '2027-01-01T00:00:00+00:00'
        assert content_hash(v1) != content_hash(v2)
        assert content_hash_documento(v1) == content_hash_documento(v2)


class TestAnexos:

    def test_invalid_entries_dropped_and_sorted(self):
        anexos = normalize_anexos([
            {'titulo': 'B', 'orden': 2},
            {'titulo': ''},
            'x',
            {'titulo': ' A ', 'url': 'https://example.com/a.pdf', 'orden': 1},
        ])
        assert anexos == [
            {'titulo': 'A', 'url': 'https://example.com/a.pdf', 'orden': 1},
            {'titulo': 'B', 'url': '', 'orden': 2},
        ]

    def test_non_list(self):
        assert normalize_anexos({'titulo': 'A'}) == []


class TestTemplateResolution:

    def test_explicit_then_quote_then_context(self, session, presupuesto_listo):
        assert resolve_template_code(presupuesto_listo, 'OFERTA_STD_V1') == 'OFERTA_STD_V1'
        assert resolve_template_code(presupuesto_listo) == 'OFERTA_EMT_360_V2'

        presupuesto_listo.template_code = None
        presupuesto_listo.contexto.solucion_codigo = 'OFERTA_STD_V1'
        assert resolve_template_code(presupuesto_listo) == 'OFERTA_STD_V1'

    def test_unknown_codes_fall_back_to_default(self, presupuesto_factory):
        presupuesto = presupuesto_factory(template_code='LEGACY_X')
        assert resolve_template_code(presupuesto, 'NOPE') == 'OFERTA_EMT_360_V2'


class TestHtml:

    def test_html_contains_totals_and_blocks(self, session, presupuesto_listo):
        html = build_oferta_html(prepare_oferta(session, presupuesto_listo.id))

        assert 'Oferta Técnica-Económica' in html
        assert 'OF-2026-0001' in html
        assert '1.400,00 €' in html
        assert '1.694,00 €' in html
        assert 'A · Suministro de equipos' in html
        assert 'Mantenimiento años 4-5' in html
        assert 'Transportes Norte SL' in html

    def test_html_escapes_client_text(self, session, presupuesto_factory):
        presupuesto = presupuesto_factory(cliente_nombre='<script>alert(1)</script>')
        html = build_oferta_html(prepare_oferta(session, presupuesto.id))
        assert '<script>alert(1)</script>' not in html
        assert '&lt;script&gt;' in html


class TestEmitir:

    def test_first_emission_creates_snapshot(self, session, presupuesto_listo):
        result = emitir_oferta(session, presupuesto_listo.id)

        assert result['resultado'] == 'nueva'
        assert result['snapshot']['version_oferta'] == 1
        assert result['snapshot']['codigo_oferta'] == 'OF-2026-0001'
        assert len(result['snapshot']['content_hash']) == 64
        assert session.query(OfertaSnapshot).count() == 1

    def test_reemission_without_changes_keeps_version(self, session, presupuesto_listo):
        primera = emitir_oferta(session, presupuesto_listo.id)
        segunda = emitir_oferta(session, presupuesto_listo.id)

        assert segunda['resultado'] == 'sin_cambios'
        assert segunda['snapshot']['version_oferta'] == 1
        assert segunda['snapshot']['content_hash'] == primera['snapshot']['content_hash']
        assert segunda['snapshot']['fecha_emision'] == primera['snapshot']['fecha_emision']

    def test_content_change_bumps_version(self, session, presupuesto_listo):
        emitir_oferta(session, presupuesto_listo.id)

        session.add(PresupuestoLineaMotor(
            presupuesto_id=presupuesto_listo.id, bloque=BloqueEconomico.B_MATERIALES_INSTALACION,
            codigo='MAT-01', descripcion='Cableado', unidad='M',
            cantidad=Decimal('100'), precio_unitario=Decimal('2'), subtotal=Decimal('200'), orden=3,
        ))
        session.commit()

        result = emitir_oferta(session, presupuesto_listo.id)
        assert result['resultado'] == 'version'
        assert result['snapshot']['version_oferta'] == 2
        assert result['payload']['cabecera']['version_oferta'] == 2
        assert session.query(OfertaSnapshot).count() == 1

    def test_not_ready_quote_is_rejected(self, session, presupuesto_factory):
        presupuesto = presupuesto_factory()
        with pytest.raises(ValidationError) as exc_info:
            emitir_oferta(session, presupuesto.id)
        assert 'Al menos una línea económica' in exc_info.value.payload['pendientes']
        assert session.query(OfertaSnapshot).count() == 0


class TestPdfRenderer:

    def test_provider_none_is_not_configured(self, app):
        with pytest.raises(PdfRendererError) as exc_info:
            render_oferta_pdf('<html></html>', 'OF-1')
        assert exc_info.value.status_code == 501

    def test_reportlab_provider_builds_pdf(self, app, session, presupuesto_listo, monkeypatch):
        monkeypatch.setitem(app.config, 'OFERTA_PDF_PROVIDER', 'reportlab')
        payload = payload_jsonable(prepare_oferta(session, presupuesto_listo.id))

        pdf = render_oferta_pdf('<html></html>', 'OF-2026-0001', payload)

        assert pdf['content_type'] == 'application/pdf'
        assert pdf['file_name'] == 'OF-2026-0001.pdf'
        assert pdf['content'].startswith(b'%PDF')

    def test_block_labels_shared_with_html_document(self):
        from app.services import oferta_document_service, pdf_renderer_service
        assert pdf_renderer_service.BLOQUES_LABEL is oferta_document_service.BLOQUES_LABEL

    def test_http_provider_without_url(self, app, monkeypatch):
        monkeypatch.setitem(app.config, 'OFERTA_PDF_PROVIDER', 'http')
        monkeypatch.setitem(app.config, 'OFERTA_PDF_RENDERER_URL', '')
        with pytest.raises(PdfRendererError) as exc_info:
            render_oferta_pdf('<html></html>', 'OF-1')
        assert exc_info.value.status_code == 501

    def test_http_provider_failure_is_reported(self, app, monkeypatch):
        import requests

        def fake_post(*args, **kwargs):
            raise requests.ConnectionError('refused')

        monkeypatch.setitem(app.config, 'OFERTA_PDF_PROVIDER', 'http')
        monkeypatch.setitem(app.config, 'OFERTA_PDF_RENDERER_URL', 'http://renderer.local/pdf')
        monkeypatch.setattr(requests, 'post', fake_post)

        with pytest.raises(PdfRendererError) as exc_info:
            render_oferta_pdf('<html></html>', 'OF-1')
        assert exc_info.value.status_code == 502

    def test_http_provider_returns_bytes(self, app, monkeypatch):
        import requests

        class FakeResponse:
            status_code = 200
            content = b'%PDF-1.4 fake'
            text = ''

        calls = []

        def fake_post(url, data=None, headers=None, timeout=None):
            calls.append((url, data, timeout))
            return FakeResponse()

        monkeypatch.setitem(app.config, 'OFERTA_PDF_PROVIDER', 'http')
        monkeypatch.setitem(app.config, 'OFERTA_PDF_RENDERER_URL', 'http://renderer.local/pdf')
        monkeypatch.setattr(requests, 'post', fake_post)

        pdf = render_oferta_pdf('<html>ñ</html>', 'OF-1')
        assert pdf['content'] == b'%PDF-1.4 fake'
        assert calls[0][1] == '<html>ñ</html>'.encode('utf-8')
