"""
PDF hand-off for offer documents.

Providers (OFERTA_PDF_PROVIDER):
    none       not configured; callers should offer the HTML download instead
    http       POST the finished HTML to an external renderer, get bytes back
    reportlab  native A4 PDF built from the offer payload

Renderer failures are reported as PdfRendererError and never retried.
"""
import logging
from datetime import datetime
from io import BytesIO
from typing import Dict, Any, Optional
from xml.sax.saxutils import escape

import requests
from flask import current_app
from reportlab.lib.pagesizes import A4
from reportlab.lib import colors
from reportlab.lib.units import mm
from reportlab.platypus import SimpleDocTemplate, Table, TableStyle, Paragraph, Spacer
from reportlab.lib.styles import getSampleStyleSheet, ParagraphStyle
from reportlab.lib.enums import TA_CENTER

from app.exceptions import PdfRendererError
from app.services.oferta_document_service import BLOQUES_LABEL
from app.utils.formatters import money_es, num_es, date_es

logger = logging.getLogger(__name__)

PROVIDERS = ('none', 'http', 'reportlab')


def _provider() -> str:
    return (current_app.config.get('OFERTA_PDF_PROVIDER') or 'none').strip().lower()


def render_oferta_pdf(html: str, file_name_base: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Render an offer to PDF with the configured provider.

    Returns:
        dict: {content_type, file_name, content (bytes)}

    Raises:
        PdfRendererError: provider not configured (501), unsupported, or renderer failure (502)
    """
    provider = _provider()

    if provider == 'none':
        raise PdfRendererError(
            'OFERTA_PDF_PROVIDER no configurado. Usa /oferta-html para descarga HTML o configura proveedor PDF.',
            status_code=501,
        )

    if provider == 'http':
        content = _render_http(html)
    elif provider == 'reportlab':
        if payload is None:
            raise PdfRendererError('El proveedor reportlab requiere el payload de la oferta', status_code=500)
        content = _render_reportlab(payload).getvalue()
    else:
        raise PdfRendererError(f'Proveedor PDF no soportado: {provider}', status_code=501)

    logger.info(f"[PDF] Oferta {file_name_base} renderizada con '{provider}' ({len(content)} bytes)")
    return {
        'content_type': 'application/pdf',
        'file_name': f'{file_name_base}.pdf',
        'content': content,
    }


def _render_http(html: str) -> bytes:
    url = current_app.config.get('OFERTA_PDF_RENDERER_URL')
    if not url:
        raise PdfRendererError('OFERTA_PDF_RENDERER_URL no configurada', status_code=501)

    timeout = float(current_app.config.get('OFERTA_PDF_TIMEOUT', 30))
    try:
        response = requests.post(
            url,
            data=html.encode('utf-8'),
            headers={'Content-Type': 'text/html; charset=utf-8', 'Accept': 'application/pdf'},
            timeout=timeout,
        )
    except requests.RequestException as e:
        logger.error(f"[PDF] Renderer no disponible ({url}): {e}")
        raise PdfRendererError(f'Renderer PDF no disponible: {e}')

    if response.status_code != 200:
        logger.error(f"[PDF] Renderer respondió {response.status_code}: {response.text[:200]}")
        raise PdfRendererError(f'Renderer PDF respondió {response.status_code}')

    if not response.content:
        raise PdfRendererError('Renderer PDF devolvió un documento vacío')

    return response.content


def _render_reportlab(payload: Dict[str, Any]) -> BytesIO:
    """Native A4 rendering of the offer payload."""
    buffer = BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=A4,
        rightMargin=12*mm,
        leftMargin=12*mm,
        topMargin=16*mm,
        bottomMargin=16*mm,
    )

    cabecera = payload.get('cabecera', {})
    economico = payload.get('economico', {})
    etiquetas = payload.get('template', {}).get('etiquetas', {})
    contexto = payload.get('contexto') or {}

    elements = []
    styles = getSampleStyleSheet()

    title_style = ParagraphStyle(
        'OfertaTitle',
        parent=styles['Heading1'],
        fontSize=20,
        textColor=colors.HexColor('#0F172A'),
        spaceAfter=8,
        alignment=TA_CENTER,
        fontName='Helvetica-Bold'
    )
    section_style = ParagraphStyle(
        'OfertaSection',
        parent=styles['Heading2'],
        fontSize=12,
        textColor=colors.HexColor('#1E293B'),
        spaceBefore=10,
        spaceAfter=6,
        fontName='Helvetica-Bold'
    )
    body_style = ParagraphStyle('OfertaBody', parent=styles['Normal'], fontSize=9.5, leading=13)

    # 1. Title and document control
    elements.append(Paragraph(escape(etiquetas.get('titulo_oferta', 'Oferta')).upper(), title_style))
    elements.append(Spacer(1, 4*mm))

    control_data = [
        ['Oferta:', cabecera.get('codigo_oferta') or cabecera.get('codigo') or '-'],
        ['Versión:', str(cabecera.get('version_oferta') or 1)],
        ['Fecha:', date_es(cabecera.get('fecha_emision'))],
        [f"{etiquetas.get('cliente', 'Cliente')}:", cabecera.get('cliente') or '-'],
        [f"{etiquetas.get('proyecto', 'Proyecto')}:", cabecera.get('proyecto') or '-'],
        [f"{etiquetas.get('vehiculos', 'Vehículos')}:", num_es(contexto.get('num_vehiculos'))],
    ]
    control_table = Table(control_data, colWidths=[40*mm, 110*mm])
    control_table.setStyle(TableStyle([
        ('ALIGN', (0, 0), (0, -1), 'RIGHT'),
        ('FONTNAME', (0, 0), (0, -1), 'Helvetica-Bold'),
        ('FONTSIZE', (0, 0), (-1, -1), 9.5),
        ('TEXTCOLOR', (0, 0), (-1, -1), colors.HexColor('#334155')),
    ]))
    elements.append(control_table)

    # 2. Economic summary
    totales = economico.get('totales_bloque', {})
    elements.append(Paragraph('Resumen económico', section_style))
    resumen_data = [['Bloque', 'Importe']]
    for letra, bloque in (('A', 'A_SUMINISTRO_EQUIPOS'), ('B', 'B_MATERIALES_INSTALACION'),
                          ('C', 'C_MANO_OBRA'), ('D', 'D_MANTENIMIENTO_1_3')):
        resumen_data.append([BLOQUES_LABEL[bloque], money_es(totales.get(letra))])
    resumen_data.append([BLOQUES_LABEL['DESPLAZAMIENTO'], money_es(economico.get('total_desplazamientos'))])
    resumen_data.append(['Precio unitario por vehículo', money_es(economico.get('precio_unitario_vehiculo'))])
    resumen_table = Table(resumen_data, colWidths=[120*mm, 40*mm])
    resumen_table.setStyle(_grid_style())
    elements.append(resumen_table)

    # 3. Lines by block
    elements.append(Paragraph(escape(etiquetas.get('partidas', 'Partidas económicas')), section_style))
    lineas_data = [['Código', 'Descripción', 'Ud.', 'Cant.', 'Precio', 'Subtotal']]
    for linea in payload.get('lineas', {}).get('oferta', []):
        if linea.get('bloque') == 'E_OPCIONALES_4_5':
            continue
        lineas_data.append([
            linea.get('codigo', ''),
            Paragraph(escape(str(linea.get('descripcion', ''))), body_style),
            linea.get('unidad', ''),
            num_es(linea.get('cantidad')),
            money_es(linea.get('precio')),
            money_es(linea.get('subtotal')),
        ])
    lineas_table = Table(lineas_data, colWidths=[24*mm, 70*mm, 12*mm, 14*mm, 23*mm, 23*mm], repeatRows=1)
    lineas_table.setStyle(_grid_style())
    elements.append(lineas_table)
    elements.append(Spacer(1, 4*mm))

    # 4. Totals
    iva_pct = num_es(economico.get('iva_porcentaje'), 0)
    total_table = Table([
        [etiquetas.get('base_imponible', 'Base imponible'), money_es(economico.get('base_imponible'))],
        [f"{etiquetas.get('iva', 'IVA')} ({iva_pct}%)", money_es(economico.get('iva_importe'))],
        [etiquetas.get('total_con_iva', 'Total con IVA'), money_es(economico.get('total_con_iva'))],
    ], colWidths=[120*mm, 40*mm])
    total_table.setStyle(TableStyle([
        ('ALIGN', (0, 0), (-1, -1), 'RIGHT'),
        ('FONTSIZE', (0, 0), (-1, -1), 10),
        ('FONTNAME', (0, 2), (-1, 2), 'Helvetica-Bold'),
        ('LINEABOVE', (0, 2), (-1, 2), 1, colors.HexColor('#1E293B')),
    ]))
    elements.append(total_table)

    # 5. Modules, optional lines, texts
    for modulo in payload.get('modulos_documento', []):
        elements.append(Paragraph(escape(modulo.get('title', '')), section_style))
        elements.append(Paragraph(_with_breaks(modulo.get('content', '')), body_style))

    opcionales = payload.get('lineas', {}).get('opcionales', [])
    if opcionales:
        elements.append(Paragraph('Opcionales', section_style))
        opc_data = [['Código', 'Descripción', 'Subtotal']] + [
            [o.get('codigo', ''), Paragraph(escape(str(o.get('descripcion', ''))), body_style), money_es(o.get('subtotal'))]
            for o in opcionales
        ]
        opc_table = Table(opc_data, colWidths=[30*mm, 100*mm, 30*mm])
        opc_table.setStyle(_grid_style())
        elements.append(opc_table)

    for texto in payload.get('textos', []):
        elements.append(Paragraph(escape(texto.get('titulo', '')), section_style))
        elements.append(Paragraph(_with_breaks(texto.get('contenido', '')), body_style))

    footer_style = ParagraphStyle('Footer', parent=styles['Normal'], fontSize=8, textColor=colors.HexColor('#64748B'), alignment=TA_CENTER)
    template = payload.get('template', {})
    elements.append(Spacer(1, 8*mm))
    elements.append(Paragraph(
        f"Documento generado automáticamente · {escape(str(template.get('codigo', '')))} · "
        f"{escape(str(template.get('version', '')))} · {datetime.now().strftime('%d/%m/%Y')}",
        footer_style,
    ))

    doc.build(elements)
    buffer.seek(0)
    return buffer


def _with_breaks(text: str) -> str:
    return escape(text or '').replace('\n', '<br/>')


def _grid_style() -> TableStyle:
    return TableStyle([
        ('BACKGROUND', (0, 0), (-1, 0), colors.HexColor('#E2E8F0')),
        ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
        ('FONTSIZE', (0, 0), (-1, -1), 9),
        ('VALIGN', (0, 0), (-1, -1), 'TOP'),
        ('ALIGN', (-1, 1), (-1, -1), 'RIGHT'),
        ('GRID', (0, 0), (-1, -1), 0.5, colors.HexColor('#CBD5E1')),
        ('ROWBACKGROUNDS', (0, 1), (-1, -1), [colors.white, colors.HexColor('#F8FAFC')]),
    ])
