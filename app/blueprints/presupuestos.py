"""Quotes blueprint: header, lines, context, lifecycle and offer document."""
from io import BytesIO

from flask import Blueprint, request, jsonify, send_file, Response

from app.database import get_session
from app.exceptions import ValidationError
from app.services import presupuesto_service, oferta_modules_service
from app.services.economico_service import compute_economico
from app.services.presupuesto_estado_service import transicionar, expirar_presupuestos_vencidos, check_emision
from app.services.oferta_document_service import (
    prepare_oferta,
    build_oferta_html,
    emitir_oferta,
    payload_jsonable,
    resolve_template_code,
)
from app.services.pdf_renderer_service import render_oferta_pdf

presupuestos_bp = Blueprint('presupuestos', __name__, url_prefix='/api/presupuestos')

ADD_LINEA = {
    'motor': presupuesto_service.add_linea_motor,
    'trabajo': presupuesto_service.add_linea_trabajo,
    'material': presupuesto_service.add_linea_material,
    'desplazamiento': presupuesto_service.add_linea_desplazamiento,
}

UPDATE_LINEA = {
    'motor': presupuesto_service.update_linea_motor,
    'trabajo': presupuesto_service.update_linea_trabajo,
    'material': presupuesto_service.update_linea_material,
}


def _json_body(required=True):
    data = request.get_json(silent=True)
    if data is None and not required:
        return {}
    if not isinstance(data, dict):
        raise ValidationError('Se esperaba un objeto JSON')
    return data


def _detalle(presupuesto_id):
    session = get_session()
    return jsonify(presupuesto_service.presupuesto_detalle(presupuesto_service.get_presupuesto(session, presupuesto_id)))


# ============================================================================
# CABECERA
# ============================================================================

@presupuestos_bp.route('', methods=['GET'])
def list_presupuestos():
    """List quotes (filters: estado, q)."""
    presupuestos = presupuesto_service.list_presupuestos(
        get_session(),
        estado=request.args.get('estado') or None,
        q=request.args.get('q') or None,
    )
    return jsonify({'presupuestos': [p.to_dict() for p in presupuestos], 'total': len(presupuestos)})


@presupuestos_bp.route('', methods=['POST'])
def create_presupuesto():
    presupuesto = presupuesto_service.create_presupuesto(get_session(), _json_body(required=False))
    return jsonify(presupuesto_service.presupuesto_detalle(presupuesto)), 201


@presupuestos_bp.route('/<int:presupuesto_id>', methods=['GET'])
def get_presupuesto(presupuesto_id):
    return _detalle(presupuesto_id)


@presupuestos_bp.route('/<int:presupuesto_id>', methods=['PATCH'])
def update_presupuesto(presupuesto_id):
    presupuesto = presupuesto_service.update_presupuesto(get_session(), presupuesto_id, _json_body())
    return jsonify(presupuesto_service.presupuesto_detalle(presupuesto))


@presupuestos_bp.route('/<int:presupuesto_id>', methods=['DELETE'])
def delete_presupuesto(presupuesto_id):
    presupuesto_service.delete_presupuesto(get_session(), presupuesto_id)
    return jsonify({'status': 'ok'})


@presupuestos_bp.route('/<int:presupuesto_id>/estado', methods=['PATCH'])
def cambiar_estado(presupuesto_id):
    data = _json_body()
    if 'estado' not in data:
        raise ValidationError('estado es obligatorio')
    presupuesto = transicionar(get_session(), presupuesto_id, data['estado'])
    return jsonify(presupuesto.to_dict())


@presupuestos_bp.route('/<int:presupuesto_id>/recalcular', methods=['POST'])
def recalcular(presupuesto_id):
    presupuesto = presupuesto_service.recalcular_totales(get_session(), presupuesto_id)
    return jsonify(presupuesto.to_dict())


@presupuestos_bp.route('/<int:presupuesto_id>/vista-cliente', methods=['GET'])
def vista_cliente(presupuesto_id):
    presupuesto = presupuesto_service.get_presupuesto(get_session(), presupuesto_id)
    return jsonify(presupuesto_service.vista_cliente(presupuesto))


@presupuestos_bp.route('/expirar', methods=['POST'])
def expirar():
    """Run one expiry sweep on demand."""
    return jsonify({'expirados': expirar_presupuestos_vencidos(get_session())})


# ============================================================================
# LÍNEAS
# ============================================================================

@presupuestos_bp.route('/<int:presupuesto_id>/lineas/<tipo>', methods=['POST'])
def add_linea(presupuesto_id, tipo):
    handler = ADD_LINEA.get(tipo)
    if handler is None:
        raise ValidationError(f'Tipo de línea desconocido: {tipo}')
    linea = handler(get_session(), presupuesto_id, _json_body())
    return jsonify(linea.to_dict()), 201


@presupuestos_bp.route('/<int:presupuesto_id>/lineas/<tipo>/<int:linea_id>', methods=['PATCH'])
def update_linea(presupuesto_id, tipo, linea_id):
    handler = UPDATE_LINEA.get(tipo)
    if handler is None:
        raise ValidationError(f'Tipo de línea no editable: {tipo}')
    linea = handler(get_session(), presupuesto_id, linea_id, _json_body())
    return jsonify(linea.to_dict())


@presupuestos_bp.route('/<int:presupuesto_id>/lineas/<tipo>/<int:linea_id>', methods=['DELETE'])
def delete_linea(presupuesto_id, tipo, linea_id):
    presupuesto_service.delete_linea(get_session(), presupuesto_id, tipo, linea_id)
    return jsonify({'status': 'ok'})


# ============================================================================
# CONTEXTO Y TEXTOS
# ============================================================================

@presupuestos_bp.route('/<int:presupuesto_id>/contexto', methods=['PUT'])
def put_contexto(presupuesto_id):
    contexto = presupuesto_service.upsert_contexto(get_session(), presupuesto_id, _json_body())
    return jsonify(contexto.to_dict())


@presupuestos_bp.route('/<int:presupuesto_id>/textos', methods=['POST'])
def add_texto(presupuesto_id):
    data = _json_body()
    texto = presupuesto_service.add_texto(
        get_session(), presupuesto_id, data.get('titulo'), data.get('contenido'), data.get('orden')
    )
    return jsonify(texto.to_dict()), 201


@presupuestos_bp.route('/<int:presupuesto_id>/textos/<int:texto_id>', methods=['DELETE'])
def delete_texto(presupuesto_id, texto_id):
    presupuesto_service.delete_texto(get_session(), presupuesto_id, texto_id)
    return jsonify({'status': 'ok'})


# ============================================================================
# ECONÓMICO Y VALIDACIÓN
# ============================================================================

@presupuestos_bp.route('/<int:presupuesto_id>/economico', methods=['GET'])
def economico(presupuesto_id):
    presupuesto = presupuesto_service.get_presupuesto(get_session(), presupuesto_id)
    return jsonify(compute_economico(presupuesto))


@presupuestos_bp.route('/<int:presupuesto_id>/validacion-emision', methods=['GET'])
def validacion_emision(presupuesto_id):
    presupuesto = presupuesto_service.get_presupuesto(get_session(), presupuesto_id)
    return jsonify(check_emision(presupuesto))


# ============================================================================
# MÓDULOS DOCUMENTALES
# ============================================================================

@presupuestos_bp.route('/<int:presupuesto_id>/modulos', methods=['GET'])
def get_modulos(presupuesto_id):
    session = get_session()
    presupuesto = presupuesto_service.get_presupuesto(session, presupuesto_id)
    codigo = resolve_template_code(presupuesto, request.args.get('template'))
    return jsonify({
        'template_code': codigo,
        'overrides': oferta_modules_service.get_presupuesto_overrides(presupuesto.contexto),
        'modulos': oferta_modules_service.resolve_modules(session, codigo, presupuesto.contexto),
    })


@presupuestos_bp.route('/<int:presupuesto_id>/modulos', methods=['PUT'])
def put_modulos(presupuesto_id):
    data = _json_body()
    if 'overrides' not in data:
        raise ValidationError('Se esperaba {"overrides": [...]}')
    modulos = oferta_modules_service.save_presupuesto_overrides(get_session(), presupuesto_id, data['overrides'])
    return jsonify({'modulos': modulos})


# ============================================================================
# OFERTA
# ============================================================================

def _anexos_query():
    return [{'titulo': a} for a in request.args.getlist('anexo') if a.strip()]


@presupuestos_bp.route('/<int:presupuesto_id>/oferta-payload', methods=['GET'])
def oferta_payload(presupuesto_id):
    payload = prepare_oferta(get_session(), presupuesto_id, request.args.get('template'), _anexos_query())
    return jsonify(payload_jsonable(payload))


@presupuestos_bp.route('/<int:presupuesto_id>/oferta-html', methods=['GET'])
def oferta_html(presupuesto_id):
    """Printable HTML of the offer (?download=1 for an attachment)."""
    session = get_session()
    presupuesto = presupuesto_service.get_presupuesto(session, presupuesto_id)
    payload = prepare_oferta(session, presupuesto_id, request.args.get('template'), _anexos_query())
    html = build_oferta_html(payload, fecha_documento=presupuesto.fecha)

    response = Response(html, mimetype='text/html')
    if request.args.get('download') == '1':
        response.headers['Content-Disposition'] = f'attachment; filename="{payload["cabecera"]["codigo_oferta"]}.html"'
    return response


@presupuestos_bp.route('/<int:presupuesto_id>/oferta-pdf', methods=['GET'])
def oferta_pdf(presupuesto_id):
    session = get_session()
    presupuesto = presupuesto_service.get_presupuesto(session, presupuesto_id)
    payload = prepare_oferta(session, presupuesto_id, request.args.get('template'), _anexos_query())
    html = build_oferta_html(payload, fecha_documento=presupuesto.fecha)

    pdf = render_oferta_pdf(html, payload['cabecera']['codigo_oferta'], payload)
    return send_file(
        BytesIO(pdf['content']),
        mimetype=pdf['content_type'],
        as_attachment=True,
        download_name=pdf['file_name'],
    )


@presupuestos_bp.route('/<int:presupuesto_id>/emitir', methods=['POST'])
def emitir(presupuesto_id):
    """Issue the formal offer; 201 on a new snapshot or version, 200 when unchanged."""
    data = _json_body(required=False)
    result = emitir_oferta(get_session(), presupuesto_id, data.get('template_code'), data.get('anexos'))
    status = 200 if result['resultado'] == 'sin_cambios' else 201
    return jsonify(result), status
