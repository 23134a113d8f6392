"""Margins blueprint: general, category and per-material margins."""
from flask import Blueprint, request, jsonify

from app.database import get_session
from app.exceptions import ValidationError
from app.services import margenes_service

margenes_bp = Blueprint('margenes', __name__, url_prefix='/api/margenes')


def _json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError('Se esperaba un objeto JSON')
    return data


@margenes_bp.route('', methods=['GET'])
def resumen():
    """General margin, configured category margins and catalog categories."""
    return jsonify(margenes_service.get_resumen_margenes(get_session()))


@margenes_bp.route('/general', methods=['PUT'])
def set_general():
    data = _json_body()
    if 'margen' not in data:
        raise ValidationError('margen es obligatorio')
    return jsonify(margenes_service.set_margen_general(get_session(), data['margen']))


@margenes_bp.route('/categorias/<path:categoria>', methods=['PUT'])
def set_categoria(categoria):
    data = _json_body()
    if 'margen' not in data:
        raise ValidationError('margen es obligatorio')
    return jsonify(margenes_service.set_margen_categoria(get_session(), categoria, data['margen']))


@margenes_bp.route('/categorias/<path:categoria>', methods=['DELETE'])
def delete_categoria(categoria):
    return jsonify(margenes_service.delete_margen_categoria(get_session(), categoria))


@margenes_bp.route('/material/<int:material_id>', methods=['PATCH'])
def set_material(material_id):
    """Set (or clear with null) the individual margin of a material."""
    data = _json_body()
    if 'margen' not in data:
        raise ValidationError('margen es obligatorio (null para quitarlo)')

    session = get_session()
    material = margenes_service.set_margen_material(session, material_id, data['margen'])
    result = material.to_dict()
    result['margen_efectivo'] = margenes_service.margen_efectivo(session, material)
    return jsonify(result)


@margenes_bp.route('/recalcular', methods=['POST'])
def recalcular():
    return jsonify(margenes_service.recalcular_todos_los_precios(get_session()))
