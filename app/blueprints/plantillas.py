"""Offer templates blueprint: catalog and global module overrides."""
from flask import Blueprint, request, jsonify

from app.database import get_session
from app.exceptions import NotFoundError, ValidationError
from app.services import oferta_modules_service
from app.services.oferta_template_spec import list_templates, is_known_template

plantillas_bp = Blueprint('plantillas', __name__, url_prefix='/api/plantillas-oferta')


def _template_or_404(codigo):
    if not is_known_template(codigo):
        raise NotFoundError(f'Plantilla desconocida: {codigo}')
    return codigo


@plantillas_bp.route('', methods=['GET'])
def list_plantillas():
    return jsonify({'plantillas': list_templates()})


@plantillas_bp.route('/<codigo>/modulos', methods=['GET'])
def get_modulos(codigo):
    """Template defaults merged with the stored global overrides."""
    session = get_session()
    _template_or_404(codigo)
    return jsonify({
        'template_code': codigo,
        'overrides': oferta_modules_service.get_global_overrides(session, codigo),
        'modulos': oferta_modules_service.resolve_modules(session, codigo),
    })


@plantillas_bp.route('/<codigo>/modulos', methods=['PUT'])
def put_modulos(codigo):
    _template_or_404(codigo)
    data = request.get_json(silent=True)
    if not isinstance(data, dict) or 'overrides' not in data:
        raise ValidationError('Se esperaba {"overrides": [...]}')

    modulos = oferta_modules_service.save_global_overrides(get_session(), codigo, data['overrides'])
    return jsonify({'template_code': codigo, 'modulos': modulos})
