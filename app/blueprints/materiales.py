"""Materials blueprint: catalog listing and inventory sync."""
from flask import Blueprint, request, jsonify
from sqlalchemy import or_

from app.database import get_session
from app.exceptions import ValidationError, NotFoundError
from app.models import Material
from app.services import margenes_service
from app.services.material_sync_service import sync_materiales

materiales_bp = Blueprint('materiales', __name__, url_prefix='/api/materiales')


@materiales_bp.route('', methods=['GET'])
def list_materiales():
    """List active materials, optionally filtered by category or text."""
    session = get_session()
    query = session.query(Material).filter(Material.activo.is_(True))

    categoria = request.args.get('categoria', '').strip()
    if categoria:
        query = query.filter(Material.categoria == categoria)

    search = request.args.get('q', '').strip()
    if search:
        query = query.filter(or_(
            Material.sku.ilike(f'%{search}%'),
            Material.descripcion.ilike(f'%{search}%'),
        ))

    materiales = query.order_by(Material.sku.asc()).all()
    return jsonify({'materiales': [m.to_dict() for m in materiales], 'total': len(materiales)})


@materiales_bp.route('/<int:material_id>', methods=['GET'])
def get_material(material_id):
    session = get_session()
    material = session.query(Material).filter(Material.id == material_id).first()
    if not material:
        raise NotFoundError('Material no encontrado')

    result = material.to_dict()
    result['margen_efectivo'] = margenes_service.margen_efectivo(session, material)
    return jsonify(result)


@materiales_bp.route('/sync', methods=['POST'])
def sync():
    """Upsert materials from an inventory export (list or {materiales: [...]})."""
    data = request.get_json(silent=True)
    if isinstance(data, dict):
        data = data.get('materiales')
    if not isinstance(data, list):
        raise ValidationError('Se esperaba una lista de materiales')

    return jsonify(sync_materiales(get_session(), data))
