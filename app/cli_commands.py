"""
Flask CLI commands for catalog and quote maintenance.

Commands:
- flask init-db: Create all tables
- flask recalcular-precios: Recompute precio_venta of every active material
- flask expirar-presupuestos: Run one expiry sweep now
- flask sync-materiales FILE: Import an inventory export (JSON list)
"""

import json

import click

from app.database import get_session, create_schema
from app.services.margenes_service import recalcular_todos_los_precios
from app.services.material_sync_service import sync_materiales
from app.services.presupuesto_estado_service import expirar_presupuestos_vencidos


def init_cli_commands(app):
    """Register CLI commands with Flask app."""

    @app.cli.command('init-db')
    def init_db_command():
        """Create the database schema."""
        try:
            create_schema()
            click.echo(click.style('✅ Esquema creado', fg='green', bold=True))
        except Exception as e:
            click.echo(click.style(f'❌ Error al crear el esquema: {str(e)}', fg='red'))
            raise SystemExit(1)

    @app.cli.command('recalcular-precios')
    def recalcular_precios_command():
        """Recompute sale prices from the margin cascade."""
        session = get_session()
        try:
            result = recalcular_todos_los_precios(session)
        except Exception as e:
            click.echo(click.style(f'❌ Error al recalcular precios: {str(e)}', fg='red'))
            raise SystemExit(1)

        click.echo(click.style(f"\n✅ {result['actualizados']} materiales actualizados", fg='green', bold=True))
        for item in result['resumen']:
            click.echo(f"   {item['categoria']}: {item['margen']}% ({item['count']})")

    @app.cli.command('expirar-presupuestos')
    def expirar_presupuestos_command():
        """Expire quotes whose validity window has passed."""
        session = get_session()
        try:
            count = expirar_presupuestos_vencidos(session)
        except Exception as e:
            click.echo(click.style(f'❌ Error en el barrido de expiración: {str(e)}', fg='red'))
            raise SystemExit(1)

        click.echo(click.style(f'✅ {count} presupuestos expirados', fg='green'))

    @app.cli.command('sync-materiales')
    @click.argument('file', type=click.File('r', encoding='utf-8'))
    def sync_materiales_command(file):
        """Import materials from an inventory JSON export."""
        try:
            registros = json.load(file)
        except ValueError as e:
            click.echo(click.style(f'❌ JSON inválido: {str(e)}', fg='red'))
            raise SystemExit(1)

        if not isinstance(registros, list):
            click.echo(click.style('❌ Se esperaba una lista de materiales', fg='red'))
            raise SystemExit(1)

        session = get_session()
        try:
            result = sync_materiales(session, registros)
        except Exception as e:
            click.echo(click.style(f'❌ Error al sincronizar: {str(e)}', fg='red'))
            raise SystemExit(1)

        click.echo(click.style('\n✅ Sincronización completada', fg='green', bold=True))
        click.echo(f"   Total: {result['total']}")
        click.echo(f"   Creados: {result['created']}  Actualizados: {result['updated']}  Omitidos: {result['skipped']}")
        for error in result['errors']:
            click.echo(click.style(f'   ⚠ {error}', fg='yellow'))
