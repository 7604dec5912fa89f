"""
Flask CLI commands.

    flask systems generate-slugs [--force]
    flask rbac seed [--admin-email EMAIL --admin-password PASSWORD]
"""

import click
from flask.cli import AppGroup

from tracker.models import db
from tracker.services.permission_service import seed_permissions, seed_roles
from tracker.services.slug_service import generate_system_slugs
from tracker.services.user_service import UserServiceError, ensure_admin_user

systems_cli = AppGroup("systems", help="System maintenance commands.")
rbac_cli = AppGroup("rbac", help="Roles and permissions.")


@systems_cli.command("generate-slugs")
@click.option("--force", is_flag=True, help="Regenerate slugs for every system, not only missing ones.")
def generate_slugs_cmd(force):
    """Generate slugs for systems that are missing them."""
    count = generate_system_slugs(force=force)
    if count:
        click.echo(f"Successfully generated slugs for {count} systems.")
    else:
        click.echo("No systems need slug generation.")


@rbac_cli.command("seed")
@click.option("--admin-email", default=None, help="Create (or promote) this user as admin.")
@click.option("--admin-password", default=None, help="Password for a newly created admin.")
@click.option("--admin-name", default="Administrator", show_default=True)
def seed_cmd(admin_email, admin_password, admin_name):
    """Seed permissions and the admin/manager/user roles (idempotent)."""
    created_perms = seed_permissions()
    created_roles, grants = seed_roles()
    click.echo(f"Permissions: {created_perms} created")
    click.echo(f"Roles: {created_roles} created, {grants} grants added")

    if admin_email:
        try:
            user, created = ensure_admin_user(admin_email, admin_password or "", admin_name)
        except UserServiceError as e:
            db.session.rollback()
            raise click.ClickException(e.message) from e
        state = "created" if created else "already existed"
        click.echo(f"Admin user {user.email}: {state}")
    db.session.commit()


def register_cli(app):
    app.cli.add_command(systems_cli)
    app.cli.add_command(rbac_cli)
