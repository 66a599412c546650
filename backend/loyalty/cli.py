# Overview: Flask CLI command groups for bootstrap and inspection.

# backend/loyalty/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to loyalty (PowerShell: $env:FLASK_APP="loyalty").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create all tables that do not exist yet.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Users:
# - python -m flask users create --utorid alice01 --name "Alice" --password "Password123" --role cashier --verified
#   Create a member (prompts for the password if omitted).
# - python -m flask users create-superuser --utorid root --name "Root" --email root@example.com
#   Create a verified superuser.
# - python -m flask users list
#   List users with role and balance.
#
# Promotions:
# - python -m flask promotions create --name "Double Points" --type automatic --start 2026-01-01T00:00Z --end 2026-02-01T00:00Z --rate 0.05
#   Create a promotion.
# - python -m flask promotions active
#   List promotions currently in their window.

import click
from flask.cli import AppGroup

from .errors import LedgerError
from .extensions import db
from .models import User
from .permissions import ROLE_ORDER, Role
from .services import promotions_service
from .services.users_service import create_user


system_group = AppGroup('system', help="System bootstrap commands.")


@system_group.command('init-db')
def init_db():
    """Create all tables."""
    db.create_all()
    click.echo("Database initialized.")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Confirm destructive reset.')
def reset_db(yes):
    """DEV/TEST only: drop and recreate all tables."""
    if not yes:
        click.echo("Refusing to reset without --yes.")
        raise SystemExit(1)
    db.drop_all()
    db.create_all()
    click.echo("Database reset.")


users_group = AppGroup('users', help="Member commands.")


@users_group.command('create')
@click.option('--utorid', required=True)
@click.option('--name', required=True)
@click.option('--email', default=None)
@click.option('--password', default=None, help='Prompted if omitted.')
@click.option('--role', type=click.Choice(ROLE_ORDER), default=Role.REGULAR, show_default=True)
@click.option('--verified', is_flag=True, default=False)
def create_user_cli(utorid, name, email, password, role, verified):
    """Create a member."""
    if password is None:
        password = click.prompt('Password', hide_input=True, confirmation_prompt=True)
    try:
        user = create_user(utorid, name, email=email, password=password, role=role, verified=verified)
    except (LedgerError, ValueError) as e:
        raise click.ClickException(str(e))
    click.echo(f"Created {user.role} {user.utorid} (id={user.id})")


@users_group.command('create-superuser')
@click.option('--utorid', prompt=True)
@click.option('--name', prompt=True)
@click.option('--email', prompt=True)
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True)
def create_superuser_cli(utorid, name, email, password):
    """Create a verified superuser."""
    try:
        user = create_user(utorid, name, email=email, password=password, role=Role.SUPERUSER, verified=True)
    except (LedgerError, ValueError) as e:
        raise click.ClickException(str(e))
    click.echo(f"Created superuser {user.utorid} (id={user.id})")


@users_group.command('list')
def list_users():
    """List users with role and balance."""
    users = db.session.query(User).order_by(User.id.asc()).all()
    if not users:
        click.echo("No users found.")
        return
    for u in users:
        flags = []
        if u.verified:
            flags.append("verified")
        if u.suspicious:
            flags.append("suspicious")
        click.echo(f"{u.id:>5}  {u.utorid:<16} {u.role:<10} {u.balance:>8}  {', '.join(flags)}")


promotions_group = AppGroup('promotions', help="Promotion commands.")


@promotions_group.command('create')
@click.option('--name', required=True)
@click.option('--description', default=None)
@click.option('--type', 'kind', type=click.Choice(['automatic', 'one-time']), required=True)
@click.option('--start', 'start_time', required=True, help='ISO-8601 start time.')
@click.option('--end', 'end_time', required=True, help='ISO-8601 end time.')
@click.option('--min-spending', type=float, default=None, help='Dollars.')
@click.option('--rate', type=float, default=None, help='Extra points per cent spent, e.g. 0.05.')
@click.option('--points', type=int, default=None, help='Flat bonus points.')
def create_promotion_cli(name, description, kind, start_time, end_time, min_spending, rate, points):
    """Create a promotion."""
    try:
        promotion = promotions_service.create_promotion({
            "name": name,
            "description": description,
            "type": kind,
            "startTime": start_time,
            "endTime": end_time,
            "minSpending": min_spending,
            "rate": rate,
            "points": points,
        })
    except LedgerError as e:
        raise click.ClickException(str(e))
    click.echo(f"Created promotion {promotion.id} ({promotion.name})")


@promotions_group.command('active')
def list_active_promotions_cli():
    """List promotions currently in their window."""
    promotions = promotions_service.list_active_promotions()
    if not promotions:
        click.echo("No active promotions.")
        return
    for p in promotions:
        click.echo(
            f"{p['id']:>5}  {p['name']:<30} {p['type']:<10} "
            f"rate={p['rate']} points={p['points']} until {p['endTime']}"
        )


def register_commands(app):
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(promotions_group)
