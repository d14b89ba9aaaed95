"""CLI commands for the audit chain API."""

import json
import sys

import click

from auditchain_api.db.base import Base
from auditchain_api.db.session import create_db_engine, create_session_factory
from auditchain_api.exceptions import PersistenceUnavailable
from auditchain_api.ledger.chain import ChainService
from auditchain_api.ledger.store import SQLAlchemyAuditStore
from auditchain_api.models import AuditLogEntry  # noqa: F401
from auditchain_api.settings import get_settings


def _store() -> SQLAlchemyAuditStore:
    engine = create_db_engine(get_settings())
    return SQLAlchemyAuditStore(create_session_factory(engine))


@click.group()
def cli():
    """Audit chain CLI."""
    pass


@cli.command("init-db")
def init_db():
    """Create the audit tables (development only; use Alembic elsewhere)."""
    engine = create_db_engine(get_settings())
    Base.metadata.create_all(engine)
    click.echo("✓ Audit tables created.")


@cli.command()
@click.argument("session_id")
def verify(session_id):
    """Verify the stored hash chain of SESSION_ID."""
    try:
        entries = _store().list_session(session_id)
    except PersistenceUnavailable as e:
        click.echo(f"✗ Audit store unavailable: {e}", err=True)
        sys.exit(2)

    valid, error = ChainService.verify_chain(entries)
    if valid:
        click.echo(f"✓ Chain intact: {len(entries)} entries.")
    else:
        click.echo(f"✗ Chain broken: {error}", err=True)
        sys.exit(1)


@cli.command()
@click.argument("session_id")
def export(session_id):
    """Print the entries of SESSION_ID as JSON lines."""
    try:
        entries = _store().list_session(session_id)
    except PersistenceUnavailable as e:
        click.echo(f"✗ Audit store unavailable: {e}", err=True)
        sys.exit(2)

    for entry in entries:
        click.echo(json.dumps(entry.to_record(), sort_keys=True))


if __name__ == "__main__":
    cli()
