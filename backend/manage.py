#!/usr/bin/env python
"""
Management Script

CLI commands for database management (Flask-Migrate) and the maintenance
jobs the cron endpoints also expose.

Usage:
    # Initialize migrations (first time only)
    python manage.py db init

    # Create a new migration
    python manage.py db migrate -m "Add new column"

    # Apply migrations
    python manage.py db upgrade

    # Maintenance
    python manage.py cleanup-stale
    python manage.py retention-sweep
    python manage.py scheduled-sync
"""
import os
import sys

# Add the backend directory to the path
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from flask.cli import with_appcontext
import click
from sqlalchemy import inspect
from sqlalchemy.exc import SQLAlchemyError

from listingsync import create_app
from listingsync.extensions import db

# Create app instance
app = create_app()


@app.cli.command('db-status')
@with_appcontext
def db_status():
    """Show database connection status and table info."""
    try:
        db.session.execute(db.text('SELECT 1')).fetchone()
        click.echo(click.style('✓ Database connection OK', fg='green'))

        tables = inspect(db.engine).get_table_names()
        click.echo('\nTables in database:')
        for table in tables:
            click.echo(f'  - {table}')
    except SQLAlchemyError as e:
        click.echo(click.style(f'✗ Database error: {e}', fg='red'))
        sys.exit(1)


@app.cli.command('cleanup-stale')
@click.option('--timeout', type=int, default=None, help='Seconds after which a started phase is stale.')
@with_appcontext
def cleanup_stale(timeout):
    """Close sync log entries that never recorded an end."""
    from listingsync.services.sync_service import SyncService
    cleaned = SyncService.cleanup_stale_logs(timeout_seconds=timeout)
    if cleaned > 0:
        click.echo(click.style(f'✓ Cleaned {cleaned} stale log entries', fg='green'))
    else:
        click.echo('No stale log entries found')


@app.cli.command('retention-sweep')
@with_appcontext
def retention_sweep():
    """Delete archived data of accounts past their retention period."""
    from listingsync.services.retention_service import RetentionService
    report = RetentionService.run()
    click.echo(
        f'Accounts processed: {report.accounts_processed}, '
        f'within retention: {report.accounts_skipped}, '
        f'rows deleted: {report.total_deleted}'
    )
    for sweep in report.accounts:
        for step, error in sweep.errors.items():
            click.echo(click.style(f'✗ account {sweep.account_id} {step}: {error}', fg='red'))
    if not report.ok:
        sys.exit(1)


@app.cli.command('scheduled-sync')
@click.option('--wait/--no-wait', default=True, help='Wait for the queued runs to finish.')
@with_appcontext
def scheduled_sync(wait):
    """Run the sync of every account whose schedule is due now."""
    from listingsync.services.sync_service import SyncService
    due = SyncService.due_accounts()
    if not due:
        click.echo('No accounts due')
        return
    batch = SyncService.start_sync([a.id for a in due])
    click.echo(f'Queued accounts: {batch.started}')
    if not wait:
        return
    for account_id, result in batch.wait().items():
        color = 'green' if result.status == 'completed' else 'yellow'
        click.echo(click.style(f'  account {account_id}: {result.status}', fg=color))
    SyncService.shutdown()


if __name__ == '__main__':
    # Support running with flask CLI
    import subprocess

    if len(sys.argv) > 1 and sys.argv[1] == 'db':
        os.environ['FLASK_APP'] = 'manage.py'
        subprocess.run(['flask'] + sys.argv[1:])
    else:
        app.cli()
