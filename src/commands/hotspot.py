"""
Hotspot management commands.
"""

import click
from tabulate import tabulate
from db import Database, Hotspot
from processors.context import build_context
from processors.errors import TraceValidationError
from processors.trace import upsert_hotspot


@click.group()
def hotspot():
    """Manage hotspots (topic and time-window definitions)."""
    pass


@hotspot.command()
@click.option('--id', 'hotspot_id', help='Hotspot id to replace (default: new UUID)')
@click.option('--title', '-t', required=True, help='Hotspot title')
@click.option('--description', '-d', required=True, help='Hotspot description (used for vector recall)')
@click.option('--time-start', help='Window start, compared as text (e.g. 2023-01-01)')
@click.option('--time-end', help='Window end, compared as text (e.g. 2023-06-01)')
@click.option('--entity', '-e', 'entities', multiple=True, help='Topic entity name (repeatable)')
@click.option('--keyword', '-k', 'keywords', multiple=True, help='Keyword term (repeatable)')
@click.option('--must-include', 'must_include', multiple=True, help='Term every candidate must contain (repeatable)')
@click.option('--exclude', 'exclude', multiple=True, help='Term no candidate may contain (repeatable)')
def upsert(hotspot_id, title, description, time_start, time_end, entities, keywords, must_include, exclude):
    """
    Create or replace a hotspot.

    Examples:
        newstrace hotspot upsert -t "Trial" -d "Fraud trial in New York" -e "SDNY" -k fraud
        newstrace hotspot upsert --id 1b2c... -t "Trial" -d "..." --time-start 2024-01-01
    """
    ctx = build_context(use_llm=False)
    try:
        result = upsert_hotspot(ctx, {
            'hotspot_id': hotspot_id,
            'title': title,
            'description': description,
            'time_start': time_start,
            'time_end': time_end,
            'entities': list(entities),
            'keywords': list(keywords),
            'must_include': list(must_include),
            'exclude': list(exclude),
        })
        click.echo(click.style(f"✓ Hotspot saved: {result['hotspot_id']}", fg="green"))
    except TraceValidationError as e:
        click.echo(click.style(f"✗ {e}", fg="red"))


@hotspot.command()
@click.argument('hotspot_id')
def show(hotspot_id):
    """Show a hotspot definition."""
    db = Database()
    session = db.get_session()

    try:
        row = session.query(Hotspot).filter_by(hotspot_id=hotspot_id).first()
        if not row:
            click.echo(click.style(f"✗ Hotspot '{hotspot_id}' not found", fg="red"))
            return

        data = row.to_dict()
        click.echo()
        click.echo(click.style(data['title'], fg='cyan', bold=True))
        click.echo(click.style("=" * 60, fg='cyan'))
        click.echo(tabulate([
            ['ID', data['hotspot_id']],
            ['Description', data['description']],
            ['Window', f"{data['time_start'] or '-'} .. {data['time_end'] or '-'}"],
            ['Entities', ", ".join(data['entities']) or '-'],
            ['Keywords', ", ".join(data['keywords']) or '-'],
            ['Must include', ", ".join(data['must_include']) or '-'],
            ['Exclude', ", ".join(data['exclude']) or '-'],
            ['Updated', data['updated_at']],
        ], tablefmt='plain'))
        click.echo()

    finally:
        session.close()


@hotspot.command(name='list')
@click.option('--limit', '-l', default=20, help='Number of hotspots to show')
def list_hotspots(limit):
    """List hotspots, most recently updated first."""
    db = Database()
    session = db.get_session()

    try:
        rows = session.query(Hotspot).order_by(Hotspot.updated_at.desc()).limit(limit).all()
        if not rows:
            click.echo(click.style("No hotspots found.", fg='yellow'))
            return

        table_data = [
            [row.hotspot_id, row.title[:40], row.time_start or '-', row.time_end or '-', len(row.entities or [])]
            for row in rows
        ]
        click.echo(tabulate(table_data, headers=['ID', 'Title', 'Start', 'End', 'Entities'], tablefmt='simple'))

    finally:
        session.close()
