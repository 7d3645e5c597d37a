"""
Trace job commands.
"""

import json
import click
from tabulate import tabulate
from db import Database, Trace, TraceStatus
from processors.context import build_context
from processors.errors import TraceValidationError
from processors.trace import enqueue_trace, get_trace, process_trace
from processors.worker import run_worker
from settings import TRACE_WORKERS


STATUS_COLORS = {
    'queued': 'yellow',
    'running': 'blue',
    'done': 'green',
    'failed': 'red',
}


@click.group()
def trace():
    """Enqueue, run and inspect trace jobs."""
    pass


@trace.command()
@click.option('--hotspot', '-h', 'hotspot_id', required=True, help='Hotspot id')
@click.option('--anchor', '-a', required=True, help='Subject name the trace is centered on')
@click.option('--event', '-e', help='Optional event description')
@click.option('--alias', 'aliases', multiple=True, help='Alias hint for the anchor (repeatable)')
def enqueue(hotspot_id, anchor, event, aliases):
    """
    Create a trace job and put it on the queue.

    Examples:
        newstrace trace enqueue -h 1b2c... -a "Miles Guo" -e "fraud trial" --alias "Guo Wengui"
    """
    ctx = build_context(use_llm=False)
    try:
        result = enqueue_trace(ctx, {
            'hotspot_id': hotspot_id,
            'anchor': anchor,
            'event': event,
            'aliases': list(aliases),
        })
        click.echo(click.style(f"✓ Trace queued: {result['trace_id']}", fg="green"))
    except TraceValidationError as e:
        click.echo(click.style(f"✗ {e}", fg="red"))


@trace.command()
@click.argument('trace_id')
@click.option('--json', 'as_json', is_flag=True, help='Print the raw trace record as JSON')
def show(trace_id, as_json):
    """Show status, summary and evidence of a trace."""
    ctx = build_context(use_llm=False)
    record = get_trace(ctx, trace_id)

    if record is None:
        click.echo(click.style(f"✗ Trace '{trace_id}' not found", fg="red"))
        return

    if as_json:
        click.echo(json.dumps(record, ensure_ascii=False, indent=2))
        return

    status = record['status']
    click.echo()
    click.echo(click.style(f"Trace {record['trace_id']}", fg='cyan', bold=True) +
               " - " + click.style(status.upper(), fg=STATUS_COLORS.get(status, 'white')))
    click.echo(click.style("=" * 60, fg='cyan'))
    click.echo(tabulate([
        ['Hotspot', record['hotspot_id']],
        ['Anchor', record['anchor']],
        ['Event', record['event'] or '-'],
        ['Retries', record['retries']],
        ['Updated', record['updated_at']],
    ], tablefmt='plain'))
    click.echo()

    if record['error']:
        click.echo(click.style("Error:", fg='red', bold=True))
        click.echo(record['error'])
        click.echo()

    result = record['result']
    if not result:
        return

    click.echo(click.style("Stats:", fg='yellow', bold=True))
    click.echo(tabulate(sorted(result['stats'].items()), tablefmt='plain'))
    click.echo()

    click.echo(click.style("Summary:", fg='yellow', bold=True))
    click.echo(result['summary'])
    click.echo()

    if result['timeline']:
        click.echo(click.style("Timeline:", fg='yellow', bold=True))
        click.echo(tabulate(
            [[item['time'] or '-', item['summary'][:80]] for item in result['timeline']],
            headers=['Time', 'Summary'],
            tablefmt='simple'
        ))
        click.echo()

    if result['evidence_pack']:
        click.echo(click.style("Evidence:", fg='yellow', bold=True))
        click.echo(tabulate(
            [[item['rank'], item['score'], item['why'], item['url']] for item in result['evidence_pack']],
            headers=['#', 'Score', 'Why', 'URL'],
            tablefmt='simple'
        ))
        click.echo()


@trace.command(name='list')
@click.option('--status', '-s', type=click.Choice([s.value for s in TraceStatus]), help='Filter by status')
@click.option('--limit', '-l', default=20, help='Number of traces to show')
def list_traces(status, limit):
    """List recent traces."""
    db = Database()
    session = db.get_session()

    try:
        query = session.query(Trace).order_by(Trace.created_at.desc())
        if status:
            query = query.filter(Trace.status == TraceStatus(status))
        rows = query.limit(limit).all()

        if not rows:
            click.echo(click.style("No traces found.", fg='yellow'))
            return

        table_data = [
            [
                row.trace_id,
                row.anchor[:30],
                click.style(row.status.value, fg=STATUS_COLORS.get(row.status.value, 'white')),
                row.retries,
                row.created_at.strftime('%Y-%m-%d %H:%M:%S'),
            ]
            for row in rows
        ]
        click.echo(tabulate(table_data, headers=['ID', 'Anchor', 'Status', 'Retries', 'Created'], tablefmt='simple'))

    finally:
        session.close()


@trace.command()
@click.argument('trace_id')
@click.option('--no-llm', is_flag=True, help='Use the deterministic summary only')
def process(trace_id, no_llm):
    """Run a trace now, outside the queue."""
    ctx = build_context(use_llm=not no_llm)
    click.echo(f"Processing trace {trace_id}...")
    try:
        process_trace(ctx, trace_id)
    except Exception as e:
        click.echo(click.style(f"✗ Trace failed: {e}", fg="red"))
        return
    click.echo(click.style("✓ Trace done", fg="green"))


@trace.command()
@click.option('--workers', '-w', type=int, default=TRACE_WORKERS, help=f'Concurrent traces (default: {TRACE_WORKERS})')
@click.option('--max-messages', '-n', type=int, default=None, help='Stop after this many deliveries')
@click.option('--idle-timeout', type=float, default=None, help='Stop after this many idle seconds')
@click.option('--no-llm', is_flag=True, help='Use the deterministic summary only')
def worker(workers, max_messages, idle_timeout, no_llm):
    """Consume the trace queue."""
    ctx = build_context(use_llm=not no_llm)
    click.echo(f"Worker started with {workers} thread(s)")
    counts = run_worker(ctx, workers=workers, max_messages=max_messages, idle_timeout=idle_timeout)
    click.echo(click.style(
        f"✓ Worker stopped: {counts['received']} received, {counts['acked']} acked, {counts['failed']} failed",
        fg="green"
    ))


@trace.command()
def queue():
    """Show queue message counts per status."""
    ctx = build_context(use_llm=False)
    stats = ctx.queue.stats()
    click.echo(tabulate(sorted(stats.items()), headers=['Status', 'Messages'], tablefmt='simple'))
