"""
CLI commands for LLM API call logs.
"""

import click
from datetime import datetime, timedelta
from sqlalchemy import desc, func
from tabulate import tabulate
from db import Database, LLMApiCall


@click.group()
def llm():
    """Inspect logged LLM API calls."""
    pass


@llm.command()
@click.option('--days', default=7, help='Number of days to include in stats (default: 7)')
def stats(days):
    """Show usage statistics of LLM API calls."""
    db = Database()
    session = db.get_session()

    try:
        cutoff_date = datetime.utcnow() - timedelta(days=days)
        recent = session.query(LLMApiCall).filter(LLMApiCall.started_at >= cutoff_date)

        total_calls = recent.count()
        successful_calls = recent.filter(LLMApiCall.success == 1).count()
        success_rate = (successful_calls / total_calls * 100) if total_calls > 0 else 0

        total_tokens, avg_duration = session.query(
            func.sum(LLMApiCall.total_tokens),
            func.avg(LLMApiCall.duration_ms)
        ).filter(LLMApiCall.started_at >= cutoff_date).one()

        by_task = session.query(
            LLMApiCall.task_name,
            func.count(LLMApiCall.id).label('count'),
            func.sum(LLMApiCall.total_tokens)
        ).filter(
            LLMApiCall.started_at >= cutoff_date
        ).group_by(LLMApiCall.task_name).order_by(desc('count')).all()

        click.echo(click.style(f"\nLLM API Usage (Last {days} days)", fg='cyan', bold=True))
        click.echo(click.style("=" * 50, fg='cyan'))
        click.echo(tabulate([
            ['Total Calls', click.style(str(total_calls), fg='green')],
            ['Failed', click.style(str(total_calls - successful_calls), fg='red')],
            ['Success Rate', f"{success_rate:.1f}%"],
            ['Total Tokens', f"{total_tokens or 0:,}"],
            ['Avg Duration', f"{int(avg_duration) if avg_duration else 0}ms"],
        ], tablefmt='plain'))
        click.echo()

        if by_task:
            click.echo(click.style("Calls by Task:", fg='yellow', bold=True))
            click.echo(tabulate(
                [[task or '(none)', count, f"{tokens or 0:,}"] for task, count, tokens in by_task],
                headers=['Task', 'Calls', 'Tokens'],
                tablefmt='simple'
            ))
            click.echo()

    finally:
        session.close()


@llm.command(name='list')
@click.option('--limit', default=20, help='Number of recent calls to show (default: 20)')
@click.option('--task', help='Filter by task name')
@click.option('--errors', is_flag=True, help='Only failed calls')
def list_calls(limit, task, errors):
    """List recent LLM API calls."""
    db = Database()
    session = db.get_session()

    try:
        query = session.query(LLMApiCall).order_by(desc(LLMApiCall.started_at))
        if task:
            query = query.filter(LLMApiCall.task_name == task)
        if errors:
            query = query.filter(LLMApiCall.success == 0)

        calls = query.limit(limit).all()
        if not calls:
            click.echo(click.style("No API calls found.", fg='yellow'))
            return

        table_data = [
            [
                call.id,
                click.style('✓', fg='green') if call.success else click.style('✗', fg='red'),
                call.task_name or '(none)',
                call.model,
                call.total_tokens or 'N/A',
                f"{call.duration_ms}ms" if call.duration_ms else 'N/A',
                (call.context_data or {}).get('trace_id', '-'),
                (call.error_message or '')[:60],
            ]
            for call in calls
        ]
        click.echo(tabulate(
            table_data,
            headers=['ID', '✓', 'Task', 'Model', 'Tokens', 'Duration', 'Trace', 'Error'],
            tablefmt='simple'
        ))

    finally:
        session.close()
