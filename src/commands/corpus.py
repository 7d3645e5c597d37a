"""
Corpus commands: store article text as searchable chunks.
"""

import click
from tabulate import tabulate
from db import Database
from db.fts import LexicalIndex
from processors.chunking import MAX_CHUNK_SIZE, split_markdown_into_chunks


@click.group()
def corpus():
    """Manage the searchable article corpus."""
    pass


@corpus.command()
@click.argument('file', type=click.Path(exists=True, dir_okay=False))
@click.option('--url', '-u', required=True, help='Canonical article URL')
@click.option('--title', '-t', help='Article title')
@click.option('--published-at', '-p', help='Publication timestamp (ISO-8601 recommended)')
@click.option('--max-chunk-size', type=int, default=MAX_CHUNK_SIZE, help=f'Chunk size (default: {MAX_CHUNK_SIZE})')
def add(file, url, title, published_at, max_chunk_size):
    """
    Add or replace an article from a Markdown/text file.

    Examples:
        newstrace corpus add article.md -u https://example.com/a -t "Title" -p 2023-03-01
    """
    with open(file, 'r', encoding='utf-8') as f:
        content = f.read()

    chunks = split_markdown_into_chunks(content, max_chunk_size)
    if not chunks:
        click.echo(click.style(f"✗ No content in {file}", fg="red"))
        return

    db = Database()
    session = db.get_session()

    try:
        page = db.save_page(session, url, title=title, published_at=published_at)
        count = db.replace_chunks(session, page, chunks)
        session.commit()
        click.echo(click.style(f"✓ Stored {count} chunk(s) for {url}", fg="green"))
    except Exception as e:
        session.rollback()
        click.echo(click.style(f"✗ Error storing {url}: {e}", fg="red"))
    finally:
        session.close()


@corpus.command()
@click.argument('query')
@click.option('--limit', '-l', default=20, help='Maximum hits (default: 20)')
def search(query, limit):
    """Keyword search over stored chunks."""
    index = LexicalIndex(Database())
    hits = index.search(query, limit)

    if not hits:
        click.echo(click.style("No matches.", fg='yellow'))
        return

    table_data = [[hit['title'][:40] or '-', hit['snippet'].replace("\n", " ")[:100], hit['url']] for hit in hits]
    click.echo(tabulate(table_data, headers=['Title', 'Snippet', 'URL'], tablefmt='simple'))
