#!/usr/bin/env python3
"""
CLI for the news trace engine.
"""

import click
from importlib.metadata import version
from commands import corpus, hotspot, llm, trace


@click.group()
@click.version_option(version=version("newstrace"))
def cli():
    """News Trace CLI - Store articles, define hotspots and trace anchors through them."""
    pass


# Register command groups
cli.add_command(corpus.corpus)
cli.add_command(hotspot.hotspot)
cli.add_command(trace.trace)
cli.add_command(llm.llm)


if __name__ == "__main__":
    cli()
