"""
Runtime configuration read from the environment.

A .env file at the project root is loaded first (python-dotenv); variables
already set in the process environment take precedence over it.
"""

import os
from pathlib import Path
from dotenv import load_dotenv

load_dotenv(dotenv_path=Path(__file__).parent.parent / '.env')

_values = {}


def get_setting(key: str, default=None):
    """
    Value of an environment variable, read once and memoized.

    Example:
        >>> DATABASE_PATH = get_setting('DATABASE_PATH', 'data/newstrace.db')
    """
    if key not in _values:
        _values[key] = os.getenv(key, default)
    return _values[key]


def get_int_setting(key: str, default: int) -> int:
    return int(get_setting(key, str(default)))


def get_bool_setting(key: str, default: str = 'False') -> bool:
    """Read a boolean flag ('true', '1', 'yes' are truthy)."""
    return str(get_setting(key, default)).lower() in ('true', '1', 'yes')


# Storage
DATABASE_PATH = get_setting('DATABASE_PATH', 'data/newstrace.db')
DEBUG = get_bool_setting('DEBUG', 'False')

# OpenAI (summaries)
OPENAI_API_KEY = get_setting('OPENAI_API_KEY')
OPENAI_MODEL = get_setting('OPENAI_MODEL', 'gpt-5-nano')
OPENAI_MAX_RETRIES = get_int_setting('OPENAI_MAX_RETRIES', 3)
OPENAI_TIMEOUT = get_int_setting('OPENAI_TIMEOUT', 120)
SUMMARY_LANGUAGE = get_setting('SUMMARY_LANGUAGE', 'Chinese')

# Embeddings; an empty model name disables vector recall
EMBEDDING_MODEL = get_setting('EMBEDDING_MODEL', 'paraphrase-multilingual-MiniLM-L12-v2')
VECTOR_INDEX_ENABLED = get_bool_setting('VECTOR_INDEX_ENABLED', 'True')

# Trace pipeline limits
TRACE_LEXICAL_LIMIT = get_int_setting('TRACE_LEXICAL_LIMIT', 300)
TRACE_VECTOR_TOP_K = get_int_setting('TRACE_VECTOR_TOP_K', 300)
TRACE_TOP_N = get_int_setting('TRACE_TOP_N', 80)
TRACE_EVIDENCE_SIZE = get_int_setting('TRACE_EVIDENCE_SIZE', 20)
TRACE_TIMELINE_LIMIT = get_int_setting('TRACE_TIMELINE_LIMIT', 30)
TRACE_TIMELINE_SUPPLEMENTS = get_int_setting('TRACE_TIMELINE_SUPPLEMENTS', 8)
TRACE_MAX_HOPS = get_int_setting('TRACE_MAX_HOPS', 4)
TRACE_GRAPH_EDGE_LIMIT = get_int_setting('TRACE_GRAPH_EDGE_LIMIT', 200)
ENTITY_LANG = get_setting('ENTITY_LANG', 'zh')

# Queue delivery
TRACE_WORKERS = get_int_setting('TRACE_WORKERS', 3)
TRACE_MAX_ATTEMPTS = get_int_setting('TRACE_MAX_ATTEMPTS', 5)
TRACE_LEASE_SECONDS = get_int_setting('TRACE_LEASE_SECONDS', 300)
