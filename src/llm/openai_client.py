"""
OpenAI structured outputs for trace tasks.

A task is a name with three files under llm/prompts/: the system and user
Jinja2 templates and a module defining a Pydantic `StructuredOutput` model
the completion is parsed into.
"""

import importlib
import re
from pathlib import Path
from typing import Any, Dict, Optional
from jinja2 import Environment, FileSystemLoader, TemplateNotFound
from openai import OpenAI
from pydantic import BaseModel
from settings import OPENAI_API_KEY, OPENAI_MODEL, OPENAI_MAX_RETRIES, OPENAI_TIMEOUT, SUMMARY_LANGUAGE


PROMPTS_DIR = Path(__file__).parent / 'prompts'
NUMBER_PATTERN = re.compile(r'\d+')

jinja_env = Environment(
    loader=FileSystemLoader(PROMPTS_DIR),
    autoescape=False,
    trim_blocks=True,
    lstrip_blocks=True
)

# Built lazily: the trace engine runs without an API key when LLM summaries are off
_client: Optional[OpenAI] = None


def get_client() -> OpenAI:
    global _client
    if _client is None:
        _client = OpenAI(api_key=OPENAI_API_KEY, max_retries=OPENAI_MAX_RETRIES, timeout=OPENAI_TIMEOUT)
    return _client


def _load_pydantic_schema(task_name: str) -> type[BaseModel]:
    """
    The `StructuredOutput` model of llm/prompts/{task_name}.py.

    Raises:
        FileNotFoundError: If the task has no schema module
        TypeError: If the module does not define a Pydantic StructuredOutput
    """
    if not (PROMPTS_DIR / f"{task_name}.py").exists():
        raise FileNotFoundError(f"No schema module for task '{task_name}' in {PROMPTS_DIR}")

    module = importlib.import_module(f"llm.prompts.{task_name}")
    schema_class = getattr(module, 'StructuredOutput', None)
    if not (isinstance(schema_class, type) and issubclass(schema_class, BaseModel)):
        raise TypeError(f"llm.prompts.{task_name}.StructuredOutput must be a Pydantic model")
    return schema_class


def _render_prompts(task_name: str, data: Dict[str, Any]) -> tuple[str, str]:
    """Render the (system, user) prompt pair of a task."""
    rendered = []
    for role in ('system', 'user'):
        template_name = f"{task_name}_{role}_prompt.md.jinja"
        try:
            rendered.append(jinja_env.get_template(template_name).render(**data))
        except TemplateNotFound:
            raise FileNotFoundError(f"Missing {role} prompt template: {PROMPTS_DIR / template_name}")
    return rendered[0], rendered[1]


def openai_structured_output(
    task_name: str,
    data: Dict[str, Any],
    model: str = None,
    validation_context: Dict[str, Any] = None,
    database=None,
    context_data: Dict[str, Any] = None
) -> BaseModel:
    """
    Run a task against the chat completions API and parse the reply.

    The parsed reply is validated a second time with validation_context,
    since validators that read info.context see nothing during the SDK's
    own parse. Every call is recorded in llm_api_calls when a database is
    given.

    Args:
        task_name: Task under llm/prompts (e.g. 'trace_summary')
        data: Template variables
        model: Model name (OPENAI_MODEL by default)
        validation_context: Context passed to the schema validators
        database: Database for the call log
        context_data: Extra metadata for the call log (trace_id, ...)

    Raises:
        FileNotFoundError: If a template or the schema module is missing
        pydantic.ValidationError: If the reply fails contextual validation
    """
    from llm.logging import log_llm_api_call

    schema_class = _load_pydantic_schema(task_name)
    system_prompt, user_prompt = _render_prompts(task_name, data)
    model_name = model or OPENAI_MODEL
    call_context = dict(context_data or {}, task_name=task_name, data_keys=sorted(data))

    with log_llm_api_call('structured_output', model_name, task_name, call_context, database) as call_log:
        call_log.set_prompts(system_prompt, user_prompt)
        completion = get_client().chat.completions.parse(
            model=model_name,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt}
            ],
            response_format=schema_class
        )
        call_log.set_response(completion)

        parsed = completion.choices[0].message.parsed
        if parsed is None:
            raise ValueError(f"No parsed output for task '{task_name}' (refusal or empty reply)")

        if validation_context:
            parsed = schema_class.model_validate(parsed.model_dump(), context=validation_context)

        call_log.set_parsed_output(parsed.model_dump())
        return parsed


class OpenAISummarizer:
    """Summarizer that asks the model for a cautious trace summary."""

    task_name = 'trace_summary'

    def __init__(self, database=None, model: str = None, language: str = None):
        self.database = database
        self.model = model or OPENAI_MODEL
        self.language = language or SUMMARY_LANGUAGE

    def summarize(self, data: Dict[str, Any]) -> str:
        """
        Args:
            data: anchor, event, hotspot, time_start, time_end,
                timeline_count, edge_count, evidence_count

        Returns:
            Summary text; it may only quote numbers present in data
        """
        allowed_numbers = set()
        for value in data.values():
            if value is not None:
                allowed_numbers.update(NUMBER_PATTERN.findall(str(value)))

        output = openai_structured_output(
            self.task_name,
            dict(data, language=self.language),
            model=self.model,
            validation_context={'allowed_numbers': allowed_numbers},
            database=self.database,
            context_data={key: data[key] for key in ('trace_id', 'hotspot_id') if data.get(key)}
        )
        return output.summary
