"""
Persistence of LLM API calls made during trace runs.

Each call (summary generation, future embedding calls through an API) is
written to the llm_api_calls table with its prompts, raw response, token
usage, duration and outcome. Writing the log is never allowed to break the
trace that made the call.
"""

import sys
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional
from sqlalchemy.exc import OperationalError


SAVE_ATTEMPTS = 3
SAVE_BACKOFF_SECONDS = 0.1


@dataclass
class LLMApiCallLogger:
    """Collects what happened during one API call until it is saved."""
    call_type: str
    model: str
    task_name: Optional[str] = None
    context_data: Dict[str, Any] = field(default_factory=dict)
    database: Any = None

    started_at: datetime = field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None
    system_prompt: Optional[str] = None
    user_prompt: Optional[str] = None
    response_raw: Optional[Dict] = None
    parsed_output: Optional[Dict] = None
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None
    total_tokens: Optional[int] = None
    success: bool = True
    error_message: Optional[str] = None

    @property
    def duration_ms(self) -> Optional[int]:
        if self.completed_at is None:
            return None
        return int((self.completed_at - self.started_at).total_seconds() * 1000)

    def set_prompts(self, system_prompt: str, user_prompt: str):
        self.system_prompt = system_prompt
        self.user_prompt = user_prompt

    def set_response(self, response):
        """Keep the raw completion and its token usage."""
        if hasattr(response, 'model_dump'):
            self.response_raw = response.model_dump(mode='json')
        usage = getattr(response, 'usage', None)
        if usage is not None:
            self.input_tokens = getattr(usage, 'prompt_tokens', None)
            self.output_tokens = getattr(usage, 'completion_tokens', None)
            self.total_tokens = getattr(usage, 'total_tokens', None)

    def set_parsed_output(self, parsed_output: Dict):
        self.parsed_output = parsed_output

    def finish(self, error: Optional[BaseException] = None):
        self.completed_at = datetime.utcnow()
        self.success = error is None
        self.error_message = str(error) if error is not None else None

    def to_row(self):
        from db.models import LLMApiCall
        return LLMApiCall(
            call_type=self.call_type,
            task_name=self.task_name,
            model=self.model,
            started_at=self.started_at,
            completed_at=self.completed_at,
            duration_ms=self.duration_ms,
            input_tokens=self.input_tokens,
            output_tokens=self.output_tokens,
            total_tokens=self.total_tokens,
            system_prompt=self.system_prompt,
            user_prompt=self.user_prompt,
            response_raw=self.response_raw,
            parsed_output=self.parsed_output,
            success=1 if self.success else 0,
            error_message=self.error_message,
            context_data=self.context_data or None
        )

    def save(self):
        """
        Write the log row in its own session.

        SQLite lock errors are retried with backoff; any other failure is
        reported on stderr and dropped. Nothing is saved without a database.
        """
        if self.database is None:
            return

        delay = SAVE_BACKOFF_SECONDS
        for attempt in range(1, SAVE_ATTEMPTS + 1):
            session = self.database.get_session()
            try:
                session.add(self.to_row())
                session.commit()
                return
            except OperationalError as e:
                session.rollback()
                if attempt == SAVE_ATTEMPTS:
                    print(f"Warning: LLM call log not saved after {attempt} attempts: {e}", file=sys.stderr)
                    return
                time.sleep(delay)
                delay *= 2
            except Exception as e:
                session.rollback()
                print(f"Warning: LLM call log not saved: {e}", file=sys.stderr)
                return
            finally:
                session.close()


@contextmanager
def log_llm_api_call(call_type: str, model: str, task_name: Optional[str] = None,
                     context_data: Optional[Dict[str, Any]] = None, database=None):
    """
    Track one API call; the row is saved whether the call succeeds or raises.

    Example:
        >>> with log_llm_api_call('structured_output', 'gpt-5-nano', 'trace_summary', database=db) as logger:
        ...     logger.set_prompts(system_prompt, user_prompt)
        ...     completion = client.chat.completions.parse(...)
        ...     logger.set_response(completion)
    """
    logger = LLMApiCallLogger(call_type, model, task_name, dict(context_data or {}), database)
    try:
        yield logger
    except Exception as e:
        logger.finish(e)
        raise
    else:
        logger.finish()
    finally:
        logger.save()
