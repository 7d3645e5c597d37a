"""
Pydantic schema for trace summary structured output.

The LLM receives only the counts computed by the trace pipeline plus the
anchor, event and hotspot labels. Any number in the summary must come from
that input; a summary quoting other figures is rejected and the caller falls
back to the deterministic sentence.
"""

import re
from pydantic import BaseModel, Field, ValidationInfo, field_validator


NUMBER_PATTERN = re.compile(r'\d+')


class StructuredOutput(BaseModel):
    """Structured output schema for a cautious trace summary."""

    summary: str = Field(
        description="Cautious 2-4 sentence summary of the trace. Must mention that results may be "
                    "uncertain and are backed by evidence references. Only use the provided counts."
    )

    @field_validator('summary')
    @classmethod
    def summary_uses_known_numbers(cls, value: str, info: ValidationInfo) -> str:
        value = value.strip()
        allowed = (info.context or {}).get('allowed_numbers')
        if allowed is None:
            return value

        unknown = [n for n in NUMBER_PATTERN.findall(value) if n not in allowed]
        if unknown:
            raise ValueError(f"Summary quotes numbers not computed by the pipeline: {unknown}")
        return value
