"""Prompt construction for extraction passes."""

from __future__ import annotations

import json

from ..document import Document
from ..schema import ExtractionSchema
from ..types import ExampleData, Extraction

# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------

OUTPUT_FORMAT = """\
OUTPUT FORMAT:
Return ONLY a JSON object, no prose:
{"extractions": [{"extraction_class": "<class>", "extraction_text": "<exact text from the document>", \
"attributes": {...}, "confidence": <0.0-1.0>}]}

RULES:
- extraction_text must be copied verbatim from the document, not paraphrased.
- List extractions in the order they appear in the document.
- Do not overlap extractions of the same class.\
"""

SCHEMA_SECTION = """\
ALLOWED CLASSES:
{classes}

JSON SCHEMA:
{json_schema}\
"""

EXAMPLE_SECTION = """\
EXAMPLE {n}:
Text: {text}
Output: {output}\
"""

CONTEXT_SECTION = """\
ADDITIONAL CONTEXT:
{context}\
"""

FOLLOWUP_SECTION = """\
This is extraction pass {pass_number}. These were already found; find \
what was MISSED instead of repeating them:
{found}\
"""

DOCUMENT_SECTION = """\
DOCUMENT:
{text}

JSON:\
"""


def _example_output(extractions: list[Extraction]) -> str:
    items = []
    for e in extractions:
        item = {"extraction_class": e.extraction_class, "extraction_text": e.extraction_text}
        if e.attributes:
            item["attributes"] = e.attributes
        items.append(item)
    return json.dumps({"extractions": items}, ensure_ascii=False)


def build_prompt(
    task_description: str,
    document: Document,
    examples: list[ExampleData] | None = None,
    schema: ExtractionSchema | None = None,
    pass_number: int = 1,
    previous: list[Extraction] | None = None,
) -> str:
    """Assemble the prompt for one extraction pass.

    Sections: task, schema, few-shot examples, output format, additional
    context, already-found extractions (later passes only), document.
    """
    sections = [task_description.strip()]

    if schema is not None:
        sections.append(SCHEMA_SECTION.format(
            classes="\n".join(f"- {c}" for c in schema.class_names()),
            json_schema=json.dumps(schema.to_json_schema(), indent=2),
        ))

    for n, example in enumerate(examples or [], start=1):
        sections.append(EXAMPLE_SECTION.format(
            n=n, text=example.text, output=_example_output(example.extractions)
        ))

    sections.append(OUTPUT_FORMAT)

    if document.additional_context:
        sections.append(CONTEXT_SECTION.format(context=document.additional_context))

    if pass_number > 1 and previous:
        found = "\n".join(f"- {e.extraction_class}: {e.extraction_text}" for e in previous)
        sections.append(FOLLOWUP_SECTION.format(pass_number=pass_number, found=found))

    sections.append(DOCUMENT_SECTION.format(text=document.text))
    return "\n\n".join(sections)
