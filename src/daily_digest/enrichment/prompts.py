"""Prompt templates for title translation, summarization and classification."""

from __future__ import annotations

_OUTPUT_RULES = """
IMPORTANT output rules:
- Output only the requested content.
- No notes, explanations, character counts or prefixes such as "Translation:".
"""

TITLE_BATCH_PROMPT = """\
Translate the following Hacker News titles to {language}.

Each entry has an "id". Return a JSON array of objects with the SAME ids:
[{{"id": <id>, "title": "<translated title>"}}, ...]

Rules:
1. Keep technical terms, product names and acronyms (TypeScript, GitHub, API,
   AWS, LLM, ...) in their original form.
2. Translate only the natural-language parts; keep the result natural and short.
3. Return every id exactly once. Do not invent ids.
4. Output the JSON array only, without markdown code fences.

Input:
{entries}
"""

TITLE_BATCH_SIMPLE_PROMPT = """\
Translate each line to {language}. Every line starts with an id and a tab.
Answer with the same ids, one line per title, as: <id><TAB><translated title>

{lines}
"""

TITLE_PROMPT = (
    """\
Translate this Hacker News title to {language}. Keep technical terms, product
names and acronyms in their original form.
"""
    + _OUTPUT_RULES
    + """
Title: {title}
"""
)

TITLE_SIMPLE_PROMPT = "Translate to {language}, output the translation only: {title}"

SUMMARY_PROMPT = (
    """\
Summarize the following article in {language} in at most {max_chars} characters.
Focus on what is new and why it matters to a technical reader.
"""
    + _OUTPUT_RULES
    + """
Article:
{content}
"""
)

SUMMARY_SIMPLE_PROMPT = (
    "Write a {language} summary of at most {max_chars} characters of this text:\n{content}"
)

COMMENTS_PROMPT = (
    """\
Below are reader comments from a Hacker News discussion. Summarize the main
viewpoints and any notable disagreement in {language}, in at most {max_chars}
characters.
"""
    + _OUTPUT_RULES
    + """
Comments:
{comments}
"""
)

COMMENTS_SIMPLE_PROMPT = (
    "Summarize these comments in {language} in at most {max_chars} characters:\n{comments}"
)

CLASSIFICATION_GUIDELINES = {
    "low": """\
Only classify as SENSITIVE if the title:
- explicitly promotes illegal activities
- contains explicit adult or violent content""",
    "medium": """\
Classify as SENSITIVE if the title:
- relates to political controversies restricted for the target audience
- contains explicit adult or violent content
- promotes illegal activities or hate speech""",
    "high": """\
Classify as SENSITIVE if the title:
- relates to any political topic or to censorship and internet freedom
- contains controversial social content
- contains adult, violent or offensive content""",
}

CLASSIFICATION_PROMPT = """\
You are a content moderator for a {language} news digest. Classify each
Hacker News title as "SAFE" or "SENSITIVE".

Sensitivity level: {sensitivity}
{guidelines}

Judge the title text only. When in doubt at the boundary, classify as SAFE.

Each entry has an "id". Return a JSON array of objects with the SAME ids:
[{{"id": <id>, "classification": "SAFE"}}, ...]
Output the JSON array only, without markdown code fences.

Input:
{entries}
"""
