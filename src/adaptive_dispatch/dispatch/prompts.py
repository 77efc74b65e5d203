"""Prompt templates for analysis, evaluation and reframing requests."""

from __future__ import annotations

from collections.abc import Sequence

ANALYSIS_SYSTEM = "You are a task analysis system. Respond with JSON only."
EVALUATION_SYSTEM = "You are a result validation system. Be critical and objective. Respond with JSON only."
REFRAME_SYSTEM = "You rewrite tasks so they are clearer and more specific."

_ANALYSIS_TEMPLATE = """\
Analyze this task and describe it as a JSON object.

Task: {task}

Fields:
{{
  "complexity": "simple|medium|complex|extreme",
  "domain": "general|technical|creative|analytical|conversational|monitoring",
  "requires_tools": true|false,
  "requires_knowledge": true|false,
  "requires_reasoning": true|false,
  "requires_iteration": true|false,
  "required_quality": "standard|high|extreme",
  "estimated_steps": <integer>,
  "key_requirements": ["requirement", "..."]
}}

Respond with the JSON object only."""

_EVALUATION_TEMPLATE = """\
Evaluate the answer below against the task.

Task: {task}

Answer:
{answer}

Score each criterion from 0 to 10:
- correctness: does it answer the task correctly?
- completeness: does it cover everything the task asks for?
- clarity: is it clear and well structured?
- relevance: does it stay on the task?

Respond with this JSON object only:
{{
  "correctness": <0-10>,
  "completeness": <0-10>,
  "clarity": <0-10>,
  "relevance": <0-10>,
  "issues": ["issue", "..."],
  "strengths": ["strength", "..."]
}}"""

_REFRAME_TEMPLATE = """\
The task below was attempted but the result had quality issues.
Rewrite the task so it is clearer and more specific.

Task: {task}

Issues:
{issues}

Respond with the rewritten task only."""


def build_analysis_prompt(task: str) -> str:
    return _ANALYSIS_TEMPLATE.format(task=task)


def build_evaluation_prompt(task: str, answer: str) -> str:
    return _EVALUATION_TEMPLATE.format(task=task, answer=answer)


def build_reframe_prompt(task: str, issues: Sequence[str]) -> str:
    issue_lines = "\n".join(f"- {issue}" for issue in issues) or "- The answer did not meet the quality bar."
    return _REFRAME_TEMPLATE.format(task=task, issues=issue_lines)
