"""Prompt templates for LLM-driven categorization."""

from __future__ import annotations

from textwrap import dedent

from ..core.models import NormalizedMessage

_BODY_LIMIT = 2000


def build_category_prompt(message: NormalizedMessage, labels: tuple[str, ...]) -> str:
    """Compose a JSON-only prompt asking for exactly one sales-intent label."""
    body = message.body
    if len(body) > _BODY_LIMIT:
        body = body[:_BODY_LIMIT] + "..."
    label_list = ", ".join(labels)

    prompt = f"""
    You are an expert email classifier for a business outreach platform.
    Categorize the email below into exactly one of these labels: {label_list}.

    Label definitions:
    - Interested: asks questions, requests more information, or engages positively
    - Meeting Booked: agreed to a meeting, scheduled a call, or confirmed an appointment
    - Not Interested: explicitly declines or shows clear disinterest
    - Spam: promotional content, automated bulk mail, or irrelevant messages
    - Out of Office: auto-replies, vacation or out-of-office notices

    Respond strictly with JSON in this exact format: {{"category": "<label>"}}

    Subject: {message.subject}
    From: {message.sender}

    Email body:
    {body}
    """

    return dedent(prompt).strip()


__all__ = ["build_category_prompt"]
