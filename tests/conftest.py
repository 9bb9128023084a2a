"""Shared fixtures for prompt organizer tests."""

import uuid
from datetime import datetime, timedelta

import pytest

from prompt_organizer.db import Database
from prompt_organizer.models import (
    AIMetadata,
    SourcePrompt,
    TemplateCandidate,
    TemplateVariable,
    UserAction,
)

NOW = datetime(2026, 10, 19, 9, 0)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def db(tmp_path):
    """A fresh on-disk database with the schema and default categories."""
    with Database(tmp_path / "organizer.db") as database:
        database.init_schema()
        yield database


def make_prompt(prompt_id="prompt_1", count=3, days_ago=1, excluded=False, content=None, name=None):
    return SourcePrompt(
        id=prompt_id,
        name=name or f"Prompt {prompt_id}",
        content=content or f"Please help me with task {prompt_id}",
        execution_count=count,
        last_executed_at=NOW - timedelta(days=days_ago),
        exclude_from_organizer=excluded,
    )


def make_candidate(
    title="Weekly report",
    action=UserAction.PENDING,
    source_ids=("prompt_1", "prompt_2"),
    variables=("project", "week"),
    candidate_id=None,
):
    template_variables = [TemplateVariable(name=v, description=f"The {v}") for v in variables]
    return TemplateCandidate(
        id=candidate_id or str(uuid.uuid4()),
        title=title,
        content="Write a report for {{project}} covering {{week}}",
        use_case="Status reporting",
        category_id="documentCreation",
        variables=template_variables,
        ai_metadata=AIMetadata(
            generated_at=NOW,
            source_prompt_ids=list(source_ids),
            source_count=len(source_ids),
            source_period_days=30,
            extracted_variables=list(template_variables),
        ),
        user_action=action,
    )


@pytest.fixture
def prompt_factory():
    return make_prompt


@pytest.fixture
def candidate_factory():
    return make_candidate
