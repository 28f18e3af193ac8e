"""Shared fixtures for sft_deliberate tests."""

import pytest

import sft_deliberate as sd


@pytest.fixture(autouse=True)
def tsv_log(tmp_path, monkeypatch):
    """Send the TSV log to a temp file instead of the scripts directory."""
    log_path = tmp_path / "sft_deliberate_log.tsv"
    monkeypatch.setattr(sd, "_LOG", log_path)
    return log_path


@pytest.fixture
def session():
    return sd.DeliberationSession()


def payload(thought="step", number=1, total=3, next_needed=True, **extra):
    """Wire-shaped request dict with the required fields filled in."""
    data = {
        "thought": thought,
        "nextThoughtNeeded": next_needed,
        "thoughtNumber": number,
        "totalThoughts": total,
    }
    data.update(extra)
    return data


def story(story_id, title="Story", priority="medium", status="todo", **extra):
    data = {"id": story_id, "title": title, "priority": priority, "status": status}
    data.update(extra)
    return data
