"""Tests for PM report rendering and facet fallbacks."""

import sft_deliberate as sd
from conftest import payload, story


def step(team, **extra):
    delta = team.merge(sd._parse_request(payload(**extra)))
    return sd._build_report(team, delta)


class TestPlaceholders:
    def test_empty_state(self):
        report = sd._build_report(sd.TeamState(), sd.TeamDelta())
        assert report.bullets == [
            "PM summary: No project manager summary provided yet",
            "Discussion points: none recorded yet",
            "Backlog updates: backlog is empty",
            "Sprint plan: not yet defined",
            "Consensus: ready_for_code_change=no blockers none notes no additional notes waiting_on_user=no",
        ]
        assert report.pm_summary is None
        assert report.backlog_snapshot == []
        assert report.active_sprint is None
        assert report.waiting_on_user is False


class TestFallbacks:
    def test_summary_falls_back_to_last(self):
        team = sd.TeamState()
        step(team, thought="kickoff", role="projectManager")
        report = step(team, thought="later thought")
        assert report.bullets[0] == "PM summary: kickoff"
        assert report.pm_summary == "kickoff"

    def test_discussion_delta_joined(self):
        team = sd.TeamState()
        points = [
            {"role": "pragmaticProgrammer", "detail": "Small steps"},
            {"role": "productVisionary", "detail": "Big picture"},
        ]
        report = step(team, discussionPoints=points)
        assert report.bullets[1] == (
            "Discussion points: Pragmatic Programmer: Small steps; Product Visionary: Big picture"
        )
        assert len(report.new_discussion_points) == 2

    def test_discussion_falls_back_to_last_logged(self):
        team = sd.TeamState()
        step(team, thought="first idea", role="productVisionary")
        step(team, thought="second idea", role="pragmaticProgrammer")
        report = step(team, thought="no role")
        assert report.bullets[1] == "Discussion points: Pragmatic Programmer: second idea"
        assert report.new_discussion_points == []

    def test_backlog_changes_then_focus(self):
        team = sd.TeamState()
        report = step(
            team,
            backlogStories=[
                story("A", priority="low"),
                story("B", priority="high", status="inProgress"),
                story("C", priority="medium", status="blocked"),
                story("D", priority="high", status="done"),
            ],
        )
        assert report.bullets[2].startswith("Backlog updates: Added A [Low | To Do]; Added B")

        report = step(team, thought="quiet step")
        assert report.bullets[2] == (
            "Backlog focus: B [High | In Progress]; D [High | Done]; C [Medium | Blocked]"
        )
        assert [i.id for i in report.backlog_snapshot] == ["B", "D", "C", "A"]

    def test_removing_missing_id_keeps_focus_line(self):
        team = sd.TeamState()
        step(team, backlogStories=[story("A")])
        report = step(team, removeStoryIds=["nope"])
        assert report.bullets[2] == "Backlog focus: A [Medium | To Do]"


class TestSprintLine:
    def test_full_plan(self):
        team = sd.TeamState()
        plan = {
            "sprintName": "Sprint 1",
            "goal": "Ship login",
            "durationDays": 10,
            "committedStoryIds": ["A", "B"],
            "participants": [
                {
                    "role": "pragmaticProgrammer",
                    "reasoning": "owns the API",
                    "responsibilities": ["auth endpoint", "tests"],
                },
                {"role": "productVisionary", "reasoning": "  "},
            ],
        }
        report = step(team, sprintPlan=plan)
        assert report.bullets[3] == (
            "Sprint plan: Sprint 1 goal 'Ship login' lasting 10 day(s); stories A, B; "
            "participants Pragmatic Programmer (owns the API) - auth endpoint, tests; Product Visionary"
        )
        assert report.active_sprint.sprint_name == "Sprint 1"

    def test_empty_plan_lists(self):
        team = sd.TeamState()
        step(team, sprintPlan={"sprintName": "S", "goal": "g", "durationDays": 1})
        report = step(team, thought="later")
        assert report.bullets[3] == (
            "Sprint plan: S goal 'g' lasting 1 day(s); stories no stories committed; "
            "participants no participants selected"
        )


class TestConsensusLine:
    def test_rendered_from_update(self):
        team = sd.TeamState()
        report = step(
            team,
            consensusUpdate={"readyForCodeChanges": True, "blockers": ["a", "b"], "notes": "go"},
            requiresUserInput=True,
        )
        assert report.bullets[4] == (
            "Consensus: ready_for_code_change=yes blockers a; b notes go waiting_on_user=yes"
        )
        assert report.consensus.blockers == ["a", "b"]
        assert report.waiting_on_user is True

    def test_blank_notes_use_placeholder(self):
        team = sd.TeamState()
        report = step(team, consensusUpdate={"readyForCodeChanges": False, "notes": "   "})
        assert "notes no additional notes" in report.bullets[4]

    def test_persisted_consensus(self):
        team = sd.TeamState()
        step(team, consensusUpdate={"readyForCodeChanges": False, "blockers": ["x"]})
        report = step(team, thought="later")
        assert "blockers x" in report.bullets[4]
        assert report.consensus.blockers == ["x"]


def test_always_five_bullets_in_order():
    team = sd.TeamState()
    report = step(
        team,
        thought="all at once",
        role="projectManager",
        backlogStories=[story("A")],
        sprintPlan={"sprintName": "S", "goal": "g", "durationDays": 2},
    )
    prefixes = [b.split(":")[0] for b in report.bullets]
    assert prefixes == ["PM summary", "Discussion points", "Backlog updates", "Sprint plan", "Consensus"]
