#!/usr/bin/env -S uv run --script
# /// script
# requires-python = ">=3.11"
# dependencies = ["fastmcp>=2.10", "pydantic>=2.0.0"]
# ///
"""Deliberate thinking — sequential thoughts plus a running project-manager report.

Architecture:
  One in-memory session per process: a thought graph (main line + named
  branches, revisions in place) and a team state (discussion log, backlog,
  sprint plan, consensus). Every call merges its partial update and re-renders
  the PM report. Nothing is persisted; state dies with the process.

Usage:
  sft_deliberate.py think '{"thought": "...", ...}'   # One request, fresh session
  echo '{...}' | sft_deliberate.py think              # Request from stdin
  sft_deliberate.py replay requests.jsonl [-a]        # Replay requests in one session
  sft_deliberate.py mcp-stdio                         # MCP server mode
"""

# =============================================================================
# EXPOSED — tools available via MCP
# =============================================================================

EXPOSED = ["deliberatethinking"]  # MCP; CLI equivalents: think, replay

# =============================================================================
# IMPORTS
# =============================================================================

import argparse
import json
import os
import sys
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from itertools import takewhile
from pathlib import Path
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, StrictInt, ValidationError
from pydantic.alias_generators import to_camel

# =============================================================================
# LOGGING
# =============================================================================
_LEVELS = {"TRACE": 5, "DEBUG": 10, "INFO": 20, "WARN": 30, "ERROR": 40, "FATAL": 50}
_THRESHOLD = _LEVELS.get(os.environ.get("SFB_LOG_LEVEL", "INFO"), 20)
_LOG_DIR = os.environ.get("SFB_LOG_DIR", "")
_SCRIPT = Path(__file__).stem
_LOG = (
    Path(_LOG_DIR) / f"{_SCRIPT}_log.tsv"
    if _LOG_DIR
    else Path(__file__).parent / f"{_SCRIPT}_log.tsv"
)
_HEADER = "#timestamp\tscript\tlevel\tevent\tmessage\tdetail\tmetrics\ttrace\n"


def _log(
    level: str,
    event: str,
    msg: str,
    *,
    detail: str = "",
    metrics: str = "",
    trace: str = "",
):
    """Append TSV log line. Logging never crashes the main flow."""
    if _LEVELS.get(level, 20) < _THRESHOLD:
        return
    try:
        ts = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S")
        write_header = not _LOG.exists()
        with open(_LOG, "a") as f:
            if write_header:
                f.write(_HEADER)
            f.write(f"{ts}\t{_SCRIPT}\t{level}\t{event}\t{msg}\t{detail}\t{metrics}\t{trace}\n")
    except Exception:
        pass


def _esc(s) -> str:
    """Escape a free-text value for a single TSV cell."""
    if s is None:
        return ""
    s = str(s).replace("\x00", "")
    return (
        s.replace("\\", "\\\\")
        .replace("\t", "\\t")
        .replace("\n", "\\n")
        .replace("\r", "\\r")
    )


# =============================================================================
# CONFIGURATION
# =============================================================================

CONFIG = {
    "version": "0.1.0",
    "server_name": "deliberate-thinking",
    "tool_name": "deliberatethinking",
    "backlog_focus_size": 3,
    "log_excerpt_chars": 200,
    "placeholders": {
        "pm_summary": "No project manager summary provided yet",
        "discussion": "none recorded yet",
        "backlog": "backlog is empty",
        "sprint": "not yet defined",
        "stories": "no stories committed",
        "participants": "no participants selected",
        "blockers": "none",
        "notes": "no additional notes",
    },
}


# =============================================================================
# CORE FUNCTIONS — wire models
# =============================================================================


class TeamRole(str, Enum):
    PROJECT_MANAGER = "projectManager"
    PRAGMATIC_PROGRAMMER = "pragmaticProgrammer"
    PRODUCT_VISIONARY = "productVisionary"

    @property
    def label(self) -> str:
        return _ROLE_LABELS[self]


class PriorityLevel(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def label(self) -> str:
        return self.value.capitalize()

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


class StoryStatus(str, Enum):
    TODO = "todo"
    IN_PROGRESS = "inProgress"
    BLOCKED = "blocked"
    DONE = "done"

    @property
    def label(self) -> str:
        return _STATUS_LABELS[self]

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]


_ROLE_LABELS = {
    TeamRole.PROJECT_MANAGER: "Project Manager",
    TeamRole.PRAGMATIC_PROGRAMMER: "Pragmatic Programmer",
    TeamRole.PRODUCT_VISIONARY: "Product Visionary",
}
_PRIORITY_RANK = {PriorityLevel.HIGH: 0, PriorityLevel.MEDIUM: 1, PriorityLevel.LOW: 2}
_STATUS_LABELS = {
    StoryStatus.TODO: "To Do",
    StoryStatus.IN_PROGRESS: "In Progress",
    StoryStatus.BLOCKED: "Blocked",
    StoryStatus.DONE: "Done",
}
_STATUS_RANK = {
    StoryStatus.IN_PROGRESS: 0,
    StoryStatus.TODO: 1,
    StoryStatus.BLOCKED: 2,
    StoryStatus.DONE: 3,
}

# The role whose thoughts become the running PM summary.
COORDINATING_ROLE = TeamRole.PROJECT_MANAGER


class _WireModel(BaseModel):
    """camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DiscussionPoint(_WireModel):
    role: TeamRole = Field(..., description="Team role that raised this point")
    detail: str = Field(..., description="Summary of the discussion item")


class BacklogItem(_WireModel):
    id: str = Field(..., description="Unique identifier for the story")
    title: str = Field(..., description="User story title or summary")
    priority: PriorityLevel = Field(..., description="Priority for the story")
    status: StoryStatus = Field(..., description="Current delivery status")
    owner: TeamRole | None = Field(None, description="Team role currently accountable for the story")
    notes: str | None = Field(None, description="Additional implementation notes")


class SprintParticipant(_WireModel):
    role: TeamRole = Field(..., description="Role assigned to this sprint")
    reasoning: str | None = Field(None, description="Reason this role is included in the sprint")
    responsibilities: list[str] = Field(default_factory=list, description="Key responsibilities for this role")


class SprintPlan(_WireModel):
    sprint_name: str = Field(..., description="Sprint name or identifier")
    goal: str = Field(..., description="Goal for the sprint")
    duration_days: StrictInt = Field(..., description="Planned duration of the sprint in days (minimum 1)")
    participants: list[SprintParticipant] = Field(
        default_factory=list, description="Participants for the sprint with rationale"
    )
    committed_story_ids: list[str] = Field(
        default_factory=list, description="Backlog stories committed to this sprint"
    )
    risks: list[str] = Field(default_factory=list, description="Known risks tracked by the project manager")


class ConsensusUpdate(_WireModel):
    ready_for_code_changes: bool = Field(..., description="Whether the team agrees code changes are ready")
    blockers: list[str] = Field(default_factory=list, description="Outstanding blockers identified by the team")
    notes: str | None = Field(None, description="Additional notes from the project manager")


class ConsensusState(_WireModel):
    ready_for_code_changes: bool = Field(False, description="Whether the team agrees code changes are ready")
    blockers: list[str] = Field(default_factory=list, description="Outstanding blockers")
    notes: str | None = Field(None, description="Latest consensus notes")


class DeliberateRequest(_WireModel):
    thought: str = Field(..., description="Current thinking step")
    next_thought_needed: bool = Field(..., description="Whether another thought step is needed")
    thought_number: StrictInt = Field(..., description="Current thought number (minimum 1)")
    total_thoughts: StrictInt = Field(..., description="Estimated total thoughts needed (minimum 1)")
    is_revision: bool | None = Field(None, description="Whether this revises previous thinking")
    revises_thought: StrictInt | None = Field(None, description="Which thought number is being reconsidered")
    branch_from_thought: StrictInt | None = Field(None, description="Branching point thought number")
    branch_id: str | None = Field(None, description="Branch identifier")
    needs_more_thoughts: bool | None = Field(None, description="If more thoughts are needed")
    role: TeamRole | None = Field(None, description="Team role submitting this update")
    discussion_points: list[DiscussionPoint] = Field(
        default_factory=list, description="Key discussion points raised during this iteration"
    )
    backlog_stories: list[BacklogItem] = Field(
        default_factory=list, description="Backlog stories to add or update"
    )
    remove_story_ids: list[str] = Field(
        default_factory=list, description="Backlog story identifiers slated for removal"
    )
    sprint_plan: SprintPlan | None = Field(None, description="Sprint plan proposal from the project manager")
    consensus_update: ConsensusUpdate | None = Field(
        None, description="Consensus status update for the iteration"
    )
    requires_user_input: bool | None = Field(
        None, description="Whether the team needs user input before proceeding"
    )


class ProjectManagerReport(_WireModel):
    bullets: list[str] = Field(default_factory=list, description="Structured bullet points shared with the user")
    pm_summary: str | None = Field(None, description="Latest project manager summary narrative")
    new_discussion_points: list[DiscussionPoint] = Field(
        default_factory=list, description="Discussion points captured during this iteration"
    )
    backlog_snapshot: list[BacklogItem] = Field(
        default_factory=list, description="Current backlog ordered by priority and status"
    )
    active_sprint: SprintPlan | None = Field(None, description="Active sprint plan the team is executing")
    consensus: ConsensusState = Field(
        default_factory=ConsensusState, description="Latest consensus state for moving forward"
    )
    waiting_on_user: bool = Field(False, description="Whether the team is awaiting input from the user")


class DeliberateResponse(_WireModel):
    thought_number: int
    total_thoughts: int
    next_thought_needed: bool
    branches: list[str]
    thought_history_length: int
    pm_report: ProjectManagerReport


# =============================================================================
# CORE FUNCTIONS — request validation
# =============================================================================


class RequestError(ValueError):
    """Invalid request parameters. Raised before any state is touched."""

    def __init__(self, field: str, message: str):
        super().__init__(message)
        self.field = field


def _require_min(name: str, value: int, minimum: int = 1):
    if value < minimum:
        raise RequestError(name, f"{name} must be at least {minimum}")


def _require_text(name: str, value: str):
    if not value.strip():
        raise RequestError(name, f"{name} cannot be empty")


def _validate_request(request: DeliberateRequest):
    """Reject structurally invalid requests. First violation wins."""
    _require_min("thoughtNumber", request.thought_number)
    _require_min("totalThoughts", request.total_thoughts)
    if request.revises_thought is not None:
        _require_min("revisesThought", request.revises_thought)
    if request.branch_from_thought is not None:
        _require_min("branchFromThought", request.branch_from_thought)

    if request.role is COORDINATING_ROLE and not request.thought.strip():
        raise RequestError("thought", "Project manager updates must include a summary thought")

    for point in request.discussion_points:
        _require_text("discussionPoints.detail", point.detail)
    for story in request.backlog_stories:
        _require_text("backlogStories.id", story.id)
        _require_text("backlogStories.title", story.title)
    for story_id in request.remove_story_ids:
        _require_text("removeStoryIds[]", story_id)

    plan = request.sprint_plan
    if plan is not None:
        _require_text("sprintPlan.sprintName", plan.sprint_name)
        _require_text("sprintPlan.goal", plan.goal)
        _require_min("sprintPlan.durationDays", plan.duration_days)


def _parse_request(payload) -> DeliberateRequest:
    """Decode a wire payload. Decode failures are invalid params too."""
    if isinstance(payload, DeliberateRequest):
        return payload
    try:
        return DeliberateRequest.model_validate(payload)
    except ValidationError as e:
        err = e.errors()[0]
        loc = ".".join(str(p) for p in err["loc"]) or "request"
        raise RequestError(loc, f"{loc}: {err['msg']}") from e


# =============================================================================
# CORE FUNCTIONS — thought graph
# =============================================================================


@dataclass
class ThoughtRecord:
    thought: str
    thought_number: int
    total_thoughts: int
    next_thought_needed: bool
    is_revision: bool | None = None
    revises_thought: int | None = None
    branch_from_thought: int | None = None
    branch_id: str | None = None
    needs_more_thoughts: bool | None = None

    @classmethod
    def from_request(cls, request: DeliberateRequest) -> "ThoughtRecord":
        return cls(
            thought=request.thought,
            thought_number=request.thought_number,
            total_thoughts=request.total_thoughts,
            next_thought_needed=request.next_thought_needed,
            is_revision=request.is_revision,
            revises_thought=request.revises_thought,
            branch_from_thought=request.branch_from_thought,
            branch_id=request.branch_id,
            needs_more_thoughts=request.needs_more_thoughts,
        )


class ThoughtGraph:
    """Main line plus named branches.

    ``active_branch`` is None while thoughts go to the main line. Once a fork
    selects a branch it stays active for appends and revisions; nothing
    switches back to the main line.
    """

    def __init__(self):
        self.main_line: list[ThoughtRecord] = []
        self.branches: dict[str, list[ThoughtRecord]] = {}
        self.active_branch: str | None = None

    def _context(self) -> list[ThoughtRecord]:
        if self.active_branch is None:
            return self.main_line
        return self.branches[self.active_branch]

    def apply(self, record: ThoughtRecord) -> tuple[str, str]:
        """Route a record by shape. Returns (shape, outcome).

        Fork fields win over a revision target supplied in the same call.
        """
        if record.branch_from_thought is not None and record.branch_id is not None:
            return "branch", self._fork(record.branch_from_thought, record.branch_id, record)
        if record.revises_thought is not None:
            return "revision", self._revise(record.revises_thought, record)
        self._context().append(record)
        return "append", "appended"

    def _fork(self, branch_from: int, branch_id: str, record: ThoughtRecord) -> str:
        outcome = "extended"
        if branch_id not in self.branches:
            self.branches[branch_id] = list(
                takewhile(lambda t: t.thought_number <= branch_from, self.main_line)
            )
            outcome = "created"
        self.branches[branch_id].append(record)
        self.active_branch = branch_id
        return outcome

    def _revise(self, revises: int, record: ThoughtRecord) -> str:
        thoughts = self._context()
        for i, existing in enumerate(thoughts):
            if existing.thought_number == revises:
                thoughts[i] = record
                return "replaced"
        thoughts.append(record)
        return "appended"

    def history(self, branch_id: str | None = None) -> list[ThoughtRecord]:
        if branch_id is None:
            return list(self.main_line)
        return list(self.branches[branch_id])

    def history_length(self) -> int:
        return len(self._context())

    def branch_names(self) -> list[str]:
        return list(self.branches)


# =============================================================================
# CORE FUNCTIONS — team state
# =============================================================================


@dataclass
class BacklogChange:
    kind: str  # Added | Updated | Removed
    item: BacklogItem

    def summary(self) -> str:
        item = self.item
        if self.kind == "Added":
            return f"Added {item.id} [{item.priority.label} | {item.status.label}]"
        if self.kind == "Updated":
            return f"Updated {item.id} -> {item.status.label} [{item.priority.label}]"
        return f"Removed {item.id} ({item.title})"


@dataclass
class TeamDelta:
    """What one call changed. None / empty means untouched this call."""

    pm_summary: str | None = None
    new_discussion_points: list[DiscussionPoint] = field(default_factory=list)
    backlog_changes: list[BacklogChange] = field(default_factory=list)
    sprint_plan: SprintPlan | None = None
    consensus: ConsensusState | None = None
    awaiting_user_input: bool | None = None


def _backlog_key(item: BacklogItem) -> tuple[int, int, str]:
    return (item.priority.rank, item.status.rank, item.id)


class TeamState:
    def __init__(self):
        self.pm_summaries: list[str] = []
        self.discussion_log: list[DiscussionPoint] = []
        self.backlog: dict[str, BacklogItem] = {}
        self.active_sprint: SprintPlan | None = None
        self.consensus = ConsensusState()
        self.awaiting_user_input = False

    def merge(self, request: DeliberateRequest) -> TeamDelta:
        """Fold one request into the running state, in fixed order."""
        delta = TeamDelta()

        for point in request.discussion_points:
            point = point.model_copy(deep=True)
            self.discussion_log.append(point)
            delta.new_discussion_points.append(point)

        # Narrative promotion: PM thoughts become summaries, other roles' thoughts
        # become a discussion point unless explicit points were supplied.
        narrative = request.thought.strip()
        if request.role is COORDINATING_ROLE:
            if narrative:
                self.pm_summaries.append(narrative)
                delta.pm_summary = narrative
        elif request.role is not None and not delta.new_discussion_points and narrative:
            derived = DiscussionPoint(role=request.role, detail=narrative)
            self.discussion_log.append(derived)
            delta.new_discussion_points.append(derived)

        for story in request.backlog_stories:
            kind = "Updated" if story.id in self.backlog else "Added"
            self.backlog[story.id] = story.model_copy(deep=True)
            delta.backlog_changes.append(BacklogChange(kind, self.backlog[story.id]))

        for story_id in request.remove_story_ids:
            removed = self.backlog.pop(story_id, None)
            if removed is not None:
                delta.backlog_changes.append(BacklogChange("Removed", removed))

        if request.sprint_plan is not None:
            self.active_sprint = request.sprint_plan.model_copy(deep=True)
            delta.sprint_plan = self.active_sprint

        if request.consensus_update is not None:
            update = request.consensus_update
            self.consensus = ConsensusState(
                ready_for_code_changes=update.ready_for_code_changes,
                blockers=list(update.blockers),
                notes=update.notes,
            )
            delta.consensus = self.consensus

        if request.requires_user_input is not None:
            self.awaiting_user_input = request.requires_user_input
            delta.awaiting_user_input = request.requires_user_input

        return delta

    def ordered_backlog(self) -> list[BacklogItem]:
        """Full backlog: priority, then status, then id."""
        return sorted(self.backlog.values(), key=_backlog_key)

    def latest_summary(self) -> str | None:
        return self.pm_summaries[-1] if self.pm_summaries else None


# =============================================================================
# CORE FUNCTIONS — PM report
# =============================================================================


def _yes(value: bool) -> str:
    return "yes" if value else "no"


def _line(label: str, text: str | None) -> str | None:
    return f"{label}: {text}" if text else None


def _point_text(point: DiscussionPoint) -> str:
    return f"{point.role.label}: {point.detail}"


def _participant_text(participant: SprintParticipant) -> str:
    text = participant.role.label
    if participant.reasoning and participant.reasoning.strip():
        text += f" ({participant.reasoning})"
    if participant.responsibilities:
        text += " - " + ", ".join(participant.responsibilities)
    return text


def _sprint_text(plan: SprintPlan | None) -> str | None:
    if plan is None:
        return None
    placeholders = CONFIG["placeholders"]
    stories = ", ".join(plan.committed_story_ids) or placeholders["stories"]
    participants = (
        "; ".join(_participant_text(p) for p in plan.participants)
        or placeholders["participants"]
    )
    return (
        f"{plan.sprint_name} goal '{plan.goal}' lasting {plan.duration_days} day(s); "
        f"stories {stories}; participants {participants}"
    )


def _backlog_focus(team: TeamState) -> str | None:
    top = team.ordered_backlog()[: CONFIG["backlog_focus_size"]]
    return "; ".join(
        f"{item.id} [{item.priority.label} | {item.status.label}]" for item in top
    )


# (delta line, persisted line, placeholder line) per facet, in bullet order.
_FACETS = (
    (
        lambda delta: _line("PM summary", delta.pm_summary),
        lambda team: _line("PM summary", team.latest_summary()),
        "PM summary: " + CONFIG["placeholders"]["pm_summary"],
    ),
    (
        lambda delta: _line(
            "Discussion points", "; ".join(_point_text(p) for p in delta.new_discussion_points)
        ),
        lambda team: _line(
            "Discussion points", _point_text(team.discussion_log[-1]) if team.discussion_log else None
        ),
        "Discussion points: " + CONFIG["placeholders"]["discussion"],
    ),
    (
        lambda delta: _line("Backlog updates", "; ".join(c.summary() for c in delta.backlog_changes)),
        lambda team: _line("Backlog focus", _backlog_focus(team)),
        "Backlog updates: " + CONFIG["placeholders"]["backlog"],
    ),
    (
        lambda delta: _line("Sprint plan", _sprint_text(delta.sprint_plan)),
        lambda team: _line("Sprint plan", _sprint_text(team.active_sprint)),
        "Sprint plan: " + CONFIG["placeholders"]["sprint"],
    ),
)


def _consensus_line(consensus: ConsensusState, waiting: bool) -> str:
    placeholders = CONFIG["placeholders"]
    blockers = "; ".join(consensus.blockers) or placeholders["blockers"]
    notes = consensus.notes if consensus.notes and consensus.notes.strip() else placeholders["notes"]
    return (
        f"Consensus: ready_for_code_change={_yes(consensus.ready_for_code_changes)} "
        f"blockers {blockers} notes {notes} waiting_on_user={_yes(waiting)}"
    )


def _build_report(team: TeamState, delta: TeamDelta) -> ProjectManagerReport:
    """Render the PM report. Each facet prefers this call's delta, then state."""
    bullets = []
    for from_delta, from_state, placeholder in _FACETS:
        bullets.append(from_delta(delta) or from_state(team) or placeholder)

    consensus = delta.consensus if delta.consensus is not None else team.consensus
    waiting = (
        delta.awaiting_user_input
        if delta.awaiting_user_input is not None
        else team.awaiting_user_input
    )
    bullets.append(_consensus_line(consensus, waiting))

    return ProjectManagerReport(
        bullets=bullets,
        pm_summary=delta.pm_summary or team.latest_summary(),
        new_discussion_points=list(delta.new_discussion_points),
        backlog_snapshot=team.ordered_backlog(),
        active_sprint=team.active_sprint,
        consensus=consensus,
        waiting_on_user=waiting,
    )


# =============================================================================
# CORE FUNCTIONS — session
# =============================================================================


class DeliberationSession:
    """Thought graph + team state behind one lock. One per process."""

    def __init__(self):
        self._lock = threading.Lock()
        self.graph = ThoughtGraph()
        self.team = TeamState()

    def submit(self, request: DeliberateRequest) -> tuple[DeliberateResponse, str]:
        """Validate, merge, apply, report. All-or-nothing per call.

        Returns the response and the thought-graph shape that ran
        ("branch/created", "revision/replaced", "append/appended", ...).
        """
        _validate_request(request)
        record = ThoughtRecord.from_request(request)

        with self._lock:
            delta = self.team.merge(request)
            shape, outcome = self.graph.apply(record)
            report = _build_report(self.team, delta)
            response = DeliberateResponse(
                thought_number=request.thought_number,
                total_thoughts=request.total_thoughts,
                next_thought_needed=request.next_thought_needed,
                branches=self.graph.branch_names(),
                thought_history_length=self.graph.history_length(),
                pm_report=report,
            )
        return response, f"{shape}/{outcome}"


def _log_step(request: DeliberateRequest, applied: str, metrics: dict):
    """One step line plus sub-lines for whichever signals the call carried."""
    excerpt = _esc(request.thought[: CONFIG["log_excerpt_chars"]])
    _log(
        "INFO",
        "step",
        f"Deliberate Thinking Step {request.thought_number}/{request.total_thoughts}",
        detail=f"applied={applied} thought={excerpt}",
        metrics=str(metrics),
    )
    if request.branch_id is not None:
        _log("INFO", "branch", f"Branch: {_esc(request.branch_id)}")
    if request.role is not None:
        _log("INFO", "role", f"Team role: {request.role.label}")
    if request.is_revision and request.revises_thought is not None:
        _log("INFO", "revision", f"Revision of thought {request.revises_thought}")
    if request.discussion_points:
        points = "; ".join(_point_text(p) for p in request.discussion_points)
        _log("INFO", "discussion", f"Discussion points: {_esc(points)}")
    if request.backlog_stories or request.remove_story_ids:
        _log(
            "INFO",
            "backlog",
            f"Backlog updates -> add/update: {len(request.backlog_stories)}, "
            f"remove: {len(request.remove_story_ids)}",
        )
    if request.sprint_plan is not None:
        _log("INFO", "sprint", "Sprint plan proposal included")
    if request.consensus_update is not None:
        update = request.consensus_update
        _log(
            "INFO",
            "consensus",
            f"Consensus update: ready_for_code_changes={update.ready_for_code_changes} "
            f"blockers={len(update.blockers)}",
        )
    if request.requires_user_input is not None:
        _log("INFO", "wait", f"Waiting on user input: {request.requires_user_input}")


def _deliberate_impl(session: DeliberationSession, payload) -> tuple[dict, dict]:
    """Run one deliberate-thinking step. CLI: think, replay. MCP: deliberatethinking.

    Raises RequestError on invalid params; the session is left untouched.
    """
    start_ms = time.time() * 1000

    try:
        request = _parse_request(payload)
        response, applied = session.submit(request)
    except RequestError as e:
        _log("WARN", "invalid_params", _esc(str(e)), detail=f"field={e.field}")
        raise

    result = response.model_dump(mode="json", by_alias=True, exclude_none=True)

    latency_ms = time.time() * 1000 - start_ms
    metrics = {
        "status": "success",
        "applied": applied,
        "history_length": response.thought_history_length,
        "latency_ms": round(latency_ms, 2),
    }
    _log_step(request, applied, metrics)
    return result, metrics


def _replay_impl(session: DeliberationSession, payloads: list) -> tuple[list[dict], dict]:
    """Apply a sequence of requests to one session, stopping at the first invalid one."""
    start_ms = time.time() * 1000

    results = []
    for n, payload in enumerate(payloads, 1):
        try:
            result, _ = _deliberate_impl(session, payload)
        except RequestError as e:
            raise RequestError(e.field, f"request #{n}: {e}") from e
        results.append(result)

    latency_ms = time.time() * 1000 - start_ms
    metrics = {"status": "success", "count": len(results), "latency_ms": round(latency_ms, 2)}
    _log("INFO", "replay", f"Replayed {len(results)} request(s)", metrics=str(metrics))
    return results, metrics


def _load_requests(text: str) -> list:
    """Requests as a JSON array or as JSON Lines."""
    text = text.strip()
    if text.startswith("["):
        data = json.loads(text)
        assert isinstance(data, list), "request array must be a JSON list"
        return data
    return [json.loads(line) for line in text.splitlines() if line.strip()]


def _to_json(result) -> str:
    """Serialize a tool result. Failures here are internal errors."""
    try:
        return json.dumps(result, indent=2)
    except (TypeError, ValueError) as e:
        _log("ERROR", "serialize", f"Failed to serialize response: {_esc(e)}")
        raise RuntimeError(f"Failed to serialize response: {e}") from e


# =============================================================================
# CLI INTERFACE
# =============================================================================


def main():
    parser = argparse.ArgumentParser(
        description="Deliberate thinking with branches and a running PM report",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  sft_deliberate.py think '{"thought": "kickoff", "nextThoughtNeeded": true,
                           "thoughtNumber": 1, "totalThoughts": 3, "role": "projectManager"}'
  cat step.json | sft_deliberate.py think
  sft_deliberate.py replay session.jsonl
  sft_deliberate.py replay session.jsonl --all
  sft_deliberate.py mcp-stdio
""",
    )
    parser.add_argument(
        "-V", "--version", action="version", version=f"%(prog)s {CONFIG['version']}"
    )
    sub = parser.add_subparsers(dest="command")

    # think
    p_think = sub.add_parser("think", help="Run one request against a fresh session")
    p_think.add_argument("request", nargs="?", default="", help="Request JSON (or stdin)")

    # replay
    p_replay = sub.add_parser("replay", help="Replay requests (JSONL or JSON array) in one session")
    p_replay.add_argument("file", nargs="?", default="", help="Requests file (or stdin)")
    p_replay.add_argument("-a", "--all", action="store_true", help="Print every response, not just the last")

    # mcp-stdio
    sub.add_parser("mcp-stdio", help="Run as MCP stdio server")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    if args.command == "mcp-stdio":
        _run_mcp()
        return

    try:
        session = DeliberationSession()
        if args.command == "think":
            raw = args.request
            if not raw and not sys.stdin.isatty():
                raw = sys.stdin.read().strip()
            assert raw, "request required (positional argument or stdin)"
            result, _ = _deliberate_impl(session, json.loads(raw))
            print(_to_json(result))

        elif args.command == "replay":
            if args.file:
                path = Path(args.file)
                assert path.is_file(), f"{args.file} not found"
                text = path.read_text()
            else:
                assert not sys.stdin.isatty(), "requests file required (positional argument or stdin)"
                text = sys.stdin.read()
            payloads = _load_requests(text)
            assert payloads, "no requests to replay"
            results, _ = _replay_impl(session, payloads)
            print(_to_json(results if args.all else results[-1]))

    except (AssertionError, ValueError) as e:
        _log("ERROR", args.command, _esc(e))
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        _log("ERROR", args.command, _esc(e))
        print(f"Unexpected error: {e}", file=sys.stderr)
        sys.exit(1)


# =============================================================================
# FASTMCP SERVER
# =============================================================================


def _build_mcp(session: DeliberationSession):
    """FastMCP server exposing one tool bound to ``session``."""
    from fastmcp import FastMCP
    from fastmcp.exceptions import ToolError

    mcp = FastMCP(CONFIG["server_name"])

    # Parameter names are the camelCase wire names.
    @mcp.tool()
    def deliberatethinking(
        thought: Annotated[str, Field(description="Current thinking step")],
        nextThoughtNeeded: Annotated[bool, Field(description="Whether another thought step is needed")],
        thoughtNumber: Annotated[StrictInt, Field(description="Current thought number (minimum 1)")],
        totalThoughts: Annotated[StrictInt, Field(description="Estimated total thoughts needed (minimum 1)")],
        isRevision: bool | None = None,
        revisesThought: StrictInt | None = None,
        branchFromThought: StrictInt | None = None,
        branchId: str | None = None,
        needsMoreThoughts: bool | None = None,
        role: TeamRole | None = None,
        discussionPoints: list[DiscussionPoint] = [],
        backlogStories: list[BacklogItem] = [],
        removeStoryIds: list[str] = [],
        sprintPlan: SprintPlan | None = None,
        consensusUpdate: ConsensusUpdate | None = None,
        requiresUserInput: bool | None = None,
    ) -> str:
        """A detailed tool for dynamic and reflective problem-solving through thoughts.

        Each thought can build on, question, or revise previous insights as
        understanding deepens. Thoughts may branch from an earlier thought into a
        named branch; later thoughts and revisions continue on that branch. Team
        roles (project manager, pragmatic programmer, product visionary) can attach
        discussion points, backlog stories, a sprint plan and a consensus update;
        every call returns the session state plus a project-manager report.

        When to use this tool:
        - Breaking down complex problems into steps
        - Planning and design with room for revision
        - Analysis that might need course correction
        - Problems where the full scope might not be clear initially
        - Problems that require a multi-step solution
        - Tasks that need to maintain context over multiple steps
        - Situations where irrelevant information needs to be filtered out

        Key features:
        - You can adjust totalThoughts up or down as you progress
        - You can question or revise previous thoughts
        - You can add more thoughts even after reaching what seemed like the end
        - You can express uncertainty and explore alternative approaches
        - Not every thought needs to build linearly; you can branch or backtrack
        - Generates a solution hypothesis
        - Verifies the hypothesis based on the Chain of Thought steps
        - Repeats the process until satisfied
        - Provides a correct answer

        Args:
            thought: Current thinking step
            nextThoughtNeeded: Whether another thought step is needed
            thoughtNumber: Current thought number (minimum 1)
            totalThoughts: Estimated total thoughts needed (minimum 1)
            isRevision: Whether this revises previous thinking
            revisesThought: Which thought number is being reconsidered
            branchFromThought: Branching point thought number
            branchId: Branch identifier
            needsMoreThoughts: If more thoughts are needed
            role: Team role submitting this update
            discussionPoints: Key discussion points raised during this iteration
            backlogStories: Backlog stories to add or update (upsert by id)
            removeStoryIds: Backlog story identifiers slated for removal
            sprintPlan: Sprint plan proposal; replaces the active plan
            consensusUpdate: Consensus status update; replaces the stored consensus
            requiresUserInput: Whether the team needs user input before proceeding
        """
        payload = {
            "thought": thought,
            "nextThoughtNeeded": nextThoughtNeeded,
            "thoughtNumber": thoughtNumber,
            "totalThoughts": totalThoughts,
            "isRevision": isRevision,
            "revisesThought": revisesThought,
            "branchFromThought": branchFromThought,
            "branchId": branchId,
            "needsMoreThoughts": needsMoreThoughts,
            "role": role,
            "discussionPoints": discussionPoints,
            "backlogStories": backlogStories,
            "removeStoryIds": removeStoryIds,
            "sprintPlan": sprintPlan,
            "consensusUpdate": consensusUpdate,
            "requiresUserInput": requiresUserInput,
        }
        try:
            result, _ = _deliberate_impl(session, payload)
        except RequestError as e:
            raise ToolError(f"Invalid params: {e}") from e
        try:
            return _to_json(result)
        except RuntimeError as e:
            raise ToolError(str(e)) from e

    return mcp


def _run_mcp():
    """Build and run the FastMCP server over stdio."""
    session = DeliberationSession()
    mcp = _build_mcp(session)
    _log("INFO", "mcp_start", f"Starting {CONFIG['server_name']} MCP server")
    print("Starting Deliberate Thinking MCP server...", file=sys.stderr)
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
