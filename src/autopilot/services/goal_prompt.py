"""Prompt construction and reply parsing for goal runs.

Each run's prompt carries the goal description plus a bounded tail of the
progress log, and asks the model to close its reply with three tags::

    <goal-complete>true|false</goal-complete>
    <goal-progress>one or two sentence summary</goal-progress>
    <goal-next-steps>plan for the next run</goal-next-steps>
"""

import re
from dataclasses import dataclass

from autopilot.models.goal import LongTermGoal

DEFAULT_HISTORY_LIMIT = 8
SUMMARY_FALLBACK_CHARS = 200

_COMPLETE_RE = re.compile(r"<goal-complete>\s*(true|false)\s*</goal-complete>", re.IGNORECASE)
_PROGRESS_RE = re.compile(r"<goal-progress>(.*?)</goal-progress>", re.IGNORECASE | re.DOTALL)
_NEXT_STEPS_RE = re.compile(
    r"<goal-next-steps>(.*?)</goal-next-steps>", re.IGNORECASE | re.DOTALL
)
_TITLE_RE = re.compile(r"^\[goal\]\s+(.+?)\s+-\s+run\s+(\d+)$")


@dataclass
class GoalOutput:
    is_complete: bool
    summary: str
    next_steps: str | None = None


def goal_session_title(name: str, run_number: int) -> str:
    return f"[goal] {name} - run {run_number}"


def parse_goal_session_title(title: str | None) -> tuple[str, int] | None:
    """Recover (goal name, run number) from a goal session title."""
    if not title:
        return None
    match = _TITLE_RE.match(title.strip())
    if not match:
        return None
    return match.group(1), int(match.group(2))


def build_goal_prompt(goal: LongTermGoal, history_limit: int = DEFAULT_HISTORY_LIMIT) -> str:
    lines = [f"[Long-term goal] {goal.name}", "", "Goal description:", goal.description, ""]

    log = goal.progress_log
    if log:
        shown = log[-history_limit:] if history_limit > 0 else []
        skipped = len(log) - len(shown)
        header = f"Progress so far ({len(log)} runs"
        if skipped > 0:
            header += f", showing the latest {len(shown)}"
        lines.append(header + "):")
        for offset, entry in enumerate(shown, start=skipped + 1):
            run_at = entry.run_at.strftime("%Y-%m-%d %H:%M")
            lines.append(f"Run {offset} ({run_at}): {entry.summary}")
            if entry.next_steps:
                lines.append(f"  -> Plan: {entry.next_steps}")
        lines.append("")

    lines += [
        "Current task: keep working toward the goal above and get as much done as you can.",
        "",
        "When you finish, end your reply with these tags (do not omit them):",
        "<goal-complete>true or false</goal-complete>",
        "<goal-progress>summary of what this run achieved (one or two sentences)</goal-progress>",
        "<goal-next-steps>plan for the next run (if not complete)</goal-next-steps>",
    ]
    return "\n".join(lines)


def parse_goal_output(text: str) -> GoalOutput:
    """Read the completion tags; missing tags mean "not complete" and a text excerpt."""
    text = text or ""
    complete = _COMPLETE_RE.search(text)
    progress = _PROGRESS_RE.search(text)
    next_steps = _NEXT_STEPS_RE.search(text)

    return GoalOutput(
        is_complete=bool(complete) and complete.group(1).lower() == "true",
        summary=progress.group(1).strip() if progress else text[-SUMMARY_FALLBACK_CHARS:].strip(),
        next_steps=(next_steps.group(1).strip() or None) if next_steps else None,
    )
