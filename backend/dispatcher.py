"""
Executes validated function calls against the task store.

add/edit/remove perform exactly one store mutation; find performs none.
Failures are raised (TargetNotFound, StoreUnavailable) and never retried here.
"""
import logging
from dataclasses import dataclass, field
from typing import Optional

from errors import TargetNotFound
from models import (
    AddArgs,
    CallArguments,
    EditArgs,
    FindArgs,
    RemoveArgs,
    Task,
    TaskPatch,
    TaskUpdate,
    due_from,
)

logger = logging.getLogger(__name__)


@dataclass
class DispatchResult:
    name: str
    task: Optional[Task] = None
    removed_id: Optional[str] = None
    matches: list[Task] = field(default_factory=list)
    scores: dict[str, float] = field(default_factory=dict)

    @property
    def summary(self) -> Optional[str]:
        if self.name == "find_tasks":
            return f"Found {len(self.matches)} task(s)."
        return None

    def as_dict(self) -> dict:
        if self.name == "remove_task":
            return {"id": self.removed_id}
        if self.name == "find_tasks":
            return {
                "ids": [task.id for task in self.matches],
                "scores": {task.id: self.scores[task.id] for task in self.matches if task.id in self.scores},
            }
        return {"task": self.task.model_dump(mode="json") if self.task else None}


def resolve_target(context: list[Task], task_id: Optional[str] = None, name: Optional[str] = None) -> Task:
    """
    Find the task an edit/remove refers to.
    An id must exist in the snapshot; a name must match exactly one task, ignoring case.
    """
    if task_id:
        for task in context:
            if task.id == task_id:
                return task
        raise TargetNotFound(task_id)
    if name:
        wanted = name.strip().casefold()
        matches = [task for task in context if task.name.strip().casefold() == wanted]
        if len(matches) != 1:
            raise TargetNotFound(name, len(matches))
        return matches[0]
    raise TargetNotFound("")


def patch_changes(patch: TaskPatch) -> dict:
    """Translate a patch into store fields; a new due value replaces the other representation."""
    changes = {}
    if patch.name is not None:
        changes["name"] = patch.name.strip()
    if patch.desc is not None:
        changes["description"] = patch.desc
    if patch.status is not None:
        changes["status"] = patch.status
    due = due_from(patch.datetime, patch.date_range)
    if due is not None:
        changes["due"] = due
    elif isinstance(patch, TaskUpdate) and patch.clear_due:
        changes["due"] = None
    return changes


def matches_filters(task: Task, args: FindArgs) -> bool:
    """Conjunctive filters. before/after are exclusive and need an anchor instant."""
    if args.name and args.name.casefold() not in task.name.casefold():
        return False
    if args.status and task.status != args.status:
        return False
    if args.before is not None or args.after is not None:
        anchor = task.anchor
        if anchor is None:
            return False
        if args.before is not None and not anchor < args.before:
            return False
        if args.after is not None and not anchor > args.after:
            return False
    return True


class ActionDispatcher:
    def __init__(self, store):
        self.store = store

    def dispatch(self, arguments: CallArguments, context: list[Task]) -> DispatchResult:
        if isinstance(arguments, AddArgs):
            return self.add(arguments)
        if isinstance(arguments, EditArgs):
            return self.edit(arguments, context)
        if isinstance(arguments, RemoveArgs):
            return self.remove(arguments, context)
        if isinstance(arguments, FindArgs):
            return self.find(arguments, context)
        raise TypeError(f"Unsupported arguments: {type(arguments).__name__}")

    def add(self, args: AddArgs) -> DispatchResult:
        task = self.store.create(name=args.name, description=args.desc, due=args.due(), status="pending")
        logger.info("Added task %s (%s)", task.id, task.name)
        return DispatchResult(name="add_task", task=task)

    def edit(self, args: EditArgs, context: list[Task]) -> DispatchResult:
        target = resolve_target(context, args.id, args.name)
        task = self.store.update(target.id, **patch_changes(args.patch))
        logger.info("Edited task %s", task.id)
        return DispatchResult(name="edit_task", task=task)

    def remove(self, args: RemoveArgs, context: list[Task]) -> DispatchResult:
        target = resolve_target(context, args.id, args.name)
        self.store.delete(target.id)
        logger.info("Removed task %s", target.id)
        return DispatchResult(name="remove_task", removed_id=target.id)

    def find(self, args: FindArgs, context: list[Task]) -> DispatchResult:
        candidates = context
        scores: dict[str, float] = {}
        if args.query:
            scores = {hit.id: hit.score for hit in self.store.search(args.query)}
            candidates = [task for task in context if task.id in scores]

        matches = [task for task in candidates if matches_filters(task, args)]
        # Similarity first, newest first among equals
        matches.sort(key=lambda task: (scores.get(task.id, 0.0), task.created_at), reverse=True)
        return DispatchResult(name="find_tasks", matches=matches, scores=scores)
