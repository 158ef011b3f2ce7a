"""
Activity stage-progression engine.

One call advances one Activity by one status write:

    1. read    lock the Activity row, resolve its stage, its element type's
               path and the project's Mesh & Mould / Reinforcement pair
    2. target  walk DISPATCH_RULES top-down; the first rule whose predicate
               holds names the field the actor may write, no match is
               PermissionDeniedError
    3. write   set the field and append a CompleteProduction event; a
               field that is already Completed makes the call a no-op
    4. move    when the current stage (or the whole parallel window) is
               done, bind the Activity to the next stage in the path, or
               terminate it into PrecastStock when there is none

Notification intents are collected on the result and dispatched by
``run_transition`` only after the transaction has committed.

Parallel window:
    While an Activity sits on the Mesh & Mould or Reinforcement stage the
    single row carries both sub-machines (``mesh_mold_*`` and
    ``reinforcement_*``). The window is left from the pair member that
    comes last in the path. A project (or path) holding only one of the
    pair degenerates to that sub-stage alone.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable

from flask import current_app
from sqlalchemy import select, text
from sqlalchemy.exc import OperationalError

from precast.core.exceptions import (
    ConfigurationError,
    ConflictingStateError,
    NotFoundError,
    PermissionDeniedError,
    PrecastError,
    TransientError,
    ValidationError,
)
from precast.models import db
from precast.models.production import (
    STATUS_COMPLETED,
    STATUS_IN_PROGRESS,
    Activity,
    is_completed,
    normalize_status,
)
from precast.models.project import Project, ProjectStage, StageKind
from precast.models.stock import PrecastStock, ProjectStockyard
from precast.services import production_history
from precast.services.notification import NotificationIntent, dispatch_intents
from precast.services.stage_path import path_of, position_of, successor_of
from precast.services.stage_registry import (
    ParallelWindow,
    StageInfo,
    parallel_window,
    stages_for_project,
)

logger = logging.getLogger(__name__)

OUTCOME_NOOP = "noop"
OUTCOME_UPDATED = "updated"
OUTCOME_ADVANCED = "advanced"
OUTCOME_TERMINAL = "terminal"

_OUTCOME_MESSAGES = {
    OUTCOME_NOOP: "Status already completed, nothing to do",
    OUTCOME_UPDATED: "Activity status updated",
    OUTCOME_ADVANCED: "Activity moved to the next stage",
    OUTCOME_TERMINAL: "Activity completed and sent to stockyard",
}

# (status field, qc field) per parallel sub-stage
WINDOW_FIELDS = {
    StageKind.MESH_MOULD: ("mesh_mold_status", "mesh_mold_qc_status"),
    StageKind.REINFORCEMENT: ("reinforcement_status", "reinforcement_qc_status"),
}

_DEADLOCK_PGCODES = {"40P01", "40001"}


# ═════════════════════════════════════════════════════════════════════════════
# Context & result
# ═════════════════════════════════════════════════════════════════════════════


@dataclass
class TransitionContext:
    """Everything the rules need, resolved once per transition."""
    activity: Activity
    actor_id: int
    stage: StageInfo
    path: list[int]
    window: ParallelWindow
    stages: dict[int, StageInfo]

    @property
    def in_window(self) -> bool:
        return self.stage.kind.is_parallel and self.stage.id in self.window.stage_ids

    def stage_for(self, kind: StageKind) -> StageInfo | None:
        if kind is StageKind.REGULAR:
            return self.stage
        if not self.in_window:
            return None
        return self.window.stage_for(kind)


@dataclass
class TransitionResult:
    activity_id: int
    outcome: str
    target_field: str | None = None
    stage_id: int | None = None
    next_stage_id: int | None = None
    intents: list[NotificationIntent] = field(default_factory=list)
    new_state: dict | None = None

    @property
    def message(self) -> str:
        return _OUTCOME_MESSAGES[self.outcome]

    def to_dict(self) -> dict:
        body = {
            "message": self.message,
            "outcome": self.outcome,
            "target_field": self.target_field,
            "stage_id": self.stage_id,
            "next_stage_id": self.next_stage_id,
        }
        if self.new_state is not None:
            body["new_state"] = self.new_state
        return body


# ═════════════════════════════════════════════════════════════════════════════
# Dispatch table
# ═════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class DispatchRule:
    """``applies(ctx)`` → the actor writes ``target`` on behalf of the ``kind`` stage."""
    name: str
    target: str
    kind: StageKind
    qc: bool
    applies: Callable[[TransitionContext], bool]


def _window_assignee_turn(kind: StageKind) -> Callable[[TransitionContext], bool]:
    status_field = WINDOW_FIELDS[kind][0]

    def applies(ctx: TransitionContext) -> bool:
        sub = ctx.stage_for(kind)
        if sub is None or sub.assigned_to is None or ctx.actor_id != sub.assigned_to:
            return False
        if not is_completed(getattr(ctx.activity, status_field)):
            return True
        # own work done: yield to the actor's QC turn or to their other crew field
        return not (ctx.actor_id == sub.qc_id or _crews_other_window_stage(ctx, kind))

    return applies


def _crews_other_window_stage(ctx: TransitionContext, kind: StageKind) -> bool:
    """Actor is also the assignee of the partner window stage, and its status is still open."""
    for other_kind, (other_field, _) in WINDOW_FIELDS.items():
        if other_kind is kind:
            continue
        other = ctx.stage_for(other_kind)
        if (other is not None and other.assigned_to == ctx.actor_id
                and not is_completed(getattr(ctx.activity, other_field))):
            return True
    return False


def _window_qc_turn(kind: StageKind) -> Callable[[TransitionContext], bool]:
    status_field = WINDOW_FIELDS[kind][0]

    def applies(ctx: TransitionContext) -> bool:
        sub = ctx.stage_for(kind)
        if sub is None or sub.qc_id is None or ctx.actor_id != sub.qc_id:
            return False
        return is_completed(getattr(ctx.activity, status_field))

    return applies


def _regular_qc_turn(ctx: TransitionContext) -> bool:
    activity = ctx.activity
    if ctx.stage.kind is not StageKind.REGULAR or activity.qc_id is None:
        return False
    if ctx.actor_id != activity.qc_id:
        return False
    return ctx.actor_id != activity.assigned_to or is_completed(activity.status)


def _regular_assignee_turn(ctx: TransitionContext) -> bool:
    activity = ctx.activity
    return (
        ctx.stage.kind is StageKind.REGULAR
        and activity.assigned_to is not None
        and ctx.actor_id == activity.assigned_to
    )


DISPATCH_RULES: tuple[DispatchRule, ...] = (
    DispatchRule("mesh_mould_assignee", "mesh_mold_status", StageKind.MESH_MOULD, False,
                 _window_assignee_turn(StageKind.MESH_MOULD)),
    DispatchRule("reinforcement_assignee", "reinforcement_status", StageKind.REINFORCEMENT, False,
                 _window_assignee_turn(StageKind.REINFORCEMENT)),
    DispatchRule("regular_qc", "qc_status", StageKind.REGULAR, True, _regular_qc_turn),
    DispatchRule("mesh_mould_qc", "mesh_mold_qc_status", StageKind.MESH_MOULD, True,
                 _window_qc_turn(StageKind.MESH_MOULD)),
    DispatchRule("reinforcement_qc", "reinforcement_qc_status", StageKind.REINFORCEMENT, True,
                 _window_qc_turn(StageKind.REINFORCEMENT)),
    DispatchRule("regular_assignee", "status", StageKind.REGULAR, False, _regular_assignee_turn),
)


def resolve_target(ctx: TransitionContext, *, qc_only: bool = False) -> DispatchRule:
    """First matching rule, or PermissionDeniedError.

    ``qc_only`` restricts the match to QC rules (QC-answer submissions).
    """
    for rule in DISPATCH_RULES:
        if rule.applies(ctx):
            if qc_only and not rule.qc:
                break
            return rule
    raise PermissionDeniedError(
        f"User {ctx.actor_id} cannot update activity {ctx.activity.id}"
        + (" as QC inspector" if qc_only else ""),
        details={"activity_id": ctx.activity.id, "stage_id": ctx.stage.id},
    )


# ═════════════════════════════════════════════════════════════════════════════
# Read phase
# ═════════════════════════════════════════════════════════════════════════════


def coerce_status(value) -> str:
    status = normalize_status(value)
    if status is None:
        raise ValidationError(
            "status must be 'InProgress' or 'Completed'",
            details={"status": value},
        )
    return status


def load_context(activity: Activity, actor_id: int) -> TransitionContext:
    """Resolve stage topology for ``activity``.

    Raises:
        NotFoundError: stage or path missing.
        ConfigurationError: stage outside the path, broken parallel pair, or
            a stage with ``qc_assign`` but no inspector.
    """
    stages = stages_for_project(activity.project_id)
    stage = stages.get(activity.stage_id)
    if stage is None:
        raise NotFoundError(resource="ProjectStage", resource_id=activity.stage_id)

    path = path_of(activity.task.element_type_id, project_id=activity.project_id)
    if activity.stage_id not in path:
        raise ConfigurationError(
            f"Stage {activity.stage_id} of activity {activity.id} is not in its element type path",
            details={"activity_id": activity.id, "stage_id": activity.stage_id, "path": path},
        )

    project_window = parallel_window(activity.project_id, stages)
    window = ParallelWindow(
        mesh_mould=_in_path(project_window.mesh_mould, path),
        reinforcement=_in_path(project_window.reinforcement, path),
    )
    if window.mesh_mould and window.reinforcement:
        gap = abs(position_of(path, window.mesh_mould.id) - position_of(path, window.reinforcement.id))
        if gap != 1:
            raise ConfigurationError(
                "Mesh & Mould and Reinforcement must be adjacent in the stage path",
                details={"element_type_id": activity.task.element_type_id, "path": path},
            )

    ctx = TransitionContext(
        activity=activity, actor_id=actor_id, stage=stage, path=path, window=window, stages=stages,
    )
    for checked in _stages_in_play(ctx):
        if checked.qc_assign and checked.qc_id is None:
            raise ConfigurationError(
                f"Stage '{checked.name}' requires QC but has no inspector",
                details={"stage_id": checked.id},
            )
    return ctx


def _in_path(stage: StageInfo | None, path: list[int]) -> StageInfo | None:
    if stage is not None and stage.id in path:
        return stage
    return None


def _stages_in_play(ctx: TransitionContext) -> list[StageInfo]:
    if ctx.in_window:
        return [s for s in (ctx.window.mesh_mould, ctx.window.reinforcement) if s is not None]
    return [ctx.stage]


def stage_done(ctx: TransitionContext) -> bool:
    """True when the current stage, or the whole parallel window, may be left."""
    activity = ctx.activity
    if not ctx.in_window:
        return is_completed(activity.status) and (
            not ctx.stage.qc_assign or is_completed(activity.qc_status)
        )
    for kind, (status_field, qc_field) in WINDOW_FIELDS.items():
        sub = ctx.window.stage_for(kind)
        if sub is None:
            continue
        if not is_completed(getattr(activity, status_field)):
            return False
        if sub.qc_assign and not is_completed(getattr(activity, qc_field)):
            return False
    return True


def anchor_stage_id(ctx: TransitionContext) -> int:
    """Stage whose successor follows the current one. For the window: its last member."""
    if not ctx.in_window:
        return ctx.stage.id
    return max(ctx.window.stage_ids, key=lambda stage_id: position_of(ctx.path, stage_id))


# ═════════════════════════════════════════════════════════════════════════════
# Write phase
# ═════════════════════════════════════════════════════════════════════════════


def apply_status(ctx: TransitionContext, new_status: str,
                 rule: DispatchRule | None = None) -> TransitionResult:
    """Apply one status write inside the caller's transaction."""
    activity = ctx.activity
    status = coerce_status(new_status)
    rule = rule or resolve_target(ctx)

    if activity.completed:
        if status == STATUS_COMPLETED:
            return _logged(TransitionResult(activity.id, OUTCOME_NOOP, rule.target, activity.stage_id))
        raise ConflictingStateError(
            f"Activity {activity.id} is already completed",
            details={"activity_id": activity.id, "status": status},
        )

    if is_completed(getattr(activity, rule.target)):
        return _logged(TransitionResult(activity.id, OUTCOME_NOOP, rule.target, activity.stage_id))

    acting_stage = ctx.stage_for(rule.kind)
    setattr(activity, rule.target, status)
    production_history.record_event(
        activity, stage_id=acting_stage.id, user_id=ctx.actor_id, status=status,
    )
    result = TransitionResult(activity.id, OUTCOME_UPDATED, rule.target, activity.stage_id)
    if status != STATUS_COMPLETED:
        return _logged(result)

    if not rule.qc and acting_stage.qc_assign and acting_stage.qc_id is not None:
        result.intents.append(_inspection_intent(ctx, acting_stage))

    if stage_done(ctx):
        next_id = successor_of(ctx.path, anchor_stage_id(ctx))
        if next_id is None:
            _terminate(ctx, result)
        else:
            _advance(ctx, next_id, result)

    if rule.qc:
        next_stage = ctx.stages.get(result.next_stage_id) if result.next_stage_id else None
        recipient = next_stage.qc_id if next_stage and next_stage.qc_id else acting_stage.qc_id
        if recipient is not None:
            result.intents.append(_qc_completed_intent(ctx, acting_stage, recipient))
    return _logged(result)


def _advance(ctx: TransitionContext, next_id: int, result: TransitionResult) -> None:
    activity = ctx.activity
    next_stage = ctx.stages[next_id]
    leaving_window = ctx.in_window

    activity.stage_id = next_id
    activity.stage = db.session.get(ProjectStage, next_id)
    activity.status = STATUS_IN_PROGRESS
    activity.qc_status = STATUS_IN_PROGRESS
    activity.assigned_to = next_stage.assigned_to
    activity.qc_id = next_stage.qc_id
    activity.paper_id = next_stage.paper_id
    if leaving_window:
        activity.clear_parallel_fields()

    activity.element.status = next_stage.name
    db.session.flush()

    result.outcome = OUTCOME_ADVANCED
    result.next_stage_id = next_id
    if next_stage.assigned_to is not None:
        result.intents.append(_assignment_intent(ctx, next_stage))


def _terminate(ctx: TransitionContext, result: TransitionResult) -> None:
    activity = ctx.activity
    element = activity.element
    stock = db.session.execute(
        select(PrecastStock).where(
            PrecastStock.element_id == activity.element_id,
            PrecastStock.project_id == activity.project_id,
        )
    ).scalar_one_or_none()
    if stock is None:
        stock = PrecastStock(
            element_id=activity.element_id,
            project_id=activity.project_id,
            element_type_id=activity.task.element_type_id,
            target_location=element.target_location if element else None,
            stockyard_id=activity.stockyard_id,
            stockyard=False,
        )
        db.session.add(stock)
    else:
        logger.warning(
            "PrecastStock already present for element_id=%s project_id=%s, reusing id=%s",
            activity.element_id, activity.project_id, stock.id,
        )

    activity.completed = True
    db.session.flush()

    result.outcome = OUTCOME_TERMINAL
    manager_id = _stockyard_manager(activity.project_id, activity.stockyard_id)
    if manager_id is not None:
        result.intents.append(_stockyard_intent(ctx, manager_id))


def _stockyard_manager(project_id: int, stockyard_id: int | None) -> int | None:
    if stockyard_id is None:
        return None
    return db.session.execute(
        select(ProjectStockyard.manager_id).where(
            ProjectStockyard.project_id == project_id,
            ProjectStockyard.stockyard_id == stockyard_id,
        )
    ).scalar_one_or_none()


def _logged(result: TransitionResult) -> TransitionResult:
    logger.info(
        "Activity transition: activity_id=%s stage_id=%s target=%s outcome=%s next_stage_id=%s",
        result.activity_id, result.stage_id, result.target_field, result.outcome,
        result.next_stage_id,
    )
    return result


# ═════════════════════════════════════════════════════════════════════════════
# Notification intents
# ═════════════════════════════════════════════════════════════════════════════


def _intent_payload(ctx: TransitionContext, action: str) -> dict[str, str]:
    activity = ctx.activity
    project = db.session.get(Project, activity.project_id)
    return {
        "action": action,
        "project_id": str(activity.project_id),
        "project_name": project.name if project else "",
        "task_name": activity.task.name if activity.task else "",
        "activity_id": str(activity.id),
        "activity_name": activity.name or "",
    }


def plan_url(project_id: int) -> str:
    base = (current_app.config.get("APP_BASE_URL") or "").rstrip("/")
    return f"{base}/project/{project_id}/plan"


def _assignment_intent(ctx: TransitionContext, next_stage: StageInfo) -> NotificationIntent:
    payload = _intent_payload(ctx, "task_assigned")
    payload["next_stage_name"] = next_stage.name
    return NotificationIntent(
        recipient_user_id=next_stage.assigned_to,
        title="Task Assigned",
        body=(
            f"'{payload['activity_name']}' of task '{payload['task_name']}' moved to "
            f"{next_stage.name} in project '{payload['project_name']}'"
        ),
        action_url=plan_url(ctx.activity.project_id),
        payload=payload,
    )


def _inspection_intent(ctx: TransitionContext, stage: StageInfo) -> NotificationIntent:
    payload = _intent_payload(ctx, "qc_requested")
    payload["stage_name"] = stage.name
    return NotificationIntent(
        recipient_user_id=stage.qc_id,
        title="QC Inspection Requested",
        body=f"'{payload['activity_name']}' is ready for {stage.name} inspection",
        action_url=plan_url(ctx.activity.project_id),
        payload=payload,
    )


def _qc_completed_intent(ctx: TransitionContext, stage: StageInfo, recipient: int) -> NotificationIntent:
    payload = _intent_payload(ctx, "qc_completed")
    payload["stage_name"] = stage.name
    return NotificationIntent(
        recipient_user_id=recipient,
        title="QC Completed",
        body=f"QC for {stage.name} on '{payload['activity_name']}' is completed",
        action_url=plan_url(ctx.activity.project_id),
        payload=payload,
    )


def _stockyard_intent(ctx: TransitionContext, manager_id: int) -> NotificationIntent:
    payload = _intent_payload(ctx, "stockyard_incoming")
    payload["stockyard_id"] = str(ctx.activity.stockyard_id)
    return NotificationIntent(
        recipient_user_id=manager_id,
        title="Element Ready for Stockyard",
        body=f"'{payload['activity_name']}' finished production and is on its way to your stockyard",
        action_url=plan_url(ctx.activity.project_id),
        payload=payload,
    )


# ═════════════════════════════════════════════════════════════════════════════
# Transaction wrapper
# ═════════════════════════════════════════════════════════════════════════════


def _is_deadlock(exc: OperationalError) -> bool:
    orig = getattr(exc, "orig", None)
    if getattr(orig, "pgcode", None) in _DEADLOCK_PGCODES:
        return True
    message = str(orig or exc).lower()
    return "deadlock" in message or "database is locked" in message


def _apply_statement_timeout() -> None:
    timeout_ms = current_app.config.get("TRANSITION_STATEMENT_TIMEOUT_MS")
    if not timeout_ms or db.session.get_bind().dialect.name != "postgresql":
        return
    db.session.execute(text(f"SET LOCAL statement_timeout = {int(timeout_ms)}"))


def lock_activity(activity_id: int) -> Activity:
    """Load the Activity with a row lock held until commit/rollback."""
    activity = db.session.execute(
        select(Activity)
        .where(Activity.id == activity_id)
        .with_for_update(of=Activity)
        .execution_options(populate_existing=True)
    ).unique().scalar_one_or_none()
    if activity is None:
        raise NotFoundError(resource="Activity", resource_id=activity_id)
    return activity


def run_transition(activity_id: int,
                   work: Callable[[Activity], TransitionResult]) -> TransitionResult:
    """Run ``work`` on the locked Activity in one transaction, then dispatch its intents.

    A deadlock or serialization failure is retried once. Any other
    OperationalError becomes TransientError. Every failure rolls back.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            _apply_statement_timeout()
            activity = lock_activity(activity_id)
            result = work(activity)
            db.session.commit()
            break
        except PrecastError:
            db.session.rollback()
            raise
        except OperationalError as exc:
            db.session.rollback()
            if _is_deadlock(exc) and attempt < 2:
                logger.warning("Deadlock on activity_id=%s, retrying once", activity_id)
                continue
            logger.error("Transition failed on activity_id=%s: %s", activity_id, exc)
            raise TransientError(
                "Database temporarily unavailable, retry the request",
                details={"activity_id": activity_id},
            ) from exc
        except Exception:
            db.session.rollback()
            raise

    result.new_state = activity.to_dict()
    dispatch_intents(result.intents)
    return result


def update_activity_status(activity_id: int, actor_id: int, new_status) -> TransitionResult:
    """Status write from the activity's assignee, QC or parallel-window crew."""
    status = coerce_status(new_status)

    def work(activity: Activity) -> TransitionResult:
        return apply_status(load_context(activity, actor_id), status)

    return run_transition(activity_id, work)
