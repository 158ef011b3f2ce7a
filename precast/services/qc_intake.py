"""
QC answer intake.

A QC inspector submits the answers of a stage's QC paper together with an
``{activity_id, status}`` envelope. Answers and the status write they gate
share one transaction: the inspector is authorized first, then every
answer row is inserted, then the progression engine applies the QC write.
Any failure rolls back all of it.

Answers are stamped server-side with the submitter, the activity and the
activity's element; client-supplied values for those are ignored.
Replaying a batch inserts the rows again while the status write no-ops, also
when the first submission already moved the activity past the stage.
"""

from __future__ import annotations

import logging

from sqlalchemy import select

from precast.core.exceptions import PermissionDeniedError, ValidationError
from precast.models import db
from precast.models.production import STATUS_COMPLETED, Activity, CompleteProduction, normalize_status
from precast.models.qc import QCAnswer
from precast.services.progression import (
    DISPATCH_RULES,
    OUTCOME_NOOP,
    TransitionResult,
    apply_status,
    load_context,
    resolve_target,
    run_transition,
)
from precast.services.stage_path import position_of
from precast.services.stage_registry import StageInfo

logger = logging.getLogger(__name__)

_TEXT_LIMIT = 2000


def _int_field(answer: dict, key: str, index: int, *, required: bool) -> int | None:
    value = answer.get(key)
    if value is None or value == "":
        if required:
            raise ValidationError(
                f"answers[{index}].{key} is required",
                details={"index": index, "field": key},
            )
        return None
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(
            f"answers[{index}].{key} must be an integer",
            details={"index": index, "field": key, "value": value},
        ) from exc


def validate_answers(answers) -> list[dict]:
    """Shape-check a raw answer list. Returns normalized dicts."""
    if not isinstance(answers, list):
        raise ValidationError("answers must be a list")
    cleaned = []
    for index, answer in enumerate(answers):
        if not isinstance(answer, dict):
            raise ValidationError(f"answers[{index}] must be an object", details={"index": index})
        cleaned.append({
            "question_id": _int_field(answer, "question_id", index, required=True),
            "option_id": _int_field(answer, "option_id", index, required=False),
            "project_id": _int_field(answer, "project_id", index, required=False),
            "task_id": _int_field(answer, "task_id", index, required=False),
            "stage_id": _int_field(answer, "stage_id", index, required=False),
            "comment": (answer.get("comment") or "")[:_TEXT_LIMIT],
            "image_path": answer.get("image_path") or None,
        })
    return cleaned


def record_answers(activity: Activity, submitter_id: int, answers: list[dict],
                   *, default_stage_id: int, project_stage_ids=None) -> list[QCAnswer]:
    """Insert validated answers inside the caller's transaction."""
    rows = []
    for index, answer in enumerate(answers):
        if answer["project_id"] is not None and answer["project_id"] != activity.project_id:
            raise ValidationError(
                f"answers[{index}] belongs to another project",
                details={"index": index, "project_id": answer["project_id"]},
            )
        if answer["task_id"] is not None and answer["task_id"] != activity.task_id:
            raise ValidationError(
                f"answers[{index}] belongs to another task",
                details={"index": index, "task_id": answer["task_id"]},
            )
        if (answer["stage_id"] is not None and project_stage_ids is not None
                and answer["stage_id"] not in project_stage_ids):
            raise ValidationError(
                f"answers[{index}].stage_id is not a stage of project {activity.project_id}",
                details={"index": index, "stage_id": answer["stage_id"]},
            )
        row = QCAnswer(
            qc_id=submitter_id,
            project_id=activity.project_id,
            activity_id=activity.id,
            element_id=activity.element_id,
            question_id=answer["question_id"],
            option_id=answer["option_id"],
            task_id=activity.task_id,
            stage_id=answer["stage_id"] or default_stage_id,
            comment=answer["comment"],
            image_path=answer["image_path"],
        )
        db.session.add(row)
        rows.append(row)
    db.session.flush()
    return rows


def _signed_off_earlier_stage(ctx, actor_id: int) -> StageInfo | None:
    """Stage behind the current one that ``actor_id`` already completed as its QC."""
    current = position_of(ctx.path, ctx.activity.stage_id)
    if current is None:
        return None
    stage_ids = db.session.execute(
        select(CompleteProduction.stage_id)
        .where(
            CompleteProduction.activity_id == ctx.activity.id,
            CompleteProduction.user_id == actor_id,
            CompleteProduction.status == STATUS_COMPLETED,
        )
        .order_by(CompleteProduction.id.desc())
    ).scalars()
    for stage_id in stage_ids:
        stage = ctx.stages.get(stage_id)
        position = position_of(ctx.path, stage_id)
        if stage is None or position is None or position >= current:
            continue
        if stage.qc_id == actor_id:
            return stage
    return None


def _record_replay(activity: Activity, actor_id: int, cleaned: list[dict],
                   stage: StageInfo, project_stage_ids) -> TransitionResult:
    """A batch resent after its write already moved the activity on: keep the rows, skip the write."""
    rows = record_answers(
        activity, actor_id, cleaned,
        default_stage_id=stage.id, project_stage_ids=project_stage_ids,
    )
    target = next(rule.target for rule in DISPATCH_RULES if rule.qc and rule.kind is stage.kind)
    logger.info(
        "QC answers replayed: activity_id=%s qc_id=%s stage_id=%s count=%d",
        activity.id, actor_id, stage.id, len(rows),
    )
    return TransitionResult(activity.id, OUTCOME_NOOP, target, activity.stage_id)


def submit_answers(actor_id: int, answers, envelope) -> TransitionResult:
    """Persist a QC paper submission and apply the QC status write it carries."""
    if not isinstance(envelope, dict):
        raise ValidationError("status must be an object with activity_id and status")
    try:
        activity_id = int(envelope.get("activity_id"))
    except (TypeError, ValueError) as exc:
        raise ValidationError(
            "status.activity_id is required", details={"activity_id": envelope.get("activity_id")},
        ) from exc
    status = normalize_status(envelope.get("status", STATUS_COMPLETED))
    if status != STATUS_COMPLETED:
        raise ValidationError(
            "QC submissions must carry status 'Completed'",
            details={"status": envelope.get("status")},
        )
    cleaned = validate_answers(answers)

    def work(activity: Activity) -> TransitionResult:
        ctx = load_context(activity, actor_id)
        try:
            rule = resolve_target(ctx, qc_only=True)
        except PermissionDeniedError:
            signed = _signed_off_earlier_stage(ctx, actor_id)
            if signed is None:
                raise
            return _record_replay(activity, actor_id, cleaned, signed, set(ctx.stages))
        acting_stage = ctx.stage_for(rule.kind)
        rows = record_answers(
            activity, actor_id, cleaned,
            default_stage_id=acting_stage.id, project_stage_ids=set(ctx.stages),
        )
        logger.info(
            "QC answers recorded: activity_id=%s qc_id=%s count=%d",
            activity.id, actor_id, len(rows),
        )
        return apply_status(ctx, status, rule=rule)

    return run_transition(activity_id, work)
