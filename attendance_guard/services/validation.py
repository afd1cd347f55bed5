from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from typing import Any

from attendance_guard.errors import ConfigShapeError, UnknownAttendanceKindError
from attendance_guard.models import AttendanceTypeKind, ValidationMode
from attendance_guard.services.evaluators import (
    REASON_CODE_ALREADY_USED,
    REASON_INVALID_CONFIGURATION,
    REASON_USAGE_TRACKING_UNAVAILABLE,
    EvaluationResult,
    PunchContext,
    RuleEvaluator,
    build_evaluators,
)
from attendance_guard.services.qr_usage import QrUsageStore
from attendance_guard.services.rule_config import parse_attendance_config, resolve_kind

logger = logging.getLogger("attendance_guard.validation")

REASON_NO_ACTIVE_TYPE = "no active attendance type"
REASON_EVALUATION_ERROR = "evaluation error"


@dataclass(frozen=True, slots=True)
class TypeEvaluation:
    attendance_type_id: int | None
    slug: str | None
    kind: str
    result: EvaluationResult

    def to_dict(self) -> dict[str, Any]:
        return {
            "attendance_type_id": self.attendance_type_id,
            "slug": self.slug,
            "kind": self.kind,
            **self.result.to_dict(),
        }


@dataclass(frozen=True, slots=True)
class ConfigIssue:
    attendance_type_id: int | None
    slug: str | None
    code: str
    detail: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "attendance_type_id": self.attendance_type_id,
            "slug": self.slug,
            "code": self.code,
            "detail": self.detail,
        }


@dataclass(frozen=True, slots=True)
class ValidationOutcome:
    result: EvaluationResult
    validation_mode: ValidationMode
    evaluations: list[TypeEvaluation] = field(default_factory=list)
    issues: list[ConfigIssue] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return self.result.passed

    def to_dict(self) -> dict[str, Any]:
        return {
            **self.result.to_dict(),
            "validation_mode": self.validation_mode.value,
            "evaluations": [item.to_dict() for item in self.evaluations],
            "issues": [item.to_dict() for item in self.issues],
        }


def _evaluate_type(
    attendance_type: Any,
    context: PunchContext,
    evaluators: Mapping[AttendanceTypeKind, RuleEvaluator],
    issues: list[ConfigIssue],
) -> TypeEvaluation | None:
    type_id = getattr(attendance_type, "id", None)
    slug = getattr(attendance_type, "slug", None)
    log_context = {"attendance_type_id": type_id, "slug": slug}

    try:
        kind = resolve_kind(getattr(attendance_type, "kind", None), slug)
        evaluator = evaluators[kind]
    except (UnknownAttendanceKindError, KeyError) as exc:
        issues.append(ConfigIssue(type_id, slug, "UNKNOWN_KIND", str(exc)))
        logger.warning("attendance_type_unknown_kind", extra=log_context)
        return None

    try:
        config = parse_attendance_config(kind, getattr(attendance_type, "config", None))
    except ConfigShapeError as exc:
        issues.append(ConfigIssue(type_id, slug, "INVALID_CONFIG", exc.detail))
        logger.warning("attendance_config_invalid", extra={**log_context, "detail": exc.detail})
        result = EvaluationResult(passed=False, reason=REASON_INVALID_CONFIGURATION)
    else:
        try:
            result = evaluator.evaluate(config, context)
        except Exception as exc:
            issues.append(ConfigIssue(type_id, slug, "EVALUATOR_ERROR", exc.__class__.__name__))
            logger.exception("attendance_evaluator_failed", extra=log_context)
            result = EvaluationResult(passed=False, reason=REASON_EVALUATION_ERROR)

    return TypeEvaluation(attendance_type_id=type_id, slug=slug, kind=kind.value, result=result)


def _consume(evaluation: TypeEvaluation, usage_store: QrUsageStore | None) -> TypeEvaluation:
    """Consume the one-time code behind a passing evaluation, failing it if someone else did."""
    code_id = evaluation.result.consume_code_id
    if code_id is None:
        return evaluation
    if usage_store is None:
        return replace(
            evaluation,
            result=EvaluationResult(
                passed=False,
                reason=REASON_USAGE_TRACKING_UNAVAILABLE,
                matched_rule_id=code_id,
            ),
        )

    if usage_store.try_consume(code_id, attendance_type_id=evaluation.attendance_type_id):
        logger.info(
            "qr_code_consumed",
            extra={"code_id": code_id, "attendance_type_id": evaluation.attendance_type_id},
        )
        return replace(evaluation, result=replace(evaluation.result, consume_code_id=None))

    return replace(
        evaluation,
        result=EvaluationResult(passed=False, reason=REASON_CODE_ALREADY_USED, matched_rule_id=code_id),
    )


def _combined_failure(evaluations: list[TypeEvaluation]) -> EvaluationResult:
    if len(evaluations) == 1:
        return evaluations[0].result
    reasons = list(dict.fromkeys(item.result.reason for item in evaluations))
    return EvaluationResult(passed=False, reason="; ".join(reasons))


def _decide_any(evaluations: list[TypeEvaluation], usage_store: QrUsageStore | None) -> EvaluationResult:
    for index, evaluation in enumerate(evaluations):
        if not evaluation.result.passed:
            continue
        evaluation = _consume(evaluation, usage_store)
        evaluations[index] = evaluation
        if evaluation.result.passed:
            return evaluation.result
    return _combined_failure(evaluations)


def _decide_all(evaluations: list[TypeEvaluation], usage_store: QrUsageStore | None) -> EvaluationResult:
    failed = next((item for item in evaluations if not item.result.passed), None)
    if failed is not None:
        return failed.result

    # Consumption is the last step so a code is only burned once every other type has passed.
    for index, evaluation in enumerate(evaluations):
        evaluation = _consume(evaluation, usage_store)
        evaluations[index] = evaluation
        if not evaluation.result.passed:
            return evaluation.result

    if len(evaluations) == 1:
        return evaluations[0].result
    matched = [item.result.matched_rule_id for item in evaluations if item.result.matched_rule_id]
    return EvaluationResult(
        passed=True,
        reason="; ".join(item.result.reason for item in evaluations),
        matched_rule_id=",".join(matched) or None,
    )


def validate_punch(
    attendance_types: Iterable[Any],
    context: PunchContext,
    *,
    validation_mode: ValidationMode | str = ValidationMode.ANY,
    usage_store: QrUsageStore | None = None,
    evaluators: Mapping[AttendanceTypeKind, RuleEvaluator] | None = None,
) -> ValidationOutcome:
    """Run every active attendance type against one punch and aggregate by the global mode.

    Types are evaluated in the order given. A type with an unknown kind is skipped and
    reported in ``issues``; a type whose config is malformed or whose evaluator blows up
    fails closed without affecting the others. One-time QR codes are consumed only when
    they are part of the passing decision.
    """
    mode = ValidationMode(validation_mode)
    active_evaluators = evaluators if evaluators is not None else build_evaluators(usage_store)

    evaluations: list[TypeEvaluation] = []
    issues: list[ConfigIssue] = []
    for attendance_type in attendance_types:
        if not getattr(attendance_type, "is_active", True):
            continue
        evaluation = _evaluate_type(attendance_type, context, active_evaluators, issues)
        if evaluation is not None:
            evaluations.append(evaluation)

    if not evaluations:
        result = EvaluationResult(passed=False, reason=REASON_NO_ACTIVE_TYPE)
    elif mode == ValidationMode.ALL:
        result = _decide_all(evaluations, usage_store)
    else:
        result = _decide_any(evaluations, usage_store)

    logger.info(
        "punch_validation_complete",
        extra={
            "passed": result.passed,
            "validation_mode": mode.value,
            "matched_rule_id": result.matched_rule_id,
            "evaluated_types": len(evaluations),
            "config_issues": len(issues),
        },
    )
    return ValidationOutcome(result=result, validation_mode=mode, evaluations=evaluations, issues=issues)
