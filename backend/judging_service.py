import logging
import math
from collections import defaultdict
from typing import Any, Dict, Iterable, List, Optional

from fastapi import HTTPException, status
from sqlalchemy.orm import Session

from models import AssignmentStatus, JudgeAssignment, Rubric, Score, Submission

logger = logging.getLogger(__name__)

DEFAULT_CRITERION_MAX = 10.0
DEFAULT_RUBRIC_MAX = 100.0


def criterion_max(criterion: Dict[str, Any]) -> float:
    return float(criterion.get("max_score") or criterion.get("weight") or DEFAULT_CRITERION_MAX)


def rubric_max_score(rubric: Optional[Rubric]) -> float:
    if not rubric or not rubric.criteria:
        return DEFAULT_RUBRIC_MAX
    return float(sum(criterion_max(c) for c in rubric.criteria))


def validate_scores(rubric: Optional[Rubric], scores: Dict[str, float]) -> Dict[str, float]:
    """Check each value against its criterion. Raises ``ValueError``."""
    if not scores:
        raise ValueError("At least one criterion score is required")
    if rubric and rubric.criteria:
        limits = {str(c.get("name")): criterion_max(c) for c in rubric.criteria}
    else:
        limits = None

    cleaned: Dict[str, float] = {}
    for name, value in scores.items():
        if limits is not None and name not in limits:
            raise ValueError(f"Unknown criterion: {name}")
        max_value = limits[name] if limits is not None else DEFAULT_RUBRIC_MAX
        numeric = float(value)
        if not math.isfinite(numeric) or numeric < 0 or numeric > max_value:
            raise ValueError(f"Score for {name} must be between 0 and {max_value:g}")
        cleaned[name] = numeric
    return cleaned


def _score_total(score_map: Optional[Dict[str, Any]]) -> float:
    total = 0.0
    for value in (score_map or {}).values():
        if isinstance(value, bool):
            continue
        if isinstance(value, (int, float)):
            total += float(value)
    return total


def submission_averages(scores: Iterable[Score]) -> Dict[str, Dict[str, float]]:
    """Per submission: distinct judge count and the average total over judges."""
    totals: Dict[str, float] = defaultdict(float)
    judges: Dict[str, set] = defaultdict(set)
    for row in scores:
        totals[row.submission_id] += _score_total(row.scores)
        judges[row.submission_id].add(row.judge_id)
    result = {}
    for submission_id, judge_ids in judges.items():
        judge_count = len(judge_ids)
        average = totals[submission_id] / judge_count if judge_count else 0.0
        result[submission_id] = {"judge_count": judge_count, "average": average}
    return result


def build_leaderboard(db: Session, event_id: str) -> List[dict]:
    submissions = db.query(Submission).filter(Submission.event_id == event_id).all()
    if not submissions:
        return []
    submission_ids = [s.id for s in submissions]
    rubric_ids = {s.rubric_id for s in submissions if s.rubric_id}
    rubrics = {r.id: r for r in db.query(Rubric).filter(Rubric.id.in_(rubric_ids)).all()} if rubric_ids else {}
    averages = submission_averages(db.query(Score).filter(Score.submission_id.in_(submission_ids)).all())

    rows = []
    for submission in submissions:
        stats = averages.get(submission.id, {"judge_count": 0, "average": 0.0})
        max_possible = rubric_max_score(rubrics.get(submission.rubric_id))
        total_score = round(stats["average"], 1)
        percentage = round(stats["average"] / max_possible * 100, 1) if max_possible else 0.0
        rows.append({
            "submission_id": submission.id,
            "team_name": submission.team_name,
            "description": submission.description,
            "total_score": total_score,
            "judge_count": stats["judge_count"],
            "max_possible_score": max_possible,
            "score_percentage": percentage,
        })

    rows.sort(key=lambda item: (-item["total_score"], item["team_name"].lower()))
    for rank, item in enumerate(rows, start=1):
        item["rank"] = rank
    return rows


def judging_stats(db: Session, event_id: str) -> dict:
    submission_ids = [row.id for row in db.query(Submission.id).filter(Submission.event_id == event_id).all()]
    total = len(submission_ids)
    if not submission_ids:
        return {
            "total_submissions": 0,
            "evaluated_submissions": 0,
            "total_judges": 0,
            "active_judges": 0,
            "pending_assignments": 0,
            "average_score": 0.0,
            "completion_rate": 0,
        }

    scores = db.query(Score).filter(Score.submission_id.in_(submission_ids)).all()
    assignments = db.query(JudgeAssignment).filter(JudgeAssignment.submission_id.in_(submission_ids)).all()
    averages = submission_averages(scores)

    evaluated = len(averages)
    active_judges = {row.judge_id for row in scores}
    all_judges = active_judges | {row.judge_id for row in assignments}
    pending = sum(1 for row in assignments if row.status == AssignmentStatus.PENDING)
    average_score = round(sum(v["average"] for v in averages.values()) / evaluated, 1) if evaluated else 0.0

    return {
        "total_submissions": total,
        "evaluated_submissions": evaluated,
        "total_judges": len(all_judges),
        "active_judges": len(active_judges),
        "pending_assignments": pending,
        "average_score": average_score,
        "completion_rate": round(evaluated / max(total, 1) * 100),
    }


def get_submission_or_404(db: Session, event_id: str, submission_id: str) -> Submission:
    submission = db.query(Submission).filter(Submission.id == submission_id, Submission.event_id == event_id).first()
    if not submission:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Submission not found")
    return submission


def assign_judges(db: Session, submission: Submission, judge_ids: List[str]) -> List[JudgeAssignment]:
    existing = {
        row.judge_id: row
        for row in db.query(JudgeAssignment).filter(JudgeAssignment.submission_id == submission.id).all()
    }
    created = []
    for judge_id in dict.fromkeys(judge_ids):
        if judge_id in existing:
            continue
        assignment = JudgeAssignment(submission_id=submission.id, judge_id=judge_id, status=AssignmentStatus.PENDING)
        db.add(assignment)
        created.append(assignment)
    db.flush()
    return created


def submit_score(
    db: Session,
    submission: Submission,
    judge_id: str,
    scores: Dict[str, float],
    comments: Optional[str] = None,
) -> Score:
    """Insert or overwrite the judge's score row and complete the assignment."""
    rubric = db.query(Rubric).filter(Rubric.id == submission.rubric_id).first() if submission.rubric_id else None
    try:
        cleaned = validate_scores(rubric, scores)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    row = db.query(Score).filter(Score.submission_id == submission.id, Score.judge_id == judge_id).first()
    if row:
        row.scores = cleaned
        row.comments = comments
    else:
        row = Score(submission_id=submission.id, judge_id=judge_id, scores=cleaned, comments=comments)
        db.add(row)

    assignment = (
        db.query(JudgeAssignment)
        .filter(JudgeAssignment.submission_id == submission.id, JudgeAssignment.judge_id == judge_id)
        .first()
    )
    if assignment:
        assignment.status = AssignmentStatus.COMPLETED
    db.flush()
    logger.info("Judge %s scored submission %s", judge_id, submission.id)
    return row


def judge_queue(db: Session, judge_id: str, event_id: Optional[str] = None) -> List[dict]:
    query = (
        db.query(JudgeAssignment, Submission)
        .join(Submission, Submission.id == JudgeAssignment.submission_id)
        .filter(JudgeAssignment.judge_id == judge_id, JudgeAssignment.status == AssignmentStatus.PENDING)
    )
    if event_id:
        query = query.filter(Submission.event_id == event_id)
    rows = query.order_by(JudgeAssignment.created_at.asc()).all()
    return [
        {
            "assignment_id": assignment.id,
            "submission_id": submission.id,
            "event_id": submission.event_id,
            "team_name": submission.team_name,
            "description": submission.description,
            "project_url": submission.project_url,
            "status": assignment.status.value,
        }
        for assignment, submission in rows
    ]
