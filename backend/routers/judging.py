from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session

from database import get_db
from judging_service import (
    assign_judges,
    build_leaderboard,
    get_submission_or_404,
    judge_queue,
    judging_stats,
    rubric_max_score,
    submit_score,
)
from models import JudgeAssignment, Rubric, Submission, User
from registration_service import get_event_or_404
from schemas import (
    JudgeAssignmentCreate,
    JudgeAssignmentResponse,
    JudgingStatsResponse,
    LeaderboardEntry,
    RubricCreate,
    RubricResponse,
    ScoreResponse,
    ScoreSubmit,
    SubmissionCreate,
    SubmissionResponse,
)
from security import can_manage_event, require_event_organizer, require_user
from utils import export_response, log_activity

router = APIRouter()


def rubric_payload(rubric: Rubric) -> RubricResponse:
    payload = RubricResponse.model_validate(rubric)
    payload.max_possible_score = rubric_max_score(rubric)
    return payload


def _get_rubric_or_404(db: Session, event_id: str, rubric_id: str) -> Rubric:
    rubric = db.query(Rubric).filter(Rubric.id == rubric_id, Rubric.event_id == event_id).first()
    if not rubric:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Rubric not found")
    return rubric


@router.get("/events/{event_id}/rubrics", response_model=List[RubricResponse])
def list_rubrics(event_id: str, user: User = Depends(require_user), db: Session = Depends(get_db)):
    get_event_or_404(db, event_id)
    rubrics = db.query(Rubric).filter(Rubric.event_id == event_id).order_by(Rubric.created_at.asc()).all()
    return [rubric_payload(r) for r in rubrics]


@router.post("/events/{event_id}/rubrics", response_model=RubricResponse, status_code=status.HTTP_201_CREATED)
def create_rubric(
    event_id: str,
    payload: RubricCreate,
    request: Request,
    user: User = Depends(require_event_organizer),
    db: Session = Depends(get_db),
):
    rubric = Rubric(
        event_id=event_id,
        name=payload.name.strip(),
        criteria=[c.model_dump(exclude_none=True) for c in payload.criteria],
    )
    db.add(rubric)
    db.commit()
    db.refresh(rubric)
    log_activity(db, user, "create_rubric", event_id=event_id, method="POST", path=request.url.path, meta={"rubric_id": rubric.id})
    return rubric_payload(rubric)


@router.put("/events/{event_id}/rubrics/{rubric_id}", response_model=RubricResponse)
def update_rubric(
    event_id: str,
    rubric_id: str,
    payload: RubricCreate,
    user: User = Depends(require_event_organizer),
    db: Session = Depends(get_db),
):
    rubric = _get_rubric_or_404(db, event_id, rubric_id)
    rubric.name = payload.name.strip()
    rubric.criteria = [c.model_dump(exclude_none=True) for c in payload.criteria]
    db.commit()
    db.refresh(rubric)
    return rubric_payload(rubric)


@router.delete("/events/{event_id}/rubrics/{rubric_id}")
def delete_rubric(event_id: str, rubric_id: str, user: User = Depends(require_event_organizer), db: Session = Depends(get_db)):
    rubric = _get_rubric_or_404(db, event_id, rubric_id)
    in_use = db.query(Submission.id).filter(Submission.rubric_id == rubric.id).first()
    if in_use:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Rubric is used by submissions")
    db.delete(rubric)
    db.commit()
    return {"message": "Rubric deleted"}


@router.post("/events/{event_id}/submissions", response_model=SubmissionResponse, status_code=status.HTTP_201_CREATED)
def create_submission(
    event_id: str,
    payload: SubmissionCreate,
    user: User = Depends(require_user),
    db: Session = Depends(get_db),
):
    event = get_event_or_404(db, event_id)
    if payload.rubric_id:
        _get_rubric_or_404(db, event.id, payload.rubric_id)
    submission = Submission(
        event_id=event.id,
        rubric_id=payload.rubric_id,
        team_name=payload.team_name.strip(),
        description=payload.description,
        project_url=payload.project_url,
        submitted_by=user.id,
    )
    db.add(submission)
    db.commit()
    db.refresh(submission)
    return submission


@router.get("/events/{event_id}/submissions", response_model=List[SubmissionResponse])
def list_submissions(event_id: str, user: User = Depends(require_event_organizer), db: Session = Depends(get_db)):
    return (
        db.query(Submission)
        .filter(Submission.event_id == event_id)
        .order_by(Submission.created_at.asc(), Submission.team_name.asc())
        .all()
    )


@router.post(
    "/events/{event_id}/submissions/{submission_id}/judges",
    response_model=List[JudgeAssignmentResponse],
    status_code=status.HTTP_201_CREATED,
)
def add_judges(
    event_id: str,
    submission_id: str,
    payload: JudgeAssignmentCreate,
    request: Request,
    user: User = Depends(require_event_organizer),
    db: Session = Depends(get_db),
):
    submission = get_submission_or_404(db, event_id, submission_id)
    known = {row.id for row in db.query(User.id).filter(User.id.in_(payload.judge_ids)).all()}
    missing = [judge_id for judge_id in payload.judge_ids if judge_id not in known]
    if missing:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Judge not found: {missing[0]}")
    created = assign_judges(db, submission, payload.judge_ids)
    db.commit()
    for row in created:
        db.refresh(row)
    log_activity(
        db,
        user,
        "assign_judges",
        event_id=event_id,
        method="POST",
        path=request.url.path,
        meta={"submission_id": submission.id, "assigned": len(created)},
    )
    return created


@router.post("/events/{event_id}/submissions/{submission_id}/scores", response_model=ScoreResponse)
def score_submission(
    event_id: str,
    submission_id: str,
    payload: ScoreSubmit,
    user: User = Depends(require_user),
    db: Session = Depends(get_db),
):
    event = get_event_or_404(db, event_id)
    submission = get_submission_or_404(db, event.id, submission_id)
    assigned = (
        db.query(JudgeAssignment.id)
        .filter(JudgeAssignment.submission_id == submission.id, JudgeAssignment.judge_id == user.id)
        .first()
    )
    if not assigned and not can_manage_event(user, event):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="You are not assigned to judge this submission")
    score = submit_score(db, submission, user.id, payload.scores, payload.comments)
    db.commit()
    db.refresh(score)
    return score


@router.get("/events/{event_id}/judging/leaderboard", response_model=List[LeaderboardEntry])
def get_leaderboard(event_id: str, user: User = Depends(require_event_organizer), db: Session = Depends(get_db)):
    return [LeaderboardEntry(**row) for row in build_leaderboard(db, event_id)]


@router.get("/events/{event_id}/judging/leaderboard/export")
def export_leaderboard(
    event_id: str,
    format: str = Query("csv"),
    user: User = Depends(require_event_organizer),
    db: Session = Depends(get_db),
):
    event = get_event_or_404(db, event_id)
    headers = ["Rank", "Team", "Average Score", "Max Score", "Percentage", "Judges"]
    rows = [
        [row["rank"], row["team_name"], row["total_score"], row["max_possible_score"], row["score_percentage"], row["judge_count"]]
        for row in build_leaderboard(db, event.id)
    ]
    return export_response(headers, rows, format, f"{event.slug}-leaderboard")


@router.get("/events/{event_id}/judging/stats", response_model=JudgingStatsResponse)
def get_judging_stats(event_id: str, user: User = Depends(require_event_organizer), db: Session = Depends(get_db)):
    return JudgingStatsResponse(**judging_stats(db, event_id))


@router.get("/me/judging/queue")
def my_judging_queue(event_id: Optional[str] = None, user: User = Depends(require_user), db: Session = Depends(get_db)):
    return judge_queue(db, user.id, event_id)
