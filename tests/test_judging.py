import pytest
from fastapi import HTTPException

from conftest import auth_headers, make_user
from judging_service import (
    assign_judges,
    build_leaderboard,
    criterion_max,
    judge_queue,
    judging_stats,
    rubric_max_score,
    submit_score,
    submission_averages,
    validate_scores,
)
from models import AssignmentStatus, JudgeAssignment, Rubric, Score, Submission, UserRole


def test_criterion_and_rubric_max():
    assert criterion_max({"name": "Idea", "max_score": 25}) == 25
    assert criterion_max({"name": "Idea", "weight": 30}) == 30
    assert criterion_max({"name": "Idea"}) == 10
    rubric = Rubric(criteria=[{"name": "Idea", "max_score": 25}, {"name": "Demo"}])
    assert rubric_max_score(rubric) == 35
    assert rubric_max_score(None) == 100
    assert rubric_max_score(Rubric(criteria=[])) == 100


def test_validate_scores_bounds():
    rubric = Rubric(criteria=[{"name": "Idea", "max_score": 25}])
    assert validate_scores(rubric, {"Idea": 20}) == {"Idea": 20.0}
    with pytest.raises(ValueError, match="Unknown criterion: Design"):
        validate_scores(rubric, {"Design": 5})
    with pytest.raises(ValueError, match="between 0 and 25"):
        validate_scores(rubric, {"Idea": 26})
    with pytest.raises(ValueError):
        validate_scores(rubric, {"Idea": -1})
    for value in (float("nan"), float("inf"), float("-inf")):
        with pytest.raises(ValueError, match="between 0 and 25"):
            validate_scores(rubric, {"Idea": value})


def test_submission_averages_counts_distinct_judges():
    rows = [
        Score(submission_id="s1", judge_id="j1", scores={"a": 10, "b": 5}),
        Score(submission_id="s1", judge_id="j2", scores={"a": 6, "flag": True}),
        Score(submission_id="s2", judge_id="j1", scores={}),
    ]
    result = submission_averages(rows)
    assert result["s1"] == {"judge_count": 2, "average": 10.5}
    assert result["s2"] == {"judge_count": 1, "average": 0.0}


def _setup(db, event):
    rubric = Rubric(event_id=event.id, name="Main", criteria=[{"name": "Idea", "max_score": 10}, {"name": "Build", "max_score": 10}])
    db.add(rubric)
    db.flush()
    teams = {}
    for name in ("Zeta", "alpha", "Beta"):
        submission = Submission(event_id=event.id, rubric_id=rubric.id, team_name=name)
        db.add(submission)
        teams[name] = submission
    db.commit()
    judges = [make_user(db, f"judge{i}@example.com") for i in (1, 2)]
    return rubric, teams, judges


def test_leaderboard_orders_by_score_then_team_name(db, event):
    rubric, teams, (j1, j2) = _setup(db, event)
    submit_score(db, teams["Zeta"], j1.id, {"Idea": 8, "Build": 7})
    submit_score(db, teams["Zeta"], j2.id, {"Idea": 6, "Build": 6})
    submit_score(db, teams["alpha"], j1.id, {"Idea": 7, "Build": 6})
    submit_score(db, teams["Beta"], j1.id, {"Idea": 6, "Build": 7})
    db.commit()

    board = build_leaderboard(db, event.id)
    assert [(row["rank"], row["team_name"], row["total_score"]) for row in board] == [
        (1, "Zeta", 13.5),
        (2, "alpha", 13.0),
        (3, "Beta", 13.0),
    ]
    assert board[0]["judge_count"] == 2
    assert board[0]["max_possible_score"] == 20
    assert board[0]["score_percentage"] == 67.5


def test_submit_score_overwrites_and_completes_assignment(db, event):
    rubric, teams, (j1, _) = _setup(db, event)
    assign_judges(db, teams["Zeta"], [j1.id, j1.id])
    db.commit()
    assert db.query(JudgeAssignment).count() == 1
    assert len(judge_queue(db, j1.id)) == 1

    submit_score(db, teams["Zeta"], j1.id, {"Idea": 2})
    submit_score(db, teams["Zeta"], j1.id, {"Idea": 9}, comments="Much better")
    db.commit()

    rows = db.query(Score).all()
    assert len(rows) == 1
    assert rows[0].scores == {"Idea": 9.0}
    assert rows[0].comments == "Much better"
    assert db.query(JudgeAssignment).one().status == AssignmentStatus.COMPLETED
    assert judge_queue(db, j1.id) == []


def test_submit_score_invalid_is_400(db, event):
    rubric, teams, (j1, _) = _setup(db, event)
    with pytest.raises(HTTPException) as exc:
        submit_score(db, teams["Zeta"], j1.id, {"Idea": 11})
    assert exc.value.status_code == 400


def test_judging_stats(db, event):
    rubric, teams, (j1, j2) = _setup(db, event)
    assign_judges(db, teams["Zeta"], [j1.id, j2.id])
    assign_judges(db, teams["Beta"], [j2.id])
    submit_score(db, teams["Zeta"], j1.id, {"Idea": 8, "Build": 8})
    db.commit()

    stats = judging_stats(db, event.id)
    assert stats == {
        "total_submissions": 3,
        "evaluated_submissions": 1,
        "total_judges": 2,
        "active_judges": 1,
        "pending_assignments": 2,
        "average_score": 16.0,
        "completion_rate": 33,
    }


def test_judging_stats_empty(db, event):
    assert judging_stats(db, event.id)["completion_rate"] == 0
    assert build_leaderboard(db, event.id) == []


def test_judging_api_flow(client, db, event, organizer):
    headers = auth_headers(organizer)
    judge = make_user(db, "judge@example.com", UserRole.PARTICIPANT)
    outsider = make_user(db, "outsider@example.com", UserRole.PARTICIPANT)

    rubric = client.post(
        f"/api/events/{event.id}/rubrics",
        json={"name": "Main", "criteria": [{"name": "Idea", "max_score": 25}, {"name": "Build", "weight": 15}]},
        headers=headers,
    )
    assert rubric.status_code == 201
    assert rubric.json()["max_possible_score"] == 40

    submission = client.post(
        f"/api/events/{event.id}/submissions",
        json={"team_name": "Rocket", "rubric_id": rubric.json()["id"], "project_url": "https://example.com/rocket"},
        headers=auth_headers(judge),
    )
    assert submission.status_code == 201
    submission_id = submission.json()["id"]

    assigned = client.post(
        f"/api/events/{event.id}/submissions/{submission_id}/judges",
        json={"judge_ids": [judge.id]},
        headers=headers,
    )
    assert assigned.status_code == 201
    assert assigned.json()[0]["status"] == "pending"

    queue = client.get("/api/me/judging/queue", headers=auth_headers(judge)).json()
    assert [row["submission_id"] for row in queue] == [submission_id]

    denied = client.post(
        f"/api/events/{event.id}/submissions/{submission_id}/scores",
        json={"scores": {"Idea": 10}},
        headers=auth_headers(outsider),
    )
    assert denied.status_code == 403

    too_high = client.post(
        f"/api/events/{event.id}/submissions/{submission_id}/scores",
        json={"scores": {"Build": 16}},
        headers=auth_headers(judge),
    )
    assert too_high.status_code == 400

    not_a_number = client.post(
        f"/api/events/{event.id}/submissions/{submission_id}/scores",
        content='{"scores": {"Idea": NaN}}',
        headers={**auth_headers(judge), "Content-Type": "application/json"},
    )
    assert not_a_number.status_code == 400
    assert db.query(Score).count() == 0

    scored = client.post(
        f"/api/events/{event.id}/submissions/{submission_id}/scores",
        json={"scores": {"Idea": 20, "Build": 10}},
        headers=auth_headers(judge),
    )
    assert scored.status_code == 200

    board = client.get(f"/api/events/{event.id}/judging/leaderboard", headers=headers).json()
    assert board[0]["total_score"] == 30
    assert board[0]["score_percentage"] == 75.0

    export = client.get(f"/api/events/{event.id}/judging/leaderboard/export?format=csv", headers=headers)
    assert export.status_code == 200
    assert export.text.splitlines()[1].startswith("1,Rocket,30.0")

    stats = client.get(f"/api/events/{event.id}/judging/stats", headers=headers).json()
    assert stats["completion_rate"] == 100
