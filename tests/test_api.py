"""HTTP layer: routing, role checks and error rendering."""

from sqlmodel import select

from quizportal.models import ExamPublication, Question


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_grading_requires_login(client, questions, students, make_response):
    response = make_response(questions[0], students[0])
    resp = client.post(f"/teacher/grading/responses/{response.id}/grade", json={"marks": 2})
    assert resp.status_code == 401


def test_students_cannot_grade(client, questions, students, make_response):
    response = make_response(questions[0], students[0])
    client.login_as(students[0])
    resp = client.post(f"/teacher/grading/responses/{response.id}/grade", json={"marks": 2})
    assert resp.status_code == 403


def test_grade_and_regrade_over_http(client, teacher, questions, students, make_response):
    response = make_response(questions[1], students[0])
    client.login_as(teacher)

    resp = client.post(
        f"/teacher/grading/responses/{response.id}/grade",
        json={"marks": 7, "feedback": "Solid design"},
    )
    assert resp.status_code == 200
    first = resp.json()
    assert first["marks_obtained"] == 7
    assert first["total_marks"] == 7

    resp = client.post(
        f"/teacher/grading/responses/{response.id}/regrade",
        json={"new_marks": 9, "reason": "Second reviewer"},
    )
    assert resp.status_code == 200
    assert resp.json()["regrade_from"] == first["grading_id"]

    history = client.get(f"/teacher/grading/responses/{response.id}/history").json()
    assert [h["status"] for h in history] == ["Regraded", "Graded"]


def test_domain_errors_map_to_status_codes(client, teacher, other_teacher, questions, students, make_response):
    response = make_response(questions[1], students[0])

    client.login_as(teacher)
    resp = client.post(f"/teacher/grading/responses/{response.id}/grade", json={"marks": 11})
    assert resp.status_code == 400

    resp = client.post("/teacher/grading/responses/9999/grade", json={"marks": 1})
    assert resp.status_code == 404
    assert resp.json()["detail"] == "Response 9999 not found"

    client.login_as(other_teacher)
    resp = client.post(f"/teacher/grading/responses/{response.id}/grade", json={"marks": 1})
    assert resp.status_code == 403


def test_publish_refusal_reports_pending_counts(client, teacher, questions, students, make_response):
    make_response(questions[0], students[0])
    make_response(questions[1], students[0])
    client.login_as(teacher)

    resp = client.post(f"/results/exams/{questions[0].exam_id}/publish", json={"passing_percentage": 50})
    assert resp.status_code == 409
    body = resp.json()
    assert (body["pending"], body["total"]) == (2, 2)
    assert "2 out of 2" in body["detail"]


def test_batch_publish_and_student_view(client, session, teacher, questions, students, make_response):
    q1, q2 = questions
    alice, bob = students[0], students[1]
    r1 = [make_response(q1, alice), make_response(q1, bob)]
    r2 = [make_response(q2, alice), make_response(q2, bob)]

    client.login_as(teacher)
    for question, responses, marks in ((q1, r1, (5, 2)), (q2, r2, (9, 4))):
        resp = client.post(
            "/teacher/grading/batch",
            json={
                "exam_id": question.exam_id,
                "question_id": question.id,
                "items": [
                    {"response_id": r.id, "marks": m} for r, m in zip(responses, marks)
                ],
            },
        )
        assert resp.status_code == 200
        assert resp.json()["graded_count"] == 2

    progress = client.get(f"/results/exams/{q1.exam_id}/grading-progress").json()
    assert progress["all_graded"] is True

    # Not visible to students before publication
    client.login_as(alice)
    assert client.get(f"/results/exams/{q1.exam_id}").status_code == 404

    client.login_as(teacher)
    resp = client.post(f"/results/exams/{q1.exam_id}/publish", json={"passing_percentage": 60})
    assert resp.status_code == 200
    assert resp.json()["passed_count"] == 1

    results = client.get(f"/results/exams/{q1.exam_id}/all-results").json()
    assert [(r["student_name"], r["rank"]) for r in results] == [("Alice", 1), ("Bob", 2)]

    client.login_as(alice)
    mine = client.get(f"/results/exams/{q1.exam_id}").json()
    assert mine["total_marks"] == 14
    assert mine["passed"] is True
    assert len(client.get("/results/published").json()) == 1

    client.login_as(teacher)
    resp = client.post(f"/results/exams/{q1.exam_id}/unpublish", json={"reason": "Appeal"})
    assert resp.status_code == 200
    status = client.get(f"/results/exams/{q1.exam_id}/publication-status").json()
    assert status["is_published"] is False
    assert status["status"] == "NotPublished"

    publication = session.get(ExamPublication, status["publication_id"])
    assert publication.publication_notes == "Appeal"


def test_student_submission_flow(client, session, open_exam, students):
    alice = students[0]
    client.login_as(alice)

    assert client.get(f"/exams/{open_exam.id}/can-submit").json()["can_submit"] is True

    question_ids = [
        q.id for q in session.exec(select(Question).where(Question.exam_id == open_exam.id)).all()
    ]
    for question_id in question_ids:
        resp = client.post(
            f"/exams/{open_exam.id}/responses",
            json={"question_id": question_id, "answer_text": "def"},
        )
        assert resp.status_code == 200
        body = resp.json()
        assert (body["exam_id"], body["question_id"]) == (open_exam.id, question_id)
        assert {"response_id", "submitted_at"} <= set(body)

    resp = client.post(f"/exams/{open_exam.id}/finalize")
    assert resp.status_code == 200
    assert resp.json()["status"] == "Completed"
    assert set(resp.json()) == {"result_id", "exam_id", "total_marks", "percentage", "status"}


def test_submitting_after_the_exam_is_rejected(client, ended_exam, questions, students):
    client.login_as(students[0])
    resp = client.post(
        f"/exams/{ended_exam.id}/responses",
        json={"question_id": questions[0].id, "answer_text": "late"},
    )
    assert resp.status_code == 409


def test_exam_routes_are_limited_to_the_exam_owner(client, teacher, other_teacher, ended_exam):
    client.login_as(other_teacher)
    resp = client.get(f"/results/exams/{ended_exam.id}/grading-progress")
    assert resp.status_code == 403
    assert resp.json()["detail"] == "You can only manage your own exams"
    assert client.post(f"/results/exams/{ended_exam.id}/publish", json={}).status_code == 403
    assert client.get(f"/teacher/grading/exams/{ended_exam.id}/statistics").status_code == 403

    client.login_as(teacher)
    assert client.get("/results/exams/9999/grading-progress").status_code == 404
    assert client.get(f"/results/exams/{ended_exam.id}/grading-progress").status_code == 200


def test_student_withdraws_an_answer_over_http(client, session, open_exam, students):
    alice, bob = students[0], students[1]
    question = session.exec(select(Question).where(Question.exam_id == open_exam.id)).first()

    client.login_as(alice)
    response_id = client.post(
        f"/exams/{open_exam.id}/responses",
        json={"question_id": question.id, "answer_text": "a < b"},
    ).json()["response_id"]

    client.login_as(bob)
    assert client.delete(f"/exams/responses/{response_id}").status_code == 403

    client.login_as(alice)
    resp = client.delete(f"/exams/responses/{response_id}")
    assert resp.status_code == 200
    assert resp.json()["response_id"] == response_id
    assert client.delete(f"/exams/responses/{response_id}").status_code == 404


def test_student_sees_question_breakdown_once_published(client, teacher, questions, students, make_response):
    q1, q2 = questions
    alice = students[0]
    r1 = make_response(q1, alice, answer_text="Open for extension")
    r2 = make_response(q2, alice, answer_text="")

    client.login_as(teacher)
    client.post(f"/teacher/grading/responses/{r1.id}/grade", json={"marks": 4})
    client.post(f"/teacher/grading/responses/{r2.id}/grade", json={"marks": 0})

    client.login_as(alice)
    assert client.get(f"/results/exams/{q1.exam_id}/details").status_code == 404

    client.login_as(teacher)
    assert client.post(f"/results/exams/{q1.exam_id}/publish", json={"passing_percentage": 25}).status_code == 200

    client.login_as(alice)
    resp = client.get(f"/results/exams/{q1.exam_id}/details")
    assert resp.status_code == 200
    details = resp.json()
    assert (details["total_marks"], details["exam_total_marks"]) == (4, 15)
    assert details["passed"] is True
    assert details["unanswered_count"] == 1
    assert [q["student_answer"] for q in details["questions"]] == ["Open for extension", ""]
    assert all(q["correct_answer"] is None for q in details["questions"])
