import pytest

from ajarin.user_service.security import COOKIE_NAME


@pytest.fixture
async def course_setup(factory):
    mentor = await factory.mentor(name="Mentor")
    student = await factory.user(name="Student")
    course = await factory.course(mentor)
    await factory.enroll(student, course)
    a = await factory.material(course, 1)
    b = await factory.material(course, 2)
    return mentor, student, course, a, b


async def test_register_login_and_me(client):
    res = await client.post("/api/auth/register", json={
        "name": "Dewi", "email": "dewi@example.com", "password": "secret1", "role": "mentor",
    })
    assert res.status_code == 201
    assert res.json()["role"] == "mentor"

    duplicate = await client.post("/api/auth/register", json={
        "name": "Dewi", "email": "dewi@example.com", "password": "secret1",
    })
    assert duplicate.status_code == 400

    bad = await client.post("/api/auth/login", json={"email": "dewi@example.com", "password": "wrong!"})
    assert bad.status_code == 401

    res = await client.post("/api/auth/login", json={"email": "dewi@example.com", "password": "secret1"})
    assert res.status_code == 200
    token = res.json()["access_token"]
    assert res.cookies.get(COOKIE_NAME) == token

    me = await client.get("/api/auth/users/me", headers={"Authorization": f"Bearer {token}"})
    assert me.json()["email"] == "dewi@example.com"


async def test_requests_without_token_are_rejected(client):
    res = await client.get("/api/progress/stats")
    assert res.status_code == 401

    res = await client.get("/api/progress/stats", headers={"Authorization": "Bearer garbage"})
    assert res.status_code == 401


async def test_only_mentors_create_courses(client, factory, auth):
    student = await factory.user()
    mentor = await factory.mentor()
    payload = {"slug": "intro-python", "title": "Intro Python"}

    res = await client.post("/api/courses/", json=payload, headers=auth(student))
    assert res.status_code == 403

    res = await client.post("/api/courses/", json=payload, headers=auth(mentor))
    assert res.status_code == 201
    course_id = res.json()["id"]

    res = await client.post(f"/api/courses/{course_id}/enroll", headers=auth(student))
    assert res.status_code == 201
    res = await client.post(f"/api/courses/{course_id}/enroll", headers=auth(student))
    assert res.status_code == 409
    res = await client.post(f"/api/courses/{course_id}/enroll", headers=auth(mentor))
    assert res.status_code == 400


async def test_material_unlock_and_progress(client, auth, course_setup):
    mentor, student, course, a, b = course_setup

    res = await client.get(f"/api/materials/course/{course.id}", headers=auth(student))
    assert [m["is_unlocked"] for m in res.json()] == [True, False]

    res = await client.post(f"/api/progress/material/{a.id}/toggle", json={"completed": True}, headers=auth(student))
    assert res.status_code == 200
    assert res.json()["progress"]["is_completed"] is True

    res = await client.get(f"/api/materials/course/{course.id}", headers=auth(student))
    assert [m["is_unlocked"] for m in res.json()] == [True, True]

    res = await client.get(f"/api/progress/course/{course.id}", headers=auth(student))
    assert res.json()["overview"]["percentage"] == 50

    res = await client.get(f"/api/materials/course/{course.id}", headers=auth(mentor))
    assert all(m["is_unlocked"] for m in res.json())


async def test_permission_is_distinct_from_not_found(client, factory, auth, course_setup):
    _, _, course, a, _ = course_setup
    outsider = await factory.user()

    res = await client.get(f"/api/progress/material/{a.id}", headers=auth(outsider))
    assert res.status_code == 403
    res = await client.get("/api/progress/material/9999", headers=auth(outsider))
    assert res.status_code == 404
    res = await client.get(f"/api/progress/course/{course.id}", headers=auth(outsider))
    assert res.status_code == 403


async def test_rating_out_of_range(client, auth, course_setup):
    _, student, _, a, _ = course_setup
    res = await client.post(f"/api/progress/material/{a.id}/rate", json={"rating": 6}, headers=auth(student))
    assert res.status_code == 400
    assert "between 1 and 5" in res.json()["detail"]

    res = await client.post(f"/api/progress/material/{a.id}/rate", json={"rating": 4}, headers=auth(student))
    assert res.json()["progress"]["rating"] == 4


async def create_assignment(client, auth, mentor, course, max_attempts=1):
    res = await client.post("/api/assignments/", data={
        "course_id": str(course.id),
        "title": "Essay",
        "description": "Write about loops",
        "max_attempts": str(max_attempts),
        "is_published": "true",
    }, headers=auth(mentor))
    assert res.status_code == 201
    return res.json()


async def test_assignment_revision_and_grading(client, auth, course_setup):
    mentor, student, course, _, _ = course_setup
    assignment = await create_assignment(client, auth, mentor, course)
    url = f"/api/assignments/{assignment['id']}/submit"

    res = await client.post(url, data={"textContent": "answer 1"}, headers=auth(student))
    assert res.status_code == 201
    first = res.json()["submission"]
    assert first["status"] == "submitted"
    assert first["attempt_number"] == 1

    res = await client.post(url, data={"textContent": "answer 2"}, headers=auth(student))
    second = res.json()["submission"]
    assert second["id"] == first["id"]
    assert second["text_content"] == "answer 2"
    assert [r["content"]["text_content"] for r in second["revisions"]] == ["answer 1"]

    grade_url = f"/api/assignments/submissions/{second['id']}/grade"
    res = await client.post(grade_url, json={"score": 120}, headers=auth(mentor))
    assert res.status_code == 400

    res = await client.post(grade_url, json={"score": 85, "feedback": "Nice", "private_notes": "ok"}, headers=auth(mentor))
    grading = res.json()["submission"]["grading"]
    assert res.json()["submission"]["status"] == "graded"
    assert (grading["letter_grade"], grading["passed"]) == ("B", True)

    res = await client.post(grade_url, json={"score": 90}, headers=auth(student))
    assert res.status_code == 403

    res = await client.post(
        f"/api/assignments/submissions/{second['id']}/return", json={"feedback": "redo"}, headers=auth(mentor)
    )
    assert res.status_code == 409
    assert res.json()["status"] == "graded"

    res = await client.get(f"/api/assignments/submissions/{second['id']}", headers=auth(student))
    assert res.json()["submission"]["grading"]["private_notes"] is None
    res = await client.get(f"/api/assignments/submissions/{second['id']}", headers=auth(mentor))
    assert res.json()["submission"]["grading"]["private_notes"] == "ok"


async def test_file_submission_and_blocked_delete(client, auth, storage, course_setup):
    mentor, student, course, _, _ = course_setup
    assignment = await create_assignment(client, auth, mentor, course)

    res = await client.post(
        f"/api/assignments/{assignment['id']}/submit",
        files=[("files", ("report.pdf", b"%PDF-1.4", "application/pdf"))],
        headers=auth(student),
    )
    assert res.status_code == 201
    submission = res.json()["submission"]
    assert submission["submission_type"] == "file"
    assert submission["files"][0]["name"] == "report.pdf"
    assert len(storage.files) == 1

    res = await client.get(f"/api/assignments/course/{course.id}/submissions", headers=auth(mentor))
    assert res.json()["count"] == 1

    res = await client.delete(f"/api/assignments/{assignment['id']}", headers=auth(mentor))
    assert res.status_code == 409
    assert res.json()["blocking_submissions"] == 1


async def test_storage_failure_is_retryable(client, auth, storage, course_setup):
    mentor, student, course, _, _ = course_setup
    assignment = await create_assignment(client, auth, mentor, course)
    storage.fail = True

    res = await client.post(
        f"/api/assignments/{assignment['id']}/submit",
        files=[("files", ("report.pdf", b"%PDF-1.4", "application/pdf"))],
        headers=auth(student),
    )
    assert res.status_code == 502
    assert res.json()["retryable"] is True


async def test_certificate_flow(client, auth, course_setup):
    _, student, course, a, b = course_setup

    res = await client.post(f"/api/certificates/generate/{course.id}", headers=auth(student))
    assert res.status_code == 409

    for material in (a, b):
        await client.post(f"/api/progress/material/{material.id}/toggle", json={"completed": True}, headers=auth(student))

    res = await client.get(f"/api/certificates/eligibility/{course.id}", headers=auth(student))
    assert res.json()["reason"] == "eligible"

    res = await client.post(f"/api/certificates/generate/{course.id}", headers=auth(student))
    assert res.status_code == 201
    certificate = res.json()["certificate"]
    assert certificate["completion_percentage"] == 100

    res = await client.post(f"/api/certificates/generate/{course.id}", headers=auth(student))
    assert res.status_code == 200
    assert res.json()["certificate"]["id"] == certificate["id"]

    res = await client.get(f"/api/certificates/eligibility/{course.id}", headers=auth(student))
    assert res.json()["reason"] == "already_claimed"

    res = await client.get(f"/api/certificates/public/{certificate['certificate_id']}")
    assert res.json()["view_count"] == 1

    res = await client.get(f"/api/certificates/verify/{certificate['certificate_number']}")
    assert res.json()["valid"] is True
    assert res.json()["certificate"]["user_name"] == "Student"


async def test_eligibility_for_outsider(client, factory, auth, course_setup):
    _, _, course, _, _ = course_setup
    outsider = await factory.user()
    res = await client.get(f"/api/certificates/eligibility/{course.id}", headers=auth(outsider))
    assert res.status_code == 403
    assert res.json()["reason"] == "not_enrolled"
