from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest
from sqlalchemy import func
from sqlalchemy.future import select

from ajarin.errors import ValidationError
from ajarin.progress_service import engine
from ajarin.progress_service.models import MaterialProgress


def test_mark_completed_keeps_first_timestamp():
    progress = MaterialProgress(is_completed=False, marked_completed_at=None)
    first = datetime(2024, 1, 1, 10, 0)
    engine.mark_completed(progress, now=first)
    engine.mark_completed(progress, now=first + timedelta(hours=3))
    assert progress.is_completed
    assert progress.marked_completed_at == first


def test_mark_incomplete_clears_timestamp():
    progress = MaterialProgress(is_completed=True, marked_completed_at=datetime(2024, 1, 1))
    engine.mark_incomplete(progress)
    assert not progress.is_completed
    assert progress.marked_completed_at is None


@pytest.mark.parametrize("completed, total, percentage", [
    (0, 3, 0),
    (1, 3, 33),
    (2, 3, 67),
    (1, 2, 50),
    (1, 8, 13),
    (3, 3, 100),
])
def test_completion_rounds_half_up(completed, total, percentage):
    completion = engine.completion_from_counts(completed, total)
    assert completion.percentage == percentage
    assert completion.is_complete == (percentage == 100)


def test_course_without_materials_is_never_complete():
    completion = engine.completion_from_counts(0, 0)
    assert completion.no_materials
    assert completion.percentage == 0
    assert not completion.is_complete


def test_sequential_unlock():
    materials = [SimpleNamespace(id=10, order=2), SimpleNamespace(id=5, order=1), SimpleNamespace(id=7, order=3)]
    ordered = engine.order_materials(materials)
    assert [m.id for m in ordered] == [5, 10, 7]

    progress = {5: SimpleNamespace(is_completed=True), 10: SimpleNamespace(is_completed=False)}
    assert engine.is_unlocked(ordered[0], ordered, {})
    assert engine.is_unlocked(ordered[1], ordered, progress)
    assert not engine.is_unlocked(ordered[2], ordered, progress)
    assert not engine.is_unlocked(SimpleNamespace(id=99, order=1), ordered, progress)


async def test_get_or_create_is_idempotent(db, factory):
    mentor = await factory.mentor()
    student = await factory.user()
    course = await factory.course(mentor)
    material = await factory.material(course, 1)

    first = await engine.get_or_create(db, student.id, material.id, course.id)
    second = await engine.get_or_create(db, student.id, material.id, course.id)
    assert first.id == second.id
    assert not first.is_completed


async def test_get_or_create_recovers_from_lost_race(db, factory, monkeypatch):
    mentor = await factory.mentor()
    student = await factory.user()
    course = await factory.course(mentor)
    material = await factory.material(course, 1)
    winner = await engine.get_or_create(db, student.id, material.id, course.id)
    winner_id = winner.id
    student_id, material_id, course_id = student.id, material.id, course.id

    real_find = engine.find_progress
    calls = []

    async def find_missing_once(db, user_id, material_id):
        calls.append(material_id)
        if len(calls) == 1:
            return None
        return await real_find(db, user_id, material_id)

    monkeypatch.setattr(engine, "find_progress", find_missing_once)
    progress = await engine.get_or_create(db, student_id, material_id, course_id)

    assert progress.id == winner_id
    result = await db.execute(select(func.count(MaterialProgress.id)))
    assert result.scalar() == 1


async def test_set_completion_and_rating_survive_lost_race(db, factory, monkeypatch):
    mentor = await factory.mentor()
    student = await factory.user()
    course = await factory.course(mentor)
    material = await factory.material(course, 1)
    other = await factory.material(course, 2)
    student_id = student.id
    await engine.get_or_create(db, student_id, material.id, course.id)
    await engine.get_or_create(db, student_id, other.id, course.id)

    real_find = engine.find_progress
    missing = set()

    async def find_missing_once(db, user_id, material_id):
        if material_id not in missing:
            missing.add(material_id)
            return None
        return await real_find(db, user_id, material_id)

    monkeypatch.setattr(engine, "find_progress", find_missing_once)
    progress = await engine.set_completion(db, student_id, material, True)
    assert progress.is_completed
    assert progress.marked_completed_at is not None

    # The rollback expired every loaded row; a request would load its own
    await db.refresh(other)
    rated = await engine.rate_material(db, student_id, other, 5, "clear")
    assert rated.rating == 5

    result = await db.execute(select(func.count(MaterialProgress.id)))
    assert result.scalar() == 2


async def test_set_completion_toggles(db, factory):
    mentor = await factory.mentor()
    student = await factory.user()
    course = await factory.course(mentor)
    material = await factory.material(course, 1)

    progress = await engine.set_completion(db, student.id, material, True)
    completed_at = progress.marked_completed_at
    assert progress.is_completed and completed_at is not None

    progress = await engine.set_completion(db, student.id, material, True)
    assert progress.marked_completed_at == completed_at

    progress = await engine.set_completion(db, student.id, material, False)
    assert not progress.is_completed
    assert progress.marked_completed_at is None


async def test_invalid_rating_creates_nothing(db, factory):
    mentor = await factory.mentor()
    student = await factory.user()
    course = await factory.course(mentor)
    material = await factory.material(course, 1)

    for rating in (0, 6, True):
        with pytest.raises(ValidationError):
            await engine.rate_material(db, student.id, material, rating)
    assert await engine.find_progress(db, student.id, material.id) is None

    progress = await engine.rate_material(db, student.id, material, 5, "  very clear  ")
    assert progress.rating == 5
    assert progress.feedback == "very clear"


async def test_completion_follows_the_live_catalog(db, factory):
    mentor = await factory.mentor()
    student = await factory.user()
    course = await factory.course(mentor)
    a = await factory.material(course, 1)
    b = await factory.material(course, 2)
    c = await factory.material(course, 3)

    await engine.set_completion(db, student.id, a, True)
    completion = await engine.compute_course_completion(db, student.id, course.id)
    assert (completion.completed_count, completion.total_count, completion.percentage) == (1, 3, 33)

    await engine.set_completion(db, student.id, c, True)
    await db.delete(c)
    await db.commit()
    completion = await engine.compute_course_completion(db, student.id, course.id)
    assert (completion.completed_count, completion.total_count, completion.percentage) == (1, 2, 50)

    await engine.set_completion(db, student.id, b, True)
    completion = await engine.compute_course_completion(db, student.id, course.id)
    assert completion.is_complete


async def test_materials_with_access_unlocks_in_order(db, factory):
    mentor = await factory.mentor()
    student = await factory.user()
    course = await factory.course(mentor)
    a = await factory.material(course, 1)
    await factory.material(course, 2)
    await factory.material(course, 3)

    items = await engine.materials_with_access(db, student.id, course.id)
    assert [i["is_unlocked"] for i in items] == [True, False, False]

    await engine.set_completion(db, student.id, a, True)
    items = await engine.materials_with_access(db, student.id, course.id)
    assert [i["is_unlocked"] for i in items] == [True, True, False]

    items = await engine.materials_with_access(db, mentor.id, course.id, unlock_all=True)
    assert all(i["is_unlocked"] for i in items)


async def test_course_progress_overview(db, factory):
    mentor = await factory.mentor()
    student = await factory.user()
    course = await factory.course(mentor)
    a = await factory.material(course, 1)
    await factory.material(course, 2)
    await engine.set_completion(db, student.id, a, True)

    progress = await engine.course_progress(db, student.id, course.id)
    assert progress["overview"] == {
        "course_id": course.id,
        "total": 2,
        "completed": 1,
        "percentage": 50,
        "no_materials": False,
    }
    assert [p.material_id for p in progress["material_progress"]] == [a.id]


async def test_leaderboard_orders_by_completion(db, factory):
    mentor = await factory.mentor()
    alice = await factory.user(name="Alice")
    bob = await factory.user(name="Bob")
    course = await factory.course(mentor)
    a = await factory.material(course, 1)
    b = await factory.material(course, 2)

    await engine.set_completion(db, alice.id, a, True)
    await engine.set_completion(db, bob.id, a, True)
    await engine.set_completion(db, bob.id, b, True)

    board = await engine.course_leaderboard(db, course.id)
    assert [e["user_name"] for e in board] == ["Bob", "Alice"]
    assert board[0]["completion_percentage"] == 100
    assert board[1]["completion_percentage"] == 50

    assert len(await engine.course_leaderboard(db, course.id, limit=1)) == 1


async def test_user_stats(db, factory):
    mentor = await factory.mentor()
    student = await factory.user()
    course = await factory.course(mentor, title="Data")
    a = await factory.material(course, 1, title="Intro")
    b = await factory.material(course, 2)

    await engine.set_completion(db, student.id, a, True)
    await engine.rate_material(db, student.id, b, 4)

    stats = await engine.user_stats(db, student.id)
    assert stats["stats"]["total_materials"] == 2
    assert stats["stats"]["completed_materials"] == 1
    assert stats["stats"]["courses_count"] == 1
    assert stats["stats"]["average_rating_given"] == 4
    assert stats["recent_completions"][0]["material_title"] == "Intro"
    assert stats["recent_completions"][0]["course_title"] == "Data"
