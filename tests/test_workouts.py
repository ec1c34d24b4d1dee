import asyncio

import pytest
from sqlalchemy.exc import IntegrityError
from sqlmodel import select

from nyx.db import get_session
from nyx.models import Workout
from nyx.schemas import AuthUser
from nyx.services.workouts import start_workout

WORKOUT = {
    "date": "2026-03-02T18:00:00.000Z",
    "duration": 3600,
    "exercises": [
        {
            "name": "Bench Press",
            "category": "Chest",
            "sets": [{"weight": 80, "reps": 5}, {"weight": 85, "reps": 3}],
        }
    ],
    "notes": "felt strong",
}


def _create(client, headers, **overrides):
    r = client.post("/api/workouts", json={**WORKOUT, **overrides}, headers=headers)
    assert r.status_code == 200, r.text
    return r.json()


def test_create_then_get_round_trip(client, alice):
    created = _create(client, alice)
    assert created["id"]
    assert created["userId"]
    assert created["exercises"][0]["id"]
    assert [s["reps"] for s in created["exercises"][0]["sets"]] == [5, 3]

    fetched = client.get(f"/api/workouts/{created['id']}").json()
    assert fetched == created


def test_get_missing_returns_null(client):
    r = client.get("/api/workouts/does-not-exist")
    assert r.status_code == 200
    assert r.json() is None


def test_list_is_scoped_to_caller(client, alice, bob):
    _create(client, alice)
    _create(client, alice, date="2026-03-04T18:00:00.000Z")
    _create(client, bob)

    assert len(client.get("/api/workouts", headers=alice).json()) == 2
    assert len(client.get("/api/workouts", headers=bob).json()) == 1
    assert client.get("/api/workouts").json() == []


def test_create_requires_auth(client):
    r = client.post("/api/workouts", json=WORKOUT)
    assert r.status_code == 401
    assert r.json() == {"detail": "Unauthenticated"}


def test_create_rejects_bad_payload(client, alice):
    r = client.post("/api/workouts", json={**WORKOUT, "date": "yesterday"}, headers=alice)
    assert r.status_code == 422
    r = client.post("/api/workouts", json={**WORKOUT, "duration": -1}, headers=alice)
    assert r.status_code == 422


def test_other_user_cannot_update_or_delete(client, alice, bob):
    workout = _create(client, alice)

    r = client.patch(f"/api/workouts/{workout['id']}", json={"notes": "mine now"}, headers=bob)
    assert r.status_code == 403
    r = client.delete(f"/api/workouts/{workout['id']}", headers=bob)
    assert r.status_code == 403
    assert client.get(f"/api/workouts/{workout['id']}").json()["notes"] == "felt strong"

    r = client.patch(f"/api/workouts/{workout['id']}", json={"notes": "updated"}, headers=alice)
    assert r.status_code == 200
    assert r.json()["notes"] == "updated"
    assert r.json()["duration"] == 3600

    r = client.delete(f"/api/workouts/{workout['id']}", headers=alice)
    assert r.json() == {"id": workout["id"]}
    assert client.get(f"/api/workouts/{workout['id']}").json() is None


def test_update_missing_is_not_found(client, alice):
    r = client.patch("/api/workouts/nope", json={"notes": "x"}, headers=alice)
    assert r.status_code == 404
    assert r.json()["detail"] == "Workout not found"


def test_recent_orders_by_date_desc(client, alice):
    for day in ("01", "05", "03"):
        _create(client, alice, date=f"2026-03-{day}T10:00:00.000Z")
    recent = client.get("/api/workouts/recent", params={"limit": 2}, headers=alice).json()
    assert [w["date"][:10] for w in recent] == ["2026-03-05", "2026-03-03"]


def test_start_workout_is_idempotent(client, alice):
    assert client.get("/api/workouts/active", headers=alice).json() is None

    first = client.post("/api/workouts/start", headers=alice).json()
    assert first["isActive"] is True
    assert first["exercises"] == []
    second = client.post("/api/workouts/start", headers=alice).json()
    assert second["id"] == first["id"]
    assert client.get("/api/workouts/active", headers=alice).json()["id"] == first["id"]


def test_second_active_workout_conflicts(client, alice):
    active = client.post("/api/workouts/start", headers=alice).json()

    r = client.post("/api/workouts", json={**WORKOUT, "isActive": True}, headers=alice)
    assert r.status_code == 409

    other = _create(client, alice)
    r = client.patch(f"/api/workouts/{other['id']}", json={"isActive": True}, headers=alice)
    assert r.status_code == 409

    r = client.patch(f"/api/workouts/{active['id']}", json={"isActive": True}, headers=alice)
    assert r.status_code == 200


def test_end_workout(client, alice):
    active = client.post("/api/workouts/start", headers=alice).json()
    ended = client.post(f"/api/workouts/{active['id']}/end", headers=alice).json()
    assert ended["isActive"] is False
    assert ended["endTime"]
    assert ended["duration"] >= 0
    assert client.get("/api/workouts/active", headers=alice).json() is None


def test_exercises_and_sets(client, alice, bob):
    workout = client.post("/api/workouts/start", headers=alice).json()
    wid = workout["id"]

    workout = client.post(f"/api/workouts/{wid}/exercises", json={"name": " Squat ", "category": "Legs"}, headers=alice).json()
    exercise = workout["exercises"][0]
    assert exercise["name"] == "Squat"
    assert exercise["sets"] == []

    r = client.post(f"/api/workouts/{wid}/exercises", json={"name": "Curl"}, headers=bob)
    assert r.status_code == 403

    url = f"/api/workouts/{wid}/exercises/{exercise['id']}/sets"
    client.post(url, json={"weight": 100, "reps": 5}, headers=alice)
    workout = client.post(url, json={"weight": 110, "reps": 3}, headers=alice).json()
    sets = workout["exercises"][0]["sets"]
    assert [(s["weight"], s["reps"]) for s in sets] == [(100, 5), (110, 3)]

    workout = client.delete(f"{url}/{sets[0]['id']}", headers=alice).json()
    assert [s["id"] for s in workout["exercises"][0]["sets"]] == [sets[1]["id"]]

    r = client.delete(f"{url}/{sets[0]['id']}", headers=alice)
    assert r.status_code == 404
    assert r.json()["detail"] == "Set not found"

    r = client.post(f"/api/workouts/{wid}/exercises/missing/sets", json={"weight": 1, "reps": 1}, headers=alice)
    assert r.status_code == 404
    assert r.json()["detail"] == "Exercise not found"

    workout = client.delete(f"/api/workouts/{wid}/exercises/{exercise['id']}", headers=alice).json()
    assert workout["exercises"] == []


def _identity(client, headers) -> AuthUser:
    return AuthUser(**client.get("/api/auth/session", headers=headers).json()["user"])


def test_concurrent_starts_share_one_workout(client, alice):
    identity = _identity(client, alice)

    async def start_once():
        async with get_session() as session:
            return await start_workout(session, identity)

    async def race():
        return await asyncio.gather(start_once(), start_once())

    first, second = client.portal.call(race)
    assert first.id == second.id

    active = [w for w in client.get("/api/workouts", headers=alice).json() if w["isActive"]]
    assert len(active) == 1


def test_database_rejects_second_active_workout(client, alice):
    identity = _identity(client, alice)

    async def insert_two():
        async with get_session() as session:
            session.add(Workout(user_id=identity.id, date="2026-03-01T10:00:00Z", is_active=True, exercises=[]))
            await session.commit()
            session.add(Workout(user_id=identity.id, date="2026-03-02T10:00:00Z", is_active=True, exercises=[]))
            with pytest.raises(IntegrityError):
                await session.commit()
            await session.rollback()
            session.add(Workout(user_id=identity.id, date="2026-03-03T10:00:00Z", is_active=False, exercises=[]))
            await session.commit()
            result = await session.exec(select(Workout).where(Workout.user_id == identity.id))
            return result.all()

    rows = client.portal.call(insert_two)
    assert sorted(bool(w.is_active) for w in rows) == [False, True]
