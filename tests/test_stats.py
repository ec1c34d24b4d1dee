from datetime import date

from nyx.models import Workout
from nyx.services.stats import summarize, top_exercises, week_streaks, weekly_attendance, workout_split


def _workout(day: str, exercises=None, duration: int = 1800, wid: str = None) -> Workout:
    return Workout(
        id=wid or f"w-{day}",
        user_id="u1",
        date=f"{day}T18:00:00.000Z",
        duration=duration,
        exercises=exercises or [],
    )


BENCH = {"id": "e1", "name": "Bench Press", "category": "Chest", "sets": [
    {"id": "s1", "weight": 80, "reps": 5},
    {"id": "s2", "weight": 80, "reps": 5},
]}
SQUAT = {"id": "e2", "name": "Squat", "category": "Legs", "sets": [{"id": "s3", "weight": 100, "reps": 3}]}


def test_weekly_attendance_starts_on_sunday():
    # 2026-03-04 is a Wednesday
    today = date(2026, 3, 4)
    days = weekly_attendance([_workout("2026-03-02"), _workout("2026-02-27")], today)
    assert [d["date"] for d in days] == [f"2026-03-0{i}" for i in range(1, 8)]
    assert [d["hasWorkout"] for d in days] == [False, True, False, False, False, False, False]
    assert [d["isToday"] for d in days].index(True) == 3


def test_weekly_attendance_on_sunday():
    today = date(2026, 3, 1)
    days = weekly_attendance([], today)
    assert days[0]["date"] == "2026-03-01"
    assert days[0]["isToday"] is True


def test_week_streaks():
    today = date(2026, 3, 4)
    workouts = [
        _workout("2026-03-03"),
        _workout("2026-02-24"),
        _workout("2026-02-17"),
        # gap, then an older run of two
        _workout("2026-01-20"),
        _workout("2026-01-13"),
    ]
    assert week_streaks(workouts, today) == (3, 3)
    assert week_streaks(workouts, date(2026, 4, 1)) == (0, 3)
    assert week_streaks([], today) == (0, 0)


def test_summarize():
    workouts = [
        _workout("2026-03-03", [BENCH, SQUAT], duration=3600),
        _workout("2026-03-02", [dict(BENCH, name="bench press ")], duration=600),
    ]
    summary = summarize(workouts, date(2026, 3, 4))
    assert summary["totalWorkouts"] == 2
    assert summary["totalExercises"] == 2
    assert summary["totalSets"] == 5
    assert summary["totalVolume"] == 80 * 5 * 4 + 300
    assert summary["totalDuration"] == 4200
    assert summary["weeksCurrent"] == 1


def test_top_exercises_counts_once_per_workout():
    workouts = [
        _workout("2026-03-03", [BENCH, BENCH, SQUAT]),
        _workout("2026-03-02", [BENCH]),
    ]
    assert top_exercises(workouts) == [
        {"name": "Bench Press", "count": 2},
        {"name": "Squat", "count": 1},
    ]
    assert top_exercises(workouts, limit=1) == [{"name": "Bench Press", "count": 2}]


def test_workout_split():
    workouts = [
        _workout("2026-03-03", [BENCH, SQUAT]),
        _workout("2026-03-02", [BENCH, {"id": "e3", "name": "Plank", "sets": []}]),
    ]
    splits = {s["name"]: s for s in workout_split(workouts)}
    assert splits["Chest"] == {"name": "Chest", "workoutCount": 2, "exerciseCount": 2, "totalVolume": 1600.0}
    assert splits["Legs"]["workoutCount"] == 1
    assert splits["Other"]["exerciseCount"] == 1


def test_stats_routes(client, alice):
    client.post("/api/workouts", json={"date": "2026-03-03T18:00:00.000Z", "duration": 60, "exercises": [BENCH]}, headers=alice)

    summary = client.get("/api/stats/summary", headers=alice).json()
    assert summary["totalWorkouts"] == 1
    assert summary["totalSets"] == 2

    assert client.get("/api/stats/top-exercises", headers=alice).json() == {
        "exercises": [{"name": "Bench Press", "count": 1}]
    }
    assert len(client.get("/api/stats/weekly-attendance", headers=alice).json()["days"]) == 7
    assert client.get("/api/stats/workout-split").json() == {"splits": []}
