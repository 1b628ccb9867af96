"""FastAPI mock of the Hevy API for local runs and tests."""

import os
import random
import time
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse


DEFAULT_API_KEY = "00000000-0000-4000-8000-000000000000"

MUSCLE_GROUPS = ["chest", "back", "shoulders", "biceps", "triceps", "quadriceps", "hamstrings", "glutes"]

# Largest page_size the real API accepts per collection
MAX_PAGE_SIZE = {
    "exercise_templates": 100,
    "routine_folders": 10,
    "routines": 10,
    "workouts": 10,
    "events": 10,
}


def _exercise(n: int, rng: random.Random) -> Dict[str, Any]:
    return {
        "id": f"{n:08X}",
        "title": f"Exercise {n}",
        "type": rng.choice(["weight_reps", "reps_only", "duration"]),
        "primary_muscle_group": rng.choice(MUSCLE_GROUPS),
        "secondary_muscle_groups": [],
        "is_custom": False,
    }


def _folder(n: int) -> Dict[str, Any]:
    return {"id": n, "index": n - 1, "title": f"Folder {n}"}


def _routine(n: int, folders: int) -> Dict[str, Any]:
    return {
        "id": f"routine-{n}",
        "title": f"Routine {n}",
        "folder_id": (n % folders) + 1 if folders else None,
        "exercises": [],
    }


def _workout(n: int, rng: random.Random) -> Dict[str, Any]:
    start = 1_700_000_000 + n * 86_400
    stamp = time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(start))
    return {
        "id": f"workout-{n}",
        "title": f"Workout {n}",
        "start_time": stamp,
        "end_time": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(start + 3600)),
        "updated_at": stamp,
        "exercises": [
            {"index": 0, "title": f"Exercise {rng.randint(1, 50)}", "sets": []}
        ],
    }


def _page(
    key: str,
    items: List[Dict[str, Any]],
    page: int,
    page_size: int,
    include_page_count: bool
) -> Dict[str, Any]:
    if page < 1:
        raise HTTPException(status_code=400, detail="Invalid page number")
    if page_size < 1 or page_size > MAX_PAGE_SIZE[key]:
        raise HTTPException(status_code=400, detail=f"page_size must be between 1 and {MAX_PAGE_SIZE[key]}")

    page_count = max(1, -(-len(items) // page_size))
    if page > page_count:
        raise HTTPException(status_code=404, detail="Page not found")

    start = (page - 1) * page_size
    body: Dict[str, Any] = {"page": page, key: items[start:start + page_size]}
    if include_page_count:
        body["page_count"] = page_count
    return body


def create_mock_app(
    name: str = "hevy-mock",
    api_key: str = DEFAULT_API_KEY,
    exercises: int = 120,
    routine_folders: int = 3,
    routines: int = 12,
    workouts: int = 25,
    events: Optional[List[Dict[str, Any]]] = None,
    random_seed: Optional[int] = None,
    error_rate: float = 0.0,
    extra_latency_ms: int = 0,
    rate_limit: int = 1000,
    include_page_count: bool = True
) -> FastAPI:
    """
    Create a FastAPI mock of the Hevy API.

    Args:
        name: Server name reported by /health
        api_key: The only api-key header value accepted; others get 401
        exercises: Number of exercise templates served
        routine_folders: Number of routine folders served
        routines: Number of routines served
        workouts: Number of workouts served
        events: Workout event log served by /workouts/events
        random_seed: Seed for deterministic data and error injection
        error_rate: Probability of returning 5xx errors (0.0-1.0)
        extra_latency_ms: Additional latency in milliseconds
        rate_limit: Requests allowed before 429; advertised in X-RateLimit headers
        include_page_count: Whether page responses carry page_count

    Returns:
        FastAPI application
    """
    app = FastAPI(title=f"Mock Hevy API - {name}")
    rng = random.Random(random_seed)

    app.state.data = {
        "exercise_templates": [_exercise(n, rng) for n in range(1, exercises + 1)],
        "routine_folders": [_folder(n) for n in range(1, routine_folders + 1)],
        "routines": [_routine(n, routine_folders) for n in range(1, routines + 1)],
        "workouts": [_workout(n, rng) for n in range(1, workouts + 1)],
    }
    app.state.events = list(events or [])
    app.state.request_count = 0
    app.state.rate_limit = rate_limit

    @app.middleware("http")
    async def api_guard(request: Request, call_next):
        """Authenticate, inject errors and advertise the rate-limit budget."""
        if request.url.path == "/health":
            return await call_next(request)

        if extra_latency_ms > 0:
            time.sleep(extra_latency_ms / 1000.0)

        app.state.request_count += 1
        remaining = max(0, app.state.rate_limit - app.state.request_count)
        headers = {
            "X-RateLimit-Limit": str(app.state.rate_limit),
            "X-RateLimit-Remaining": str(remaining),
            "X-RateLimit-Reset": "60",
        }

        if request.headers.get("api-key") != api_key:
            return JSONResponse({"error": "Unauthorized"}, status_code=401, headers=headers)

        if app.state.request_count > app.state.rate_limit:
            return JSONResponse({"error": "Too many requests"}, status_code=429, headers=headers)

        if rng.random() < error_rate:
            status = rng.choice([500, 502, 503])
            return JSONResponse({"error": "Simulated error"}, status_code=status, headers=headers)

        response = await call_next(request)
        response.headers.update(headers)
        return response

    @app.get("/v1/exercise_templates")
    async def get_exercise_templates(page: int = 1, page_size: int = 5):
        return _page("exercise_templates", app.state.data["exercise_templates"], page, page_size, include_page_count)

    @app.get("/v1/routine_folders")
    async def get_routine_folders(page: int = 1, page_size: int = 5):
        return _page("routine_folders", app.state.data["routine_folders"], page, page_size, include_page_count)

    @app.get("/v1/routines")
    async def get_routines(page: int = 1, page_size: int = 5):
        return _page("routines", app.state.data["routines"], page, page_size, include_page_count)

    @app.get("/v1/workouts")
    async def get_workouts(page: int = 1, page_size: int = 5):
        return _page("workouts", app.state.data["workouts"], page, page_size, include_page_count)

    @app.get("/v1/workouts/count")
    async def get_workout_count():
        return {"workout_count": len(app.state.data["workouts"])}

    @app.get("/v1/workouts/events")
    async def get_workout_events(
        page: int = 1,
        page_size: int = 5,
        since: str = Query(default="1970-01-01T00:00:00Z")
    ):
        return _page("events", app.state.events, page, page_size, include_page_count)

    @app.get("/v1/workouts/{workout_id}")
    async def get_workout(workout_id: str):
        for workout in app.state.data["workouts"]:
            if workout["id"] == workout_id:
                return workout
        raise HTTPException(status_code=404, detail="Workout not found")

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        return {"status": "healthy", "server": name}

    return app


def create_app() -> FastAPI:
    """
    Factory function for uvicorn --factory.

    Reads its settings from environment variables so the server can be
    tuned without code changes.
    """
    return create_mock_app(
        name=os.getenv("SERVER_NAME", "hevy-mock"),
        api_key=os.getenv("MOCK_API_KEY", DEFAULT_API_KEY),
        workouts=int(os.getenv("WORKOUTS", 25)),
        random_seed=int(os.getenv("RANDOM_SEED", 42)),
        error_rate=float(os.getenv("ERROR_RATE", 0.0)),
        extra_latency_ms=int(os.getenv("EXTRA_LATENCY_MS", 0)),
        rate_limit=int(os.getenv("RATE_LIMIT", 1000)),
    )
