"""
FastAPI service for the school timetable assignment engine.

Designed for deployment on Google Cloud Run.
"""

import asyncio
import os
import time
import json
import logging
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool
from typing import Optional

from conflicts import (
    check_conflict, check_consecutive_lessons_rule, find_conflicts, get_conflict_details, weekly_hours_for,
)
from curriculum import expand_requirements, summarize_requirements
from editing import BLOCKED, AssignmentNotFoundError, add_assignment, apply_result, move_assignment
from models import assignment_from_dict, class_from_dict
from school_calendar import calendar_from_dict
from solver import DEFAULT_MAX_STEPS, PARTIAL, generate_timetable

# Configure logging
DEBUG_SOLVER = os.environ.get("DEBUG_SOLVER", "").lower() in ("1", "true", "yes")
logging.basicConfig(
    level=logging.DEBUG if DEBUG_SOLVER else logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

if DEBUG_SOLVER:
    logger.info("DEBUG_SOLVER is enabled - verbose logging active")

# Solver budgets, overridable per request
SOLVER_MAX_STEPS = int(os.environ.get("SOLVER_MAX_STEPS", DEFAULT_MAX_STEPS))
SOLVER_MAX_TIME_SECONDS = float(os.environ.get("SOLVER_MAX_TIME_SECONDS", 20.0))

app = FastAPI(
    title="School Timetable API",
    description="Backtracking timetable assignment engine for the school timetable editor",
    version="1.0.0"
)

# CORS configuration - allow the editor frontend
ALLOWED_ORIGINS = [
    "http://localhost:3000",
    "http://localhost:5173",
]

# Also allow origin from environment variable
if os.environ.get("FRONTEND_URL"):
    ALLOWED_ORIGINS.append(os.environ["FRONTEND_URL"])

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class TimeRange(BaseModel):
    start: str = ""
    end: str = ""


class Calendar(BaseModel):
    daysInWeek: int = 5
    lessonTimes: list[TimeRange] = []  # Same times every day
    daySlots: Optional[list[list[TimeRange]]] = None  # Per-day times, wins over lessonTimes


class Teacher(BaseModel):
    id: str
    name: str
    code: str = ""
    lessons: list[str] = []
    availability: dict[str, dict[str, str]] = {}  # day -> hour -> available/preferred/unavailable


class CurriculumItem(BaseModel):
    id: Optional[str] = None
    lessonName: str
    teacherId: str
    weeklyHours: int = 1


class ClassSection(BaseModel):
    id: str
    name: str
    level: str = ""
    availability: dict[str, dict[str, str]] = {}
    curriculum: list[CurriculumItem] = []
    activeHourRange: Optional[tuple[int, int]] = None  # [start, end], used when availability has no unavailable marks


class Room(BaseModel):
    id: str
    name: str
    capacity: int = 0
    availability: dict[str, dict[str, str]] = {}


class Assignment(BaseModel):
    id: Optional[str] = None
    lessonName: str
    teacherId: str
    classId: str
    day: int
    hour: int
    roomId: Optional[str] = None


class SolveRequest(BaseModel):
    calendar: Calendar
    teachers: list[Teacher]
    classes: list[ClassSection]
    rooms: list[Room] = []
    assignments: list[Assignment] = []
    clearExisting: bool = True
    numAttempts: int = 1
    seed: Optional[int] = None
    maxSteps: Optional[int] = None
    maxTimeSeconds: Optional[float] = None


class SolveResponse(BaseModel):
    status: str
    assigned: list
    unassigned: list
    message: str
    steps: int
    seed: Optional[int] = None
    elapsedSeconds: float
    diagnostics: Optional[dict] = None


class CheckRequest(BaseModel):
    assignment: Assignment
    assignments: list[Assignment] = []
    classes: list[ClassSection] = []
    calendar: Optional[Calendar] = None
    names: dict[str, str] = {}  # id -> display name, for messages


class AddRequest(CheckRequest):
    override: bool = False


class MoveRequest(BaseModel):
    assignmentId: str
    targetClassId: str
    targetDay: int
    targetHour: int
    assignments: list[Assignment]
    classes: list[ClassSection] = []
    calendar: Optional[Calendar] = None
    names: dict[str, str] = {}
    override: bool = False


class ApplyRequest(BaseModel):
    assignments: list[Assignment] = []
    assigned: list[Assignment]
    clearExisting: bool = True


class SummaryRequest(BaseModel):
    classes: list[ClassSection]


class ValidateRequest(BaseModel):
    assignments: list[Assignment]


def _calendar(model: Optional[Calendar]):
    return calendar_from_dict(model.model_dump()) if model else None


@app.get("/")
async def root():
    return {"message": "School Timetable API", "version": "1.0.0"}


@app.get("/health")
async def health_check():
    """Health check endpoint for Cloud Run."""
    return {"status": "healthy", "timestamp": time.time()}


@app.post("/solve", response_model=SolveResponse)
async def solve_timetable(request: SolveRequest):
    """
    Propose placements for every curriculum hour.

    The result is not saved anywhere; the editor applies it through
    /assignments/apply when the user accepts it.
    """
    start_time = time.time()
    max_steps = request.maxSteps if request.maxSteps is not None else SOLVER_MAX_STEPS
    max_time_seconds = request.maxTimeSeconds if request.maxTimeSeconds is not None else SOLVER_MAX_TIME_SECONDS

    # Convert Pydantic models to dicts for solver
    data = {
        'calendar': request.calendar.model_dump(),
        'teachers': [t.model_dump() for t in request.teachers],
        'classes': [c.model_dump() for c in request.classes],
        'rooms': [r.model_dump() for r in request.rooms],
        'assignments': [a.model_dump() for a in request.assignments],
    }

    # Log request summary
    logger.info(f"=== SOLVE REQUEST === Teachers: {len(data['teachers'])}, Classes: {len(data['classes'])}, "
                f"Rooms: {len(data['rooms'])}, Kept assignments: {0 if request.clearExisting else len(data['assignments'])}")

    # Log detailed info only when DEBUG_SOLVER is enabled
    if DEBUG_SOLVER:
        logger.debug(f"Attempts: {request.numAttempts}, Seed: {request.seed}, "
                     f"MaxSteps: {max_steps}, MaxTime: {max_time_seconds}s")
        for c in request.classes:
            items = [f"{i.lessonName} x{i.weeklyHours} ({i.teacherId})" for i in c.curriculum]
            logger.debug(f"  Class {c.name}: {', '.join(items) if items else 'no curriculum'}")

    try:
        # Give the event loop one tick before the blocking search starts
        await asyncio.sleep(0)
        result = await run_in_threadpool(
            generate_timetable,
            data,
            clear_existing=request.clearExisting,
            seed=request.seed,
            num_attempts=request.numAttempts,
            max_steps=max_steps,
            max_time_seconds=max_time_seconds,
        )

        elapsed = time.time() - start_time

        # Log result summary
        logger.info(f"=== SOLVE RESULT === Status: {result['status']}, Assigned: {len(result['assigned'])}, "
                    f"Unassigned: {len(result['unassigned'])}, Time: {elapsed:.1f}s")
        if result['status'] == PARTIAL:
            logger.warning(f"PARTIAL: {result['message']}")
            if DEBUG_SOLVER and result.get('diagnostics'):
                logger.debug(f"Diagnostics: {json.dumps(result['diagnostics'], indent=2)}")

        return SolveResponse(
            status=result['status'],
            assigned=result['assigned'],
            unassigned=result['unassigned'],
            message=result['message'],
            steps=result['steps'],
            seed=result['seed'],
            elapsedSeconds=elapsed,
            diagnostics=result.get('diagnostics'),
        )

    except Exception as e:
        elapsed = time.time() - start_time
        logger.error(f"SOLVE ERROR: {str(e)}", exc_info=True)
        raise HTTPException(
            status_code=500,
            detail={
                "status": "error",
                "message": str(e),
                "elapsedSeconds": elapsed,
            }
        )


@app.post("/requirements/summary")
async def requirements_summary(request: SummaryRequest):
    """Hours still to place per class, lesson and teacher."""
    classes = [class_from_dict(c.model_dump()) for c in request.classes]
    return {"requirements": summarize_requirements(expand_requirements(classes))}


@app.post("/assignments/check")
async def check_assignment(request: CheckRequest):
    """Report collisions and rule advice for a lesson about to be placed."""
    candidate = assignment_from_dict(request.assignment.model_dump())
    existing = [assignment_from_dict(a.model_dump()) for a in request.assignments]
    classes = [class_from_dict(c.model_dump()) for c in request.classes]

    conflict = check_conflict(candidate, existing, request.names)
    rule = check_consecutive_lessons_rule(
        candidate, existing,
        weekly_hours_for(classes, candidate.class_id, candidate.lesson_name),
        _calendar(request.calendar),
    )
    return {
        "conflict": conflict,
        "conflictDetails": get_conflict_details(candidate, existing, request.names) if conflict else None,
        "consecutive": rule.to_dict(),
    }


@app.post("/assignments/validate")
async def validate_assignments(request: ValidateRequest):
    """List every teacher, class or room collision in a saved timetable."""
    conflicts = find_conflicts([assignment_from_dict(a.model_dump()) for a in request.assignments])
    if conflicts:
        logger.info(f"Validation found {len(conflicts)} conflict(s) in {len(request.assignments)} assignments")
    return {"conflicts": conflicts}


@app.post("/assignments/add")
async def add_manual_assignment(request: AddRequest):
    outcome = add_assignment(
        assignment_from_dict(request.assignment.model_dump()),
        [assignment_from_dict(a.model_dump()) for a in request.assignments],
        [class_from_dict(c.model_dump()) for c in request.classes],
        override=request.override,
        names=request.names,
        calendar=_calendar(request.calendar),
    )
    if outcome.status == BLOCKED:
        raise HTTPException(status_code=409, detail=outcome.to_dict())
    return outcome.to_dict()


@app.post("/assignments/move")
async def move_existing_assignment(request: MoveRequest):
    try:
        outcome = move_assignment(
            request.assignmentId,
            request.targetClassId,
            request.targetDay,
            request.targetHour,
            [assignment_from_dict(a.model_dump()) for a in request.assignments],
            [class_from_dict(c.model_dump()) for c in request.classes],
            override=request.override,
            names=request.names,
            calendar=_calendar(request.calendar),
        )
    except AssignmentNotFoundError:
        raise HTTPException(
            status_code=404,
            detail={"status": "error", "message": f"Assignment '{request.assignmentId}' not found"},
        )
    if outcome.status == BLOCKED:
        raise HTTPException(status_code=409, detail=outcome.to_dict())
    return outcome.to_dict()


@app.post("/assignments/apply")
async def apply_solve_result(request: ApplyRequest):
    """Replace or extend the saved assignments with an accepted proposal."""
    merged = apply_result(
        [assignment_from_dict(a.model_dump()) for a in request.assignments],
        [assignment_from_dict(a.model_dump()) for a in request.assigned],
        request.clearExisting,
    )
    return {"assignments": [a.to_dict() for a in merged]}


if __name__ == "__main__":
    import uvicorn
    port = int(os.environ.get("PORT", 8080))
    uvicorn.run(app, host="0.0.0.0", port=port)
