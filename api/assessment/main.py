"""
Main FastAPI Application
Controller layer exposing the attempt lifecycle over HTTP.
"""
import logging
from functools import lru_cache
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from assessment.config import get_firebase_cred_path, get_store_backend
from assessment.errors import EngineError
from assessment.schemas import (
    AdjustMarksRequest,
    ExamEventRequest,
    PublishResultRequest,
    StartAttemptResult,
    SubmitAttemptRequest,
    SubmitAttemptResult,
)
from assessment.services.free_text_grader import FreeTextGrader
from assessment.services.grading import GradingEngine
from assessment.services.lifecycle import PENDING_REVIEW, AttemptLifecycle
from assessment.services.store import AttemptStore, InMemoryAttemptStore

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")
logger = logging.getLogger(__name__)


def build_store() -> AttemptStore:
    """Creates the attempt store selected by EXAM_STORE."""
    if get_store_backend() == "firestore":
        from assessment.services.firestore_store import FirestoreAttemptStore, get_firestore_client

        return FirestoreAttemptStore(get_firestore_client(get_firebase_cred_path()))
    return InMemoryAttemptStore()


@lru_cache(maxsize=1)
def get_lifecycle() -> AttemptLifecycle:
    return AttemptLifecycle(build_store(), GradingEngine(FreeTextGrader.from_env()))


def get_student_id(
    x_student_id: Optional[str] = Header(default=None, alias="X-Student-Id"),
) -> str:
    """Identity of the authenticated student, set by the auth gateway."""
    if not x_student_id or not x_student_id.strip():
        raise HTTPException(status_code=401, detail="Unauthorized")
    return x_student_id.strip()


def require_admin(
    x_user_role: Optional[str] = Header(default=None, alias="X-User-Role"),
) -> str:
    """Role of the caller, set by the auth gateway; only admins may review scores."""
    if not x_user_role or not x_user_role.strip():
        raise HTTPException(status_code=401, detail="Unauthorized")
    if x_user_role.strip().lower() != "admin":
        raise HTTPException(status_code=403, detail="Forbidden")
    return x_user_role.strip().lower()


# Initialize FastAPI App
app = FastAPI(
    title="Assessment Engine API",
    description="Exam attempt lifecycle and scoring engine",
    version="1.0.0"
)

# CORS Middleware (Allow all origins for development)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(EngineError)
async def engine_error_handler(request: Request, exc: EngineError):
    """Translate engine failures into short machine-readable errors."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.reason, "detail": exc.message},
    )


@app.get("/")
async def read_root():
    """Return API status info."""
    return {"message": "Assessment Engine API is running."}


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "Assessment Engine API"}


@app.post(
    "/api/student/exams/{exam_id}/start",
    response_model=StartAttemptResult,
    response_model_by_alias=True,
)
async def start_attempt(
    exam_id: str,
    student_id: str = Depends(get_student_id),
    lifecycle: AttemptLifecycle = Depends(get_lifecycle),
):
    """
    Start or resume the student's attempt.

    Returns:
        Attempt id, timing info, and the attempt's questions without answer keys.
    """
    return lifecycle.start(exam_id, student_id)


@app.post(
    "/api/student/exams/{exam_id}/submit",
    response_model=SubmitAttemptResult,
    response_model_by_alias=True,
)
async def submit_attempt(
    exam_id: str,
    request: SubmitAttemptRequest,
    student_id: str = Depends(get_student_id),
    lifecycle: AttemptLifecycle = Depends(get_lifecycle),
):
    """Grade and complete an attempt. A second submit is rejected."""
    return await lifecycle.submit(
        request.attempt_id, request.responses, student_id=student_id, exam_id=exam_id
    )


@app.get("/api/student/exams/{exam_id}/result")
async def get_result(
    exam_id: str,
    attempt_id: str = Query(..., alias="attemptId"),
    student_id: str = Depends(get_student_id),
    lifecycle: AttemptLifecycle = Depends(get_lifecycle),
):
    """Published result, or 202 while the result awaits admin review."""
    result = lifecycle.get_result(attempt_id, student_id=student_id, exam_id=exam_id)
    if result.get("status") == PENDING_REVIEW:
        return JSONResponse(status_code=202, content=jsonable_encoder(result))
    return result


@app.post("/api/student/exams/{exam_id}/events")
async def record_exam_event(
    exam_id: str,
    request: ExamEventRequest,
    student_id: str = Depends(get_student_id),
    lifecycle: AttemptLifecycle = Depends(get_lifecycle),
):
    """Log an in-exam event such as the tab becoming hidden."""
    lifecycle.record_event(exam_id, request.attempt_id, student_id, request.type, request.details)
    return {"ok": True}


@app.patch("/api/admin/scores", dependencies=[Depends(require_admin)])
async def adjust_scores(
    request: AdjustMarksRequest,
    lifecycle: AttemptLifecycle = Depends(get_lifecycle),
):
    """Manually override awarded marks and recompute the totals."""
    attempt = lifecycle.adjust_marks(request.attempt_id, request.adjustments)
    return {
        "ok": True,
        "score": attempt.score,
        "totalMarks": attempt.total_marks,
        "percentage": attempt.percentage,
    }


@app.post("/api/admin/scores", dependencies=[Depends(require_admin)])
async def publish_score(
    request: PublishResultRequest,
    lifecycle: AttemptLifecycle = Depends(get_lifecycle),
):
    """Publish a reviewed result to the student."""
    lifecycle.publish_result(request.attempt_id)
    return {"ok": True}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
