"""
Test session endpoints: start, current question, answer submission,
status and abandonment.
"""
import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from iqtest.core.auth import get_current_user_optional
from iqtest.core.background_tasks import safe_background_task
from iqtest.core.notifications import NotificationHub, get_notification_hub
from iqtest.core.responses import ResponseRecorder
from iqtest.core.session_cache import SessionCache, get_session_cache
from iqtest.core.sessions import ClientInfo, SessionManager
from iqtest.models import User, get_db
from iqtest.schemas import (
    CurrentQuestionResponse,
    MessageResponse,
    QuestionPublic,
    ResponseSubmission,
    SessionStatusResponse,
    StartTestRequest,
    StartTestResponse,
    SubmitResponse,
    TestSessionResponse,
)

router = APIRouter()
logger = logging.getLogger(__name__)


def get_client_info(request: Request, body: Optional[StartTestRequest] = None) -> ClientInfo:
    return ClientInfo(
        user_agent=(request.headers.get("user-agent") or "")[:500] or None,
        ip_address=request.client.host if request.client else None,
        screen_size=body.screen_size if body else None,
        timezone=body.timezone if body else None,
    )


@router.post("/start", response_model=StartTestResponse, status_code=201)
async def start_test(
    request: Request,
    body: Optional[StartTestRequest] = None,
    current_user: Optional[User] = Depends(get_current_user_optional),
    db: AsyncSession = Depends(get_db),
    cache: SessionCache = Depends(get_session_cache),
):
    """
    Start a new test session.

    Works with or without a bearer token. A session started by an
    authenticated user can only be read and answered by that user.
    """
    body = body or StartTestRequest()
    started = await SessionManager(db, cache).start_session(
        test_type=body.test_type,
        time_limit=body.time_limit,
        user=current_user,
        client_info=get_client_info(request, body),
    )
    return StartTestResponse(
        session=TestSessionResponse.model_validate(started.session),
        current_question=QuestionPublic.model_validate(started.first_question),
        progress=started.progress,
    )


@router.get("/{session_id}/question", response_model=CurrentQuestionResponse)
async def get_current_question(
    session_id: str,
    current_user: Optional[User] = Depends(get_current_user_optional),
    db: AsyncSession = Depends(get_db),
    cache: SessionCache = Depends(get_session_cache),
):
    """
    Get the session's current question, without its answer.

    A session past its time limit is completed by this call and the
    request fails with 400.
    """
    current = await SessionManager(db, cache).get_current_question(
        session_id, current_user
    )
    return CurrentQuestionResponse(
        question=QuestionPublic.model_validate(current.question),
        progress=current.progress,
        time_remaining=current.time_remaining,
    )


@router.post("/{session_id}/response", response_model=SubmitResponse)
async def submit_response(
    session_id: str,
    submission: ResponseSubmission,
    background_tasks: BackgroundTasks,
    current_user: Optional[User] = Depends(get_current_user_optional),
    db: AsyncSession = Depends(get_db),
    cache: SessionCache = Depends(get_session_cache),
    notifications: NotificationHub = Depends(get_notification_hub),
):
    """
    Submit the answer to the current question.

    Returns the next question and progress, or the result id once the
    last question has been answered. WebSocket subscribers are notified
    after the response has been sent.
    """
    recorder = ResponseRecorder(db, cache, notifications)
    outcome = await recorder.submit(
        session_id,
        submission.question_id,
        submission.answer,
        submission.response_time,
        behavior_data=submission.behavior_data,
        caller=current_user,
    )
    background_tasks.add_task(safe_background_task, recorder.publish_events, outcome)
    return SubmitResponse(
        is_correct=outcome.is_correct,
        completed=outcome.completed,
        next_question=(
            QuestionPublic.model_validate(outcome.next_question)
            if outcome.next_question is not None
            else None
        ),
        progress=outcome.progress,
        result_id=outcome.scoring.result.id if outcome.scoring else None,
    )


@router.get("/{session_id}/status", response_model=SessionStatusResponse)
async def get_session_status(
    session_id: str,
    current_user: Optional[User] = Depends(get_current_user_optional),
    db: AsyncSession = Depends(get_db),
    cache: SessionCache = Depends(get_session_cache),
):
    status = await SessionManager(db, cache).get_status(session_id, current_user)
    return {"session": status}


@router.post("/{session_id}/abandon", response_model=MessageResponse)
async def abandon_test(
    session_id: str,
    current_user: Optional[User] = Depends(get_current_user_optional),
    db: AsyncSession = Depends(get_db),
    cache: SessionCache = Depends(get_session_cache),
):
    """Abandon a session. Calling it on an already ended session is a no-op."""
    await SessionManager(db, cache).abandon(session_id, current_user)
    return MessageResponse(message="Test session abandoned")
