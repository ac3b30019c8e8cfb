from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, status

from mindcheck.api.deps import get_session_finalizer, get_session_store
from mindcheck.schemas.sessions import (
    CancelRequest,
    CaptureRequest,
    FinalizeRequest,
    FinalizeResponse,
    SessionCreate,
    SessionItem,
    SessionListResponse,
)
from mindcheck.services.capture import CaptureFragment
from mindcheck.services.errors import ConflictError, InvalidStateError, SessionNotFoundError
from mindcheck.services.finalizer import SessionFinalizer
from mindcheck.services.sessions import SessionStore


router = APIRouter()


def _http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, SessionNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, (InvalidStateError, ConflictError)):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


@router.post(
    "",
    response_model=SessionItem,
    status_code=status.HTTP_201_CREATED,
    summary="Open a new pending session, cancelling the user's other pending ones.",
)
async def create_session(
    payload: SessionCreate,
    store: SessionStore = Depends(get_session_store),
) -> SessionItem:
    try:
        record = await store.create_session(
            payload.user_id,
            payload.assessment_type,
            display_name=payload.display_name,
        )
    except (ValueError, ConflictError) as exc:
        raise _http_error(exc) from exc
    return SessionItem.model_validate(record)


@router.get(
    "/users/{user_id}",
    response_model=SessionListResponse,
    summary="List a user's sessions, most recent first.",
)
async def list_user_sessions(
    user_id: str,
    limit: int = Query(20, ge=1, le=100, description="Maximum number of sessions to return."),
    store: SessionStore = Depends(get_session_store),
) -> SessionListResponse:
    try:
        records = await store.list_sessions(user_id, limit=limit)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return SessionListResponse(items=[SessionItem.model_validate(record) for record in records])


@router.get("/{session_id}", response_model=SessionItem, summary="Read one session.")
async def get_session(
    session_id: str,
    store: SessionStore = Depends(get_session_store),
) -> SessionItem:
    try:
        record = await store.get(session_id)
    except (ValueError, SessionNotFoundError) as exc:
        raise _http_error(exc) from exc
    return SessionItem.model_validate(record)


@router.post("/{session_id}/activate", response_model=SessionItem)
async def activate_session(
    session_id: str,
    store: SessionStore = Depends(get_session_store),
) -> SessionItem:
    try:
        record = await store.activate(session_id)
    except (ValueError, SessionNotFoundError, InvalidStateError) as exc:
        raise _http_error(exc) from exc
    return SessionItem.model_validate(record)


@router.post(
    "/{session_id}/capture",
    response_model=SessionItem,
    summary="Merge a transcript or visual fragment into an active session.",
)
async def attach_capture(
    session_id: str,
    payload: CaptureRequest,
    store: SessionStore = Depends(get_session_store),
) -> SessionItem:
    fragment = CaptureFragment.from_payload(
        turns=payload.turns,
        visual_summary=payload.visual_summary,
    )
    try:
        record = await store.attach_capture(session_id, fragment)
    except (ValueError, SessionNotFoundError, InvalidStateError) as exc:
        raise _http_error(exc) from exc
    return SessionItem.model_validate(record)


@router.post(
    "/{session_id}/finalize",
    response_model=FinalizeResponse,
    summary="Analyze the captured conversation and complete the session.",
)
async def finalize_session(
    session_id: str,
    payload: FinalizeRequest | None = None,
    finalizer: SessionFinalizer = Depends(get_session_finalizer),
) -> FinalizeResponse:
    try:
        outcome = await finalizer.finalize(
            session_id,
            student_first_name=payload.student_first_name if payload else None,
        )
    except (ValueError, SessionNotFoundError, InvalidStateError) as exc:
        raise _http_error(exc) from exc
    return FinalizeResponse(
        session=SessionItem.model_validate(outcome.session),
        final_score=outcome.final_score,
        degraded=outcome.warning is not None,
    )


@router.post("/{session_id}/cancel", response_model=SessionItem)
async def cancel_session(
    session_id: str,
    payload: CancelRequest | None = None,
    store: SessionStore = Depends(get_session_store),
) -> SessionItem:
    try:
        record = await store.cancel(session_id, payload.reason if payload else None)
    except (ValueError, SessionNotFoundError, InvalidStateError) as exc:
        raise _http_error(exc) from exc
    return SessionItem.model_validate(record)
