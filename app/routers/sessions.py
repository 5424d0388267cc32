from fastapi import APIRouter, Depends, HTTPException
from app.schemas.monolog import SessionUpsert, SessionRef, SessionOut
from app.repositories.session_repository import SessionRepository

router = APIRouter()

async def get_session_repository() -> SessionRepository:
    return SessionRepository()

@router.post("", response_model=SessionRef)
async def upsert_session(payload: SessionUpsert, repo: SessionRepository = Depends(get_session_repository)):
    session_ref = await repo.create_session(
        payload.session_id,
        title=payload.title,
        directory=payload.directory,
        created_at=payload.created_at,
    )
    return SessionRef(id=session_ref, session_id=payload.session_id)

@router.get("/{session_id}", response_model=SessionOut)
async def get_session(session_id: str, repo: SessionRepository = Depends(get_session_repository)):
    session = await repo.get_by_external_id(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail=f"Session {session_id} not found")
    return session
