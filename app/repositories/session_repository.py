from app.models.session import Session
from typing import Optional
from datetime import datetime, timezone


class SessionRepository:
    async def get(self, session_ref: int) -> Optional[Session]:
        return await Session.filter(id=session_ref).first()

    async def get_by_external_id(self, session_id: str) -> Optional[Session]:
        return await Session.filter(session_id=session_id).first()

    async def get_session_ref(self, session_id: str) -> Optional[int]:
        """Внутренний ID сессии по внешнему ID или None"""
        refs = await Session.filter(session_id=session_id).limit(1).values_list("id", flat=True)
        return refs[0] if refs else None

    async def create_session(
        self,
        session_id: str,
        title: Optional[str] = None,
        directory: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> int:
        """
        Создает сессию или возвращает существующую (идемпотентно по session_id).
        Непустые title/directory из повторных событий обновляют запись.

        Returns:
            int: session_ref - внутренний ID сессии
        """
        if not session_id or not session_id.strip():
            raise ValueError("session_id is required")

        session, created = await Session.get_or_create(
            session_id=session_id,
            defaults={
                "title": title,
                "working_directory": directory,
                "created_at": created_at or datetime.now(timezone.utc),
            },
        )
        if created:
            return session.id

        changes = {}
        if title and title != session.title:
            changes["title"] = title
        if directory and directory != session.working_directory:
            changes["working_directory"] = directory
        if changes:
            await Session.filter(id=session.id).update(updated_at=datetime.now(timezone.utc), **changes)
        return session.id
