# smiley_console/dependencies.py
import logging

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from smiley_console.config import get_valid_api_keys
from smiley_console.console_database import ConsoleSession, get_db
from smiley_console.services.clinic_api import ClinicSession, SessionExpired

console = logging.getLogger("smiley.auth")


def get_api_key(api_key: str = Header(..., alias="X-API-Key")) -> str:
    valid_keys = get_valid_api_keys()
    if api_key not in valid_keys:
        console.warning("Unauthorized API access attempt: %s", api_key[:4] + "***")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid API key"
        )
    return api_key


def get_console_session(
    username: str = Header(..., alias="X-Console-User"),
    db: Session = Depends(get_db),
) -> ConsoleSession:
    sess = db.query(ConsoleSession).filter(ConsoleSession.username == username.lower()).first()
    if not sess:
        raise HTTPException(status_code=401, detail="No hay una sesión activa. Por favor, inicia sesión.")
    return sess


async def get_clinic_session(
    stored: ConsoleSession = Depends(get_console_session),
    db: Session = Depends(get_db),
):
    def persist_token(token: str):
        stored.token = token
        db.commit()

    session = ClinicSession(
        token=stored.token,
        username=stored.username,
        selected_sede=stored.selected_sede,
        on_token_refreshed=persist_token,
    )
    try:
        yield session
    except SessionExpired:
        console.info("Clearing expired console session for %s", stored.username)
        db.delete(stored)
        db.commit()
        raise
    finally:
        await session.aclose()


def require_sede(session: ClinicSession = Depends(get_clinic_session)) -> int:
    if session.selected_sede is None:
        raise HTTPException(status_code=400, detail="No se ha seleccionado una sede. Por favor, selecciónala.")
    return session.selected_sede
