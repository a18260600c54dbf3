import json
import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from smiley_console.console_database import ConsoleSession, get_db
from smiley_console.dependencies import get_api_key, get_console_session
from smiley_console.model import ConsoleUser, LoginInput, SedeSelection
from smiley_console.services import clinic_api

router = APIRouter(tags=["Auth"], dependencies=[Depends(get_api_key)])
console = logging.getLogger("smiley.auth")


def _to_console_user(sess: ConsoleSession) -> ConsoleUser:
    return ConsoleUser(
        username=sess.username,
        user=json.loads(sess.user_json) if sess.user_json else {},
        selected_sede=sess.selected_sede,
    )


@router.post("/login", response_model=ConsoleUser)
async def login(
    credentials: LoginInput,
    db: Session = Depends(get_db),
):
    result = await clinic_api.authenticate(credentials.usuario, credentials.clave)
    if not result.get("success"):
        status = result.get("status", 502)
        if status in (400, 401, 403):
            raise HTTPException(status_code=401, detail=result.get("error") or "Usuario o clave incorrectos")
        raise HTTPException(status_code=502, detail="Error al iniciar sesión")

    data = result["data"] or {}
    token = data.get("token")
    if not token:
        raise HTTPException(status_code=502, detail="Error al iniciar sesión")

    username = credentials.usuario.lower()
    sess = db.query(ConsoleSession).filter(ConsoleSession.username == username).first()
    if not sess:
        sess = ConsoleSession(username=username, token=token)
        db.add(sess)
    sess.token = token
    sess.user_json = json.dumps(data.get("user") or {})

    try:
        db.commit()
        db.refresh(sess)
    except Exception as e:
        db.rollback()
        raise HTTPException(status_code=500, detail=f"Failed to store console session: {str(e)}")

    console.info("Console user %s logged in", username)
    return _to_console_user(sess)


@router.post("/logout")
def logout(
    sess: ConsoleSession = Depends(get_console_session),
    db: Session = Depends(get_db),
):
    db.delete(sess)
    db.commit()
    return {"message": "Sesión cerrada"}


@router.put("/sede", response_model=ConsoleUser)
def select_sede(
    selection: SedeSelection,
    sess: ConsoleSession = Depends(get_console_session),
    db: Session = Depends(get_db),
):
    sess.selected_sede = selection.id_sede
    db.commit()
    db.refresh(sess)
    return _to_console_user(sess)


@router.get("/me", response_model=ConsoleUser)
def me(
    sess: ConsoleSession = Depends(get_console_session),
):
    return _to_console_user(sess)
