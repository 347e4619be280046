from typing import Optional

from fastapi import Header, HTTPException, Request, status

from trade_reconciler.services.encryption import FieldCipher


def get_db(request: Request):
    session = request.app.state.session_factory()
    try:
        yield session
    finally:
        session.close()


def get_cipher(request: Request) -> FieldCipher:
    return request.app.state.cipher


def require_cron_secret(request: Request, authorization: Optional[str] = Header(None)) -> None:
    secret = request.app.state.settings.cron_secret
    # no secret configured means nobody gets in
    if not secret or authorization != f"Bearer {secret}":
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
