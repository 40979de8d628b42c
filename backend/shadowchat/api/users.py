# shadowchat/api/users.py

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel
from sqlalchemy.orm import Session

from shadowchat.core.errors import ChatError
from shadowchat.core.rate_limit import PUBLIC_KEY_LIMIT, REGISTER_LIMIT, limiter
from shadowchat.core.security import check_timestamp, signed_identity, verify_pgp_signature
from shadowchat.core.user import get_public_key, get_user, register_user, to_view
from shadowchat.infra.postgres import get_db
from shadowchat.utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/users")


class RegisterUserSchema(BaseModel):
    username: str
    public_key: str
    signature: str
    timestamp: str


@router.post("/register")
@limiter.limit(REGISTER_LIMIT)
def register_user_endpoint(request: Request, payload: RegisterUserSchema, db: Session = Depends(get_db)):
    logger.info(f"Received registration for user: {payload.username}")
    try:
        # The data signed is username + timestamp to prevent reuse
        check_timestamp(payload.timestamp)
        if not verify_pgp_signature(
            payload.public_key, payload.signature, signed_identity(payload.username, payload.timestamp)
        ):
            logger.warning(f"Signature verification failed for {payload.username}")
            raise HTTPException(status_code=401, detail="Invalid identity signature")

        user = register_user(db, payload.username, payload.public_key)
    except ChatError as e:
        logger.warning(f"Registration failed for {payload.username}: {e.reason}")
        raise HTTPException(status_code=e.status_code, detail=e.reason)

    logger.info(f"User {user.username} registered successfully")
    return {"status": "registered", "user": to_view(user).dump()}


@router.get("/info")
def get_user_info(id: int, db: Session = Depends(get_db)):
    user = get_user(db, id)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return to_view(user).dump()


@router.get("/{username}/public-key")
@limiter.limit(PUBLIC_KEY_LIMIT)
def get_user_public_key(request: Request, username: str, db: Session = Depends(get_db)):
    public_key = get_public_key(db, username)
    if public_key is None:
        raise HTTPException(status_code=404, detail="User not found")
    return {"username": username, "public_key": public_key}
