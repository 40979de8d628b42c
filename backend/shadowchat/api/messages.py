# shadowchat/api/messages.py
#
# Encrypted payloads of IMAGE / VIDEO / FILE messages travel over HTTP; the
# socket only carries the message row. Requests are signed like the login.

from fastapi import APIRouter, Depends, Header, HTTPException, Request, Response
from sqlalchemy.orm import Session

from shadowchat.core import membership, message
from shadowchat.core.config import MAX_UPLOAD_BYTES, MAX_UPLOAD_MB
from shadowchat.core.errors import AuthorizationError
from shadowchat.core.rate_limit import FILE_LIMIT, limiter
from shadowchat.core.security import authenticate
from shadowchat.infra.postgres import get_db
from shadowchat.models.message import FILE_MESSAGE_TYPES
from shadowchat.models.user import User
from shadowchat.utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/messages")


def signed_user(
    db: Session = Depends(get_db),
    x_auth_user: str = Header(...),
    x_auth_timestamp: str = Header(...),
    x_auth_signature: str = Header(...),
) -> User:
    try:
        return authenticate(db, x_auth_user, x_auth_timestamp, x_auth_signature)
    except AuthorizationError as e:
        raise HTTPException(status_code=401, detail=e.reason)


async def read_body(request: Request) -> bytes:
    return await request.body()


def _file_message(db: Session, message_id: int):
    row = message.get_message_row(db, message_id)
    if row is None or row.type not in FILE_MESSAGE_TYPES:
        raise HTTPException(status_code=404, detail="File message not found")
    return row


@router.put("/{message_id}/file")
@limiter.limit(FILE_LIMIT)
def upload_file(
    request: Request,
    message_id: int,
    body: bytes = Depends(read_body),
    user: User = Depends(signed_user),
    db: Session = Depends(get_db),
):
    row = _file_message(db, message_id)
    if row.sender_id != user.id:
        raise HTTPException(status_code=403, detail="Only the sender can upload the file")
    if len(body) > MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=413, detail=f"File too large (max {MAX_UPLOAD_MB} MB)")

    files = request.app.state.files
    if files.has_file(message_id):
        raise HTTPException(status_code=409, detail="File already uploaded")
    files.save_file(message_id, body)
    logger.info(f"Stored {len(body)} bytes for message {message_id}")
    return {"status": "stored", "message_id": message_id}


@router.get("/{message_id}/file")
@limiter.limit(FILE_LIMIT)
def download_file(
    request: Request,
    message_id: int,
    user: User = Depends(signed_user),
    db: Session = Depends(get_db),
):
    row = _file_message(db, message_id)
    if not membership.is_member(db, row.chat_id, user.id):
        raise HTTPException(status_code=403, detail="You are not a member of this chat")

    data = request.app.state.files.get_file(message_id)
    if data is None:
        raise HTTPException(status_code=404, detail="File not uploaded yet")
    return Response(content=data, media_type="application/octet-stream")
