import jwt
import logging
from typing import Optional

from fastapi import Depends, HTTPException, Query, WebSocketException, status
from fastapi.requests import HTTPConnection
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from community_chat.channels.service import ChannelService
from community_chat.chat.participation import ParticipationGate
from community_chat.chat.resolver import ConversationResolver
from community_chat.core.config import Settings
from community_chat.core.data_access import DataAccess


logger = logging.getLogger(__name__)
security = HTTPBearer()


def get_settings(connection: HTTPConnection) -> Settings:
    return connection.app.state.settings


def get_data_access(connection: HTTPConnection) -> DataAccess:
    return connection.app.state.data_access


def decode_token(token: str, settings: Settings) -> dict:
    if not settings.jwt_secret:
        raise HTTPException(status_code=500, detail="Authentication is not configured")

    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=["HS256"],
            issuer=settings.jwt_issuer,
            options={"verify_aud": False},
            leeway=60,
        )

    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")

    except jwt.InvalidTokenError as e:
        logger.warning(f"JWT verification failed: {e}")
        raise HTTPException(status_code=401, detail="Invalid token")

    if not payload.get("sub"):
        raise HTTPException(status_code=401, detail="Invalid token")
    return payload


def verify_token(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    settings: Settings = Depends(get_settings),
):
    return decode_token(credentials.credentials, settings)


def get_current_user_id(payload: dict = Depends(verify_token)) -> str:
    return str(payload["sub"])


def get_websocket_user_id(
    token: Optional[str] = Query(default=None),
    settings: Settings = Depends(get_settings),
) -> str:
    """Browsers cannot set headers on a WebSocket, so the token rides in the query."""
    if not token:
        raise WebSocketException(
            code=status.WS_1008_POLICY_VIOLATION, reason="Missing token"
        )
    try:
        payload = decode_token(token, settings)
    except HTTPException as e:
        raise WebSocketException(
            code=status.WS_1008_POLICY_VIOLATION, reason=str(e.detail)
        )
    return str(payload["sub"])


def get_resolver(data: DataAccess = Depends(get_data_access)) -> ConversationResolver:
    return ConversationResolver(data)


def get_gate(data: DataAccess = Depends(get_data_access)) -> ParticipationGate:
    return ParticipationGate(data)


def get_channel_service(
    data: DataAccess = Depends(get_data_access),
    gate: ParticipationGate = Depends(get_gate),
) -> ChannelService:
    return ChannelService(data, gate)
