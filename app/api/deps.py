from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Header, HTTPException, status

from app.agents.chat_agent import ChatModel
from app.agents.tools import ChatTools
from app.errors import Unauthenticated
from app.llm_client import chat_model
from app.services.auth import DEV_USER_ID, AuthProvider, User, get_auth_provider
from app.services.chat_store import ChatStore, get_chat_store


async def get_current_user(
    authorization: Annotated[str | None, Header()] = None,
    auth_provider: AuthProvider = Depends(get_auth_provider),
) -> User:
    """Resolve the caller from `Authorization: Bearer <token>`."""
    if not auth_provider.is_enabled():
        return User(id=DEV_USER_ID, email="dev@example.com")

    if not authorization:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )

    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )

    try:
        return await auth_provider.verify_token(token.strip())
    except Unauthenticated:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )


def get_store() -> ChatStore:
    return get_chat_store()


def get_model() -> ChatModel:
    return chat_model()


def get_tools() -> ChatTools:
    return ChatTools()


CurrentUser = Annotated[User, Depends(get_current_user)]
Store = Annotated[ChatStore, Depends(get_store)]
Model = Annotated[ChatModel, Depends(get_model)]
Tools = Annotated[ChatTools, Depends(get_tools)]
