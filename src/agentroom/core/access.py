"""访问控制

authorize(token, chatroom_id) -> Identity。
令牌签发 / 会话管理不在本仓库范围内，这里只提供共享令牌实现；
未配置令牌时放行所有请求（本地开发模式）。
"""

import secrets
from typing import Protocol

from pydantic import BaseModel, Field

from .exceptions import ForbiddenError, NotFoundError, UnauthenticatedError
from .store.protocols import Stores


class Identity(BaseModel):
    """通过访问检查的调用方"""

    subject: str = Field(description="调用方标识")
    chatroom_id: str = Field(description="被授权访问的聊天室")


class AccessPolicy(Protocol):
    """访问层接口"""

    def authenticate(self, token: str | None) -> str:
        """只校验令牌，返回 subject"""
        ...

    def is_allowed(self, chatroom_id: str) -> bool: ...

    async def authorize(self, token: str | None, chatroom_id: str) -> Identity:
        """校验令牌并确认聊天室存在

        Raises:
            UnauthenticatedError: 缺少令牌或令牌无效
            ForbiddenError: 令牌无权访问该聊天室
            NotFoundError: 聊天室不存在
        """
        ...


class SharedTokenAccess:
    """单一共享令牌 + 可选聊天室白名单"""

    def __init__(
        self,
        stores: Stores,
        token: str | None = None,
        allowed_chatrooms: set[str] | None = None,
    ) -> None:
        self._stores = stores
        self._token = token or None
        self._allowed = allowed_chatrooms

    @property
    def enabled(self) -> bool:
        return self._token is not None

    def authenticate(self, token: str | None) -> str:
        """只校验令牌，返回 subject"""
        if self._token is None:
            return "anonymous"
        if not token:
            raise UnauthenticatedError("Missing access token")
        if not secrets.compare_digest(token.encode(), self._token.encode()):
            raise UnauthenticatedError("Invalid access token")
        return "token"

    def is_allowed(self, chatroom_id: str) -> bool:
        return self._allowed is None or chatroom_id in self._allowed

    async def authorize(self, token: str | None, chatroom_id: str) -> Identity:
        subject = self.authenticate(token)
        if not self.is_allowed(chatroom_id):
            raise ForbiddenError(
                f"Access to chatroom {chatroom_id} is not allowed",
                details={"chatroom_id": chatroom_id},
            )
        if await self._stores.chatroom_store.get_chatroom(chatroom_id) is None:
            raise NotFoundError("Chatroom", chatroom_id)
        return Identity(subject=subject, chatroom_id=chatroom_id)
