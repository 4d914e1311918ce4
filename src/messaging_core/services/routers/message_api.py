from fastapi import APIRouter, status, Depends, Response
from dishka.integrations.fastapi import inject
from dishka import FromDishka
import logging
import uuid

from messaging_core.services.message_service import MessageService
from messaging_core.services.models import MessageDisplay, Page
from .api_models import SendMessageRequest, UpdateMessageRequest
from .auth_api import AuthAPI


class MessageAPI:
    """
    Message endpoints under ``/api/messages``.

    Real-time delivery does not happen here: every change is published on the
    event bus and fanned out by the notification listener.
    """

    def __init__(
            self,
            logger: logging.Logger,
            auth_api: AuthAPI
    ):
        self.logger = logger
        self.auth_api = auth_api
        self._message_router = APIRouter(prefix="/api/messages", tags=["Messages"])
        self._register_endpoints()

    @property
    def message_router(self) -> APIRouter:
        return self._message_router

    def get_router(self) -> APIRouter:
        return self._message_router

    def _register_endpoints(self):
        @self.message_router.post("", response_model=MessageDisplay, status_code=status.HTTP_201_CREATED)
        @inject
        async def send_message(
                message_data: SendMessageRequest,
                message_service: FromDishka[MessageService],
                token: str = Depends(self.auth_api.oauth2_scheme)
        ):
            sender = await self.auth_api.get_current_principal(token)
            return await message_service.send_message(
                sender,
                message_data.chat_id,
                message_data.message_type,
                content=message_data.content,
                media_url=message_data.media_url
            )

        @self.message_router.get("/{chat_id}", response_model=Page[MessageDisplay])
        @inject
        async def get_chat_messages(
                chat_id: uuid.UUID,
                message_service: FromDishka[MessageService],
                page: int = 0,
                size: int = 20,
                token: str = Depends(self.auth_api.oauth2_scheme)
        ):
            requester = await self.auth_api.get_current_principal(token)
            return await message_service.get_messages(chat_id, requester, page, size)

        @self.message_router.patch("", response_model=MessageDisplay)
        @inject
        async def edit_message(
                message_data: UpdateMessageRequest,
                message_service: FromDishka[MessageService],
                token: str = Depends(self.auth_api.oauth2_scheme)
        ):
            editor = await self.auth_api.get_current_principal(token)
            return await message_service.edit_message(editor, message_data.message_id, message_data.new_content)

        @self.message_router.delete("/{message_id}", status_code=status.HTTP_204_NO_CONTENT)
        @inject
        async def delete_message(
                message_id: uuid.UUID,
                message_service: FromDishka[MessageService],
                token: str = Depends(self.auth_api.oauth2_scheme)
        ):
            deleter = await self.auth_api.get_current_principal(token)
            await message_service.delete_message(deleter, message_id)
            return Response(status_code=status.HTTP_204_NO_CONTENT)
