from fastapi import APIRouter, status, Depends
from dishka.integrations.fastapi import inject
from dishka import FromDishka
import logging
import uuid

from messaging_core.services.chat_service import ChatService
from messaging_core.services.models import ChatDisplay, MemberDisplay
from .api_models import (
    CreateChatRequest,
    UpdateGroupPropertiesRequest,
    UpdateMembershipRequest,
    UpdateMemberRoleRequest,
)
from .auth_api import AuthAPI


class ChatAPI:
    """
    Chat and membership endpoints under ``/api/chats``.

    Attributes:
        logger: Logger instance for tracking operations
        auth_api: Resolves the calling user from the bearer token
        chat_router: FastAPI router containing chat endpoints
    """

    def __init__(
            self,
            logger: logging.Logger,
            auth_api: AuthAPI
    ):
        self.logger = logger
        self.auth_api = auth_api
        self._chat_router = APIRouter(prefix="/api/chats", tags=["Chats"])
        self._register_endpoints()

    @property
    def chat_router(self) -> APIRouter:
        return self._chat_router

    def get_router(self) -> APIRouter:
        return self._chat_router

    def _register_endpoints(self):
        @self.chat_router.get("", response_model=list[ChatDisplay])
        @inject
        async def get_user_chats(
                chat_service: FromDishka[ChatService],
                token: str = Depends(self.auth_api.oauth2_scheme)
        ):
            owner = await self.auth_api.get_current_principal(token)
            return await chat_service.get_user_chats(owner)

        @self.chat_router.get("/{chat_id}/members", response_model=list[MemberDisplay])
        @inject
        async def get_chat_members(
                chat_id: uuid.UUID,
                chat_service: FromDishka[ChatService],
                token: str = Depends(self.auth_api.oauth2_scheme)
        ):
            requester = await self.auth_api.get_current_principal(token)
            return await chat_service.get_chat_members(chat_id, requester)

        @self.chat_router.post("", response_model=ChatDisplay, status_code=status.HTTP_201_CREATED)
        @inject
        async def create_chat(
                request_data: CreateChatRequest,
                chat_service: FromDishka[ChatService],
                token: str = Depends(self.auth_api.oauth2_scheme)
        ):
            owner = await self.auth_api.get_current_principal(token)
            return await chat_service.create_chat(
                owner,
                chat_type=request_data.chat_type,
                member_ids=request_data.member_ids,
                group_name=request_data.group_name,
                group_image=request_data.group_image
            )

        @self.chat_router.patch("/properties", response_model=ChatDisplay)
        @inject
        async def update_group_properties(
                request_data: UpdateGroupPropertiesRequest,
                chat_service: FromDishka[ChatService],
                token: str = Depends(self.auth_api.oauth2_scheme)
        ):
            owner = await self.auth_api.get_current_principal(token)
            return await chat_service.update_group_properties(
                owner,
                request_data.chat_id,
                new_group_name=request_data.new_group_name,
                new_group_image=request_data.new_group_image
            )

        @self.chat_router.post("/members", response_model=ChatDisplay)
        @inject
        async def add_members(
                request_data: UpdateMembershipRequest,
                chat_service: FromDishka[ChatService],
                token: str = Depends(self.auth_api.oauth2_scheme)
        ):
            owner = await self.auth_api.get_current_principal(token)
            return await chat_service.add_member(owner, request_data.chat_id, request_data.member_user_ids)

        @self.chat_router.patch("/roles", response_model=MemberDisplay)
        @inject
        async def update_member_role(
                request_data: UpdateMemberRoleRequest,
                chat_service: FromDishka[ChatService],
                token: str = Depends(self.auth_api.oauth2_scheme)
        ):
            owner = await self.auth_api.get_current_principal(token)
            return await chat_service.update_member_role(
                owner,
                request_data.chat_id,
                request_data.target_user_id,
                request_data.new_role
            )

        @self.chat_router.delete("/members", response_model=list[MemberDisplay])
        @inject
        async def delete_members(
                request_data: UpdateMembershipRequest,
                chat_service: FromDishka[ChatService],
                token: str = Depends(self.auth_api.oauth2_scheme)
        ):
            owner = await self.auth_api.get_current_principal(token)
            return await chat_service.delete_member(owner, request_data.chat_id, request_data.member_user_ids)
