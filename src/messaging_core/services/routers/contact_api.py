from fastapi import APIRouter, HTTPException, status, Depends, Response
from dishka.integrations.fastapi import inject
from dishka import FromDishka
import logging
import uuid

from messaging_core.services.contact_service import ContactService
from messaging_core.services.models import ContactDisplay, ContactMatch
from .api_models import SyncContactsRequest, AddContactRequest, UpdateContactRequest
from .auth_api import AuthAPI


class ContactAPI:
    """
    Contact endpoints under ``/api/contacts``.

    Attributes:
        logger: Logger instance for tracking operations
        auth_api: Resolves the calling user from the bearer token
        contact_router: FastAPI router containing contact endpoints
    """

    def __init__(
            self,
            logger: logging.Logger,
            auth_api: AuthAPI
    ):
        self.logger = logger
        self.auth_api = auth_api
        self._contact_router = APIRouter(prefix="/api/contacts", tags=["Contacts"])
        self._register_endpoints()

    @property
    def contact_router(self) -> APIRouter:
        return self._contact_router

    def get_router(self) -> APIRouter:
        return self._contact_router

    def _register_endpoints(self):
        @self.contact_router.get("", response_model=list[ContactDisplay])
        @inject
        async def get_all_contacts(
                contact_service: FromDishka[ContactService],
                token: str = Depends(self.auth_api.oauth2_scheme)
        ):
            owner = await self.auth_api.get_current_principal(token)
            return await contact_service.get_all_contacts(owner)

        @self.contact_router.get("/phone", response_model=ContactMatch)
        @inject
        async def get_contact_by_phone(
                phone: str,
                contact_service: FromDishka[ContactService],
                token: str = Depends(self.auth_api.oauth2_scheme)
        ):
            await self.auth_api.get_current_principal(token)
            match = await contact_service.get_contact_by_phone(phone)
            if match is None:
                raise HTTPException(
                    status_code=status.HTTP_404_NOT_FOUND,
                    detail="User not found"
                )
            return match

        @self.contact_router.post("/sync", response_model=list[ContactMatch])
        @inject
        async def sync_contacts(
                request_data: SyncContactsRequest,
                contact_service: FromDishka[ContactService],
                token: str = Depends(self.auth_api.oauth2_scheme)
        ):
            await self.auth_api.get_current_principal(token)
            return await contact_service.sync_contacts(request_data.phone_numbers)

        @self.contact_router.post("", response_model=ContactDisplay, status_code=status.HTTP_201_CREATED)
        @inject
        async def add_contact(
                request_data: AddContactRequest,
                contact_service: FromDishka[ContactService],
                token: str = Depends(self.auth_api.oauth2_scheme)
        ):
            owner = await self.auth_api.get_current_principal(token)
            return await contact_service.add_contact(
                owner,
                request_data.target_phone_number,
                display_name=request_data.display_name
            )

        @self.contact_router.patch("", response_model=ContactDisplay)
        @inject
        async def update_contact(
                request_data: UpdateContactRequest,
                contact_service: FromDishka[ContactService],
                token: str = Depends(self.auth_api.oauth2_scheme)
        ):
            owner = await self.auth_api.get_current_principal(token)
            return await contact_service.update_contact(
                owner,
                request_data.target_user_id,
                new_display_name=request_data.new_display_name,
                new_phone_number=request_data.new_phone_number
            )

        @self.contact_router.delete("/{contact_user_id}", status_code=status.HTTP_204_NO_CONTENT)
        @inject
        async def delete_contact(
                contact_user_id: uuid.UUID,
                contact_service: FromDishka[ContactService],
                token: str = Depends(self.auth_api.oauth2_scheme)
        ):
            owner = await self.auth_api.get_current_principal(token)
            await contact_service.delete_contact(owner, contact_user_id)
            return Response(status_code=status.HTTP_204_NO_CONTENT)
