import asyncio
import logging
from contextlib import asynccontextmanager

from dishka import AsyncContainer, make_async_container
from dishka.integrations.fastapi import setup_dishka
from fastapi import FastAPI
import uvicorn

from messaging_core.providers.dishka_app import AdaptersProvider, InfrastructureProvider, ServicesProvider
from messaging_core.services.routers.chat_api import ChatAPI
from messaging_core.services.routers.contact_api import ContactAPI
from messaging_core.services.routers.errors import register_exception_handlers
from messaging_core.services.routers.message_api import MessageAPI

@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await app.state.dishka_container.close()

async def create_app(container: AsyncContainer | None = None) -> FastAPI:
    if container is None:
        container = make_async_container(
            AdaptersProvider(),
            InfrastructureProvider(),
            ServicesProvider(),
        )

    app = FastAPI(title="Messaging Core", lifespan=lifespan)
    setup_dishka(container, app)
    register_exception_handlers(app)

    chat_api = await container.get(ChatAPI)
    message_api = await container.get(MessageAPI)
    contact_api = await container.get(ContactAPI)

    app.include_router(chat_api.get_router())
    app.include_router(message_api.get_router())
    app.include_router(contact_api.get_router())

    return app

def main():
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )
    app = asyncio.run(create_app())
    uvicorn.run(app, host="0.0.0.0", port=8000, log_level="info")

if __name__ == "__main__":
    main()
