import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from relaybot.core.config import settings
from relaybot.core.database import init_db
from relaybot.api import assistants, chat, conversations, crawl
from relaybot.bot.discord_bot import DiscordBot
from relaybot.services.container import build_container
from relaybot.services.scheduler.scheduler import scheduler_loop

logger = logging.getLogger(__name__)


async def _stop(task: asyncio.Task | None) -> None:
    if task is None:
        return
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Configure logging based on debug setting
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s" if settings.debug
        else "%(levelname)-8s %(name)s: %(message)s",
    )

    init_db()
    services = build_container()
    app.state.services = services

    # Start background crawl scheduler
    scheduler_task = None
    if settings.scheduler_enabled:
        scheduler_task = asyncio.create_task(
            scheduler_loop(services.crawler, settings.crawl_tick_seconds)
        )

    # Start the Discord bot only when a token is configured
    bot = None
    bot_task = None
    if settings.discord_token:
        bot = DiscordBot(services.chat, services.recorder)
        bot_task = asyncio.create_task(bot.start(settings.discord_token))
    else:
        logger.info("No Discord token configured, bot disabled")

    yield

    if bot is not None:
        await bot.close()
    await _stop(bot_task)
    await _stop(scheduler_task)
    await services.chat.drain()


app = FastAPI(title=settings.app_name, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(chat.router, prefix="/api/chat", tags=["chat"])
app.include_router(conversations.router, prefix="/api/users", tags=["conversations"])
app.include_router(assistants.router, prefix="/api/assistants", tags=["assistants"])
app.include_router(crawl.router, prefix="/api", tags=["crawl"])


@app.get("/api/health")
async def health():
    return {"status": "ok", "app": settings.app_name}
