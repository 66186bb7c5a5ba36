"""
Enrollment bot — event registration with shuttle seat booking.
Entry point: creates the bot, registers routers + middleware, handles graceful shutdown.
"""
import asyncio
import logging
import signal
import sys

from aiogram import Bot, Dispatcher
from aiogram.client.default import DefaultBotProperties
from aiogram.enums import ParseMode
from aiogram.exceptions import TelegramAPIError
from aiogram.fsm.storage.memory import MemoryStorage
from aiogram.types import ErrorEvent
from sqlalchemy.exc import SQLAlchemyError

from enrollbot.config import settings
from enrollbot.middlewares import AdminMiddleware, DatabaseMiddleware, FlowMiddleware, FlowRegistry
from enrollbot.models.base import AsyncSessionFactory, Base, engine
from enrollbot.services import SeatInventory

# ── Handlers ──────────────────────────────────────────────────────────────────
from enrollbot.handlers.common import router as common_router
from enrollbot.handlers.enrollment import router as enrollment_router
from enrollbot.handlers.my_enrollments import router as my_enrollments_router
from enrollbot.handlers.admin import router as admin_router
from enrollbot.handlers.fallback import router as fallback_router

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    stream=sys.stdout,
)
logger = logging.getLogger(__name__)


async def create_tables() -> None:
    """Create all database tables on startup."""
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Schema ready on %s", settings.DATABASE_URL.split("@")[-1])
    except (SQLAlchemyError, OSError) as e:
        # Credentials stay out of the log
        logger.critical(
            "Database unreachable at %s: %s. For local runs set "
            "DATABASE_URL=sqlite+aiosqlite:///./enrollbot.db",
            settings.DATABASE_URL.split("@")[-1],
            e,
        )
        sys.exit(1)


def build_dispatcher(registry: FlowRegistry) -> Dispatcher:
    dp = Dispatcher(storage=MemoryStorage())

    # ── Global error handler: callbacks are always answered ──────────────────
    @dp.errors()
    async def handle_error(event: ErrorEvent) -> None:
        logger.exception("Unhandled error: %s", event.exception)
        update = event.update
        if update.callback_query:
            try:
                await update.callback_query.answer(
                    "⚠️ Something went wrong. Please try again.", show_alert=True
                )
            except TelegramAPIError as e:
                logger.debug("Could not answer failed callback: %s", e)

    # ── Global middlewares ────────────────────────────────────────────────────
    dp.update.middleware(DatabaseMiddleware())
    dp.update.middleware(AdminMiddleware())
    dp.update.middleware(FlowMiddleware(registry))

    # ── Routers: order matters for handler priority ───────────────────────────
    dp.include_router(common_router)
    dp.include_router(admin_router)
    dp.include_router(enrollment_router)
    dp.include_router(my_enrollments_router)

    # !! Must be last: catches any update not handled above !!
    dp.include_router(fallback_router)

    return dp
def _stop_on_signals(dp: Dispatcher) -> None:
    """SIGTERM / SIGINT stop polling; the finally block in main() does the cleanup."""
    loop = asyncio.get_running_loop()

    def _stop() -> None:
        logger.info("Shutdown signal received")
        asyncio.ensure_future(dp.stop_polling())

    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, _stop)
        except NotImplementedError:
            # No loop signal handlers on Windows
            pass


async def main() -> None:
    logger.info("Enrollment bot starting")
    await create_tables()

    inventory = SeatInventory(AsyncSessionFactory)
    registry = FlowRegistry(inventory)
    bot = Bot(
        token=settings.BOT_TOKEN,
        default=DefaultBotProperties(parse_mode=ParseMode.MARKDOWN),
    )
    dp = build_dispatcher(registry)
    _stop_on_signals(dp)

    try:
        logger.info("Polling for updates")
        await dp.start_polling(
            bot,
            allowed_updates=dp.resolve_used_update_types(),
            handle_signals=False,
        )
    finally:
        # registry.shutdown() still writes through the engine
        await registry.shutdown()
        await bot.session.close()
        await engine.dispose()
        logger.info("Enrollment bot stopped")


if __name__ == "__main__":
    asyncio.run(main())
