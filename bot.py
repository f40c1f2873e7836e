"""
================================================================================
BINANCE GAINERS BOT - Top gaining coins over short intervals
================================================================================
Description: A Telegram bot that ranks every actively traded Binance USDT/BUSD
             pair by its price change over a chosen kline interval and replies
             with the top 10.

Flow:
- /start            -> Greeting
- /binance          -> Inline keyboard of intervals
- Tap an interval   -> Loading message, edited in place with the ranking
================================================================================
"""

# ==============================================================================
# IMPORTS
# ==============================================================================
import logging
import sys
from dataclasses import dataclass

from telegram import BotCommand, InlineKeyboardButton, InlineKeyboardMarkup, ReplyKeyboardRemove, Update
from telegram.constants import ParseMode
from telegram.error import TelegramError
from telegram.ext import Application, CallbackQueryHandler, CommandHandler, ContextTypes
from telegram.helpers import escape_markdown

import settings
from binance_api import close_http_session
from gainers import find_top_gainers, format_gainers
from keep_alive import start_keep_alive, stop_keep_alive
from settings import CALLBACK_PREFIX, Interval

logger = logging.getLogger(__name__)

KEYBOARD_ROW_SIZE = 3


# ==============================================================================
# METRICS
# ==============================================================================

@dataclass
class RequestCounter:
    """
    Number of rankings delivered since startup, for log output only.

    Handlers run on a single event loop thread, so no lock is needed.
    """

    count: int = 0

    def increment(self) -> int:
        self.count += 1
        return self.count


def get_request_counter(context: ContextTypes.DEFAULT_TYPE) -> RequestCounter:
    return context.bot_data.setdefault('request_counter', RequestCounter())


# ==============================================================================
# KEYBOARDS
# ==============================================================================

def build_interval_keyboard() -> InlineKeyboardMarkup:
    """One button per supported interval, KEYBOARD_ROW_SIZE buttons per row."""
    buttons = [
        InlineKeyboardButton(f"Last {interval.label}", callback_data=interval.callback_data)
        for interval in Interval
    ]
    rows = [buttons[i:i + KEYBOARD_ROW_SIZE] for i in range(0, len(buttons), KEYBOARD_ROW_SIZE)]
    return InlineKeyboardMarkup(rows)


# ==============================================================================
# TELEGRAM COMMAND HANDLERS
# ==============================================================================

async def start_cmd(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Handle /start command - Display greeting."""
    msg = update.effective_message
    if not msg:
        return

    text = (
        "📊 *Binance Gainers Bot*\n\n"
        "Welcome!\n\n"
        f"To see the top gaining coins 👇\nuse the /{escape_markdown(settings.MENU_COMMAND)} command."
    )
    await msg.reply_text(text, parse_mode=ParseMode.MARKDOWN, reply_markup=ReplyKeyboardRemove())


async def menu_cmd(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Handle the menu command - Ask which interval to analyse."""
    msg = update.effective_message
    if not msg:
        return

    await msg.reply_text(
        "⏱ *Which interval should be analysed?*",
        parse_mode=ParseMode.MARKDOWN,
        reply_markup=build_interval_keyboard(),
    )


async def interval_callback(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """
    Handle an interval button tap.

    Sequence:
    1. Answer the callback query right away (Telegram expires it after a few seconds)
    2. Send a loading message
    3. Compute the ranking
    4. Edit the loading message with the result, or send it as a new message
       if the edit fails
    """
    query = update.callback_query
    interval = Interval.from_callback_data(query.data)
    if interval is None:
        logger.warning("Unknown interval callback: %r", query.data)
        try:
            await query.answer()
        except TelegramError as e:
            logger.warning("answerCallbackQuery failed: %s", e)
        return

    try:
        await query.answer("Calculation started. Please wait...")
    except TelegramError as e:
        # Keep going, the answer is only a toast
        logger.warning("answerCallbackQuery failed: %s", e)

    chat = update.effective_chat
    if chat is None:
        return

    try:
        loading = await context.bot.send_message(
            chat_id=chat.id,
            text=f"⏳ Calculating data for the last *{interval.label}*...",
            parse_mode=ParseMode.MARKDOWN,
        )
    except TelegramError as e:
        logger.error("Could not send loading message: %s", e)
        return

    top = await find_top_gainers(interval.token)
    text = format_gainers(top, interval)

    try:
        await context.bot.edit_message_text(
            chat_id=chat.id,
            message_id=loading.message_id,
            text=text,
            parse_mode=ParseMode.MARKDOWN,
        )
    except TelegramError as e:
        logger.warning("Could not edit loading message: %s", e)
        try:
            await context.bot.send_message(chat_id=chat.id, text=text, parse_mode=ParseMode.MARKDOWN)
        except TelegramError as reply_error:
            logger.error("Fallback message could not be sent: %s", reply_error)
            return

    total = get_request_counter(context).increment()
    logger.info("✔️ List sent (%s). Request count: %d", interval.token, total)


async def error_handler(update: object, context: ContextTypes.DEFAULT_TYPE):
    """
    Log errors raised by handlers so polling keeps running, and tell the
    user something went wrong when there is a chat to reply to.
    """
    update_type = type(update).__name__ if update is not None else 'None'
    logger.error("Unhandled error while processing %s update", update_type, exc_info=context.error)

    if isinstance(update, Update) and update.effective_chat:
        try:
            await context.bot.send_message(
                chat_id=update.effective_chat.id,
                text="Sorry, something went wrong. Please try again.",
            )
        except TelegramError as e:
            logger.warning("Could not send error notice: %s", e)


# ==============================================================================
# LIFECYCLE
# ==============================================================================

async def post_init(app: Application):
    """
    Startup hook.
    - Drop any webhook left from an earlier deployment (polling would get 409 Conflict)
    - Publish the command list
    - Start the keep-alive server if a port is configured
    """
    try:
        await app.bot.delete_webhook()
        logger.info("Webhook cleared.")
    except TelegramError as e:
        logger.warning("Could not clear webhook: %s", e)

    try:
        await app.bot.set_my_commands([
            BotCommand('start', 'Show welcome message'),
            BotCommand(settings.MENU_COMMAND, 'Top gaining coins'),
        ])
    except TelegramError as e:
        logger.warning("Could not set bot commands: %s", e)

    if settings.KEEP_ALIVE_PORT > 0:
        app.bot_data['keep_alive_runner'] = await start_keep_alive(
            settings.KEEP_ALIVE_HOST, settings.KEEP_ALIVE_PORT
        )


async def on_shutdown(app: Application):
    """
    Cleanup function called when bot shuts down.
    Stops the keep-alive server and closes the HTTP session.
    """
    await stop_keep_alive(app.bot_data.pop('keep_alive_runner', None))
    await close_http_session()


def build_application(token: str) -> Application:
    app = (
        Application.builder()
        .token(token)
        .connect_timeout(30)
        .read_timeout(60)
        .post_init(post_init)
        .post_shutdown(on_shutdown)
        .build()
    )
    app.bot_data['request_counter'] = RequestCounter()

    app.add_handler(CommandHandler('start', start_cmd))
    app.add_handler(CommandHandler(settings.MENU_COMMAND, menu_cmd))
    app.add_handler(CallbackQueryHandler(interval_callback, pattern=f"^{CALLBACK_PREFIX}"))
    app.add_error_handler(error_handler)
    return app


def setup_logging():
    handlers = [logging.StreamHandler()]
    if settings.LOG_FILE:
        handlers.append(logging.FileHandler(settings.LOG_FILE))

    logging.basicConfig(
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        level=settings.LOG_LEVEL,
        handlers=handlers,
        force=True,
    )
    # httpx logs every Telegram poll at INFO
    logging.getLogger('httpx').setLevel(logging.WARNING)


# ==============================================================================
# MAIN ENTRY POINT
# ==============================================================================

def main():
    setup_logging()

    if not settings.BOT_TOKEN:
        logger.error("Missing BOT_TOKEN.")
        sys.exit(1)

    app = build_application(settings.BOT_TOKEN)
    logger.info("🤖 Bot is running...")
    app.run_polling(allowed_updates=Update.ALL_TYPES)


if __name__ == '__main__':
    main()
