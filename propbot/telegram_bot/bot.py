"""
Telegram Bot for prop-firm questions.

Features:
1. Q&A - Ask about prices, rules, payouts of the supported firms
2. Firm picker - Pin a firm with /start so every answer focuses on it
3. Stats - Cache and token optimizer metrics

Usage:
    python -m propbot.telegram_bot.bot
"""

import sys
from pathlib import Path
from typing import List, Optional

from telegram import Update, InlineKeyboardButton, InlineKeyboardMarkup
from telegram.constants import ParseMode
from telegram.ext import (
    Application,
    CommandHandler,
    MessageHandler,
    CallbackQueryHandler,
    ContextTypes,
    filters,
)

from ..errors import UpstreamError
from ..firms import FIRMS, detect_firm
from ..logger import get_logger
from ..pipeline import AnswerPipeline


logger = get_logger(__name__)

# Telegram limit is 4096 characters
MAX_MESSAGE_LENGTH = 4000

FIRM_CALLBACK_PREFIX = 'firm_'
ALL_FIRMS = 'all'

ERROR_MESSAGE = (
    "❌ Lo siento, hubo un error procesando tu pregunta. "
    "Inténtalo de nuevo en unos segundos."
)


def split_message(text: str, max_length: int = MAX_MESSAGE_LENGTH) -> List[str]:
    """Split text on line boundaries into parts no longer than max_length."""
    if len(text) <= max_length:
        return [text]

    parts = []
    current = ""

    for line in text.split('\n'):
        while len(line) > max_length:
            if current:
                parts.append(current)
                current = ""
            parts.append(line[:max_length])
            line = line[max_length:]

        if current and len(current) + len(line) + 1 > max_length:
            parts.append(current)
            current = line
        else:
            current = current + '\n' + line if current else line

    if current:
        parts.append(current)

    return parts


def firm_keyboard() -> InlineKeyboardMarkup:
    """Inline keyboard with one button per firm, two per row."""
    buttons = [
        InlineKeyboardButton(f"{firm.color} {firm.name}", callback_data=f"{FIRM_CALLBACK_PREFIX}{slug}")
        for slug, firm in FIRMS.items()
    ]
    rows = [buttons[i:i + 2] for i in range(0, len(buttons), 2)]
    rows.append([InlineKeyboardButton("🌐 Todas las firmas", callback_data=f"{FIRM_CALLBACK_PREFIX}{ALL_FIRMS}")])
    return InlineKeyboardMarkup(rows)


def resolve_firm(question: str, user_data: Optional[dict]) -> Optional[str]:
    """Firm picked in this chat, else the firm named in the question."""
    if user_data and user_data.get('firm'):
        return user_data['firm']
    return detect_firm(question)


class PropBot:
    """
    Telegram bot over the answer pipeline.

    Provides:
    - Natural language Q&A about prop firms
    - Per-chat firm selection
    - Cache statistics
    """

    def __init__(self, token: str, pipeline: AnswerPipeline):
        """
        Args:
            token: bot token from @BotFather
            pipeline: answer pipeline shared by every chat
        """
        self.token = token
        self.pipeline = pipeline

        # The cache sweep lives as long as the polling loop
        self.app = (
            Application.builder()
            .token(token)
            .post_init(self._post_init)
            .post_shutdown(self._post_shutdown)
            .build()
        )

        self._add_handlers()

    def _add_handlers(self):
        self.app.add_handler(CommandHandler("start", self.start_command))
        self.app.add_handler(CommandHandler("help", self.help_command))
        self.app.add_handler(CommandHandler("stats", self.stats_command))
        self.app.add_handler(CommandHandler("clearcache", self.clearcache_command))

        self.app.add_handler(
            MessageHandler(filters.TEXT & ~filters.COMMAND, self.handle_question)
        )

        # Firm picker buttons
        self.app.add_handler(CallbackQueryHandler(self.button_callback))

    async def _post_init(self, application: Application):
        await self.pipeline.cache.start()

    async def _post_shutdown(self, application: Application):
        await self.pipeline.cache.stop()

    async def start_command(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        """Greet the user and offer the firm picker."""
        welcome_message = (
            "👋 <b>¡Hola!</b> Soy tu asistente de firmas de fondeo.\n\n"
            "Puedo ayudarte con:\n"
            "• 💰 Precios y planes\n"
            "• 📉 Reglas de drawdown\n"
            "• 💸 Retiros y profit split\n"
            "• 🖥 Plataformas\n\n"
            "Elige una firma o pregunta sobre todas:"
        )
        await update.message.reply_text(
            welcome_message,
            parse_mode=ParseMode.HTML,
            reply_markup=firm_keyboard(),
        )

    async def help_command(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        """List commands and example questions."""
        help_text = (
            "📚 <b>Comandos disponibles:</b>\n\n"
            "/start - Elegir firma\n"
            "/stats - Estadísticas de caché\n"
            "/clearcache - Vaciar la caché\n\n"
            "<b>Ejemplos de preguntas:</b>\n"
            "• ¿Cuánto cuesta Apex?\n"
            "• ¿Cuál es el drawdown de Bulenox?\n"
            "• ¿Cómo funcionan los retiros?\n"
            "• Compara Apex vs Tradeify"
        )
        await update.message.reply_text(help_text, parse_mode=ParseMode.HTML)

    async def stats_command(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        """Cache and context optimizer counters."""
        cache_stats = self.pipeline.cache.get_metrics()
        optimizer_stats = self.pipeline.context_filter.get_stats()

        stats_text = (
            "📊 <b>Estadísticas</b>\n\n"
            "<b>Caché:</b>\n"
            f"• Consultas: {cache_stats['total_queries']}\n"
            f"• Hit rate: {cache_stats['hit_rate']:.1%}\n"
            f"• L1 exacta: {cache_stats['exact_hits']} ({cache_stats['sizes']['exact']} entradas)\n"
            f"• L2 semántica: {cache_stats['semantic_hits']} ({cache_stats['sizes']['semantic']} entradas)\n"
            f"• L3 precalculada: {cache_stats['precomputed_hits']} ({cache_stats['sizes']['precomputed']} entradas)\n"
            f"• Tiempo medio: {cache_stats['avg_response_time_ms']:.2f}ms\n\n"
            "<b>Optimizador de contexto:</b>\n"
            f"• Optimizaciones: {optimizer_stats['total_optimizations']}\n"
            f"• Reducción media: {optimizer_stats['avg_token_reduction']:.1f}%\n"
            f"• Salvaguarda activada: {optimizer_stats['safeguard_activations']}"
        )
        await update.message.reply_text(stats_text, parse_mode=ParseMode.HTML)

    async def clearcache_command(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        """Drop L1 and L2 entries; precomputed answers stay."""
        self.pipeline.cache.clear_all()
        await update.message.reply_text("🧹 Caché vaciada.")

    async def button_callback(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        """Handle firm picker buttons."""
        query = update.callback_query
        await query.answer()

        if not query.data or not query.data.startswith(FIRM_CALLBACK_PREFIX):
            return

        slug = query.data[len(FIRM_CALLBACK_PREFIX):]

        if slug == ALL_FIRMS:
            context.user_data.pop('firm', None)
            await query.edit_message_text("🌐 Preguntas sobre todas las firmas. ¿Qué quieres saber?")
            return

        firm = FIRMS.get(slug)
        if firm is None:
            return

        context.user_data['firm'] = slug
        await query.edit_message_text(
            f"{firm.color} <b>{firm.name}</b> seleccionada. ¿Qué quieres saber?",
            parse_mode=ParseMode.HTML,
        )

    async def handle_question(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        """Answer a free-text question for the selected firm."""
        question = (update.message.text or "").strip()
        if not question:
            return

        firm = resolve_firm(question, context.user_data)

        await update.message.reply_chat_action("typing")

        try:
            result = await self.pipeline.answer(question, firm)
        except UpstreamError as e:
            logger.error(f"Question failed ({firm or 'all firms'}): {e}")
            await update.message.reply_text(ERROR_MESSAGE)
            return

        logger.info(
            f"Answered chat {update.effective_chat.id}: tier={result.cache_tier or 'miss'}, "
            f"intent={result.intent_type}, elapsed={result.metrics.elapsed_ms:.0f}ms"
        )

        for part in split_message(result.response_text):
            await update.message.reply_text(part, parse_mode=ParseMode.HTML)

    def run(self):
        logger.info("PropBot polling for updates")
        self.app.run_polling()


def build_bot(settings) -> PropBot:
    """Wire the pipeline from settings."""
    from ..assistant import ResponseAssembler
    from ..cache import ResponseCache
    from ..context_filter import ContextFilter
    from ..data import FirmDatabase
    from ..intent_classifier import IntentClassifier

    database = FirmDatabase(settings.bot.database_path)
    database.init_schema()

    seed_path = settings.bot.seed_data_path
    if seed_path and database.is_empty():
        if Path(seed_path).exists():
            database.load_yaml(seed_path)
        else:
            logger.warning(f"Firm database is empty and seed file {seed_path} does not exist")

    classifier = IntentClassifier(confidence_floor=settings.context.confidence_floor)
    pipeline = AnswerPipeline(
        cache=ResponseCache(settings.cache),
        data_source=database,
        assembler=ResponseAssembler(settings.llm),
        context_filter=ContextFilter(settings.context, classifier),
    )

    return PropBot(settings.bot.telegram_token, pipeline)


if __name__ == "__main__":
    from dotenv import load_dotenv

    from ..config import load_settings
    from ..logger import setup_logging

    load_dotenv()

    settings = load_settings()
    setup_logging(settings.bot.log_level)

    if not settings.bot.telegram_token:
        logger.error("TELEGRAM_BOT_TOKEN not set in .env")
        sys.exit(1)

    build_bot(settings).run()
