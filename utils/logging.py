# utils/logging.py
import logging
import telegram
from telegram.error import TelegramError
import asyncio
import hashlib
import time
from typing import Optional, Dict, Tuple
from config import settings

class NotificationThrottle:
    """Rate limits similar alerts within a rolling notification window"""

    SEND = "send"
    SUPPRESS = "suppress"
    NOTIFY_LIMITED = "notify_limited"

    def __init__(self, window: int, max_similar: int):
        self.window = window
        self.max_similar = max_similar
        # fingerprint -> (count, first_seen)
        self._seen: Dict[str, Tuple[int, float]] = {}

    @staticmethod
    def fingerprint(record: logging.LogRecord) -> str:
        """Generate a unique key for similar errors"""
        error_content = f"{record.levelname}:{record.module}:{record.funcName}:{record.msg}"
        return hashlib.md5(error_content.encode()).hexdigest()

    def check(self, record: logging.LogRecord, now: Optional[float] = None) -> str:
        now = time.time() if now is None else now
        key = self.fingerprint(record)
        count, first_seen = self._seen.get(key, (0, now))

        if now - first_seen >= self.window:
            # Window expired, start fresh
            count, first_seen = 0, now

        count += 1
        self._seen[key] = (count, first_seen)
        self._purge(now)

        if count <= self.max_similar:
            return self.SEND
        if count == self.max_similar + 1:
            return self.NOTIFY_LIMITED
        return self.SUPPRESS

    def _purge(self, now: float):
        expired = [key for key, (_, first_seen) in self._seen.items() if now - first_seen >= self.window]
        for key in expired:
            del self._seen[key]

class TelegramHandler(logging.Handler):
    def __init__(self, token: str, chat_id: str, level: int = logging.ERROR):
        super().__init__(level)
        self.bot = telegram.Bot(token=token)
        self.chat_id = chat_id
        self._queue: Optional[asyncio.Queue] = None
        self._task: Optional[asyncio.Task] = None
        self._throttle = NotificationThrottle(
            settings.NOTIFICATION_WINDOW,
            settings.MAX_SIMILAR_NOTIFICATIONS
        )

    async def _sender(self):
        while True:
            record = await self._queue.get()
            try:
                decision = self._throttle.check(record)
                if decision == NotificationThrottle.SEND:
                    message = self.format(record)
                    # Truncate message if too long
                    if len(message) > 4000:
                        message = message[:3997] + "..."

                    await self.bot.send_message(
                        chat_id=self.chat_id,
                        text=f"🚨 *ALERT*\n```\n{message}\n```",
                        parse_mode='Markdown'
                    )
                elif decision == NotificationThrottle.NOTIFY_LIMITED:
                    await self.bot.send_message(
                        chat_id=self.chat_id,
                        text=f"🔇 *Rate Limited*\nSimilar errors are being suppressed for {self._throttle.window // 60} minutes.",
                        parse_mode='Markdown'
                    )
            except TelegramError as e:
                # Logging through the logger here would loop back into this handler
                print(f"Error sending Telegram message: {e}")
            finally:
                self._queue.task_done()

    def emit(self, record):
        if self._queue is None:
            return
        try:
            self._queue.put_nowait(record)
        except Exception:
            self.handleError(record)

    def start(self):
        """Start the background sender task"""
        if not self._task:
            self._queue = asyncio.Queue(maxsize=100)
            self._task = asyncio.create_task(self._sender())

    async def stop(self):
        """Stop the background sender task"""
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
            self._queue = None

# Create logger
logger = logging.getLogger("block-wave")
logger.setLevel(logging.DEBUG if settings.DEBUG else logging.INFO)

# Console handler
console_handler = logging.StreamHandler()
console_handler.setLevel(logging.DEBUG)
formatter = logging.Formatter(
    '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
console_handler.setFormatter(formatter)
logger.addHandler(console_handler)

# Telegram handler (only for ERROR and CRITICAL)
if settings.telegram_enabled:
    telegram_handler = TelegramHandler(
        token=settings.TELEGRAM_BOT_TOKEN,
        chat_id=settings.TELEGRAM_CHAT_ID,
        level=logging.ERROR
    )
    telegram_handler.setFormatter(formatter)
    logger.addHandler(telegram_handler)

    def start_telegram_handler():
        telegram_handler.start()

    async def stop_telegram_handler():
        await telegram_handler.stop()
else:
    def start_telegram_handler():
        pass

    async def stop_telegram_handler():
        pass
