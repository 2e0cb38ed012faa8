"""Notification channels: Telegram and e-mail delivery."""

from __future__ import annotations

import abc
import asyncio
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from html import escape as html_escape

import aiohttp
import structlog

from src.alerting.formatters import render_text
from src.alerting.types import AlertMessage
from src.core.config import EmailConfig, TelegramConfig
from src.core.types import ChannelKind

logger = structlog.stdlib.get_logger()

# Telegram rejects messages longer than this.
_TELEGRAM_MAX_CHARS = 4096


class NotificationChannel(abc.ABC):
    """Base class for alert delivery channels."""

    kind: ChannelKind

    @abc.abstractmethod
    async def send(self, target: str, msg: AlertMessage) -> bool:
        """Deliver *msg* to *target*. Returns True on success."""

    @abc.abstractmethod
    async def close(self) -> None:
        """Release resources (HTTP sessions, etc.)."""


def render_telegram_html(msg: AlertMessage) -> str:
    """HTML parse-mode text for the Telegram Bot API."""
    text_parts = [f"<b>[{msg.severity.name}] {html_escape(msg.title)}</b>", ""]
    text_parts.extend(
        f"<b>{html_escape(k)}:</b> <code>{html_escape(v)}</code>"
        for k, v in msg.fields.items()
    )
    if msg.body:
        text_parts.append(f"\n<b>Context:</b>\n<pre>{html_escape(msg.body)}</pre>")
    if msg.footer:
        text_parts.append(f"\n<i>{html_escape(msg.footer)}</i>")

    text = "\n".join(text_parts)
    if len(text) > _TELEGRAM_MAX_CHARS:
        # Cutting inside a tag would make Telegram reject the markup.
        text = html_escape(render_text(msg))[:_TELEGRAM_MAX_CHARS]
    return text


class TelegramChannel(NotificationChannel):
    """Delivers alerts via the Telegram Bot API (HTML parse mode)."""

    kind = ChannelKind.TELEGRAM

    def __init__(self, config: TelegramConfig, timeout_secs: float = 10.0) -> None:
        self._token = config.bot_token.get_secret_value()
        self._api_base = config.api_base.rstrip("/")
        self._timeout = aiohttp.ClientTimeout(total=timeout_secs)
        self._session: aiohttp.ClientSession | None = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self._session

    async def send(self, target: str, msg: AlertMessage) -> bool:
        if not self._token or not target:
            logger.warning("telegram_not_configured", has_token=bool(self._token), target=target)
            return False

        url = f"{self._api_base}/bot{self._token}/sendMessage"
        payload = {
            "chat_id": target,
            "text": render_telegram_html(msg),
            "parse_mode": "HTML",
            "disable_web_page_preview": True,
        }

        try:
            session = self._get_session()
            async with session.post(url, json=payload) as resp:
                if resp.status == 200:
                    return True
                body = await resp.text()
                logger.warning(
                    "telegram_send_failed",
                    chat_id=target,
                    status=resp.status,
                    body=body[:200],
                )
                return False
        except Exception:
            logger.exception("telegram_send_error", chat_id=target)
            return False

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None


class EmailChannel(NotificationChannel):
    """Delivers alerts over SMTP (STARTTLS + login) in a worker thread."""

    kind = ChannelKind.EMAIL

    def __init__(self, config: EmailConfig, timeout_secs: float = 10.0) -> None:
        self._config = config
        self._timeout_secs = timeout_secs

    def build_message(self, target: str, msg: AlertMessage) -> MIMEMultipart:
        app = msg.fields.get("App", "unknown")
        mime = MIMEMultipart()
        mime["From"] = self._config.from_address or self._config.username
        mime["To"] = target
        mime["Subject"] = f"[{msg.severity.name}] {msg.title}: {app} - slow process detected"

        details = [
            "",
            "Log details",
            f"Collection: {msg.raw.get('collection', 'N/A')}",
            f"Record ID: {msg.raw.get('record_id', 'N/A')}",
            f"Correlation ID: {msg.fields.get('Correlation ID', 'N/A')}",
        ]
        mime.attach(MIMEText(render_text(msg) + "\n" + "\n".join(details), "plain", "utf-8"))
        return mime

    def _deliver(self, target: str, mime: MIMEMultipart) -> None:
        cfg = self._config
        with smtplib.SMTP(cfg.smtp_host, cfg.smtp_port, timeout=self._timeout_secs) as server:
            if cfg.use_tls:
                server.starttls()
            if cfg.username:
                server.login(cfg.username, cfg.password.get_secret_value())
            server.send_message(mime, to_addrs=[target])

    async def send(self, target: str, msg: AlertMessage) -> bool:
        if not self._config.smtp_host or not target:
            logger.warning("email_not_configured", target=target)
            return False

        mime = self.build_message(target, msg)
        try:
            await asyncio.to_thread(self._deliver, target, mime)
        except (smtplib.SMTPException, OSError):
            logger.exception("email_send_error", to=target)
            return False

        logger.info("email_sent", to=target, subject=mime["Subject"])
        return True

    async def close(self) -> None:
        return None
