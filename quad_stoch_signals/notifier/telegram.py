from __future__ import annotations

import asyncio
import aiohttp
from typing import List, Optional
import logging

log = logging.getLogger("telegram")


class TelegramNotifier:
    def __init__(self, token: str, chat_ids: List[str], *, disable_web_page_preview: bool = True):
        self.token = (token or "").strip()
        self.chat_ids = [str(x).strip() for x in (chat_ids or []) if str(x).strip()]
        self.disable_web_page_preview = disable_web_page_preview

    def enabled(self) -> bool:
        return bool(self.token) and bool(self.chat_ids)

    def _payload(self, chat_id: str, text: str, parse_mode: Optional[str]) -> dict:
        payload = {
            "chat_id": chat_id,
            "text": text,
            "disable_web_page_preview": self.disable_web_page_preview,
        }
        if parse_mode:
            payload["parse_mode"] = "MarkdownV2" if parse_mode.upper() == "MARKDOWNV2" else "HTML"
        return payload

    async def send(self, text: str, *, parse_mode: Optional[str] = "HTML") -> int:
        """Send ``text`` to every chat; returns how many deliveries succeeded."""
        if not self.enabled():
            return 0
        url = f"https://api.telegram.org/bot{self.token}/sendMessage"
        ok = 0
        async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=15)) as sess:
            for chat_id in self.chat_ids:
                try:
                    async with sess.post(url, json=self._payload(chat_id, text, parse_mode)) as resp:
                        if resp.status != 200:
                            body = await resp.text()
                            log.warning("telegram_send_failed chat_id=%s status=%s body=%s", chat_id, resp.status, body[:2000])
                            continue
                        ok += 1
                except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
                    log.warning("telegram_send_exception chat_id=%s err=%s", chat_id, e)
        return ok
