"""
Накопитель транскрипта сессии.

Правила:
- текст только растёт (append-only), финальные фрагменты через пробел
- flush идемпотентен: неизменённый текст повторно не пишется
- ошибки flush логируются и не роняют сессию (повтор на следующем тике)
- complete вызывается один раз; после него запись в хранилище не трогаем
- flush'и сериализованы lock'ом: в БД текст попадает в порядке финалов
"""

from __future__ import annotations

import asyncio

from live_transcription_agent.common.logging import get_project_logger
from live_transcription_agent.common.metrics import TRANSCRIPT_FLUSH_TOTAL
from live_transcription_agent.common.time import monotonic
from live_transcription_agent.storage.session_store import TranscriptStore

log = get_project_logger()


class TranscriptAccumulator:
    def __init__(self, *, session_id: str, store: TranscriptStore) -> None:
        self.session_id = session_id
        self._store = store
        self._text = ""
        self._persisted = ""
        self._lock = asyncio.Lock()
        self._pending: set[asyncio.Task] = set()
        self._complete_attempted = False
        self.last_final_at: float | None = None

    @property
    def text(self) -> str:
        return self._text

    @property
    def is_dirty(self) -> bool:
        return self._text != self._persisted

    @property
    def is_completed(self) -> bool:
        return self._complete_attempted

    def on_final(self, text: str) -> str:
        fragment = (text or "").strip()
        if not fragment:
            return self._text
        self._text = f"{self._text} {fragment}" if self._text else fragment
        self.last_final_at = monotonic()
        self.request_flush()
        return self._text

    def request_flush(self) -> None:
        """
        Фоновый flush: не блокирует маршрутизацию аудио.
        """
        if not self.is_dirty or self._complete_attempted:
            return
        task = asyncio.create_task(self.flush())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def flush(self) -> bool:
        async with self._lock:
            snapshot = self._text
            if not snapshot or snapshot == self._persisted or self._complete_attempted:
                return True
            try:
                await self._store.update_transcript(self.session_id, snapshot)
            except Exception as e:
                TRANSCRIPT_FLUSH_TOTAL.labels(result="failed").inc()
                log.warning(
                    "transcript_flush_failed",
                    extra={
                        "payload": {
                            "session_id": self.session_id,
                            "chars": len(snapshot),
                            "err": str(e)[:200],
                        }
                    },
                )
                return False
            self._persisted = snapshot
            TRANSCRIPT_FLUSH_TOTAL.labels(result="ok").inc()
            log.debug(
                "transcript_flushed",
                extra={"payload": {"session_id": self.session_id, "chars": len(snapshot)}},
            )
            return True

    async def drain(self) -> None:
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def finalize(self) -> bool:
        """
        Последний flush перед завершением. Не ретраится.
        """
        await self.drain()
        return await self.flush()

    async def complete(self) -> bool:
        if self._complete_attempted:
            return True
        self._complete_attempted = True
        try:
            await self._store.complete(self.session_id)
        except Exception as e:
            log.error(
                "session_complete_failed",
                extra={"payload": {"session_id": self.session_id, "err": str(e)[:200]}},
            )
            return False
        return True
