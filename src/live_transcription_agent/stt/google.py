"""
Google Cloud Speech-to-Text (streaming_recognize).

Что делает:
- креды из GOOGLE_APPLICATION_CREDENTIALS_JSON (service account JSON целиком)
- LINEAR16 / 16 kHz, ar-SA + диалекты, пунктуация, диаризация, interim-результаты
- блокирующий gRPC-стрим крутится в отдельном daemon-потоке на соединение
- аудио передаётся в поток через ограниченную thread-safe очередь (drop-oldest)
- ответы/ошибки возвращаются в event loop через call_soon_threadsafe

Готовность: gRPC начинает вычитывать генератор запросов уже после конфигурационного
запроса — это и есть сигнал, что можно слать аудио.

Лимит жизни стрима (~5 минут) Google отдаёт как OutOfRange — классифицируем как
transient, пересоздание делает контроллер.
"""

from __future__ import annotations

import asyncio
import json
import queue
import threading
from collections.abc import Iterator

from google.api_core import exceptions as gexc
from google.cloud import speech
from google.oauth2 import service_account

from live_transcription_agent.common.errors import (
    ProviderError,
    ProviderFatalError,
    ProviderTransientError,
    ProviderUnavailableError,
)
from live_transcription_agent.common.logging import get_stt_logger
from live_transcription_agent.stt.base import (
    ProviderConfig,
    StreamingConnection,
    StreamingProvider,
    TranscriptEvent,
)

log = get_stt_logger()

_FATAL_ERRORS: tuple[type[Exception], ...] = (
    gexc.Unauthenticated,
    gexc.PermissionDenied,
    gexc.InvalidArgument,
    gexc.NotFound,
    gexc.ResourceExhausted,
)

_TRANSIENT_ERRORS: tuple[type[Exception], ...] = (
    gexc.ServiceUnavailable,
    gexc.DeadlineExceeded,
    gexc.InternalServerError,
    gexc.Aborted,
    gexc.OutOfRange,
    gexc.Unknown,
    gexc.Cancelled,
)


def classify_google_error(e: Exception) -> ProviderError:
    """
    gRPC/HTTP ошибка Google -> ProviderError с признаком retryable.
    Неизвестные ошибки считаем временными.
    """
    details = {"provider": "google", "error_type": type(e).__name__}
    message = str(getattr(e, "message", None) or e)[:300]
    if isinstance(e, _FATAL_ERRORS):
        return ProviderFatalError(message, details=details)
    if isinstance(e, _TRANSIENT_ERRORS):
        return ProviderTransientError(message, details=details)
    return ProviderTransientError(message, details=details)


def load_credentials(raw_json: str | None) -> service_account.Credentials:
    if not raw_json:
        raise ProviderUnavailableError(
            "GOOGLE_APPLICATION_CREDENTIALS_JSON не задан", retryable=False
        )
    try:
        info = json.loads(raw_json)
    except ValueError as e:
        raise ProviderUnavailableError(
            "GOOGLE_APPLICATION_CREDENTIALS_JSON не является JSON", retryable=False
        ) from e
    if not isinstance(info, dict) or not info.get("type") or not info.get("project_id"):
        raise ProviderUnavailableError(
            "Неверный формат credentials: нет type/project_id", retryable=False
        )
    try:
        return service_account.Credentials.from_service_account_info(info)
    except (ValueError, KeyError) as e:
        raise ProviderUnavailableError(
            "Не удалось загрузить service account", retryable=False
        ) from e


def build_streaming_config(config: ProviderConfig) -> speech.StreamingRecognitionConfig:
    recognition = speech.RecognitionConfig(
        encoding=speech.RecognitionConfig.AudioEncoding.LINEAR16,
        sample_rate_hertz=config.sample_rate,
        language_code=config.language_code,
        alternative_language_codes=list(config.alternative_language_codes),
        enable_automatic_punctuation=config.enable_punctuation,
        model=config.model,
    )
    if config.diarization_enabled:
        recognition.diarization_config = speech.SpeakerDiarizationConfig(
            enable_speaker_diarization=True,
            min_speaker_count=config.min_speakers,
            max_speaker_count=config.max_speakers,
        )
    return speech.StreamingRecognitionConfig(
        config=recognition,
        interim_results=config.interim_results,
    )


_STOP = object()


class GoogleStreamingConnection(StreamingConnection):
    def __init__(self, *, client: speech.SpeechClient, config: ProviderConfig) -> None:
        super().__init__(config=config)
        self._client = client
        self._streaming_config = build_streaming_config(config)
        self._audio: queue.Queue = queue.Queue(maxsize=config.send_queue_max_chunks)
        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None
        self._stop_requested = False

    async def _start(self) -> None:
        self._loop = asyncio.get_running_loop()
        self._thread = threading.Thread(
            target=self._run_stream,
            name=f"google-stt-{self.connection_id}",
            daemon=True,
        )
        self._thread.start()

    def _send(self, chunk: bytes) -> None:
        self._put_nowait(chunk)

    async def _half_close(self) -> None:
        # Google дошлёт последние результаты и закроет стрим сам
        self._request_stop()

    async def _shutdown(self) -> None:
        self._request_stop()

    def _request_stop(self) -> None:
        # генератор запросов выходит только по стоп-маркеру
        if self._stop_requested:
            return
        self._stop_requested = True
        self._put_nowait(_STOP)

    # ---------------------------------------------------------------------
    # очередь аудио (drop-oldest)
    # ---------------------------------------------------------------------
    def _put_nowait(self, item: object) -> None:
        while True:
            try:
                self._audio.put_nowait(item)
                return
            except queue.Full:
                try:
                    dropped = self._audio.get_nowait()
                except queue.Empty:
                    continue
                if dropped is _STOP:
                    # стоп важнее аудио
                    self._audio.put_nowait(_STOP)
                    return
                self._note_dropped()

    # ---------------------------------------------------------------------
    # поток gRPC
    # ---------------------------------------------------------------------
    def _call_in_loop(self, fn, *args) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        try:
            loop.call_soon_threadsafe(fn, *args)
        except RuntimeError:
            # loop уже остановлен (shutdown процесса)
            log.debug(
                "stt_loop_closed",
                extra={"payload": {"connection_id": self.connection_id}},
            )

    def _requests(self) -> Iterator[speech.StreamingRecognizeRequest]:
        self._call_in_loop(self._mark_ready)
        while True:
            item = self._audio.get()
            if item is _STOP:
                return
            yield speech.StreamingRecognizeRequest(audio_content=item)

    def _run_stream(self) -> None:
        try:
            responses = self._client.streaming_recognize(
                config=self._streaming_config,
                requests=self._requests(),
            )
            for response in responses:
                for result in response.results:
                    if not result.alternatives:
                        continue
                    alt = result.alternatives[0]
                    event = TranscriptEvent(
                        text=alt.transcript,
                        is_final=bool(result.is_final),
                        confidence=alt.confidence if result.is_final else None,
                    )
                    self._call_in_loop(self._emit, event)
        except gexc.GoogleAPICallError as e:
            err = classify_google_error(e)
            log.warning(
                "google_stt_stream_error",
                extra={
                    "payload": {
                        "connection_id": self.connection_id,
                        "error_type": type(e).__name__,
                        "retryable": err.retryable,
                        "err": str(e)[:200],
                    }
                },
            )
            self._call_in_loop(self._fail, err)
            return
        except Exception as e:
            log.error(
                "google_stt_stream_crashed",
                extra={"payload": {"connection_id": self.connection_id, "err": str(e)[:200]}},
                exc_info=True,
            )
            self._call_in_loop(self._fail, ProviderTransientError(str(e)[:300]))
            return
        finally:
            # поток gRPC, читающий запросы, иначе остаётся в _audio.get()
            self._request_stop()
        self._call_in_loop(self._end_stream, "provider_closed")


class GoogleStreamingProvider(StreamingProvider):
    name = "google"

    def __init__(self, *, credentials_json: str | None) -> None:
        self._credentials_json = credentials_json
        self._client: speech.SpeechClient | None = None

    def _get_client(self) -> speech.SpeechClient:
        if self._client is None:
            credentials = load_credentials(self._credentials_json)
            try:
                self._client = speech.SpeechClient(credentials=credentials)
            except gexc.GoogleAPIError as e:
                raise ProviderUnavailableError(
                    "Не удалось создать SpeechClient", details={"err": str(e)[:200]}
                ) from e
            log.info(
                "google_stt_client_ready",
                extra={"payload": {"project_id": credentials.project_id}},
            )
        return self._client

    async def open(self, config: ProviderConfig) -> StreamingConnection:
        client = self._get_client()
        conn = GoogleStreamingConnection(client=client, config=config)
        await conn.start()
        return conn
