"""Audio challenge transcription pipeline.

Workflow for one audio clip:
    1. Validate the buffer (size threshold, MP3 framing as a soft check).
    2. Hash the raw bytes and consult the two-tier transcript cache.
    3. On a miss, POST the audio to the Wit.ai speech endpoint with
       bounded, linearly backed-off retries.
    4. Normalise the transcript (spoken digits -> digits).
    5. Store the normalised answer in both cache tiers.

Caching is keyed on audio content only, so identical audio served to
unrelated challenges reuses the stored answer without a network call.
"""

import asyncio
import json
import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import aiohttp

from core.errors import AudioValidationError, CredentialMissing, TranscriptionError
from core.utils import content_digest, short_digest
from solvers.cache import TranscriptCache
from solvers.normalization import normalize

logger = logging.getLogger(__name__)

DEFAULT_API_VERSION = "20230215"
DEFAULT_BASE_URL = "https://api.wit.ai"
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY_SECONDS = 1.0
DEFAULT_MIN_AUDIO_BYTES = 100
DEFAULT_REQUEST_TIMEOUT_SECONDS = 10.0

_LOOSE_TEXT = re.compile(r'"text"\s*:\s*"([^"]*)"')


class AudioValidator:
    """Sanity checks on downloaded challenge audio."""

    def __init__(self, min_bytes: int = DEFAULT_MIN_AUDIO_BYTES) -> None:
        self.min_bytes = min_bytes

    def validate(self, audio: Any) -> bool:
        """Reject empty or undersized buffers.

        A recognised MP3 header (ID3 tag or MPEG frame sync) is only
        preferred; its absence logs a warning and the audio proceeds.

        Raises:
            AudioValidationError: Buffer has the wrong type, is empty,
                or is below ``min_bytes``.
        """
        if not isinstance(audio, (bytes, bytearray, memoryview)):
            raise AudioValidationError("Invalid buffer type")
        size = len(audio)
        if size == 0:
            raise AudioValidationError("Empty audio buffer")
        if size < self.min_bytes:
            raise AudioValidationError(f"Audio buffer too small: {size} bytes")

        head = bytes(audio[:3])
        if head == b"ID3":
            logger.debug("Valid MP3 with ID3 tag")
        elif len(head) >= 2 and head[0] == 0xFF and (head[1] & 0xE0) == 0xE0:
            logger.debug("Valid MP3 with frame sync")
        else:
            logger.warning("Audio header validation uncertain, proceeding...")
        return True


def _decode_chunks(text: str) -> Optional[List[Any]]:
    """Decode back-to-back JSON values (NDJSON or pretty-printed stream).

    Returns ``None`` when any part of *text* is not valid JSON.
    """
    decoder = json.JSONDecoder()
    chunks: List[Any] = []
    idx, end = 0, len(text)
    while idx < end:
        while idx < end and text[idx].isspace():
            idx += 1
        if idx >= end:
            break
        try:
            value, idx = decoder.raw_decode(text, idx)
        except ValueError:
            return None
        chunks.append(value)
    return chunks


def parse_speech_response(data: Any) -> Optional[str]:
    """Extract the transcript from a speech API response body.

    The body is either one JSON object or a stream of JSON chunks.
    Chunks are scanned from last to first; an entry marked
    ``is_final`` wins immediately, otherwise the last chunk carrying a
    ``text`` field is used.  If the stream does not decode, each line
    is tried on its own and lines that are not valid JSON fall back to
    a loose regex, which only yields a non-final candidate.

    Args:
        data: Decoded JSON dict or raw response text.

    Returns:
        The transcript text, or ``None`` if no chunk carried one.
    """
    if not data:
        return None
    if isinstance(data, dict):
        data = [data]
    elif isinstance(data, str):
        chunks = _decode_chunks(data)
        if chunks is None:
            return _parse_lines(data)
        data = chunks
    if not isinstance(data, list):
        return None

    candidate: Optional[str] = None
    for chunk in reversed(data):
        if not isinstance(chunk, dict) or not chunk.get("text"):
            continue
        if chunk.get("is_final") is True:
            return str(chunk["text"]).strip() or None
        if candidate is None:
            candidate = str(chunk["text"])
    return candidate.strip() if candidate and candidate.strip() else None


def _parse_lines(text: str) -> Optional[str]:
    candidate: Optional[str] = None
    for line in reversed(text.strip().splitlines()):
        line = line.strip()
        if not line:
            continue
        try:
            chunk = json.loads(line)
        except ValueError:
            match = _LOOSE_TEXT.search(line)
            if match and match.group(1) and candidate is None:
                candidate = match.group(1)
            continue
        if not isinstance(chunk, dict) or not chunk.get("text"):
            continue
        if chunk.get("is_final") is True:
            return str(chunk["text"]).strip()
        if candidate is None:
            candidate = str(chunk["text"])
    return candidate.strip() if candidate else None


class WitClient:
    """Async client for the Wit.ai ``/speech`` endpoint.

    Attributes:
        token: Wit.ai server access token.
        api_version: Value of the ``v`` query parameter.
        max_retries: Total attempts before giving up.
        retry_delay: Linear backoff base in seconds.
    """

    def __init__(
        self,
        token: str,
        session: Optional[aiohttp.ClientSession] = None,
        base_url: str = DEFAULT_BASE_URL,
        api_version: str = DEFAULT_API_VERSION,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY_SECONDS,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
    ) -> None:
        if not token:
            raise CredentialMissing("Wit.ai token is required")
        self.token = token
        self.session = session
        self.base_url = base_url.rstrip("/")
        self.api_version = api_version
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self.request_timeout = request_timeout

    async def _get_session(self) -> aiohttp.ClientSession:
        if not self.session or self.session.closed:
            self.session = aiohttp.ClientSession()
        return self.session

    async def _post_once(self, audio: bytes) -> str:
        session = await self._get_session()
        url = f"{self.base_url}/speech"
        headers = {
            "Authorization": f"Bearer {self.token}",
            "Content-Type": "audio/mpeg3",
            "Accept": "application/json",
        }
        async with session.post(
            url,
            params={"v": self.api_version},
            data=bytes(audio),
            headers=headers,
            timeout=aiohttp.ClientTimeout(total=self.request_timeout),
        ) as resp:
            body = await resp.text()
            if resp.status < 200 or resp.status >= 300:
                raise TranscriptionError(
                    f"Wit.ai API error: {resp.status} - {body[:200]}"
                )
        text = parse_speech_response(body)
        if not text:
            raise TranscriptionError("No valid text in response")
        return text

    async def transcribe(self, audio: bytes) -> str:
        """POST *audio* and return the raw transcript.

        Retries on non-2xx status, network errors, timeouts and
        responses without text, sleeping ``retry_delay * attempt``
        between attempts.

        Raises:
            TranscriptionError: All attempts failed.
        """
        last_error: Optional[BaseException] = None
        for attempt in range(1, self.max_retries + 1):
            try:
                logger.debug(
                    "Transcription attempt %d/%d", attempt, self.max_retries,
                )
                text = await self._post_once(audio)
                logger.debug("Transcription successful: %r", text)
                return text
            except (TranscriptionError, aiohttp.ClientError, asyncio.TimeoutError) as e:
                last_error = e
                logger.warning("Attempt %d failed: %s", attempt, e)
                if attempt < self.max_retries:
                    delay = self.retry_delay * attempt
                    logger.debug("Retrying in %.1fs...", delay)
                    await asyncio.sleep(delay)

        raise TranscriptionError(
            f"Transcription failed after {self.max_retries} attempts: {last_error}"
        )

    async def close(self) -> None:
        if self.session and not self.session.closed:
            await self.session.close()
            self.session = None


@dataclass
class TranscriptionJob:
    """One clip moving through the pipeline."""

    audio: bytes
    digest: str
    attempt: int = 0


@dataclass
class TranscriptionResult:
    """Answer plus provenance for one clip."""

    text: str
    source: str  # "cache" or "api"
    duration_ms: int
    raw_text: Optional[str] = None

    def metadata(self) -> Dict[str, Any]:
        meta: Dict[str, Any] = {"source": self.source, "duration": self.duration_ms}
        if self.raw_text is not None:
            meta["rawText"] = self.raw_text
        return meta


class TranscriptionPipeline:
    """Validate, cache-check, transcribe and normalise challenge audio.

    A per-digest :class:`asyncio.Lock` serialises overlapping requests
    for the same clip, so concurrent jobs for identical audio issue at
    most one API call and the later ones read the cached answer.

    Args:
        cache: Two-tier transcript cache.
        session: Shared aiohttp session (created lazily if omitted).
        validator: Audio validator; defaults to a 100-byte minimum.
        api_version: Speech API ``v`` parameter.
        base_url: Speech API base URL.
        max_retries: Attempts per clip.
        retry_delay: Linear backoff base in seconds.
        request_timeout: Per-request timeout in seconds.
    """

    def __init__(
        self,
        cache: TranscriptCache,
        session: Optional[aiohttp.ClientSession] = None,
        validator: Optional[AudioValidator] = None,
        api_version: str = DEFAULT_API_VERSION,
        base_url: str = DEFAULT_BASE_URL,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY_SECONDS,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
    ) -> None:
        self.cache = cache
        self.session = session
        self.validator = validator or AudioValidator()
        self.api_version = api_version
        self.base_url = base_url
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.request_timeout = request_timeout
        self._locks: Dict[str, asyncio.Lock] = {}
        # Holders plus waiters per digest; the lock is dropped at zero
        self._lock_users: Dict[str, int] = {}

    @classmethod
    def from_settings(
        cls,
        settings: Any,
        cache: TranscriptCache,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> "TranscriptionPipeline":
        """Build a pipeline from :class:`core.config.SolverSettings`."""
        return cls(
            cache=cache,
            session=session,
            validator=AudioValidator(settings.min_audio_bytes),
            api_version=settings.wit_api_version,
            base_url=settings.wit_base_url,
            max_retries=settings.transcription_max_retries,
            retry_delay=settings.transcription_retry_delay_seconds,
            request_timeout=settings.speech_request_timeout_seconds,
        )

    async def _get_session(self) -> aiohttp.ClientSession:
        if not self.session or self.session.closed:
            self.session = aiohttp.ClientSession()
        return self.session

    def _client(self, credential: str, session: aiohttp.ClientSession) -> WitClient:
        return WitClient(
            credential,
            session=session,
            base_url=self.base_url,
            api_version=self.api_version,
            max_retries=self.max_retries,
            retry_delay=self.retry_delay,
            request_timeout=self.request_timeout,
        )

    async def process(self, audio: bytes, credential: Optional[str]) -> TranscriptionResult:
        """Run the full pipeline and return the answer with metadata.

        Raises:
            AudioValidationError: Audio rejected before any network call.
            CredentialMissing: No credential and no cached answer.
            TranscriptionError: Speech API exhausted its retries or the
                answer normalised to an empty string.
        """
        started = time.monotonic()
        self.validator.validate(audio)
        job = TranscriptionJob(audio=bytes(audio), digest=content_digest(bytes(audio)))

        lock = self._locks.setdefault(job.digest, asyncio.Lock())
        self._lock_users[job.digest] = self._lock_users.get(job.digest, 0) + 1
        try:
            async with lock:
                cached = self.cache.get(job.digest)
                if cached:
                    duration = int((time.monotonic() - started) * 1000)
                    logger.info(
                        "Cache hit for %s (%dms)", short_digest(job.digest), duration,
                    )
                    return TranscriptionResult(text=cached, source="cache", duration_ms=duration)

                if not credential:
                    raise CredentialMissing(
                        "Wit.ai token is missing. Configure WIT_AI_TOKEN."
                    )

                session = await self._get_session()
                job.attempt += 1
                raw_text = await self._client(credential, session).transcribe(job.audio)
                final_text = normalize(raw_text)
                if not final_text:
                    raise TranscriptionError("Normalization produced empty result")

                self.cache.set(job.digest, final_text)
        finally:
            self._lock_users[job.digest] -= 1
            if not self._lock_users[job.digest]:
                del self._lock_users[job.digest]
                self._locks.pop(job.digest, None)

        duration = int((time.monotonic() - started) * 1000)
        logger.info("Transcription complete: %r (%dms)", final_text, duration)
        return TranscriptionResult(
            text=final_text, source="api", duration_ms=duration, raw_text=raw_text,
        )

    async def transcribe(self, audio: bytes, credential: Optional[str]) -> str:
        """Return the normalised transcript for *audio*.

        Raises:
            TranscriptionError: On validation failure or exhaustion.
        """
        result = await self.process(audio, credential)
        return result.text

    async def download_audio(self, url: str) -> bytes:
        """Fetch challenge audio without cookies.

        Raises:
            TranscriptionError: Non-2xx response.
        """
        session = await self._get_session()
        logger.debug("Downloading audio: %s", url)
        async with session.get(
            url,
            headers={"Accept": "audio/mpeg,audio/*,*/*", "Cache-Control": "no-cache"},
            timeout=aiohttp.ClientTimeout(total=self.request_timeout),
        ) as resp:
            if resp.status < 200 or resp.status >= 300:
                raise TranscriptionError(
                    f"Failed to download audio: {resp.status} {resp.reason}"
                )
            data = await resp.read()
        logger.debug("Downloaded %d bytes", len(data))
        return data

    async def close(self) -> None:
        if self.session and not self.session.closed:
            await self.session.close()
            self.session = None
