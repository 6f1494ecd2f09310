"""
Babu Rao, the shop assistant.

The bridge forwards one free-text question at a time to a text
generator and keeps the conversation for the current session only.
Generation and speech-to-text are capabilities that may or may not be
available; when they fail the user gets a fixed reply or guidance text,
never an exception.
"""

from __future__ import annotations

import io
import logging
import os
import threading
import uuid
from typing import List, Optional, Tuple

from schemas import ChatMessage

logger = logging.getLogger(__name__)

GREETING = "Namaste! Main Babu Rao. Aaj dhanda kaisa hai re baba? Kya help karoon?"
FALLBACK_REPLY = "Arre baba, abhi dimaag kaam nahi kar raha. Thodi der baad poochna!"

SYSTEM_PROMPT = (
    "You are Babu Rao, a friendly and slightly dramatic assistant for a small "
    "Indian kirana (general) store. Answer the shopkeeper in short, simple "
    "Hinglish. Help with billing, khata (customer credit), stock and everyday "
    "shop questions. Keep replies under 80 words."
)

UNSUPPORTED_TEXT = "Aapka device voice support nahi karta re baba! Type karke poocho."
PERMISSION_TEXT = "Mike ki permission chahiye re baba! Settings mein jaake mic allow karo."
NETWORK_TEXT = "Internet ka lafda hai re baba, mic nahi chal raha."


class AssistantUnavailable(Exception):
    pass


class SpeechUnavailable(Exception):
    pass


class SpeechPermissionDenied(Exception):
    pass


class SpeechNetworkError(Exception):
    pass


# ---------- Text generation ----------

class TextGenerator:
    def generate(self, prompt: str) -> str:
        raise NotImplementedError


class UnavailableTextGenerator(TextGenerator):
    def generate(self, prompt: str) -> str:
        raise AssistantUnavailable("No text generation service configured")


class OpenAITextGenerator(TextGenerator):
    def __init__(self, client, model: str = "gpt-4o-mini") -> None:
        self.client = client
        self.model = model

    def generate(self, prompt: str) -> str:
        response = self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            temperature=0.7,
        )
        return response.choices[0].message.content or ""


# ---------- Speech to text ----------

class SpeechRecognizer:
    available = True

    def transcribe(self, audio: bytes) -> str:
        raise NotImplementedError


class UnavailableRecognizer(SpeechRecognizer):
    available = False

    def transcribe(self, audio: bytes) -> str:
        raise SpeechUnavailable("Speech recognition is not supported here")


class OpenAITranscriber(SpeechRecognizer):
    """Transcribes one recorded utterance (Hindi/Hinglish)."""

    def __init__(self, client, model: str = "whisper-1", language: str = "hi") -> None:
        self.client = client
        self.model = model
        self.language = language

    def transcribe(self, audio: bytes) -> str:
        import openai

        upload = io.BytesIO(audio)
        upload.name = "utterance.webm"
        try:
            result = self.client.audio.transcriptions.create(
                model=self.model, file=upload, language=self.language,
            )
        except (openai.AuthenticationError, openai.PermissionDeniedError) as e:
            raise SpeechPermissionDenied(str(e)) from e
        except openai.APIConnectionError as e:
            raise SpeechNetworkError(str(e)) from e
        return (result.text or "").strip()


def build_capabilities() -> Tuple[TextGenerator, SpeechRecognizer]:
    """Wire the OpenAI-backed capabilities when an API key is configured."""
    api_key = os.getenv("OPENAI_API_KEY")
    if not api_key:
        logger.info("OPENAI_API_KEY not set; assistant runs without generation or voice")
        return UnavailableTextGenerator(), UnavailableRecognizer()
    from openai import OpenAI

    client = OpenAI(api_key=api_key)
    return (
        OpenAITextGenerator(client, os.getenv("KHATA_ASSISTANT_MODEL", "gpt-4o-mini")),
        OpenAITranscriber(client, os.getenv("KHATA_TRANSCRIBE_MODEL", "whisper-1")),
    )


# ---------- Bridge ----------

def _message(role: str, text: str) -> ChatMessage:
    return ChatMessage(id=uuid.uuid4().hex, role=role, text=text)


class AssistantBridge:
    """Conversation with Babu Rao for the current session.

    Only one question can be outstanding; a second ``send`` while the
    first is running is refused, not queued.
    """

    def __init__(self, generator: TextGenerator, recognizer: Optional[SpeechRecognizer] = None) -> None:
        self.generator = generator
        self.recognizer = recognizer or UnavailableRecognizer()
        self.messages: List[ChatMessage] = [_message("model", GREETING)]
        self.listening = False
        self._busy = threading.Lock()

    @property
    def busy(self) -> bool:
        return self._busy.locked()

    def send(self, text: str) -> Optional[ChatMessage]:
        """Ask one question. Returns the reply, or None if the send was refused."""
        if not (text or "").strip():
            return None
        if not self._busy.acquire(blocking=False):
            return None
        try:
            self.messages.append(_message("user", text))
            try:
                reply_text = self.generator.generate(text)
            except Exception:
                logger.exception("Assistant request failed")
                reply_text = FALLBACK_REPLY
            reply = _message("model", reply_text)
            self.messages.append(reply)
            return reply
        finally:
            self._busy.release()

    def listen(self, audio: bytes) -> Tuple[Optional[ChatMessage], Optional[str]]:
        """Transcribe one utterance and send it.

        Returns ``(reply, None)`` on success or ``(None, guidance)`` when
        the speech capability could not be used.
        """
        if not self.recognizer.available:
            return None, UNSUPPORTED_TEXT
        self.listening = True
        try:
            transcript = self.recognizer.transcribe(audio)
        except SpeechUnavailable:
            return None, UNSUPPORTED_TEXT
        except SpeechPermissionDenied:
            logger.warning("Speech permission denied")
            return None, PERMISSION_TEXT
        except SpeechNetworkError:
            logger.warning("Speech recognition network failure")
            return None, NETWORK_TEXT
        finally:
            self.listening = False
        if not transcript:
            return None, None
        return self.send(transcript), None
