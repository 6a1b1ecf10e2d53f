"""
Type Detector component.

Role: Classify a raw payload into one InputKind.
Pure and total: no network or AI calls, every payload maps to exactly one kind.
"""

from __future__ import annotations

import re
from typing import Any, Callable, List, Mapping, Optional, Tuple

from intakeflow.components.contracts import InputKind

KIND_TAG_KEYS = ("kind", "input_kind", "type")

KIND_ALIASES = {
    "mail": InputKind.EMAIL,
    "e-mail": InputKind.EMAIL,
    "pdf": InputKind.DOCUMENT,
    "file": InputKind.DOCUMENT,
    "audio": InputKind.VOICE,
    "photo": InputKind.IMAGE,
    "text_message": InputKind.SMS,
}

AUDIO_EXTENSIONS = {"mp3", "wav", "m4a", "ogg", "flac", "aac"}
IMAGE_EXTENSIONS = {"jpg", "jpeg", "png", "gif", "webp", "tiff", "bmp", "heic"}

_PHONE_RE = re.compile(r"^\+?[\d\s().-]{7,}$")


def _present(raw: Mapping[str, Any], *keys: str) -> bool:
    for key in keys:
        value = raw.get(key)
        if value is not None and value != "" and value != [] and value != {}:
            return True
    return False


def _looks_like_phone(value: Any) -> bool:
    return isinstance(value, str) and bool(_PHONE_RE.match(value.strip()))


def _extension(raw: Mapping[str, Any]) -> Optional[str]:
    filename = raw.get("filename") or raw.get("file_name")
    if isinstance(filename, str) and "." in filename:
        return filename.rsplit(".", 1)[-1].lower()
    return None


def _content_type(raw: Mapping[str, Any]) -> str:
    value = raw.get("content_type") or raw.get("mime_type") or ""
    return value.lower() if isinstance(value, str) else ""


def kind_from_tag(raw: Mapping[str, Any]) -> Optional[InputKind]:
    """Explicit kind tag, if it names a known kind"""
    for key in KIND_TAG_KEYS:
        tag = raw.get(key)
        if not isinstance(tag, str):
            continue
        tag = tag.strip().lower()
        if tag in KIND_ALIASES:
            return KIND_ALIASES[tag]
        try:
            kind = InputKind(tag)
        except ValueError:
            continue
        if kind is not InputKind.UNKNOWN:
            return kind
    return None


def _is_mail(raw: Mapping[str, Any]) -> bool:
    if not _present(raw, "from", "to", "sender", "recipients"):
        return False
    if _present(raw, "subject"):
        return True
    if not _present(raw, "body", "text", "html"):
        return False
    # Phone-addressed bodies without a subject are text messages
    addresses = [raw.get(k) for k in ("from", "to", "sender") if raw.get(k)]
    return not all(_looks_like_phone(a) for a in addresses)


def _is_audio(raw: Mapping[str, Any]) -> bool:
    if _present(raw, "audio", "audio_url", "recording_url", "transcript", "transcription"):
        return True
    return _extension(raw) in AUDIO_EXTENSIONS or _content_type(raw).startswith("audio/")


def _is_image(raw: Mapping[str, Any]) -> bool:
    if _present(raw, "image", "image_url", "image_data"):
        return True
    return _extension(raw) in IMAGE_EXTENSIONS or _content_type(raw).startswith("image/")


def _is_document(raw: Mapping[str, Any]) -> bool:
    return _present(raw, "filename", "file_name", "file", "file_url", "document")


def _is_webhook(raw: Mapping[str, Any]) -> bool:
    return _present(raw, "event", "event_type", "webhook_id")


def _is_form(raw: Mapping[str, Any]) -> bool:
    return _present(raw, "form_id", "form_fields") or isinstance(raw.get("fields"), Mapping)


def _is_sms(raw: Mapping[str, Any]) -> bool:
    has_phone = _present(raw, "phone", "phone_number") or any(
        _looks_like_phone(raw.get(k)) for k in ("from", "to")
    )
    return has_phone and _present(raw, "body", "text", "message")


def _is_chat(raw: Mapping[str, Any]) -> bool:
    return _present(raw, "thread", "thread_id", "channel", "conversation_id") and _present(
        raw, "message", "text"
    )


def _is_api(raw: Mapping[str, Any]) -> bool:
    return _present(raw, "endpoint", "query")


# Evaluated in order; the first matching rule wins.
DETECTION_RULES: List[Tuple[InputKind, Callable[[Mapping[str, Any]], bool]]] = [
    (InputKind.EMAIL, _is_mail),
    (InputKind.VOICE, _is_audio),
    (InputKind.IMAGE, _is_image),
    (InputKind.DOCUMENT, _is_document),
    (InputKind.WEBHOOK, _is_webhook),
    (InputKind.FORM, _is_form),
    (InputKind.SMS, _is_sms),
    (InputKind.CHAT, _is_chat),
    (InputKind.API, _is_api),
]


class TypeDetector:
    component_name = "type_detector"

    def detect(self, raw: Any) -> InputKind:
        if not isinstance(raw, Mapping):
            return InputKind.UNKNOWN

        tagged = kind_from_tag(raw)
        if tagged is not None:
            return tagged

        for kind, matches in DETECTION_RULES:
            if matches(raw):
                return kind
        return InputKind.UNKNOWN


def detect(raw: Any) -> InputKind:
    return TypeDetector().detect(raw)
