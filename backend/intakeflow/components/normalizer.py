"""
Normalizer component.

Role: Map a (kind, raw payload) pair into a NormalizedEnvelope.
One pure mapping function per kind. Every mapper keeps an untouched deep copy
of the payload in ``raw`` and always produces a string ``content``.
"""

from __future__ import annotations

import copy
import json
import re
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from intakeflow.components.contracts import (AttachmentRef, InputKind,
                                             NormalizedEnvelope)
from intakeflow.core.errors import NormalizationError

_TAG_RE = re.compile(r"<[^>]+>")
_WS_RE = re.compile(r"\s+")

RECEIVED_AT_KEYS = ("received_at", "receivedAt", "timestamp", "sent_at")


def stringify(value: Any) -> str:
    """Stable text rendering of an arbitrary payload"""
    if isinstance(value, str):
        return value
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    try:
        return json.dumps(value, sort_keys=True, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        pass
    # Keys of mixed types cannot be sorted; circular structures cannot be encoded
    try:
        return json.dumps(value, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        return repr(value)


def _text(raw: Mapping[str, Any], kind: InputKind, *keys: str) -> Optional[str]:
    """First non-empty text field among ``keys``"""
    for key in keys:
        value = raw.get(key)
        if value is None or value == "":
            continue
        if isinstance(value, str):
            return value
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        raise NormalizationError(kind.value, f"field '{key}' must be text, got {type(value).__name__}")
    return None


def _optional_text(raw: Mapping[str, Any], *keys: str) -> Optional[str]:
    """Like ``_text`` for fields the envelope can do without: unreadable values are skipped"""
    for key in keys:
        value = raw.get(key)
        if isinstance(value, str) and value:
            return value
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
    return None


def _int(raw: Mapping[str, Any], kind: InputKind, key: str) -> Optional[int]:
    value = raw.get(key)
    if value is None:
        return None
    if isinstance(value, bool):
        raise NormalizationError(kind.value, f"field '{key}' must be a number")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise NormalizationError(kind.value, f"field '{key}' must be a number")


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            parsed = datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _received_at(raw: Mapping[str, Any]) -> Tuple[datetime, Optional[str]]:
    """
    Receipt time from the first timestamp field present.

    An unreadable timestamp falls back to now; the second element then holds
    the original value for the envelope metadata.
    """
    for key in RECEIVED_AT_KEYS:
        value = raw.get(key)
        if value is None:
            continue
        parsed = _parse_timestamp(value)
        if parsed is None:
            return datetime.now(timezone.utc), stringify(value)
        return parsed, None
    return datetime.now(timezone.utc), None


def _address_list(raw: Mapping[str, Any], kind: InputKind, *keys: str) -> List[str]:
    for key in keys:
        value = raw.get(key)
        if value is None or value == "":
            continue
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        if isinstance(value, (list, tuple)) and all(isinstance(v, str) for v in value):
            return [v.strip() for v in value if v.strip()]
        raise NormalizationError(kind.value, f"field '{key}' must be an address or list of addresses")
    return []


def _attachments(raw: Mapping[str, Any], kind: InputKind) -> List[AttachmentRef]:
    value = raw.get("attachments")
    if value is None:
        return []
    if not isinstance(value, (list, tuple)):
        raise NormalizationError(kind.value, "attachments must be a list")
    refs = []
    for item in value:
        if isinstance(item, str):
            refs.append(AttachmentRef(filename=item))
        elif isinstance(item, Mapping):
            name = item.get("filename") or item.get("name") or "unnamed"
            size = item.get("size")
            refs.append(AttachmentRef(
                filename=str(name),
                size=int(size) if isinstance(size, (int, float)) and not isinstance(size, bool) else None,
                content_type=item.get("content_type") or item.get("type"),
            ))
        else:
            raise NormalizationError(kind.value, f"attachment entries must be objects, got {type(item).__name__}")
    return refs


def _html_to_text(html: str) -> str:
    return _WS_RE.sub(" ", _TAG_RE.sub(" ", html)).strip()


def _join(*parts: Optional[str]) -> str:
    return "\n\n".join(p.strip() for p in parts if p and p.strip())


# ---------------------------------------------------------------------------
# Per-kind mappers: (raw mapping) -> envelope fields
# ---------------------------------------------------------------------------

def _map_email(raw: Mapping[str, Any]) -> Dict[str, Any]:
    kind = InputKind.EMAIL
    subject = _text(raw, kind, "subject")
    body = _text(raw, kind, "body", "text")
    if body is None:
        html = _text(raw, kind, "html")
        body = _html_to_text(html) if html else None
    sender = _optional_text(raw, "from", "sender")
    return {
        "source": sender or "unknown",
        "subject": subject,
        "sender": sender,
        "recipients": _address_list(raw, kind, "to", "recipients"),
        "content": _join(subject, body),
        "attachments": _attachments(raw, kind),
        "metadata": {
            "message_id": _text(raw, kind, "message_id", "messageId"),
            "cc": _address_list(raw, kind, "cc"),
        },
    }


def _map_document(raw: Mapping[str, Any]) -> Dict[str, Any]:
    kind = InputKind.DOCUMENT
    filename = _text(raw, kind, "filename", "file_name", "name")
    text = raw.get("text") or raw.get("extracted_text") or raw.get("content")
    return {
        "source": _text(raw, kind, "uploaded_by", "source") or filename or "unknown",
        "subject": filename,
        "content": text if isinstance(text, str) else "",
        "attachments": _attachments(raw, kind),
        "metadata": {
            "filename": filename,
            "content_type": _text(raw, kind, "content_type", "mime_type"),
            "size": _int(raw, kind, "size"),
            "page_count": _int(raw, kind, "page_count"),
        },
    }


def _map_voice(raw: Mapping[str, Any]) -> Dict[str, Any]:
    kind = InputKind.VOICE
    caller = _optional_text(raw, "caller", "from", "phone")
    return {
        "source": caller or "unknown",
        "sender": caller,
        "content": _text(raw, kind, "transcript", "transcription") or "",
        "metadata": {
            "duration": raw.get("duration"),
            "language": _text(raw, kind, "language"),
            "recording_url": _text(raw, kind, "recording_url", "audio_url"),
        },
    }


def _map_image(raw: Mapping[str, Any]) -> Dict[str, Any]:
    kind = InputKind.IMAGE
    filename = _text(raw, kind, "filename", "file_name")
    return {
        "source": _text(raw, kind, "uploaded_by", "source") or filename or "unknown",
        "subject": filename,
        "content": _text(raw, kind, "caption", "extracted_text", "ocr_text", "description", "alt_text") or "",
        "metadata": {
            "filename": filename,
            "width": _int(raw, kind, "width"),
            "height": _int(raw, kind, "height"),
            "format": _text(raw, kind, "format", "content_type"),
        },
    }


def _map_form(raw: Mapping[str, Any]) -> Dict[str, Any]:
    kind = InputKind.FORM
    fields = raw.get("fields")
    if fields is None:
        fields = raw.get("form_fields", raw.get("form_data", {}))
    if not isinstance(fields, Mapping):
        raise NormalizationError(kind.value, "form fields must be an object")
    form_id = _text(raw, kind, "form_id", "form_name")
    return {
        "source": form_id and f"form:{form_id}" or "form",
        "sender": _optional_text(fields, "email", "name"),
        "content": stringify(dict(fields)),
        "metadata": {"form_id": form_id, "field_count": len(fields)},
    }


def _map_webhook(raw: Mapping[str, Any]) -> Dict[str, Any]:
    kind = InputKind.WEBHOOK
    event = _text(raw, kind, "event", "event_type")
    payload = raw.get("payload", raw.get("data"))
    provider = _text(raw, kind, "provider", "source")
    return {
        "source": provider or (f"webhook:{event}" if event else "webhook"),
        "subject": event,
        "content": stringify(payload if payload is not None else dict(raw)),
        "metadata": {"event": event, "webhook_id": _text(raw, kind, "webhook_id"), "provider": provider},
    }


def _map_sms(raw: Mapping[str, Any]) -> Dict[str, Any]:
    kind = InputKind.SMS
    sender = _optional_text(raw, "from", "phone", "phone_number")
    return {
        "source": sender or "unknown",
        "sender": sender,
        "recipients": _address_list(raw, kind, "to"),
        "content": _text(raw, kind, "body", "text", "message") or "",
        "metadata": {"provider": _text(raw, kind, "provider")},
    }


def _map_chat(raw: Mapping[str, Any]) -> Dict[str, Any]:
    kind = InputKind.CHAT
    author = _optional_text(raw, "author", "user", "sender", "from")
    channel = _text(raw, kind, "channel")
    return {
        "source": author or channel or "unknown",
        "sender": author,
        "content": _text(raw, kind, "message", "text", "body") or "",
        "metadata": {
            "thread_id": _text(raw, kind, "thread_id", "thread", "conversation_id"),
            "channel": channel,
        },
    }


def _map_api(raw: Mapping[str, Any]) -> Dict[str, Any]:
    kind = InputKind.API
    endpoint = _text(raw, kind, "endpoint")
    content = _text(raw, kind, "query", "text", "message")
    if content is None:
        for key in ("body", "payload", "data"):
            if raw.get(key) is not None:
                content = stringify(raw[key])
                break
    return {
        "source": endpoint or "api",
        "content": content or "",
        "metadata": {"endpoint": endpoint, "method": _text(raw, kind, "method")},
    }


_MAPPERS: Dict[InputKind, Callable[[Mapping[str, Any]], Dict[str, Any]]] = {
    InputKind.EMAIL: _map_email,
    InputKind.DOCUMENT: _map_document,
    InputKind.VOICE: _map_voice,
    InputKind.IMAGE: _map_image,
    InputKind.FORM: _map_form,
    InputKind.WEBHOOK: _map_webhook,
    InputKind.SMS: _map_sms,
    InputKind.CHAT: _map_chat,
    InputKind.API: _map_api,
}


class Normalizer:
    component_name = "normalizer"

    def normalize(self, kind: InputKind, raw: Any) -> NormalizedEnvelope:
        """
        Build the canonical envelope for ``raw``.

        Raises:
            NormalizationError: the payload is malformed for its kind.
        """
        try:
            preserved = copy.deepcopy(raw)
        except Exception as e:
            raise NormalizationError(kind.value, f"payload cannot be copied: {e}") from e

        if kind is InputKind.UNKNOWN:
            return NormalizedEnvelope(
                kind=kind,
                content=stringify(raw),
                raw=preserved,
                metadata={"payload_type": type(raw).__name__},
            )

        if not isinstance(raw, Mapping):
            raise NormalizationError(kind.value, f"expected an object, got {type(raw).__name__}")

        fields = _MAPPERS[kind](raw)
        received_at, unparsed = _received_at(raw)
        metadata = dict(fields.get("metadata", {}), received_at_unparsed=unparsed)
        fields["metadata"] = {k: v for k, v in metadata.items() if v is not None}
        return NormalizedEnvelope(
            kind=kind,
            received_at=received_at,
            raw=preserved,
            **fields,
        )


def normalize(kind: InputKind, raw: Any) -> NormalizedEnvelope:
    return Normalizer().normalize(kind, raw)
