"""Tagged content envelope carried in a message's single ``content`` string.

Wire format (version 1, field order is fixed per kind)::

    <text>                                    plain text, no tag
    POST_SHARE|<postId>|<imageUrl>|<caption>
    PHOTO_SHARE|<imageUrl>
    VOICE_MESSAGE|<audioUrl>

Fields are not escaped. Encoding refuses any field containing the separator;
decoding never raises and falls back to plain text for anything it does not
recognise.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Union

from chat_sync.domain.value_objects.enums import ContentKind

SEPARATOR = "|"
POST_SHARE_TAG = "POST_SHARE"
PHOTO_SHARE_TAG = "PHOTO_SHARE"
VOICE_MESSAGE_TAG = "VOICE_MESSAGE"


@dataclass(frozen=True, slots=True)
class TextContent:
    text: str

    @property
    def kind(self) -> ContentKind:
        return ContentKind.TEXT


@dataclass(frozen=True, slots=True)
class PhotoContent:
    image_url: str

    @property
    def kind(self) -> ContentKind:
        return ContentKind.PHOTO


@dataclass(frozen=True, slots=True)
class VoiceContent:
    audio_url: str

    @property
    def kind(self) -> ContentKind:
        return ContentKind.VOICE


@dataclass(frozen=True, slots=True)
class PostShareContent:
    post_id: str
    image_url: str
    caption: str = ""

    @property
    def kind(self) -> ContentKind:
        return ContentKind.POST


MessageContent = Union[TextContent, PhotoContent, VoiceContent, PostShareContent]


def _check_field(name: str, value: str) -> str:
    if SEPARATOR in value:
        raise ValueError(f"{name} must not contain {SEPARATOR!r}")
    return value


def _join(tag: str, *fields: str) -> str:
    return SEPARATOR.join((tag, *fields))


def encode(content: MessageContent) -> str:
    """Serialize typed content into the wire string."""
    if isinstance(content, TextContent):
        return content.text
    if isinstance(content, PhotoContent):
        return _join(PHOTO_SHARE_TAG, _check_field("image_url", content.image_url))
    if isinstance(content, VoiceContent):
        return _join(VOICE_MESSAGE_TAG, _check_field("audio_url", content.audio_url))
    if isinstance(content, PostShareContent):
        return _join(
            POST_SHARE_TAG,
            _check_field("post_id", content.post_id),
            _check_field("image_url", content.image_url),
            _check_field("caption", content.caption),
        )
    raise TypeError(f"unsupported content type: {type(content).__name__}")


def encode_fields(kind: ContentKind, **fields: Any) -> str:
    """Build and encode content from a kind tag and keyword fields."""
    if kind == ContentKind.TEXT:
        return encode(TextContent(text=fields["text"]))
    if kind == ContentKind.PHOTO:
        return encode(PhotoContent(image_url=fields["image_url"]))
    if kind == ContentKind.VOICE:
        return encode(VoiceContent(audio_url=fields["audio_url"]))
    return encode(
        PostShareContent(
            post_id=fields["post_id"],
            image_url=fields["image_url"],
            caption=fields.get("caption") or "",
        )
    )


def decode(raw: str) -> MessageContent:
    """Parse a wire string. Total: unknown or malformed tags become text."""
    if not isinstance(raw, str):
        return TextContent(text="" if raw is None else str(raw))

    tag, sep, rest = raw.partition(SEPARATOR)
    if not sep:
        return TextContent(text=raw)

    if tag == PHOTO_SHARE_TAG:
        url = rest.split(SEPARATOR, 1)[0]
        if url:
            return PhotoContent(image_url=url)
    elif tag == VOICE_MESSAGE_TAG:
        url = rest.split(SEPARATOR, 1)[0]
        if url:
            return VoiceContent(audio_url=url)
    elif tag == POST_SHARE_TAG:
        # caption keeps any trailing separators already on the wire
        parts = rest.split(SEPARATOR, 2)
        if len(parts) >= 2 and parts[0] and parts[1]:
            caption = parts[2] if len(parts) == 3 else ""
            return PostShareContent(post_id=parts[0], image_url=parts[1], caption=caption)

    return TextContent(text=raw)
