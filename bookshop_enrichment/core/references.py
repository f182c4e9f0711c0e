"""Provider reference tokens.

Google Places hands out two incompatible token shapes: opaque legacy strings
(``ChIJ...`` place ids, ``Aap_...`` photo references) and hierarchical
resource names from the v1 API (``places/ChIJ...``,
``places/ChIJ.../photos/AXCi...``). Tokens are classified exactly once into
one of the variants below; call sites branch on the variant type, never on
the raw string.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Union
from urllib.parse import quote

RESOURCE_NAME_PREFIX = "places/"
MEDIA_SUFFIX = "/media"
MIN_PHOTO_REFERENCE_LENGTH = 10
MAX_PHOTO_REFERENCE_LENGTH = 2000

_RESOURCE_NAME_RE = re.compile(r"^places/[^/\s]+(?:/photos/[^/\s]+)?(?:/media)?$")


class ValidationError(ValueError):
    """Raised for malformed tokens or parameters, before any network call."""


@dataclass(frozen=True, slots=True)
class LegacyReference:
    token: str

    @property
    def encoded(self) -> str:
        return quote(self.token, safe="")


@dataclass(frozen=True, slots=True)
class ResourceName:
    path: str

    @property
    def is_photo(self) -> bool:
        return "/photos/" in self.path

    @property
    def media_path(self) -> str:
        if self.path.endswith(MEDIA_SUFFIX):
            return self.path
        return f"{self.path}{MEDIA_SUFFIX}"

    @property
    def resource_path(self) -> str:
        if self.path.endswith(MEDIA_SUFFIX):
            return self.path[: -len(MEDIA_SUFFIX)]
        return self.path


ProviderReference = Union[LegacyReference, ResourceName]


def classify_reference(raw: str) -> ProviderReference:
    token = raw.strip()
    if not token:
        raise ValidationError("reference token must be a non-empty string")
    if token.startswith(RESOURCE_NAME_PREFIX):
        if not _RESOURCE_NAME_RE.match(token):
            raise ValidationError(f"malformed resource name: {token[:80]}")
        return ResourceName(path=token)
    return LegacyReference(token=token)


def classify_place_reference(raw: str) -> ProviderReference:
    reference = classify_reference(raw)
    if isinstance(reference, ResourceName) and reference.is_photo:
        raise ValidationError("resource name identifies a photo, not a place")
    return reference


def classify_photo_reference(raw: str | None) -> ProviderReference:
    if not isinstance(raw, str) or not raw.strip():
        raise ValidationError("photo_reference parameter is required")
    token = raw.strip()
    if len(token) < MIN_PHOTO_REFERENCE_LENGTH or len(token) > MAX_PHOTO_REFERENCE_LENGTH:
        raise ValidationError(
            "Photo reference length must be between "
            f"{MIN_PHOTO_REFERENCE_LENGTH} and {MAX_PHOTO_REFERENCE_LENGTH} characters, got {len(token)}"
        )
    reference = classify_reference(token)
    if isinstance(reference, ResourceName) and not reference.is_photo:
        raise ValidationError("resource name does not identify a photo")
    return reference
