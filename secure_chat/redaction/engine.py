"""PII sanitizer built from an ordered pipeline of independent detectors.

Each detector reports the spans it would mask; the sanitizer replaces every
span with the detector's placeholder and records the category.  Payment
card and national identifier detectors run first and can never be switched
off through user preferences.  Masking is idempotent: no placeholder
contains text that any detector matches.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

from secure_chat.models.chat import PrivacyPreferences
from secure_chat.redaction.names import COMMON_FIRST_NAMES

Span = tuple[int, int]

DEFAULT_ALLOWED_DOMAINS: frozenset[str] = frozenset({"studybuddy.app", "ufs.de"})


class PIICategory(Enum):
    CREDIT_CARD = "credit_card"
    NATIONAL_ID = "national_id"
    EMAIL = "email"
    PHONE = "phone"
    ADDRESS = "address"
    POSTAL_CODE = "postal_code"
    NAME = "name"


# ---------------------------------------------------------------------------
# Detectors
# ---------------------------------------------------------------------------


class PIIDetector(Protocol):
    category: PIICategory
    placeholder: str

    def match(self, text: str) -> list[Span]:
        """Return the character spans to mask, in any order."""


@dataclass(frozen=True)
class RegexDetector:
    category: PIICategory
    placeholder: str
    patterns: tuple[re.Pattern[str], ...]

    def match(self, text: str) -> list[Span]:
        return [
            found.span()
            for pattern in self.patterns
            for found in pattern.finditer(text)
            if self._accept(found)
        ]

    def _accept(self, found: re.Match[str]) -> bool:
        return True


@dataclass(frozen=True)
class EmailDetector(RegexDetector):
    allowed_domains: frozenset[str] = DEFAULT_ALLOWED_DOMAINS

    def _accept(self, found: re.Match[str]) -> bool:
        domain = found.group(0).rsplit("@", 1)[-1].lower()
        return domain not in self.allowed_domains


@dataclass(frozen=True)
class NameDetector:
    """Dictionary lookup over whitespace separated tokens."""

    category: PIICategory = PIICategory.NAME
    placeholder: str = "[NAME ENTFERNT]"
    names: frozenset[str] = COMMON_FIRST_NAMES
    min_length: int = 3

    def match(self, text: str) -> list[Span]:
        spans: list[Span] = []
        for token in re.finditer(r"\S+", text):
            word = token.group(0)
            cleaned = "".join(ch for ch in word.lower() if ch.isalpha())
            if len(cleaned) < self.min_length or cleaned not in self.names:
                continue
            letters = [idx for idx, ch in enumerate(word) if ch.isalpha()]
            spans.append((token.start() + letters[0], token.start() + letters[-1] + 1))
        return spans


CREDIT_CARD_DETECTOR = RegexDetector(
    category=PIICategory.CREDIT_CARD,
    placeholder="[KREDITKARTE ENTFERNT]",
    patterns=(
        # Visa, Mastercard, Discover in 4-digit groups
        re.compile(r"\b(?:4\d{3}|5[1-5]\d{2}|6011|65\d{2})(?:[ -]?\d{4}){3}\b"),
        re.compile(r"\b4\d{12}\b"),
        re.compile(r"\b3[47]\d{2}[ -]?\d{6}[ -]?\d{5}\b"),
        re.compile(r"\b3(?:0[0-5]|[68]\d)\d{11}\b"),
    ),
)

NATIONAL_ID_DETECTOR = RegexDetector(
    category=PIICategory.NATIONAL_ID,
    placeholder="[AUSWEISNUMMER ENTFERNT]",
    patterns=(
        re.compile(r"\b\d{3}-\d{2}-\d{4}\b"),
        # German tax identification number; never starts with 0, which keeps
        # unspaced mobile numbers such as 01711234567 with the phone detector
        re.compile(r"\b[1-9]\d{10}\b"),
    ),
)

_EMAIL_PATTERN = re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")

PHONE_DETECTOR = RegexDetector(
    category=PIICategory.PHONE,
    placeholder="[TELEFONNUMMER ENTFERNT]",
    patterns=(
        # German landline and mobile numbers
        re.compile(
            r"(?<![\w+])(?:\+49|0049|0)[ /-]?(?:\(\d{2,5}\)|\d{2,5})[ /-]?\d{3,}(?:[ -]?\d{2,})?\b"
        ),
        re.compile(r"(?<![\w+])\+[1-9]\d{0,2}[ .-]?\(?\d{1,4}\)?(?:[ .-]?\d{2,4}){2,4}\b"),
        re.compile(r"(?<![\w-])(?:\(\d{3}\)|\d{3})[ .-]\d{3}[ .-]\d{4}\b"),
    ),
)

ADDRESS_DETECTOR = RegexDetector(
    category=PIICategory.ADDRESS,
    placeholder="[ADRESSE ENTFERNT]",
    patterns=(
        re.compile(
            r"\b\d{1,5}[ \t]+(?:[A-Za-zÄÖÜäöüß]+[ \t]+){0,4}?"
            r"(?:Straße|Strasse|Street|Avenue|Road)\b",
            re.IGNORECASE,
        ),
        re.compile(
            r"\b\d{1,5}[ \t]+(?:[A-Za-zÄÖÜäöüß]+[ \t]+){0,4}?(?:Str|St|Ave|Rd)\.",
            re.IGNORECASE,
        ),
        re.compile(
            r"\b(?:[A-ZÄÖÜ][a-zäöüß]+[ \t-])?"
            r"(?:[A-ZÄÖÜ][a-zäöüß]*(?:straße|strasse|str\.|weg|gasse|allee|platz|ring)"
            r"|Straße|Strasse|Str\.|Allee|Platz)"
            r"[ \t]*\d{1,4}[a-zA-Z]?\b"
        ),
    ),
)

POSTAL_CODE_DETECTOR = RegexDetector(
    category=PIICategory.POSTAL_CODE,
    placeholder="[PLZ ENTFERNT]",
    patterns=(re.compile(r"\b\d{5}(?:-\d{4})?\b"),),
)


# ---------------------------------------------------------------------------
# Settings and results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SanitizerSettings:
    mask_emails: bool = True
    mask_phone_numbers: bool = True
    mask_credit_cards: bool = True
    mask_national_ids: bool = True
    mask_addresses: bool = True
    mask_postal_codes: bool = True
    mask_names: bool = False
    allowed_domains: frozenset[str] = DEFAULT_ALLOWED_DOMAINS


@dataclass
class SanitizationResult:
    has_pii: bool
    masked_content: str
    original_content: str
    detected_categories: list[PIICategory] = field(default_factory=list)
    redaction_count: int = 0


def sanitizer_settings_from_preferences(
    preferences: PrivacyPreferences,
    allowed_domains: frozenset[str] = DEFAULT_ALLOWED_DOMAINS,
    mask_names: bool = False,
) -> SanitizerSettings:
    """Derive detector toggles from the user's privacy preferences.

    Sharing personal information turns off email, phone, name and address
    masking.  Card and national identifier masking stay on regardless.
    """
    mask_personal = not preferences.share_personal_info
    return SanitizerSettings(
        mask_emails=mask_personal,
        mask_phone_numbers=mask_personal,
        mask_credit_cards=True,
        mask_national_ids=True,
        mask_addresses=mask_personal,
        mask_postal_codes=mask_personal,
        mask_names=mask_personal and mask_names,
        allowed_domains=frozenset(domain.lower() for domain in allowed_domains),
    )


def build_detectors(settings: SanitizerSettings) -> tuple[PIIDetector, ...]:
    toggles: tuple[tuple[bool, PIIDetector], ...] = (
        (settings.mask_credit_cards, CREDIT_CARD_DETECTOR),
        (settings.mask_national_ids, NATIONAL_ID_DETECTOR),
        (
            settings.mask_emails,
            EmailDetector(
                category=PIICategory.EMAIL,
                placeholder="[E-MAIL ENTFERNT]",
                patterns=(_EMAIL_PATTERN,),
                allowed_domains=settings.allowed_domains,
            ),
        ),
        (settings.mask_phone_numbers, PHONE_DETECTOR),
        (settings.mask_addresses, ADDRESS_DETECTOR),
        (settings.mask_postal_codes, POSTAL_CODE_DETECTOR),
        (settings.mask_names, NameDetector()),
    )
    return tuple(detector for enabled, detector in toggles if enabled)


def mask_spans(text: str, spans: list[Span], placeholder: str) -> tuple[str, int]:
    """Replace merged, non-overlapping spans with ``placeholder``."""
    merged: list[list[int]] = []
    for start, end in sorted(spans):
        if merged and start < merged[-1][1]:
            merged[-1][1] = max(merged[-1][1], end)
        else:
            merged.append([start, end])
    if not merged:
        return text, 0

    parts: list[str] = []
    cursor = 0
    for start, end in merged:
        parts.append(text[cursor:start])
        parts.append(placeholder)
        cursor = end
    parts.append(text[cursor:])
    return "".join(parts), len(merged)


# ---------------------------------------------------------------------------
# Sanitizer
# ---------------------------------------------------------------------------


_MAX_PASSES = 8


class PIISanitizer:
    """Runs the enabled detectors in order over a piece of text.

    Parameters
    ----------
    settings : ``SanitizerSettings``, optional
        Detector toggles and the email allow-list.  Defaults mask every
        category except names.
    """

    def __init__(self, settings: SanitizerSettings | None = None) -> None:
        self._settings = settings or SanitizerSettings()
        self._detectors = build_detectors(self._settings)

    @property
    def settings(self) -> SanitizerSettings:
        return self._settings

    @property
    def detector_count(self) -> int:
        return len(self._detectors)

    def sanitize(self, content: str) -> SanitizationResult:
        masked = content
        categories: list[PIICategory] = []
        hit_count = 0
        # A placeholder can free a neighbour that an earlier detector's
        # boundary checks rejected, so run the pipeline until nothing changes.
        for _ in range(_MAX_PASSES):
            pass_hits = 0
            for detector in self._detectors:
                masked, substitutions = mask_spans(
                    masked, detector.match(masked), detector.placeholder
                )
                if substitutions > 0:
                    pass_hits += substitutions
                    if detector.category not in categories:
                        categories.append(detector.category)
            hit_count += pass_hits
            if pass_hits == 0:
                break
        return SanitizationResult(
            has_pii=bool(categories),
            masked_content=masked,
            original_content=content,
            detected_categories=categories,
            redaction_count=hit_count,
        )

    def is_safe_content(self, content: str) -> bool:
        return not self.sanitize(content).has_pii


def sanitize(content: str, settings: SanitizerSettings | None = None) -> SanitizationResult:
    return PIISanitizer(settings).sanitize(content)


# ---------------------------------------------------------------------------
# Warnings
# ---------------------------------------------------------------------------

_CATEGORY_LABELS: dict[str, dict[PIICategory, str]] = {
    "de-DE": {
        PIICategory.EMAIL: "E-Mail-Adressen",
        PIICategory.PHONE: "Telefonnummern",
        PIICategory.NAME: "Namen",
        PIICategory.ADDRESS: "Adressen",
        PIICategory.CREDIT_CARD: "Kreditkartennummern",
        PIICategory.NATIONAL_ID: "Sozialversicherungsnummern",
        PIICategory.POSTAL_CODE: "Postleitzahlen",
    },
    "en-US": {
        PIICategory.EMAIL: "email addresses",
        PIICategory.PHONE: "phone numbers",
        PIICategory.NAME: "names",
        PIICategory.ADDRESS: "addresses",
        PIICategory.CREDIT_CARD: "credit card numbers",
        PIICategory.NATIONAL_ID: "national ID numbers",
        PIICategory.POSTAL_CODE: "postal codes",
    },
}


def pii_warning(categories: list[PIICategory], language: str = "de-DE") -> str:
    labels = _CATEGORY_LABELS.get(language, _CATEGORY_LABELS["de-DE"])
    names = [labels[category] for category in categories if category in labels]
    if not names:
        return ""
    type_list = ", ".join(names)
    if language == "en-US":
        return f"Personal data ({type_list}) was removed automatically."
    return f"Persönliche Daten ({type_list}) wurden automatisch entfernt."
