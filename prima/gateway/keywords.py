"""
Indonesian keyword matching for patient replies.

Two pure classifiers:
  - ``match_confirmation``  → done / not_yet / invalid
  - ``match_verification``  → unsubscribe / accept / decline / other

Matching is case-insensitive and looks for each curated word or phrase
anywhere in the message, on word boundaries, so "ya saya setuju" and
"Sudah, terima kasih" both match.
"""

from __future__ import annotations

import re
from enum import Enum


class ConfirmationMatch(str, Enum):
    DONE = "done"
    NOT_YET = "not_yet"
    INVALID = "invalid"


class VerificationMatch(str, Enum):
    UNSUBSCRIBE = "unsubscribe"
    ACCEPT = "accept"
    DECLINE = "decline"
    OTHER = "other"


DONE_WORDS: tuple[str, ...] = (
    "sudah", "sudah minum", "sdh", "udah", "udh", "telah", "selesai",
    "done", "sudah diminum",
)

NOT_YET_WORDS: tuple[str, ...] = (
    "belum", "belum minum", "blm", "lupa", "nanti", "tidak minum",
    "belum diminum",
)

ACCEPT_WORDS: tuple[str, ...] = (
    "ya", "iya", "iyaa", "yaa", "yes", "y", "ok", "oke", "okay",
    "setuju", "saya setuju", "boleh", "bersedia", "siap",
)

DECLINE_WORDS: tuple[str, ...] = (
    "tidak", "tdk", "gak", "ga", "nggak", "enggak", "no", "nope",
    "tolak", "menolak",
)

UNSUBSCRIBE_WORDS: tuple[str, ...] = (
    "berhenti", "stop", "keluar", "batal", "cancel", "hapus",
    "unsubscribe", "jangan kirim",
)

# Longest reply still treated as a direct answer when no context is open.
SHORT_REPLY_MAX_WORDS = 4

# A negated accept word ("tidak setuju") is a decline, not an accept.
NEGATED_ACCEPT = re.compile(
    r"\b(?:tidak|tdk|gak|ga|nggak|enggak)\s+(?:setuju|mau|bersedia|boleh|ok|oke)\b"
)


def normalize_text(text: str) -> str:
    """Lowercase, drop punctuation, collapse whitespace."""
    text = re.sub(r"[^\w\s]", " ", (text or "").lower())
    return " ".join(text.split())


def _contains_any(text: str, words: tuple[str, ...]) -> bool:
    for word in words:
        if re.search(rf"\b{re.escape(word)}\b", text):
            return True
    return False


def match_confirmation(text: str) -> ConfirmationMatch:
    """
    Classify a medication-confirmation reply.

    "not yet" words are checked first: a reply such as "sudah makan tapi
    belum minum obat" must never be recorded as taken.
    """
    normalized = normalize_text(text)
    if not normalized:
        return ConfirmationMatch.INVALID
    if _contains_any(normalized, NOT_YET_WORDS):
        return ConfirmationMatch.NOT_YET
    if _contains_any(normalized, DONE_WORDS):
        return ConfirmationMatch.DONE
    return ConfirmationMatch.INVALID


def match_verification(text: str) -> VerificationMatch:
    """
    Classify a verification (consent) reply.

    Precedence is unsubscribe > accept > decline, so
    "ya tapi saya mau berhenti" is an unsubscribe.
    """
    normalized = normalize_text(text)
    if not normalized:
        return VerificationMatch.OTHER
    if _contains_any(normalized, UNSUBSCRIBE_WORDS):
        return VerificationMatch.UNSUBSCRIBE

    negated = bool(NEGATED_ACCEPT.search(normalized))
    remainder = NEGATED_ACCEPT.sub(" ", normalized)
    if _contains_any(remainder, ACCEPT_WORDS):
        return VerificationMatch.ACCEPT
    if negated or _contains_any(remainder, DECLINE_WORDS):
        return VerificationMatch.DECLINE
    return VerificationMatch.OTHER


def is_bare_verification_reply(text: str) -> bool:
    """True when the whole message is a single accept or decline keyword."""
    normalized = normalize_text(text)
    return normalized in ACCEPT_WORDS or normalized in DECLINE_WORDS


def is_short_reply(text: str, max_words: int = SHORT_REPLY_MAX_WORDS) -> bool:
    """
    True for a reply short enough to be a direct answer to a reminder.

    Without an open confirmation window, longer free text ("tolong, sudah
    2 hari saya muntah darah") goes to the classifier instead of being
    matched word by word.
    """
    words = normalize_text(text).split()
    return 0 < len(words) <= max_words
