"""
Patient Resolution: maps an inbound WhatsApp number to an active Patient.

Numbers are normalised to a digits-only, country-code-prefixed form
(``08123…`` → ``628123…``).  Stored numbers are not guaranteed to be in
that form, so the lookup also tries the local ``0…`` alternative.
"""

from __future__ import annotations

import logging
import re

from sqlalchemy import select
from sqlalchemy.orm import Session

from prima import settings
from prima.db.models import Patient

logger = logging.getLogger("gateway.patient_resolver")


def normalize_phone(raw: str, country_code: str | None = None) -> str:
    """Digits only, local trunk prefix replaced by the country code."""
    country_code = country_code or settings.DEFAULT_COUNTRY_CODE
    digits = re.sub(r"\D", "", raw or "")
    if not digits:
        return ""
    if digits.startswith("0"):
        return country_code + digits.lstrip("0")
    if digits.startswith(country_code):
        return digits
    return country_code + digits


def phone_alternatives(canonical: str, country_code: str | None = None) -> list[str]:
    """Every stored form a canonical number may appear under."""
    country_code = country_code or settings.DEFAULT_COUNTRY_CODE
    forms = [canonical]
    if canonical.startswith(country_code):
        local = "0" + canonical[len(country_code):]
        forms.extend([local, "+" + canonical])
    return forms


def mask_phone(phone: str) -> str:
    """Keep the last four digits for log lines."""
    if len(phone) <= 4:
        return "****"
    return "*" * (len(phone) - 4) + phone[-4:]


class PatientResolver:
    """Looks up the active Patient owning a phone number."""

    def __init__(self, db: Session, country_code: str | None = None) -> None:
        self._db = db
        self._country_code = country_code or settings.DEFAULT_COUNTRY_CODE

    def normalize(self, raw: str) -> str:
        return normalize_phone(raw, self._country_code)

    def resolve(self, raw_phone: str) -> Patient | None:
        """
        Return the active patient for ``raw_phone``.

        Returns None when nobody matches.  Several matches should not
        happen; the oldest record wins and a warning is logged.
        """
        canonical = self.normalize(raw_phone)
        if not canonical:
            return None

        candidates = phone_alternatives(canonical, self._country_code)
        patients = list(
            self._db.scalars(
                select(Patient)
                .where(Patient.phone_number.in_(candidates), Patient.is_active.is_(True))
                .order_by(Patient.created_at.asc())
            )
        )
        if not patients:
            logger.info("No active patient for %s", mask_phone(canonical))
            return None
        if len(patients) > 1:
            logger.warning(
                "Phone %s matches %d active patients; using %s",
                mask_phone(canonical), len(patients), patients[0].id,
            )
        return patients[0]
