"""Structural validation and normalization of account payloads.

Each rule is a plain function returning a (possibly empty) list of
:class:`~users_service.domain.errors.Violation`. The validator runs every
applicable rule and raises a single :class:`ValidationError` carrying all of
them, so clients can fix their input in one round trip.
"""

from __future__ import annotations

from email_validator import EmailNotValidError, validate_email

from .contracts import AccountPatch, CreateAccountInput
from .errors import ValidationError, Violation


def require_text(field: str, value: str | None) -> list[Violation]:
    if value is None:
        return [Violation(field, "required", "must be provided")]
    if not value.strip():
        return [Violation(field, "blank", "must not be blank")]
    return []


def max_length(field: str, value: str | None, limit: int) -> list[Violation]:
    if value is not None and len(value.strip()) > limit:
        return [Violation(field, "too_long", f"must be at most {limit} characters")]
    return []


def email_syntax(field: str, value: str | None) -> list[Violation]:
    if value is None or not value.strip():
        return []
    try:
        validate_email(value.strip(), check_deliverability=False)
    except EmailNotValidError as exc:
        return [Violation(field, "invalid_email", str(exc))]
    return []


class AccountValidator:
    """Checks account payloads and returns their normalized form."""

    def __init__(
        self,
        *,
        max_email_length: int = 60,
        max_name_length: int = 60,
        max_phone_length: int = 15,
        max_password_length: int = 128,
        casefold_keys: bool = True,
    ) -> None:
        self._max_email_length = max_email_length
        self._max_name_length = max_name_length
        self._max_phone_length = max_phone_length
        self._max_password_length = max_password_length
        self._casefold_keys = casefold_keys

    def normalize_key(self, email: str) -> str:
        """Return the unique-key form of an email address."""
        key = email.strip()
        return key.lower() if self._casefold_keys else key

    def validate_create(self, payload: CreateAccountInput) -> CreateAccountInput:
        violations = [
            *self._email_rules(payload.email),
            *self._name_rules(payload.full_name),
            *self._phone_rules(payload.phone),
            *self._password_rules(payload.password),
        ]
        if violations:
            raise ValidationError(violations)
        return CreateAccountInput(
            email=self.normalize_key(payload.email),
            full_name=payload.full_name.strip(),
            phone=payload.phone.strip(),
            password=payload.password,
        )

    def validate_patch(self, patch: AccountPatch) -> AccountPatch:
        """Validate only the supplied fields of a partial update."""
        supplied = patch.supplied()
        if not supplied:
            raise ValidationError(
                [Violation("patch", "empty", "at least one field must be supplied")]
            )

        violations: list[Violation] = []
        if patch.email is not None:
            violations.extend(self._email_rules(patch.email))
        if patch.full_name is not None:
            violations.extend(self._name_rules(patch.full_name))
        if patch.phone is not None:
            violations.extend(self._phone_rules(patch.phone))
        if patch.password is not None:
            violations.extend(self._password_rules(patch.password))
        if violations:
            raise ValidationError(violations)

        return AccountPatch(
            email=self.normalize_key(patch.email) if patch.email is not None else None,
            full_name=patch.full_name.strip() if patch.full_name is not None else None,
            phone=patch.phone.strip() if patch.phone is not None else None,
            password=patch.password,
        )

    def _email_rules(self, value: str | None) -> list[Violation]:
        return [
            *require_text("email", value),
            *max_length("email", value, self._max_email_length),
            *email_syntax("email", value),
        ]

    def _name_rules(self, value: str | None) -> list[Violation]:
        return [
            *require_text("full_name", value),
            *max_length("full_name", value, self._max_name_length),
        ]

    def _phone_rules(self, value: str | None) -> list[Violation]:
        return [
            *require_text("phone", value),
            *max_length("phone", value, self._max_phone_length),
        ]

    def _password_rules(self, value: str | None) -> list[Violation]:
        # Length is checked on the raw value; passwords are never trimmed.
        violations = require_text("password", value)
        if value is not None and len(value) > self._max_password_length:
            violations.append(
                Violation(
                    "password",
                    "too_long",
                    f"must be at most {self._max_password_length} characters",
                )
            )
        return violations
