"""Service for resolving and updating per-user scheduler settings."""
import logging
import math
import re
from dataclasses import dataclass
from typing import Optional, Tuple

from sqlalchemy.orm import Session

from wordsrs.config import settings
from wordsrs.exceptions import ValidationError
from wordsrs.models.models import UserSrsSettings
from wordsrs.services.fsrs_scheduler import (
    DEFAULT_PARAMETERS,
    PARAMETER_COUNT,
    validate_parameters,
    validate_retention,
)

logger = logging.getLogger(__name__)

_DELIMITERS = re.compile(r"[\s,]+")


@dataclass
class SrsSettingsView:
    """Effective scheduler settings for a user."""
    parameters: Tuple[float, ...]
    desired_retention: float
    is_default: bool


def default_retention() -> float:
    return settings.scheduler.desired_retention


def parse_parameters_csv(raw: str) -> Tuple[float, ...]:
    """Parse a weight list such as "0.2, 1.29 2.3" or "[0.2,1.29,...]"."""
    text = raw.strip()
    if text.startswith("[") and text.endswith("]"):
        text = text[1:-1]
    parts = [part for part in _DELIMITERS.split(text) if part]
    try:
        values = [float(part) for part in parts]
    except ValueError as e:
        raise ValidationError(f"Parameters must be numbers: {e}") from e
    if len(values) != PARAMETER_COUNT:
        raise ValidationError(
            f"Expected {PARAMETER_COUNT} parameters, got {len(values)}"
        )
    return validate_parameters(values)


class SettingsService:
    """Service for per-user scheduler weights and desired retention."""

    def __init__(self, db: Session):
        self.db = db

    def _get_row(self, user_id: str) -> Optional[UserSrsSettings]:
        return self.db.query(UserSrsSettings).filter(UserSrsSettings.user_id == user_id).first()

    def _resolve_row(self, row: Optional[UserSrsSettings]) -> Tuple[Tuple[float, ...], float]:
        if row is None:
            return DEFAULT_PARAMETERS, default_retention()

        # Weights and retention fall back independently
        parameters = DEFAULT_PARAMETERS
        stored = row.parameters
        if stored:
            try:
                parameters = validate_parameters(stored)
            except ValidationError as e:
                logger.warning(f"Ignoring stored parameters for user {row.user_id}: {e}")

        retention = default_retention()
        if row.desired_retention is not None:
            try:
                retention = validate_retention(row.desired_retention)
            except ValidationError as e:
                logger.warning(f"Ignoring stored retention for user {row.user_id}: {e}")

        return parameters, retention

    def resolve(self, user_id: str) -> Tuple[Tuple[float, ...], float]:
        """Get the weights and desired retention to schedule with."""
        return self._resolve_row(self._get_row(user_id))

    def get_settings(self, user_id: str) -> SrsSettingsView:
        """Get the effective settings and whether they are the defaults."""
        parameters, retention = self.resolve(user_id)
        return SrsSettingsView(
            parameters=parameters,
            desired_retention=retention,
            is_default=self._is_default(parameters, retention),
        )

    def update_settings(
        self,
        user_id: str,
        parameters_csv: Optional[str] = None,
        desired_retention: Optional[float] = None,
    ) -> SrsSettingsView:
        """Update a user's weights and/or retention.

        None keeps the current value, an empty weight string resets the
        weights. Settings equal to the defaults are not stored.
        """
        row = self._get_row(user_id)
        parameters, retention = self._resolve_row(row)

        if parameters_csv is not None:
            if parameters_csv.strip():
                parameters = parse_parameters_csv(parameters_csv)
            else:
                parameters = DEFAULT_PARAMETERS

        if desired_retention is not None:
            retention = validate_retention(desired_retention)

        if self._is_default(parameters, retention):
            if row is not None:
                self.db.delete(row)
                logger.info(f"Reset scheduler settings to defaults for user {user_id}")
        else:
            if row is None:
                row = UserSrsSettings(user_id=user_id)
                self.db.add(row)
            row.parameters = list(parameters)
            row.desired_retention = retention
            logger.info(f"Updated scheduler settings for user {user_id}")

        self.db.commit()
        return self.get_settings(user_id)

    @staticmethod
    def _is_default(parameters: Tuple[float, ...], retention: float) -> bool:
        return tuple(parameters) == DEFAULT_PARAMETERS and retention == default_retention()
