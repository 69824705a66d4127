"""Organization settings lookup with hardcoded fallbacks."""

import logging
from typing import Optional

from . import constants
from .schema import OrganizationSettings
from .store import RecordStore

logger = logging.getLogger(__name__)


class SettingsProvider:
    """Reads per-organization billing settings from the record store."""

    def __init__(self, store: RecordStore):
        self.store = store

    def _settings(self, organization_id: str) -> Optional[OrganizationSettings]:
        try:
            return self.store.get_settings(organization_id)
        except Exception as e:
            logger.error("Error fetching settings for organization %s: %s", organization_id, e)
            return None

    def get_default_payment_window_days(self, organization_id: str) -> int:
        """
        Get the number of days a subject has to pay a new charge.

        Falls back to the ledger config, then to 30 days, when the organization
        has no setting or its settings cannot be read.
        """
        settings = self._settings(organization_id)
        if settings is not None and settings.default_payment_window_days:
            return settings.default_payment_window_days

        config = getattr(self.store, "config", None)
        fallback = (
            config.default_payment_window_days
            if config is not None
            else constants.DEFAULT_PAYMENT_WINDOW_DAYS
        )
        logger.debug(
            "No payment window configured for %s, using default of %d days",
            organization_id,
            fallback,
        )
        return fallback

    def auto_apply_credits(self, organization_id: str) -> bool:
        """Whether available credit is applied to newly generated charges."""
        settings = self._settings(organization_id)
        return bool(settings and settings.auto_apply_credits)
