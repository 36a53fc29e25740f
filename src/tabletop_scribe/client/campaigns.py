"""Campaign listing and selection."""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Protocol

from tabletop_scribe.client.graphql import GraphQLAuthError, GraphQLNetworkError
from tabletop_scribe.client.retry import RetryPolicy, Sleep, exponential_delay
from tabletop_scribe.domain.campaigns import Campaign

logger = logging.getLogger(__name__)

LIST_ATTEMPTS = 7
BACKOFF_BASE_SECONDS = 0.1
BACKOFF_CAP_SECONDS = 5.0


class CampaignSource(Protocol):
    """Campaign lookup the selection needs."""

    async def list_campaigns_by_owner(self, owner: str) -> list[Campaign]:
        """Return every campaign owned by a user."""


def _is_transient(exc: Exception) -> bool:
    return isinstance(exc, GraphQLNetworkError | GraphQLAuthError)


async def list_campaigns_with_retry(
    source: CampaignSource, owner: str, sleep: Sleep = asyncio.sleep
) -> list[Campaign]:
    """List campaigns, retrying network and auth failures with backoff."""
    if not owner:
        raise ValueError("Owner is required to fetch campaigns")
    policy = RetryPolicy(
        max_attempts=LIST_ATTEMPTS,
        delay=exponential_delay(BACKOFF_BASE_SECONDS, BACKOFF_CAP_SECONDS),
        is_retryable=_is_transient,
        sleep=sleep,
    )
    campaigns = await policy.run(lambda: source.list_campaigns_by_owner(owner))
    logger.info("Fetched %d campaigns for %s", len(campaigns), owner)
    return campaigns


def most_recent_campaign(campaigns: list[Campaign]) -> Campaign | None:
    """Return the newest campaign that is not soft-deleted."""
    active = [campaign for campaign in campaigns if not campaign.deleted]
    if not active:
        return None
    return max(active, key=lambda campaign: campaign.created_at)


@dataclass
class CampaignSelection:
    """The selected campaign, remembered separately per environment."""

    environment: str
    _selected: dict[str, Campaign] = field(default_factory=dict)

    @property
    def selected(self) -> Campaign | None:
        """Return the campaign selected in the current environment."""
        return self._selected.get(self.environment)

    def select(self, campaign: Campaign | None) -> None:
        """Select a campaign, or clear the selection with None."""
        if campaign is None:
            self._selected.pop(self.environment, None)
        else:
            self._selected[self.environment] = campaign

    def switch_environment(self, environment: str) -> None:
        """Change environment; selections made elsewhere are not carried over."""
        self.environment = environment

    def clear(self) -> None:
        """Forget selections in every environment."""
        self._selected.clear()

    def auto_select_most_recent(self, campaigns: list[Campaign]) -> Campaign | None:
        """Select the newest campaign unless the current one is still listed."""
        current = self.selected
        active_ids = {campaign.id for campaign in campaigns if not campaign.deleted}
        if current is not None and current.id in active_ids:
            return current
        newest = most_recent_campaign(campaigns)
        if newest is not None:
            self.select(newest)
            logger.info("Auto-selected most recent campaign %s", newest.id)
        return newest
