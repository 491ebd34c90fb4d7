"""Budget ledger: daily and monthly spend against an agent configuration's cap."""

import logging

from foreman.types import AgentConfiguration

logger = logging.getLogger(__name__)


class BudgetLedger:
    """Spend-vs-cap checks and atomic deductions for one team's agents.

    A configuration with ``monthly_budget_cap=None`` is uncapped. The same
    cap bounds daily spend and month-to-date spend.
    """

    def __init__(self, repository):
        self.repository = repository

    @staticmethod
    def remaining_daily(config: AgentConfiguration) -> float:
        if config.monthly_budget_cap is None:
            return float("inf")
        return max(0.0, config.monthly_budget_cap - config.daily_spend)

    @staticmethod
    def remaining_monthly(config: AgentConfiguration) -> float:
        if config.monthly_budget_cap is None:
            return float("inf")
        return max(0.0, config.monthly_budget_cap - config.current_month_spend)

    async def can_run(self, config: AgentConfiguration, estimated_cost: float) -> bool:
        """True if ``estimated_cost`` fits both the daily and monthly remainders.

        Spend is re-read from storage so the check sees deductions made by
        other callers since ``config`` was loaded.
        """
        current = await self.repository.get_agent_configuration(config.id) or config
        return (
            estimated_cost <= self.remaining_daily(current)
            and estimated_cost <= self.remaining_monthly(current)
        )

    async def deduct_cost(self, config: AgentConfiguration, cost: float) -> AgentConfiguration:
        """Increment daily and monthly spend together in one atomic update."""
        if cost <= 0:
            return config
        updated = await self.repository.add_spend(config.id, cost)
        if updated is None:
            logger.warning(f"Budget deduction skipped: configuration '{config.id}' no longer exists")
            return config
        logger.debug(
            f"Deducted {cost:.6f} from configuration {config.id} "
            f"(daily={updated.daily_spend:.6f}, month={updated.current_month_spend:.6f})"
        )
        return updated
