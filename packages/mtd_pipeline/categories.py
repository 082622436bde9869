"""Official category schema per business type.

Each business type owns a :class:`CategorySchema` whose ``income``,
``expense`` and ``capital`` subsets partition its codes. Capital codes are
shared by both business types and are reported only in the annual cycle.

Public API:
    - :class:`BusinessType`
    - :class:`CategorySchema`
    - :func:`schema_for`
    - :func:`vocabulary`
    - ``CATEGORY_DESCRIPTIONS``
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from functools import cache


class BusinessType(StrEnum):
    SOLE_TRADER = "sole_trader"
    LANDLORD = "landlord"

    @classmethod
    def parse(cls, value: BusinessType | str) -> BusinessType:
        """Accept enum members, canonical values and common aliases."""

        if isinstance(value, BusinessType):
            return value
        key = str(value).strip().lower().replace("-", "_").replace(" ", "_")
        found = _BUSINESS_TYPE_ALIASES.get(key)
        if found is None:
            raise ValueError(
                f"Unknown business type {value!r}; expected 'sole_trader' or 'landlord'"
            )
        return found


_BUSINESS_TYPE_ALIASES: dict[str, BusinessType] = {
    "sole_trader": BusinessType.SOLE_TRADER,
    "self_employment": BusinessType.SOLE_TRADER,
    "self_employed": BusinessType.SOLE_TRADER,
    "landlord": BusinessType.LANDLORD,
    "property": BusinessType.LANDLORD,
    "uk_property": BusinessType.LANDLORD,
}


CAPITAL_CODES: frozenset[str] = frozenset(
    {
        "annualInvestmentAllowance",
        "capitalAllowanceMainPool",
        "capitalAllowanceSpecialRatePool",
        "zeroEmissionGoodsVehicle",
        "businessPremisesRenovationAllowance",
        "enhancedCapitalAllowance",
        "allowanceOnSales",
    }
)


@dataclass(frozen=True, slots=True)
class CategorySchema:
    """Disjoint income/expense/capital partition for one business type."""

    business_type: BusinessType
    income: frozenset[str]
    expense: frozenset[str]
    capital: frozenset[str]

    def __post_init__(self) -> None:
        overlap = (
            (self.income & self.expense)
            | (self.income & self.capital)
            | (self.expense & self.capital)
        )
        if overlap:
            raise ValueError(
                f"category subsets overlap for {self.business_type}: {sorted(overlap)}"
            )

    @property
    def all_codes(self) -> frozenset[str]:
        return self.income | self.expense | self.capital

    @property
    def reportable_codes(self) -> tuple[str, ...]:
        """Non-capital codes in a stable order (income first, then expense)."""

        return tuple(sorted(self.income)) + tuple(sorted(self.expense))

    def subset_of(self, code: str) -> str | None:
        if code in self.income:
            return "income"
        if code in self.expense:
            return "expense"
        if code in self.capital:
            return "capital"
        return None


_SCHEMAS: dict[BusinessType, CategorySchema] = {
    BusinessType.SOLE_TRADER: CategorySchema(
        business_type=BusinessType.SOLE_TRADER,
        income=frozenset({"turnover", "otherIncome"}),
        expense=frozenset(
            {
                "costOfGoodsBought",
                "cisPaymentsToSubcontractors",
                "staffCosts",
                "travelCosts",
                "premisesRunningCosts",
                "maintenanceCosts",
                "adminCosts",
                "advertisingCosts",
                "businessEntertainmentCosts",
                "interestOnBankOtherLoans",
                "financialCharges",
                "badDebt",
                "professionalFees",
                "depreciation",
                "other",
            }
        ),
        capital=CAPITAL_CODES,
    ),
    BusinessType.LANDLORD: CategorySchema(
        business_type=BusinessType.LANDLORD,
        income=frozenset(
            {"premiumsOfLeaseGrant", "reversePremiums", "periodAmount", "taxDeducted"}
        ),
        expense=frozenset(
            {
                "premisesRunningCosts",
                "repairsAndMaintenance",
                "financialCosts",
                "professionalFees",
                "costOfServices",
                "travelCosts",
                "other",
            }
        ),
        capital=CAPITAL_CODES,
    ),
}


CATEGORY_DESCRIPTIONS: dict[str, str] = {
    # Self-employment income
    "turnover": "Business turnover",
    "otherIncome": "Other business income",
    # Self-employment expenses
    "costOfGoodsBought": "Cost of goods bought for resale",
    "cisPaymentsToSubcontractors": "CIS payments to subcontractors",
    "staffCosts": "Staff costs",
    "travelCosts": "Travel costs",
    "premisesRunningCosts": "Premises running costs",
    "maintenanceCosts": "Repairs and maintenance",
    "adminCosts": "Admin costs",
    "advertisingCosts": "Advertising costs",
    "businessEntertainmentCosts": "Business entertainment",
    "interestOnBankOtherLoans": "Interest on bank and other loans",
    "financialCharges": "Bank and financial charges",
    "badDebt": "Irrecoverable debts",
    "professionalFees": "Accountancy, legal and professional fees",
    "depreciation": "Depreciation",
    "other": "Other allowable expenses",
    # Property income
    "premiumsOfLeaseGrant": "Premiums for the grant of a lease",
    "reversePremiums": "Reverse premiums",
    "periodAmount": "Rental income",
    "taxDeducted": "Tax deducted",
    # Property expenses
    "repairsAndMaintenance": "Property repairs and maintenance",
    "financialCosts": "Finance costs",
    "costOfServices": "Cost of services provided",
    # Capital allowances (annual only)
    "annualInvestmentAllowance": "Annual investment allowance",
    "capitalAllowanceMainPool": "Capital allowance main pool",
    "capitalAllowanceSpecialRatePool": "Capital allowance special rate pool",
    "zeroEmissionGoodsVehicle": "Zero emission goods vehicle allowance",
    "businessPremisesRenovationAllowance": "Business premises renovation allowance",
    "enhancedCapitalAllowance": "Enhanced capital allowance",
    "allowanceOnSales": "Allowance on sales",
}


def schema_for(business_type: BusinessType | str) -> CategorySchema:
    return _SCHEMAS[BusinessType.parse(business_type)]


@cache
def _vocabulary(business_type: BusinessType) -> tuple[str, ...]:
    return tuple(sorted(_SCHEMAS[business_type].all_codes))


def vocabulary(business_type: BusinessType | str) -> tuple[str, ...]:
    """Return every code the classifier may answer with for ``business_type``."""

    return _vocabulary(BusinessType.parse(business_type))


def describe(code: str) -> str:
    return CATEGORY_DESCRIPTIONS.get(code, code)


__all__ = [
    "BusinessType",
    "CategorySchema",
    "CAPITAL_CODES",
    "CATEGORY_DESCRIPTIONS",
    "describe",
    "schema_for",
    "vocabulary",
]
