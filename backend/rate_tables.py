"""
TrueCost - Rate Tables
======================
Federal effective-rate table, per-state income tax rates and national
baselines used by the purchasing-power engine.

These are approximations for comparing cities, NOT a filing-accurate tax model.
Every value here can be replaced at runtime through a RateProvider loaded from
JSON (see TRUECOST_RATE_TABLES).

Last Updated: 2025 Tax Year
"""

import json
import logging
import os
from enum import Enum
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

RATE_TABLES_ENV_VAR = "TRUECOST_RATE_TABLES"


# =============================================================================
# PERSONA ENUMS
# =============================================================================

class HousingSituation(str, Enum):
    RENTER = "renter"
    HOMEOWNER = "homeowner"
    PROSPECTIVE_BUYER = "prospective-buyer"


class WorkSituation(str, Enum):
    STANDARD = "standard"
    LOCAL_EARNER = "local-earner"
    RETIREE = "retiree"


# =============================================================================
# FEDERAL EFFECTIVE RATES (single filer, 2025)
# Format: List of (taxable_income_threshold, effective_rate) tuples
# Rate is the average rate paid on the whole taxable income at the threshold,
# not the marginal bracket rate.
# =============================================================================

FEDERAL_STANDARD_DEDUCTION = 15000

FEDERAL_EFFECTIVE_RATES: List[Tuple[float, float]] = [
    (11925, 0.100),
    (25000, 0.110),
    (50000, 0.118),
    (75000, 0.152),
    (100000, 0.169),
    (150000, 0.192),
    (200000, 0.205),
    (250000, 0.228),
    (500000, 0.289),
    (626350, 0.301),
]


# =============================================================================
# STATE INCOME TAX (approximate effective rate at a median income)
# =============================================================================

STATE_TAX_RATES: Dict[str, float] = {
    "Alabama": 0.040,
    "Alaska": 0.0,
    "Arizona": 0.025,
    "Arkansas": 0.039,
    "California": 0.060,
    "Colorado": 0.044,
    "Connecticut": 0.050,
    "Delaware": 0.050,
    "District of Columbia": 0.060,
    "Florida": 0.0,
    "Georgia": 0.0539,
    "Hawaii": 0.065,
    "Idaho": 0.05695,
    "Illinois": 0.0495,
    "Indiana": 0.0305,
    "Iowa": 0.038,
    "Kansas": 0.052,
    "Kentucky": 0.040,
    "Louisiana": 0.030,
    "Maine": 0.058,
    "Maryland": 0.0475,
    "Massachusetts": 0.050,
    "Michigan": 0.0425,
    "Minnesota": 0.0635,
    "Mississippi": 0.044,
    "Missouri": 0.047,
    "Montana": 0.059,
    "Nebraska": 0.052,
    "Nevada": 0.0,
    "New Hampshire": 0.0,
    "New Jersey": 0.045,
    "New Mexico": 0.049,
    "New York": 0.0585,
    "North Carolina": 0.0425,
    "North Dakota": 0.0195,
    "Ohio": 0.035,
    "Oklahoma": 0.0475,
    "Oregon": 0.0875,
    "Pennsylvania": 0.0307,
    "Rhode Island": 0.0475,
    "South Carolina": 0.062,
    "South Dakota": 0.0,
    "Tennessee": 0.0,
    "Texas": 0.0,
    "Utah": 0.0455,
    "Vermont": 0.066,
    "Virginia": 0.0575,
    "Washington": 0.0,
    "West Virginia": 0.0482,
    "Wisconsin": 0.053,
    "Wyoming": 0.0,
}

STATE_ABBREVIATIONS: Dict[str, str] = {
    "AL": "Alabama", "AK": "Alaska", "AZ": "Arizona", "AR": "Arkansas",
    "CA": "California", "CO": "Colorado", "CT": "Connecticut", "DE": "Delaware",
    "DC": "District of Columbia", "FL": "Florida", "GA": "Georgia", "HI": "Hawaii",
    "ID": "Idaho", "IL": "Illinois", "IN": "Indiana", "IA": "Iowa",
    "KS": "Kansas", "KY": "Kentucky", "LA": "Louisiana", "ME": "Maine",
    "MD": "Maryland", "MA": "Massachusetts", "MI": "Michigan", "MN": "Minnesota",
    "MS": "Mississippi", "MO": "Missouri", "MT": "Montana", "NE": "Nebraska",
    "NV": "Nevada", "NH": "New Hampshire", "NJ": "New Jersey", "NM": "New Mexico",
    "NY": "New York", "NC": "North Carolina", "ND": "North Dakota", "OH": "Ohio",
    "OK": "Oklahoma", "OR": "Oregon", "PA": "Pennsylvania", "RI": "Rhode Island",
    "SC": "South Carolina", "SD": "South Dakota", "TN": "Tennessee", "TX": "Texas",
    "UT": "Utah", "VT": "Vermont", "VA": "Virginia", "WA": "Washington",
    "WV": "West Virginia", "WI": "Wisconsin", "WY": "Wyoming",
}

# Blended rate for jurisdictions missing from the table; also the reference
# jurisdiction for persona baselines.
AVERAGE_STATE_TAX_RATE = 0.044

# Progressivity approximation: rate * min(cap, sqrt(income / reference))
STATE_TAX_REFERENCE_INCOME = 75000
STATE_TAX_PROGRESSIVITY_CAP = 1.5


# =============================================================================
# NATIONAL BASELINES
# =============================================================================

NATIONAL_CONSTANTS = {
    # Census ACS median household income; the standard persona's income everywhere
    "median_household_income": 74580,
    # BEA per capita disposable personal income (2022)
    "per_capita_disposable_income": 56014,
    "median_home_price": 360000,
    "property_tax_rate": 0.011,
    "default_retiree_income": 50000,
    # Fallback when neither a jurisdiction nor a profile rate is available
    "default_effective_tax_rate": 0.18,
    # Cap on a profile-supplied effective rate for the standard persona
    "max_profile_effective_rate": 0.25,
}


# =============================================================================
# HOUSING ASSUMPTIONS
# =============================================================================

MORTGAGE_DEFAULTS = {
    "annual_rate": 0.07,
    "down_payment_fraction": 0.20,
    "term_months": 360,
}

# Long-tenured owners are assessed on a lower basis than today's prices
HISTORICAL_PURCHASE_PRICE_FACTOR = 0.60

HOUSING_COMPRESSION = {
    "threshold": 150.0,
    "scale": 50.0,
}

COST_INDEX_WEIGHTS = {
    "renter_utilities": 0.05,
    "homeowner_goods": 0.70,
    "homeowner_other_services": 0.30,
    "buyer_housing": 0.35,
    "buyer_goods": 0.35,
    "buyer_other_services": 0.30,
}


# =============================================================================
# RATING THRESHOLDS
# Format: List of (bound, label) tuples, checked in order
# =============================================================================

TAX_BURDEN_THRESHOLDS: List[Tuple[float, str]] = [
    (12, "low"),
    (15, "moderate"),
    (18, "high"),
]

COST_OF_LIVING_THRESHOLDS: List[Tuple[float, str]] = [
    (90, "very-low"),
    (97, "low"),
    (103, "moderate"),
    (115, "high"),
]

OVERALL_VALUE_THRESHOLDS: List[Tuple[float, str]] = [
    (110, "excellent"),
    (102, "good"),
    (95, "moderate"),
    (85, "poor"),
]


# =============================================================================
# COST SCORE (0-100) MAPPING
# =============================================================================

COST_SCORE = {
    # score = center + (index - 100) * slope
    "center": 50.0,
    "slope": 0.75,
    # Home-price fallback: floor_price scores 100, floor_price + price_span scores 0
    "floor_price": 300000,
    "price_span": 1200000,
    "neutral": 50.0,
}


# =============================================================================
# RATE PROVIDER
# =============================================================================

class FederalRateTier(BaseModel):
    """One row of the federal effective-rate table."""
    income_threshold: float = Field(ge=0)
    rate: float = Field(ge=0, le=1)


def _default_federal_tiers() -> List[FederalRateTier]:
    return [
        FederalRateTier(income_threshold=limit, rate=rate)
        for limit, rate in FEDERAL_EFFECTIVE_RATES
    ]


class RateProvider(BaseModel):
    """
    Injected source of every rate, table and national constant the engine uses.

    Defaults mirror the module-level tables. Override by constructing with
    keyword arguments or by loading a JSON document with the same field names.
    """

    standard_deduction: float = Field(default=FEDERAL_STANDARD_DEDUCTION, ge=0)
    federal_effective_rates: List[FederalRateTier] = Field(default_factory=_default_federal_tiers)

    state_tax_rates: Dict[str, float] = Field(default_factory=lambda: dict(STATE_TAX_RATES))
    average_state_tax_rate: float = Field(default=AVERAGE_STATE_TAX_RATE, ge=0, le=1)
    reference_jurisdiction: Optional[str] = Field(
        default=None,
        description="Jurisdiction used for persona baselines; None = average blended rate"
    )
    state_tax_reference_income: float = Field(default=STATE_TAX_REFERENCE_INCOME, gt=0)
    state_tax_progressivity_cap: float = Field(default=STATE_TAX_PROGRESSIVITY_CAP, ge=0)

    national_median_household_income: float = Field(
        default=NATIONAL_CONSTANTS["median_household_income"], ge=0
    )
    national_per_capita_disposable_income: float = Field(
        default=NATIONAL_CONSTANTS["per_capita_disposable_income"], ge=0
    )
    national_median_home_price: float = Field(default=NATIONAL_CONSTANTS["median_home_price"], ge=0)
    national_property_tax_rate: float = Field(default=NATIONAL_CONSTANTS["property_tax_rate"], ge=0, le=1)
    default_retiree_income: float = Field(default=NATIONAL_CONSTANTS["default_retiree_income"], ge=0)
    default_effective_tax_rate: float = Field(
        default=NATIONAL_CONSTANTS["default_effective_tax_rate"], ge=0, le=1
    )
    max_profile_effective_rate: float = Field(
        default=NATIONAL_CONSTANTS["max_profile_effective_rate"], ge=0, le=1
    )

    default_mortgage_rate: float = Field(default=MORTGAGE_DEFAULTS["annual_rate"], ge=0, le=1)
    default_down_payment_fraction: float = Field(
        default=MORTGAGE_DEFAULTS["down_payment_fraction"], ge=0, le=1
    )
    mortgage_term_months: int = Field(default=MORTGAGE_DEFAULTS["term_months"], gt=0)
    historical_purchase_price_factor: float = Field(default=HISTORICAL_PURCHASE_PRICE_FACTOR, ge=0)

    housing_compression_threshold: float = Field(default=HOUSING_COMPRESSION["threshold"], gt=0)
    housing_compression_scale: float = Field(default=HOUSING_COMPRESSION["scale"], gt=0)
    cost_index_weights: Dict[str, float] = Field(default_factory=lambda: dict(COST_INDEX_WEIGHTS))

    @field_validator('federal_effective_rates')
    @classmethod
    def sort_federal_tiers(cls, v):
        if not v:
            raise ValueError("federal_effective_rates must contain at least one tier")
        return sorted(v, key=lambda tier: tier.income_threshold)

    @field_validator('state_tax_rates')
    @classmethod
    def check_state_rates(cls, v):
        for state, rate in v.items():
            if not 0 <= rate <= 1:
                raise ValueError(f"State rate for {state} must be a fraction in [0, 1], got {rate}")
        return v

    @field_validator('cost_index_weights')
    @classmethod
    def fill_missing_weights(cls, v):
        return {**COST_INDEX_WEIGHTS, **v}

    @classmethod
    def from_json_file(cls, path: str) -> "RateProvider":
        """Load a provider from a JSON file; missing keys keep their defaults."""
        with open(path, 'r') as f:
            data = json.load(f)
        provider = cls.model_validate(data)
        logger.info(f"Loaded rate tables from {path}")
        return provider

    def resolve_jurisdiction(self, jurisdiction: Optional[str]) -> Optional[str]:
        """
        Map a state name or USPS code onto a key of state_tax_rates.
        Returns None for empty or unknown jurisdictions.
        """
        if not jurisdiction or not jurisdiction.strip():
            return None
        cleaned = jurisdiction.strip()

        by_name = {name.casefold(): name for name in self.state_tax_rates}
        if cleaned.casefold() in by_name:
            return by_name[cleaned.casefold()]

        full_name = STATE_ABBREVIATIONS.get(cleaned.upper())
        if full_name and full_name.casefold() in by_name:
            return by_name[full_name.casefold()]
        return None

    def state_rate(self, jurisdiction: Optional[str]) -> Tuple[float, bool]:
        """Return (table rate, jurisdiction_known); unknown uses the average rate."""
        resolved = self.resolve_jurisdiction(jurisdiction)
        if resolved is None:
            return self.average_state_tax_rate, False
        return self.state_tax_rates[resolved], True

    def federal_effective_rate(self, taxable_income: float) -> float:
        """Effective rate from the first threshold the income does not exceed."""
        for tier in self.federal_effective_rates:
            if taxable_income <= tier.income_threshold:
                return tier.rate
        return max(tier.rate for tier in self.federal_effective_rates)


def load_rate_provider(path: Optional[str] = None) -> RateProvider:
    """
    Build the active RateProvider.

    Uses the given path, else the TRUECOST_RATE_TABLES environment variable,
    else the built-in tables.
    """
    path = path or os.getenv(RATE_TABLES_ENV_VAR)
    if path:
        return RateProvider.from_json_file(path)
    return RateProvider()


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def get_state_rate_table(provider: RateProvider) -> List[Dict[str, object]]:
    """Return the state table in display order, with USPS codes attached."""
    codes = {name: code for code, name in STATE_ABBREVIATIONS.items()}
    return [
        {
            "state": state,
            "code": codes.get(state),
            "rate": rate,
            "has_income_tax": rate > 0,
        }
        for state, rate in sorted(provider.state_tax_rates.items())
    ]
