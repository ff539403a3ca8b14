"""
TrueCost - Data Models
======================
Pydantic models for the purchasing-power engine.

These models serve as the contract between:
- Upstream data ingestion (BEA, Census, Zillow pulls)
- The purchasing-power engine
- The API and presentation layer

Absent data is a normal state: every numeric field may be None, and None
flows through the engine instead of raising.
"""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

from rate_tables import HousingSituation, WorkSituation


# =============================================================================
# ENUMS
# =============================================================================

class TaxSource(str, Enum):
    """Where a tax figure came from."""
    CALCULATED = "calculated"                    # TaxCalculator (federal + state)
    DISPOSABLE_INCOME = "disposable_income"      # Profile gross vs disposable income
    PROFILE_EFFECTIVE_RATE = "profile_effective_rate"
    DEFAULT_RATE = "default_rate"
    UNAVAILABLE = "unavailable"


class TaxBurdenRating(str, Enum):
    LOW = "low"
    MODERATE = "moderate"
    HIGH = "high"
    VERY_HIGH = "very-high"


class CostOfLivingRating(str, Enum):
    VERY_LOW = "very-low"
    LOW = "low"
    MODERATE = "moderate"
    HIGH = "high"
    VERY_HIGH = "very-high"


class OverallValueRating(str, Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    MODERATE = "moderate"
    POOR = "poor"
    VERY_POOR = "very-poor"


# =============================================================================
# INPUT MODELS
# =============================================================================

class RegionalPriceParity(BaseModel):
    """BEA Regional Price Parity sub-indices (100 = national average)."""
    model_config = ConfigDict(frozen=True)

    all_items: Optional[float] = Field(default=None, ge=0)
    goods: Optional[float] = Field(default=None, ge=0)
    housing: Optional[float] = Field(default=None, ge=0)
    utilities: Optional[float] = Field(default=None, ge=0)
    other_services: Optional[float] = Field(default=None, ge=0)


class CityFinancialProfile(BaseModel):
    """
    Immutable financial snapshot of one city, assembled upstream.
    """
    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "example": {
                "name": "Denver",
                "state": "Colorado",
                "rpp": {
                    "all_items": 108.2,
                    "goods": 100.4,
                    "housing": 135.9,
                    "utilities": 92.1,
                    "other_services": 104.3
                },
                "per_capita_income": 83456,
                "per_capita_disposable_income": 72011,
                "effective_tax_rate": 13.7,
                "median_home_price": 585000,
                "property_tax_rate": 0.0055
            }
        }
    )

    name: Optional[str] = None
    state: Optional[str] = None
    rpp: RegionalPriceParity = Field(default_factory=RegionalPriceParity)

    per_capita_income: Optional[float] = Field(default=None, ge=0)
    per_capita_disposable_income: Optional[float] = Field(default=None, ge=0)
    effective_tax_rate: Optional[float] = Field(
        default=None,
        ge=0,
        le=100,
        description="Pre-computed effective tax rate as a percentage (e.g. 13.7)"
    )

    median_home_price: Optional[float] = Field(default=None, ge=0)
    property_tax_rate: Optional[float] = Field(
        default=None,
        ge=0,
        le=1,
        description="Local property tax rate as a fraction (e.g. 0.011)"
    )


class PersonaConfiguration(BaseModel):
    """The housing and work assumptions selecting the engine branches."""
    model_config = ConfigDict(frozen=True)

    housing_situation: HousingSituation = HousingSituation.RENTER
    work_situation: WorkSituation = WorkSituation.STANDARD
    include_utilities: bool = True

    # Optional overrides
    mortgage_rate: Optional[float] = Field(default=None, ge=0, le=1, description="Annual rate as a fraction")
    retiree_fixed_income: Optional[float] = Field(default=None, ge=0)
    state_override: Optional[str] = None
    down_payment_fraction: Optional[float] = Field(default=None, ge=0, le=1)

    @field_validator('housing_situation', 'work_situation', mode='before')
    @classmethod
    def normalize_persona(cls, v):
        if isinstance(v, str):
            return v.strip().lower().replace("_", "-").replace(" ", "-")
        return v


# =============================================================================
# INTERMEDIATE RESULTS
# =============================================================================

class TaxCalculation(BaseModel):
    """TaxCalculator output for one income and jurisdiction."""
    gross_income: float
    taxable_income: float
    federal_tax: float
    federal_effective_rate: float
    state_tax: float
    state_rate: float
    progressivity_factor: float
    combined_effective_rate: float = Field(ge=0, le=1)
    jurisdiction: Optional[str] = None
    jurisdiction_known: bool = True


class PropertyTaxEstimate(BaseModel):
    local_annual_property_tax: Optional[float] = None
    national_annual_property_tax: float = 0.0


class HousingCostAdjustment(BaseModel):
    """HousingCostAdjuster output."""
    # Unrounded; rated and divided by as is
    adjusted_cost_index: Optional[float] = None
    monthly_mortgage: Optional[float] = None
    monthly_housing_cost: Optional[float] = None
    raw_housing_index: Optional[float] = None
    housing_index: Optional[float] = None
    used_fallback: bool = False


class TaxBreakdown(BaseModel):
    """How the selected income was taxed."""
    source: TaxSource
    gross_income: Optional[float] = None
    federal_tax: Optional[float] = None
    state_tax: Optional[float] = None
    property_tax: Optional[float] = None
    total_tax: Optional[float] = None
    combined_effective_rate: Optional[float] = Field(default=None, ge=0, le=1)
    jurisdiction: Optional[str] = None
    jurisdiction_known: bool = False

    @computed_field
    @property
    def effective_rate_percent(self) -> Optional[float]:
        """Combined effective rate as a percentage, for display and rating."""
        if self.combined_effective_rate is None:
            return None
        return round(self.combined_effective_rate * 100, 2)


class IncomeSelection(BaseModel):
    """IncomeSelector output: a persona's income and its matching baseline."""
    selected_income: Optional[float] = None
    selected_after_tax_income: Optional[float] = None
    national_baseline: Optional[float] = None
    tax_breakdown: TaxBreakdown


# =============================================================================
# FINAL RESULT
# =============================================================================

class CostIndexComponents(BaseModel):
    """The sub-indices behind the adjusted cost index."""
    all_items: Optional[float] = None
    goods: Optional[float] = None
    housing: Optional[float] = None
    utilities: Optional[float] = None
    other_services: Optional[float] = None

    # Persona-specific housing figures (prospective buyer only)
    persona_housing_index: Optional[float] = None
    raw_housing_index: Optional[float] = None
    monthly_mortgage: Optional[float] = None
    monthly_housing_cost: Optional[float] = None


class ComputationResult(BaseModel):
    """Complete purchasing-power result for one city and persona."""

    city_name: Optional[str] = None
    housing_situation: HousingSituation
    work_situation: WorkSituation

    # The key numbers
    true_purchasing_power: Optional[int] = None
    true_purchasing_power_index: Optional[float] = Field(
        default=None,
        description="100 = persona-consistent national baseline; higher = better"
    )

    # Cost side
    adjusted_cost_index: Optional[float] = None
    cost_components: CostIndexComponents = Field(default_factory=CostIndexComponents)

    # Income side
    selected_income: Optional[float] = None
    selected_after_tax_income: Optional[float] = None
    national_baseline: Optional[float] = None
    tax_breakdown: TaxBreakdown

    # Interpretation helpers
    tax_burden_rating: Optional[TaxBurdenRating] = None
    cost_of_living_rating: Optional[CostOfLivingRating] = None
    overall_value_rating: Optional[OverallValueRating] = None

    @computed_field
    @property
    def monthly_mortgage(self) -> Optional[float]:
        return self.cost_components.monthly_mortgage


# =============================================================================
# API REQUEST/RESPONSE MODELS
# =============================================================================

class PurchasingPowerRequest(BaseModel):
    """Request for one city."""
    profile: CityFinancialProfile
    persona: PersonaConfiguration = Field(default_factory=PersonaConfiguration)


class BatchPurchasingPowerRequest(BaseModel):
    """Request comparing many cities under one persona."""
    profiles: List[CityFinancialProfile] = Field(min_length=1)
    persona: PersonaConfiguration = Field(default_factory=PersonaConfiguration)


class RankedCity(BaseModel):
    rank: int
    city_name: Optional[str] = None
    true_purchasing_power_index: Optional[float] = None
    cost_score: float
    overall_value_rating: Optional[OverallValueRating] = None


class BatchPurchasingPowerResponse(BaseModel):
    results: List[ComputationResult]
    ranking: List[RankedCity]
