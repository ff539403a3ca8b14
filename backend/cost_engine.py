"""
TrueCost - Purchasing Power Engine
==================================
Core cost-of-living calculation engine.

True Purchasing Power = After-Tax Income / (Adjusted Cost Index / 100)

The engine is a pure function pipeline:

    profile + persona --> IncomeSelector (TaxCalculator, PropertyTaxEstimator) --+
                     +--> HousingCostAdjuster -----------------------------------+--> Combiner

No I/O and no shared mutable state. Missing inputs propagate as None; the only
substituted default is the average state rate for unknown jurisdictions.
"""

import logging
import math
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from rate_tables import (
    HousingSituation,
    WorkSituation,
    RateProvider,
    TAX_BURDEN_THRESHOLDS,
    COST_OF_LIVING_THRESHOLDS,
    OVERALL_VALUE_THRESHOLDS,
    COST_SCORE,
)
from models import (
    CityFinancialProfile,
    PersonaConfiguration,
    TaxCalculation,
    PropertyTaxEstimate,
    HousingCostAdjustment,
    TaxBreakdown,
    TaxSource,
    IncomeSelection,
    CostIndexComponents,
    ComputationResult,
    RankedCity,
    TaxBurdenRating,
    CostOfLivingRating,
    OverallValueRating,
)

logger = logging.getLogger(__name__)


# =============================================================================
# MORTGAGE AND INDEX HELPERS
# =============================================================================

def monthly_mortgage_payment(principal: float, annual_rate: float, term_months: int) -> float:
    """
    Standard amortizing-loan payment: M = P * r(1+r)^n / ((1+r)^n - 1).

    annual_rate is a fraction (0.07 for 7%). A zero rate spreads the
    principal evenly over the term.
    """
    if principal <= 0 or term_months <= 0:
        return 0.0
    monthly_rate = annual_rate / 12.0
    if monthly_rate == 0:
        return principal / term_months
    growth = (1 + monthly_rate) ** term_months
    return principal * monthly_rate * growth / (growth - 1)


def compress_housing_index(raw_index: float, threshold: float = 150.0, scale: float = 50.0) -> float:
    """
    Logarithmic compression above threshold.

    Continuous at the threshold and strictly increasing past it, so extreme
    markets still rank worse without unbounded scores.
    """
    if raw_index <= threshold:
        return raw_index
    return threshold + scale * math.log10(1 + (raw_index - threshold) / scale)


def _subtract(value: Optional[float], *amounts: Optional[float]) -> Optional[float]:
    """value - sum(amounts), or None if any operand is missing."""
    if value is None or any(amount is None for amount in amounts):
        return None
    return value - sum(amounts)


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


# =============================================================================
# TAX CALCULATION
# =============================================================================

class TaxCalculator:
    """
    Federal + state effective tax for an income in a jurisdiction.

    Federal tax uses an effective-rate lookup (not bracket accumulation).
    State tax is a table rate scaled by min(cap, sqrt(income / reference)).
    """

    def __init__(self, rates: Optional[RateProvider] = None):
        self.rates = rates or RateProvider()

    def calculate(self, gross_income: float, jurisdiction: Optional[str]) -> TaxCalculation:
        gross_income = max(0.0, gross_income)

        # Federal
        taxable_income = max(0.0, gross_income - self.rates.standard_deduction)
        federal_rate = self.rates.federal_effective_rate(taxable_income)
        federal_tax = taxable_income * federal_rate

        # State
        state_rate, known = self.rates.state_rate(jurisdiction)
        if not known and jurisdiction is not None:
            logger.debug(
                f"Jurisdiction {jurisdiction!r} not in rate table; "
                f"using average state rate {state_rate:.4f}"
            )
        progressivity = self.progressivity_factor(gross_income)
        state_tax = gross_income * state_rate * progressivity

        combined = (federal_tax + state_tax) / gross_income if gross_income > 0 else 0.0

        return TaxCalculation(
            gross_income=round(gross_income, 2),
            taxable_income=round(taxable_income, 2),
            federal_tax=round(federal_tax, 2),
            federal_effective_rate=federal_rate,
            state_tax=round(state_tax, 2),
            state_rate=state_rate,
            progressivity_factor=progressivity,
            combined_effective_rate=_clamp(combined, 0.0, 1.0),
            jurisdiction=self.rates.resolve_jurisdiction(jurisdiction) or jurisdiction,
            jurisdiction_known=known,
        )

    def progressivity_factor(self, gross_income: float) -> float:
        """Scales state tax up for high earners and down for low earners."""
        if gross_income <= 0:
            return 0.0
        ratio = gross_income / self.rates.state_tax_reference_income
        return min(self.rates.state_tax_progressivity_cap, math.sqrt(ratio))


class PropertyTaxEstimator:
    """
    Annual property tax for the homeowner persona.

    Owners are assessed on an estimated historical purchase price
    (historical_purchase_price_factor * today's median). Renters pay none and
    buyers already carry property tax inside their housing index.
    """

    def __init__(self, rates: Optional[RateProvider] = None):
        self.rates = rates or RateProvider()

    def estimate(
        self,
        persona: PersonaConfiguration,
        profile: CityFinancialProfile
    ) -> PropertyTaxEstimate:
        if persona.housing_situation != HousingSituation.HOMEOWNER:
            return PropertyTaxEstimate(local_annual_property_tax=0.0, national_annual_property_tax=0.0)

        factor = self.rates.historical_purchase_price_factor
        national_rate = self.rates.national_property_tax_rate
        national = self.rates.national_median_home_price * factor * national_rate

        local = None
        if profile.median_home_price is not None:
            rate = profile.property_tax_rate if profile.property_tax_rate is not None else national_rate
            local = round(profile.median_home_price * factor * rate, 2)

        return PropertyTaxEstimate(
            local_annual_property_tax=local,
            national_annual_property_tax=round(national, 2),
        )


# =============================================================================
# HOUSING COST ADJUSTMENT
# =============================================================================

HousingHandler = Callable[[CityFinancialProfile, PersonaConfiguration], HousingCostAdjustment]


class HousingCostAdjuster:
    """Persona-specific cost-of-living index, one handler per housing situation."""

    def __init__(self, rates: Optional[RateProvider] = None):
        self.rates = rates or RateProvider()
        self._handlers: Dict[HousingSituation, HousingHandler] = {
            HousingSituation.RENTER: self._renter,
            HousingSituation.HOMEOWNER: self._homeowner,
            HousingSituation.PROSPECTIVE_BUYER: self._prospective_buyer,
        }

    @property
    def handled_situations(self) -> frozenset:
        return frozenset(self._handlers)

    def adjust(
        self,
        profile: CityFinancialProfile,
        persona: PersonaConfiguration
    ) -> HousingCostAdjustment:
        handler = self._handlers[persona.housing_situation]
        return handler(profile, persona)

    def _renter(self, profile: CityFinancialProfile, persona: PersonaConfiguration) -> HousingCostAdjustment:
        """Standard RPP, optionally bumped for above-average utilities."""
        rpp = profile.rpp
        if rpp.all_items is None:
            return HousingCostAdjustment()

        index = rpp.all_items
        if persona.include_utilities and rpp.utilities is not None:
            index += (rpp.utilities - 100) * self.rates.cost_index_weights["renter_utilities"]

        return HousingCostAdjustment(adjusted_cost_index=index)

    def _homeowner(self, profile: CityFinancialProfile, persona: PersonaConfiguration) -> HousingCostAdjustment:
        """Goods + services only; a fixed-rate mortgage insulates owners from housing RPP."""
        rpp = profile.rpp
        weights = self.rates.cost_index_weights

        if rpp.goods is not None and rpp.other_services is not None:
            index = weights["homeowner_goods"] * rpp.goods + weights["homeowner_other_services"] * rpp.other_services
            return HousingCostAdjustment(adjusted_cost_index=index)

        if rpp.goods is not None:
            return HousingCostAdjustment(adjusted_cost_index=rpp.goods, used_fallback=True)

        return HousingCostAdjustment(adjusted_cost_index=rpp.all_items, used_fallback=True)

    def _prospective_buyer(self, profile: CityFinancialProfile, persona: PersonaConfiguration) -> HousingCostAdjustment:
        """Today's home price financed at today's mortgage rate, against the national equivalent."""
        rpp = profile.rpp
        price = profile.median_home_price
        if price is None:
            logger.debug(f"No home price for {profile.name!r}; buyer index falls back to all-items RPP")
            return HousingCostAdjustment(adjusted_cost_index=rpp.all_items, used_fallback=True)

        annual_rate = persona.mortgage_rate if persona.mortgage_rate is not None else self.rates.default_mortgage_rate
        down_payment = (
            persona.down_payment_fraction
            if persona.down_payment_fraction is not None
            else self.rates.default_down_payment_fraction
        )
        national_tax_rate = self.rates.national_property_tax_rate
        local_tax_rate = profile.property_tax_rate if profile.property_tax_rate is not None else national_tax_rate

        mortgage, monthly_total = self._monthly_housing_cost(price, annual_rate, down_payment, local_tax_rate)
        _, national_total = self._monthly_housing_cost(
            self.rates.national_median_home_price, annual_rate, down_payment, national_tax_rate
        )
        if national_total <= 0:
            return HousingCostAdjustment(adjusted_cost_index=rpp.all_items, used_fallback=True)

        raw_index = monthly_total / national_total * 100
        housing_index = compress_housing_index(
            raw_index,
            self.rates.housing_compression_threshold,
            self.rates.housing_compression_scale,
        )

        weights = self.rates.cost_index_weights
        goods = rpp.goods if rpp.goods is not None else 100.0
        other_services = rpp.other_services if rpp.other_services is not None else 100.0
        index = (
            weights["buyer_housing"] * housing_index
            + weights["buyer_goods"] * goods
            + weights["buyer_other_services"] * other_services
        )

        return HousingCostAdjustment(
            adjusted_cost_index=index,
            monthly_mortgage=round(mortgage, 2),
            monthly_housing_cost=round(monthly_total, 2),
            raw_housing_index=round(raw_index, 2),
            housing_index=round(housing_index, 2),
        )

    def _monthly_housing_cost(
        self,
        home_price: float,
        annual_rate: float,
        down_payment: float,
        property_tax_rate: float
    ) -> Tuple[float, float]:
        """Return (mortgage payment, mortgage + property tax) per month."""
        principal = home_price * (1 - down_payment)
        mortgage = monthly_mortgage_payment(principal, annual_rate, self.rates.mortgage_term_months)
        return mortgage, mortgage + home_price * property_tax_rate / 12


# =============================================================================
# INCOME SELECTION
# =============================================================================

IncomeHandler = Callable[[CityFinancialProfile, PersonaConfiguration, PropertyTaxEstimate], IncomeSelection]


class IncomeSelector:
    """
    Picks a persona's income and the national baseline measured the same way.

    A persona's income is never compared against another persona's baseline.
    """

    def __init__(
        self,
        rates: Optional[RateProvider] = None,
        tax_calculator: Optional[TaxCalculator] = None,
        property_tax_estimator: Optional[PropertyTaxEstimator] = None
    ):
        self.rates = rates or RateProvider()
        self.tax_calculator = tax_calculator or TaxCalculator(self.rates)
        self.property_tax_estimator = property_tax_estimator or PropertyTaxEstimator(self.rates)
        self._handlers: Dict[WorkSituation, IncomeHandler] = {
            WorkSituation.LOCAL_EARNER: self._local_earner,
            WorkSituation.RETIREE: self._retiree,
            WorkSituation.STANDARD: self._standard,
        }

    @property
    def handled_situations(self) -> frozenset:
        return frozenset(self._handlers)

    def select(
        self,
        profile: CityFinancialProfile,
        persona: PersonaConfiguration
    ) -> IncomeSelection:
        property_tax = self.property_tax_estimator.estimate(persona, profile)
        handler = self._handlers[persona.work_situation]
        return handler(profile, persona, property_tax)

    def _local_earner(
        self,
        profile: CityFinancialProfile,
        persona: PersonaConfiguration,
        property_tax: PropertyTaxEstimate
    ) -> IncomeSelection:
        """Local per-capita income; taxes already netted out in disposable income."""
        income = profile.per_capita_income
        disposable = profile.per_capita_disposable_income
        local_property_tax = property_tax.local_annual_property_tax

        total_tax = _subtract(income, disposable)
        if profile.effective_tax_rate is not None:
            effective_rate = profile.effective_tax_rate / 100
        elif total_tax is not None and income:
            effective_rate = _clamp(total_tax / income, 0.0, 1.0)
        else:
            effective_rate = None

        jurisdiction = self._jurisdiction(profile, persona)
        breakdown = TaxBreakdown(
            source=TaxSource.DISPOSABLE_INCOME if disposable is not None else TaxSource.UNAVAILABLE,
            gross_income=income,
            property_tax=local_property_tax,
            total_tax=round(total_tax, 2) if total_tax is not None else None,
            combined_effective_rate=effective_rate,
            jurisdiction=self.rates.resolve_jurisdiction(jurisdiction) or jurisdiction,
            jurisdiction_known=self.rates.resolve_jurisdiction(jurisdiction) is not None,
        )

        baseline = (
            self.rates.national_per_capita_disposable_income
            - property_tax.national_annual_property_tax
        )

        return IncomeSelection(
            selected_income=income,
            selected_after_tax_income=_subtract(disposable, local_property_tax),
            national_baseline=baseline,
            tax_breakdown=breakdown,
        )

    def _retiree(
        self,
        profile: CityFinancialProfile,
        persona: PersonaConfiguration,
        property_tax: PropertyTaxEstimate
    ) -> IncomeSelection:
        """User-supplied fixed income taxed where the city is."""
        income = (
            persona.retiree_fixed_income
            if persona.retiree_fixed_income is not None
            else self.rates.default_retiree_income
        )
        tax = self.tax_calculator.calculate(income, self._jurisdiction(profile, persona))
        return self._taxed_selection(income, tax, property_tax)

    def _standard(
        self,
        profile: CityFinancialProfile,
        persona: PersonaConfiguration,
        property_tax: PropertyTaxEstimate
    ) -> IncomeSelection:
        """
        National median household income in every city.

        Answers "where can an average earner afford to live", not "how much do
        locals make here".
        """
        income = self.rates.national_median_household_income
        jurisdiction = self._jurisdiction(profile, persona)

        if self.rates.resolve_jurisdiction(jurisdiction) is not None:
            tax = self.tax_calculator.calculate(income, jurisdiction)
            return self._taxed_selection(income, tax, property_tax)

        if profile.effective_tax_rate is not None:
            rate = min(profile.effective_tax_rate / 100, self.rates.max_profile_effective_rate)
            source = TaxSource.PROFILE_EFFECTIVE_RATE
        else:
            rate = self.rates.default_effective_tax_rate
            source = TaxSource.DEFAULT_RATE
        logger.debug(f"No known jurisdiction for {profile.name!r}; taxing standard income at {rate:.4f} ({source.value})")

        total_tax = income * rate
        local_property_tax = property_tax.local_annual_property_tax
        breakdown = TaxBreakdown(
            source=source,
            gross_income=income,
            property_tax=local_property_tax,
            total_tax=round(total_tax, 2),
            combined_effective_rate=rate,
            jurisdiction=jurisdiction,
            jurisdiction_known=False,
        )

        return IncomeSelection(
            selected_income=income,
            selected_after_tax_income=_subtract(income, round(total_tax, 2), local_property_tax),
            national_baseline=self._baseline(income, property_tax),
            tax_breakdown=breakdown,
        )

    def _taxed_selection(
        self,
        income: float,
        tax: TaxCalculation,
        property_tax: PropertyTaxEstimate
    ) -> IncomeSelection:
        local_property_tax = property_tax.local_annual_property_tax
        breakdown = TaxBreakdown(
            source=TaxSource.CALCULATED,
            gross_income=income,
            federal_tax=tax.federal_tax,
            state_tax=tax.state_tax,
            property_tax=local_property_tax,
            total_tax=round(tax.federal_tax + tax.state_tax, 2),
            combined_effective_rate=tax.combined_effective_rate,
            jurisdiction=tax.jurisdiction,
            jurisdiction_known=tax.jurisdiction_known,
        )
        return IncomeSelection(
            selected_income=income,
            selected_after_tax_income=_subtract(income, tax.federal_tax, tax.state_tax, local_property_tax),
            national_baseline=self._baseline(income, property_tax),
            tax_breakdown=breakdown,
        )

    def _baseline(self, income: float, property_tax: PropertyTaxEstimate) -> float:
        """Same income taxed at the reference jurisdiction, minus national property tax."""
        reference = self.tax_calculator.calculate(income, self.rates.reference_jurisdiction)
        return (
            income
            - reference.federal_tax
            - reference.state_tax
            - property_tax.national_annual_property_tax
        )

    @staticmethod
    def _jurisdiction(profile: CityFinancialProfile, persona: PersonaConfiguration) -> Optional[str]:
        return persona.state_override or profile.state


# =============================================================================
# COMBINER AND RATINGS
# =============================================================================

def calculate_true_purchasing_power(
    after_tax_income: Optional[float],
    adjusted_cost_index: Optional[float]
) -> Optional[int]:
    """After-tax income in national-average dollars; None when either side is missing."""
    if after_tax_income is None or adjusted_cost_index is None or adjusted_cost_index <= 0:
        return None
    return round(after_tax_income / (adjusted_cost_index / 100))


def calculate_purchasing_power_index(
    true_purchasing_power: Optional[float],
    national_baseline: Optional[float]
) -> Optional[float]:
    if true_purchasing_power is None or national_baseline is None or national_baseline <= 0:
        return None
    return round(true_purchasing_power / national_baseline * 100, 1)


def get_tax_burden_rating(effective_rate_percent: Optional[float]) -> Optional[TaxBurdenRating]:
    """Rating for a combined effective tax rate expressed as a percentage."""
    if effective_rate_percent is None:
        return None
    for bound, label in TAX_BURDEN_THRESHOLDS:
        if effective_rate_percent < bound:
            return TaxBurdenRating(label)
    return TaxBurdenRating.VERY_HIGH


def get_cost_of_living_rating(cost_index: Optional[float]) -> Optional[CostOfLivingRating]:
    if cost_index is None:
        return None
    for bound, label in COST_OF_LIVING_THRESHOLDS:
        if cost_index < bound:
            return CostOfLivingRating(label)
    return CostOfLivingRating.VERY_HIGH


def get_overall_value_rating(purchasing_power_index: Optional[float]) -> Optional[OverallValueRating]:
    if purchasing_power_index is None:
        return None
    for bound, label in OVERALL_VALUE_THRESHOLDS:
        if purchasing_power_index >= bound:
            return OverallValueRating(label)
    return OverallValueRating.VERY_POOR


class PurchasingPowerCombiner:
    """Divides selected after-tax income by the adjusted cost index and rates the result."""

    def combine(
        self,
        housing: HousingCostAdjustment,
        income: IncomeSelection,
        profile: CityFinancialProfile,
        persona: PersonaConfiguration
    ) -> ComputationResult:
        true_purchasing_power = calculate_true_purchasing_power(
            income.selected_after_tax_income,
            housing.adjusted_cost_index,
        )
        index = calculate_purchasing_power_index(true_purchasing_power, income.national_baseline)

        rpp = profile.rpp
        components = CostIndexComponents(
            all_items=rpp.all_items,
            goods=rpp.goods,
            housing=rpp.housing,
            utilities=rpp.utilities,
            other_services=rpp.other_services,
            persona_housing_index=housing.housing_index,
            raw_housing_index=housing.raw_housing_index,
            monthly_mortgage=housing.monthly_mortgage,
            monthly_housing_cost=housing.monthly_housing_cost,
        )

        return ComputationResult(
            city_name=profile.name,
            housing_situation=persona.housing_situation,
            work_situation=persona.work_situation,
            true_purchasing_power=true_purchasing_power,
            true_purchasing_power_index=index,
            adjusted_cost_index=housing.adjusted_cost_index,
            cost_components=components,
            selected_income=income.selected_income,
            selected_after_tax_income=(
                round(income.selected_after_tax_income, 2)
                if income.selected_after_tax_income is not None else None
            ),
            national_baseline=round(income.national_baseline, 2) if income.national_baseline is not None else None,
            tax_breakdown=income.tax_breakdown,
            tax_burden_rating=get_tax_burden_rating(income.tax_breakdown.effective_rate_percent),
            cost_of_living_rating=get_cost_of_living_rating(housing.adjusted_cost_index),
            overall_value_rating=get_overall_value_rating(index),
        )


# =============================================================================
# COST SCORE
# =============================================================================

def calculate_cost_score(
    result: ComputationResult,
    median_home_price: Optional[float] = None
) -> float:
    """
    Map a result onto an affordability score (higher = more affordable).

    Index 100 scores 50 and every index point moves the score by 0.75, clamped
    to 0-100. Without an index, falls back to home price (floored at 0 but not
    capped), then to a neutral score.
    """
    index = result.true_purchasing_power_index
    if index is not None:
        score = COST_SCORE["center"] + (index - 100) * COST_SCORE["slope"]
        return _clamp(score, 0.0, 100.0)

    if median_home_price is not None:
        return max(0.0, 100 - (median_home_price - COST_SCORE["floor_price"]) / COST_SCORE["price_span"] * 100)

    return COST_SCORE["neutral"]


# =============================================================================
# ENGINE
# =============================================================================

class TrueCostEngine:
    """
    Runs the full pipeline for one city or many.

    Example:
        engine = TrueCostEngine()
        result = engine.compute(profile, PersonaConfiguration(housing_situation="homeowner"))
    """

    def __init__(self, rates: Optional[RateProvider] = None):
        self.rates = rates or RateProvider()
        self.tax_calculator = TaxCalculator(self.rates)
        self.property_tax_estimator = PropertyTaxEstimator(self.rates)
        self.housing_adjuster = HousingCostAdjuster(self.rates)
        self.income_selector = IncomeSelector(self.rates, self.tax_calculator, self.property_tax_estimator)
        self.combiner = PurchasingPowerCombiner()

    def compute(
        self,
        profile: CityFinancialProfile,
        persona: Optional[PersonaConfiguration] = None
    ) -> ComputationResult:
        persona = persona or PersonaConfiguration()

        income = self.income_selector.select(profile, persona)
        housing = self.housing_adjuster.adjust(profile, persona)
        result = self.combiner.combine(housing, income, profile, persona)

        if result.true_purchasing_power is None:
            logger.debug(
                f"No purchasing power for {profile.name!r} "
                f"({persona.housing_situation.value}/{persona.work_situation.value}): "
                f"after-tax={income.selected_after_tax_income}, cost index={housing.adjusted_cost_index}"
            )
        return result

    def compute_many(
        self,
        profiles: Iterable[CityFinancialProfile],
        persona: Optional[PersonaConfiguration] = None,
        max_workers: Optional[int] = None
    ) -> List[ComputationResult]:
        """Evaluate every profile under one persona, preserving input order."""
        profiles = list(profiles)
        if not max_workers or max_workers <= 1 or len(profiles) <= 1:
            return [self.compute(profile, persona) for profile in profiles]

        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            return list(pool.map(lambda profile: self.compute(profile, persona), profiles))

    def rank(
        self,
        results: Sequence[ComputationResult],
        profiles: Sequence[CityFinancialProfile]
    ) -> List[RankedCity]:
        """Order cities by purchasing-power index; cities without an index go last."""
        scored = [
            (result, calculate_cost_score(result, profile.median_home_price))
            for result, profile in zip(results, profiles)
        ]
        scored.sort(key=lambda pair: (
            pair[0].true_purchasing_power_index is None,
            -(pair[0].true_purchasing_power_index or 0.0),
            -pair[1],
        ))
        return [
            RankedCity(
                rank=position,
                city_name=result.city_name,
                true_purchasing_power_index=result.true_purchasing_power_index,
                cost_score=round(score, 1),
                overall_value_rating=result.overall_value_rating,
            )
            for position, (result, score) in enumerate(scored, start=1)
        ]


def calculate_true_cost_of_living(
    profile: CityFinancialProfile,
    persona: Optional[PersonaConfiguration] = None,
    rates: Optional[RateProvider] = None
) -> ComputationResult:
    """One-shot convenience wrapper around TrueCostEngine.compute."""
    return TrueCostEngine(rates).compute(profile, persona)
