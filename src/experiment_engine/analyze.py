"""
Test analysis entrypoint.

Input: an EventLedger and the test's ExperimentConfig.
Output: AnalysisResult with every variant scored against the control on the
primary metric, an SRM check, the winner (if any) and a ship / hold / iterate
recommendation.
"""

import logging
from typing import Any, Dict, Optional

import numpy as np

from .event_store import EventLedger
from .schema import (
    AnalysisResult,
    ArmType,
    ExperimentConfig,
    Metric,
    VariantAggregate,
    VariantResult,
)
from .stats import (
    achieved_power,
    bayesian_analysis,
    check_srm,
    significance_report,
)
from .stats.bayesian import DEFAULT_SIMULATIONS

logger = logging.getLogger(__name__)

_DISPLAY_METRICS = (
    Metric.OPEN_RATE,
    Metric.CLICK_RATE,
    Metric.REPLY_RATE,
    Metric.CONVERSION_RATE,
)


def _variant_aggregates(ledger: EventLedger, config: ExperimentConfig) -> Dict[str, VariantAggregate]:
    aggregates = ledger.aggregate(config.test_id)
    unknown = sorted(set(aggregates) - set(config.variants))
    if unknown:
        logger.warning(f"Test {config.test_id} has events for unconfigured variants: {unknown}")
    return {
        v: aggregates.get(v) or VariantAggregate(test_id=config.test_id, variant_id=v, variant_name=v)
        for v in config.variants
    }


def analyze_test(
    ledger: EventLedger,
    config: ExperimentConfig,
    bayesian: bool = True,
    simulations: int = DEFAULT_SIMULATIONS,
    rng: Optional[np.random.Generator] = None,
) -> AnalysisResult:
    """
    Run the full analysis of one test.

    Args:
        ledger: Event source
        config: Test configuration (variants, control, primary metric)
        bayesian: Also estimate the probability each variant beats control
        simulations: Posterior draws for the Bayesian estimate
        rng: Random generator for the Bayesian estimate

    Returns:
        AnalysisResult
    """
    metric = config.primary_metric
    aggregates = _variant_aggregates(ledger, config)
    control = aggregates[config.control_variant]
    n_c = control.sent
    x_c = min(control.count_for(metric), n_c)
    if bayesian and rng is None:
        rng = np.random.default_rng()

    variants = []
    for variant_id in config.variants:
        agg = aggregates[variant_id]
        is_control = variant_id == config.control_variant
        # Funnel steps are tracked independently; clip so counts stay a valid proportion
        conversions = min(agg.count_for(metric), agg.sent)
        result = VariantResult(
            variant_id=variant_id,
            variant_name=agg.variant_name,
            is_control=is_control,
            sample_size=agg.sent,
            conversions=conversions,
            rate=conversions / max(agg.sent, 1),
            metrics={m.value: agg.rate_for(m) for m in _DISPLAY_METRICS},
        )
        if not is_control:
            sig = significance_report(
                n_c, x_c, agg.sent, conversions, config.confidence_level, config.power
            )
            result.significance = sig
            result.lift_vs_control = None if sig.degenerate or x_c == 0 else sig.relative_lift
            result.power = achieved_power(
                n_c,
                agg.sent,
                x_c / n_c if n_c else 0.0,
                conversions / agg.sent if agg.sent else 0.0,
                config.confidence_level,
            )
            if bayesian:
                result.bayesian = bayesian_analysis(
                    n_c, x_c, agg.sent, conversions, simulations=simulations, rng=rng
                )
        variants.append(result)

    sent_counts = [aggregates[v].sent for v in config.variants]
    srm_passed, _, srm_p = check_srm(sent_counts, config.weights)

    winner = next(
        (
            v for v in variants
            if v.significance is not None
            and v.significance.significant
            and (v.lift_vs_control or 0) > config.min_practical_lift
        ),
        None,
    )

    recommendation, reason = _recommend(config, variants, srm_passed, winner)

    result = AnalysisResult(
        test_id=config.test_id,
        primary_metric=metric,
        control_variant=config.control_variant,
        variants=variants,
        total_sent=sum(sent_counts),
        srm_passed=srm_passed,
        srm_p_value=srm_p,
        winner_variant_id=winner.variant_id if winner else None,
        recommendation=recommendation,
        recommendation_reason=reason,
    )
    logger.info(
        f"Analysis of {config.test_id} on {metric.value}: "
        f"{result.recommendation} (winner={result.winner_variant_id})"
    )
    return result


def _recommend(config, variants, srm_passed, winner):
    if not srm_passed:
        return "hold", "SRM detected: allocation deviates from configured weights. Do not interpret results."

    smallest = min(v.sample_size for v in variants)
    if smallest < config.min_sample:
        return "iterate", (
            f"Collecting data: smallest variant has {smallest} sent, "
            f"minimum is {config.min_sample} per variant."
        )

    if winner is not None:
        return "ship", (
            f"{winner.variant_name} beats control on {config.primary_metric.value} "
            f"by {winner.lift_vs_control:.1f}% (p={winner.significance.p_value:.4f})."
        )

    alpha = 1 - config.confidence_level
    for v in variants:
        sig = v.significance
        if (
            sig is not None
            and sig.winner == ArmType.CONTROL
            and sig.p_value < alpha
            and -sig.relative_lift > config.min_practical_lift
        ):
            return "hold", (
                f"Control significantly outperforms {v.variant_name} "
                f"(p={sig.p_value:.4f}). Do not roll out."
            )

    if config.max_sample is not None and smallest >= config.max_sample:
        return "hold", "Maximum sample reached without a significant difference. Keep control."

    for v in variants:
        if v.significance is not None and v.significance.significant:
            return "iterate", (
                f"{v.variant_name} is significant but its {v.lift_vs_control or 0:.1f}% lift "
                f"is below the {config.min_practical_lift:.1f}% practical threshold."
            )

    return "iterate", "Inconclusive. Gather more data or refine the variants."


def experiment_progress(ledger: EventLedger, config: ExperimentConfig) -> Dict[str, Any]:
    """
    Enrollment progress for a running test.

    Returns:
        Dict with total_sent and a per-variant breakdown
    """
    aggregates = _variant_aggregates(ledger, config)
    breakdown = {
        v: {
            "sent": agg.sent,
            "open_rate": agg.open_rate,
            "reply_rate": agg.reply_rate,
        }
        for v, agg in aggregates.items()
    }
    return {
        "test_id": config.test_id,
        "total_sent": sum(agg.sent for agg in aggregates.values()),
        "variant_breakdown": breakdown,
    }
