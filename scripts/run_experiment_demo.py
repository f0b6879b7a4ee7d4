#!/usr/bin/env python3
"""
Run full experiment demo: simulate -> analyze -> sequential check -> plan.

Creates artifacts/experiments/<id>/analysis.json.
"""

import json
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(ROOT))


def main():
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    from src.experiment_engine import EventLedger, ExperimentConfig, Metric, analyze_test
    from src.experiment_engine.simulate_campaign import FunnelRates, simulate_outreach
    from src.experiment_engine.stats import duration_estimate, sample_size, sequential_test

    test_id = "demo_subject_line_001"
    artifacts_dir = ROOT / "artifacts" / "experiments"
    artifacts_dir.mkdir(parents=True, exist_ok=True)

    config = ExperimentConfig(
        test_id=test_id,
        name="Subject line: question vs statement",
        variants=["statement", "question"],
        primary_metric=Metric.REPLY_RATE,
        min_sample=500,
    )
    true_rates = {
        "statement": FunnelRates(open=0.42, reply=0.10),
        "question": FunnelRates(open=0.48, reply=0.13),
    }

    with EventLedger() as ledger:
        ledger.name_variants(test_id, {"statement": "Statement subject", "question": "Question subject"})

        print("1. Simulating outreach...")
        summary = simulate_outreach(ledger, config, true_rates, n_participants=3000)
        print(f"   Assigned: {summary['assigned']}, {summary['events_written']} events")

        print("2. Running analysis...")
        result = analyze_test(ledger, config, simulations=5000)
        for v in result.variants:
            print(f"   {v.variant_name}: {v.conversions}/{v.sample_size} ({v.rate:.2%})")
        print(f"   Recommendation: {result.recommendation} - {result.recommendation_reason}")

        print("3. Sequential check over daily looks...")
        visits, conversions = ledger.period_series(
            test_id, config.control_variant, "question", metric=config.primary_metric
        )
        seq = sequential_test(visits, conversions)
        print(
            f"   {seq.looks} looks, p={seq.p_value:.4f}, "
            f"adjusted alpha={seq.adjusted_alpha:.4f}, stop={seq.should_stop}"
        )

    print("4. Planning a follow-up test...")
    control = result.variant(config.control_variant)
    baseline = control.rate if 0 < control.rate < 1 else 0.05
    needed = sample_size(baseline, 0.20)
    duration = duration_estimate(daily_traffic=400, samples_needed=needed)
    print(f"   {needed} per variant for +20% from {baseline:.2%}: {duration.recommended}")

    out_dir = artifacts_dir / test_id
    out_dir.mkdir(parents=True, exist_ok=True)
    payload = result.to_dict()
    payload["sequential"] = {
        "looks": seq.looks,
        "p_value": seq.p_value,
        "adjusted_alpha": seq.adjusted_alpha,
        "should_stop": seq.should_stop,
    }
    with open(out_dir / "analysis.json", "w") as f:
        json.dump(payload, f, indent=2)

    print(f"\n[OK] Demo complete. Artifacts in {out_dir}:")
    for f in sorted(out_dir.iterdir()):
        print(f"   - {f.name}")


if __name__ == "__main__":
    main()
