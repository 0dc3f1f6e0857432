"""
Example: PDR + Magnetic Fingerprint Fusion on a Simulated Walk

Simulates a pedestrian walking a rectangular corridor loop and runs the
full event pipeline on it:

    accelerometer -> StepDetector -> PedestrianDeadReckoning -> FusionStrategy
    magnetometer  -> FingerprintMatcher (synthetic survey map)  ----^

The heading fed to the PDR carries a slowly growing bias, mimicking gyro
drift. A second strategy without fixes gives the dead-reckoning baseline.

Can run with:
    - Defaults:          python scripts/simulate_walk.py
    - YAML parameters:   python scripts/simulate_walk.py --config indoornav.yaml
    - With a figure:     python scripts/simulate_walk.py --plot
"""

import argparse
import logging
import tempfile
from pathlib import Path

import numpy as np

from indoornav.config import IndoorNavConfig, load_config
from indoornav.fingerprinting.dataset import save_fingerprint_tsv
from indoornav.fingerprinting.matcher import make_matcher
from indoornav.fingerprinting.types import FingerprintDatabase
from indoornav.fusion.events import Channel
from indoornav.fusion.strategy import FusionStrategy
from indoornav.sensors.environment import STANDARD_GRAVITY
from indoornav.sensors.pdr import PedestrianDeadReckoning, StepDetector
from indoornav.sensors.types import Acceleration, Heading, MagneticField, PositionEstimate

logger = logging.getLogger("simulate_walk")

NS = 1_000_000_000


def magnetic_field_at(x: np.ndarray, y: np.ndarray) -> np.ndarray:
    """Smooth synthetic indoor field (μT) with local anomalies."""
    mx = 20.0 + 6.0 * np.sin(x / 3.0) + 3.0 * np.cos(y / 2.0)
    my = -5.0 + 4.0 * np.cos(x / 4.0) + 5.0 * np.sin(y / 1.5)
    mz = -40.0 + 0.8 * x - 1.2 * y + 2.0 * np.sin((x + y) / 2.5)
    return np.column_stack([mx, my, mz])


def build_survey_map(width: float, height: float, spacing: float, floor: int) -> FingerprintDatabase:
    gx, gy = np.meshgrid(
        np.arange(0.0, width + spacing / 2, spacing),
        np.arange(0.0, height + spacing / 2, spacing),
    )
    locations = np.column_stack([gx.ravel(), gy.ravel()])
    features = magnetic_field_at(locations[:, 0], locations[:, 1])
    return FingerprintDatabase(locations=locations, features=features, floor=floor)


def rectangle_route(width: float, height: float, step_length: float) -> np.ndarray:
    """True heading (rad) of every step around a width × height loop."""
    legs = [
        (0.0, width),
        (np.pi / 2, height),
        (np.pi, width),
        (-np.pi / 2, height),
    ]
    headings = []
    for heading, length in legs:
        headings.extend([heading] * int(round(length / step_length)))
    return np.array(headings)


def run_simulation(config: IndoorNavConfig, args: argparse.Namespace) -> dict:
    rng = np.random.default_rng(args.seed)
    step_length = config.strategy.step_length
    floor = 0

    headings_true = rectangle_route(args.width, args.height, step_length)
    n_steps = len(headings_true)

    # Survey map on disk, loaded back the way a deployed matcher would be
    db = build_survey_map(args.width, args.height, args.map_spacing, floor)
    with tempfile.TemporaryDirectory() as tmp:
        map_path = Path(tmp) / "floor0_magnetic.tsv"
        save_fingerprint_tsv(db, map_path)
        matcher = make_matcher(
            map_path, floor=floor, k=args.k, threshold=args.threshold,
            n_features=3, source="magnetic",
        )
    if matcher is None:
        raise RuntimeError("Synthetic survey map could not be loaded")
    logger.info("Loaded %r", matcher)

    accelerometer = Channel("accelerometer")
    compass_headings = Channel("compass.headings")

    detector = StepDetector(
        accelerometer,
        min_peak_height=config.pdr.min_peak_height,
        min_step_interval=config.pdr.min_step_interval,
    )
    pdr = PedestrianDeadReckoning(detector.steps, compass_headings, step_length=step_length)

    start = PositionEstimate(x=0.0, y=0.0, floor=floor, timestamp=0, source="start")
    fused = FusionStrategy(start, pdr.events, config=config.strategy)
    fused.add_matcher(matcher, sigma=args.fix_sigma)
    dead_reckoning = FusionStrategy(start, pdr.events, config=config.strategy)

    truth = [np.zeros(2)]
    track_fused = [start.xy]
    per_step_fused = [start.xy]
    per_step_dr = [start.xy]
    fixes = []

    def on_step_event(_event) -> None:
        k = len(truth) - 1
        heading = headings_true[min(k, n_steps - 1)]
        truth.append(truth[-1] + step_length * np.array([np.cos(heading), np.sin(heading)]))

    matcher.positions.subscribe(lambda e: fixes.append(e.xy))
    # Truth first so that the magnetometer reading below sees the new position
    pdr.events.subscribe(on_step_event)
    fused.positions.subscribe(lambda e: track_fused.append(e.xy))

    for component in (detector, pdr, fused, dead_reckoning):
        component.start()

    dt = 1.0 / args.sample_rate
    duration = n_steps / args.step_frequency
    drift = np.deg2rad(args.heading_drift)
    try:
        for i in range(int(duration * args.sample_rate)):
            t = i * dt
            timestamp = int(round(t * NS))

            k = min(len(truth) - 1, n_steps - 1)
            azimuth = headings_true[k] + drift * t + rng.normal(0.0, np.deg2rad(1.0))
            compass_headings.publish(Heading(azimuth=float(azimuth), timestamp=timestamp))

            dynamic = args.accel_amplitude * np.sin(2 * np.pi * args.step_frequency * t)
            az = STANDARD_GRAVITY + dynamic + rng.normal(0.0, 0.05)
            steps_before = len(truth)
            accelerometer.publish(Acceleration(0.0, 0.0, float(az), timestamp=timestamp))

            # One magnetometer reading every fix_every steps
            if len(truth) > steps_before and (len(truth) - 1) % args.fix_every == 0:
                x, y = truth[-1]
                field = magnetic_field_at(np.array([x]), np.array([y]))[0]
                field = field + rng.normal(0.0, args.mag_noise, size=3)
                matcher.on_sample(MagneticField(*field, timestamp=timestamp))

            if len(truth) > steps_before:
                per_step_fused.append(fused.get_state()[0][:2])
                per_step_dr.append(dead_reckoning.get_state()[0][:2])

            if len(truth) - 1 >= n_steps:
                break
    finally:
        for component in (detector, pdr, fused, dead_reckoning):
            component.stop()

    return {
        "truth": np.array(truth),
        "track": np.array(track_fused),
        "fused": np.array(per_step_fused),
        "dead_reckoning": np.array(per_step_dr),
        "fixes": np.array(fixes).reshape(-1, 2),
        "steps_detected": detector.step_count,
        "steps_true": n_steps,
        "rejected_fixes": fused.updater.rejected_fixes,
        "db": db,
    }


def step_errors(track: np.ndarray, truth: np.ndarray) -> np.ndarray:
    """Position error after each step."""
    return np.linalg.norm(track - truth, axis=1)


def plot_results(results: dict, output: Path) -> None:
    import matplotlib.pyplot as plt

    db = results["db"]
    fig, ax = plt.subplots(figsize=(10, 6))
    ax.scatter(db.locations[:, 0], db.locations[:, 1], s=6, c="lightgray", label="Survey points")
    ax.plot(*results["truth"].T, "k-", linewidth=2, label="Truth")
    ax.plot(*results["dead_reckoning"].T, "r--", label="PDR only")
    ax.plot(*results["track"].T, "b-", label="PDR + magnetic fixes")
    if len(results["fixes"]):
        ax.plot(*results["fixes"].T, "g.", markersize=8, label="Fingerprint fixes")
    ax.set_xlabel("x [m]")
    ax.set_ylabel("y [m]")
    ax.set_aspect("equal")
    ax.grid(True, alpha=0.3)
    ax.legend(loc="best")
    ax.set_title("Simulated corridor loop")
    fig.tight_layout()
    fig.savefig(output, dpi=150)
    print(f"  [OK] Saved: {output}")
    plt.show()


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__.split("\n\n")[0].strip())
    parser.add_argument("--config", type=Path, help="YAML configuration file")
    parser.add_argument("--width", type=float, default=16.0, help="Loop width (m)")
    parser.add_argument("--height", type=float, default=6.0, help="Loop height (m)")
    parser.add_argument("--map-spacing", type=float, default=1.0, help="Survey grid spacing (m)")
    parser.add_argument("--k", type=int, default=4, help="k-NN neighbours")
    parser.add_argument("--threshold", type=float, default=None,
                        help="Squared-distance threshold (μT²)")
    parser.add_argument("--fix-every", type=int, default=4, help="Steps between magnetometer fixes")
    parser.add_argument("--fix-sigma", type=float, default=1.5, help="Fix position std (m)")
    parser.add_argument("--mag-noise", type=float, default=0.5, help="Magnetometer noise (μT)")
    parser.add_argument("--heading-drift", type=float, default=0.5,
                        help="Heading drift rate (deg/s)")
    parser.add_argument("--sample-rate", type=float, default=50.0, help="Accelerometer rate (Hz)")
    parser.add_argument("--step-frequency", type=float, default=2.0, help="Cadence (Hz)")
    parser.add_argument("--accel-amplitude", type=float, default=3.0,
                        help="Vertical acceleration amplitude (m/s²)")
    parser.add_argument("--seed", type=int, default=42)
    parser.add_argument("--plot", action="store_true", help="Plot the tracks (needs matplotlib)")
    parser.add_argument("--output", type=Path, default=Path("simulate_walk.png"))
    parser.add_argument("--verbose", action="store_true", help="Debug logging")
    return parser.parse_args(argv)


def main(argv=None) -> None:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    config = load_config(args.config) if args.config else IndoorNavConfig()

    print("\n" + "=" * 70)
    print("PDR + Magnetic Fingerprint Fusion")
    print("=" * 70)

    results = run_simulation(config, args)
    truth = results["truth"]
    err_dr = step_errors(results["dead_reckoning"], truth)
    err_fused = step_errors(results["fused"], truth)

    print(f"\n  Steps detected: {results['steps_detected']} / {results['steps_true']}")
    print(f"  Fingerprint fixes: {len(results['fixes'])} "
          f"({results['rejected_fixes']} rejected)")
    print()
    print("PDR only:")
    print(f"  Final error:  {err_dr[-1]:.2f} m")
    print(f"  RMSE:         {np.sqrt(np.mean(err_dr ** 2)):.2f} m")
    print("PDR + magnetic fixes:")
    print(f"  Final error:  {err_fused[-1]:.2f} m")
    print(f"  RMSE:         {np.sqrt(np.mean(err_fused ** 2)):.2f} m")

    if args.plot:
        plot_results(results, args.output)


if __name__ == "__main__":
    main()
