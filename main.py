#!/usr/bin/env python3
"""
main.py: fit SVI volatility smiles and render them.

Usage:
    python main.py build-surface                         # quote file (default)
    python main.py build-surface --source synthetic      # synthetic quotes
    python main.py build-graphs                          # charts from stored fits
    python main.py help
"""

import argparse
import logging
import sys
import time
from datetime import datetime, timezone

from volsmile import config
from volsmile.data_feed import get_quotes
from volsmile.errors import SmileFitError
from volsmile.logging import configure_logging
from volsmile.pipeline import build_surface
from volsmile.result_store import FitResultStore, results_to_frame
from volsmile.visualization import render_all


def build_parser():
    p = argparse.ArgumentParser(description="Fit arbitrage-free SVI volatility smiles.")
    sub = p.add_subparsers(dest="command")

    b = sub.add_parser("build-surface", help="fit one smile per expiry and store the results")
    b.add_argument("--source", choices=["file", "synthetic"], default="file")
    b.add_argument("--input", type=str, default=None, help="quote file (CSV or JSON)")
    b.add_argument("--output", type=str, default=None, help="fit results file")
    b.add_argument("--rate", type=float, default=None)
    b.add_argument("--min-options", type=int, default=None)
    b.add_argument("-v", "--verbose", action="store_true")

    g = sub.add_parser("build-graphs", help="render charts from stored fit results")
    g.add_argument("--results", type=str, default=None, help="fit results file")
    g.add_argument("--no-html", action="store_true")

    sub.add_parser("help", help="show this message")
    return p


def run_build_surface(args) -> int:
    configure_logging(logging.DEBUG if args.verbose else logging.INFO)

    # the one and only clock read of the run
    as_of = datetime.now(timezone.utc)

    print(f"\n{'='*60}")
    print(f"  SVI Smile Fitter")
    print(f"  Source: {args.source}  |  As of: {as_of:%Y-%m-%d %H:%M:%S} UTC")
    print(f"{'='*60}\n")

    t0 = time.time()
    print("[1/3] Loading quotes...")
    try:
        quotes = get_quotes(source=args.source, as_of=as_of, path=args.input)
    except (FileNotFoundError, ValueError) as e:
        print(f"\n  ERROR: {e}")
        return 1
    print(f"       Quotes: {len(quotes)}")

    print("\n[2/3] Fitting smiles...")
    store = FitResultStore(args.output)
    try:
        report = build_surface(quotes, as_of, store=store, rate=args.rate,
                               min_options=args.min_options)
    except SmileFitError as e:
        print(f"\n  ERROR: {e}")
        return 1

    norm = report.normalization
    print(f"       Options accepted: {norm.n_accepted}/{norm.n_input}"
          f"  (expired {norm.n_expired}, invalid {norm.n_invalid},"
          f" unsolvable {norm.n_unsolvable})")
    print(f"       Smiles fitted: {report.n_fitted}")
    for expiry, n in sorted(report.insufficient.items()):
        print(f"       skipped {expiry:%Y-%m-%d}: only {n} options")
    for expiry, reason in sorted(report.unfittable.items()):
        print(f"       skipped {expiry:%Y-%m-%d}: {reason}")

    if report.results:
        summary = results_to_frame(report.results)
        print()
        print(summary[["expiry", "T", "a", "b", "rho", "m", "sigma", "rmse"]]
              .to_string(index=False))

    print(f"\n[3/3] Results saved to {store.path}")
    print(f"\n  Done in {time.time() - t0:.1f}s.\n")
    return 0


def run_build_graphs(args) -> int:
    configure_logging(logging.INFO)
    store = FitResultStore(args.results)
    results = store.load_all()
    if not results:
        print(f"\n  ERROR: no fit results at {store.path}. Run build-surface first.")
        return 1

    print(f"\nRendering {len(results)} smiles...")
    for path in render_all(results, html=not args.no_html):
        print(f"       -> {path}")
    print(f"\n  Charts are in {config.GRAPHS_DIR}\n")
    return 0


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "build-surface":
        sys.exit(run_build_surface(args))
    elif args.command == "build-graphs":
        sys.exit(run_build_graphs(args))
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
