"""
vol-smile-fitter
================
Arbitrage-free SVI volatility smiles from option quotes, one per expiry.

Modules:
    black_scholes      - Black (1976) pricing, greeks, implied vol solver
    normalizer         - Raw quotes -> normalized options with implied vols
    grouping           - Per-expiry grouping and size threshold
    svi_model          - SVI total variance and butterfly arbitrage checks
    svi_calibration    - Grid search + Levenberg-Marquardt SVI fitting
    result_store       - JSON persistence of fitted smiles
    pipeline           - End-to-end run with drop/skip reporting
    data_feed          - Quote files and synthetic quotes
    visualization      - Smile charts (matplotlib + plotly)
    config             - Global constants and defaults
"""

__version__ = "0.3.0"
__author__ = "Leo"
