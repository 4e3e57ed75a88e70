# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""fpcal - Sybil-resistant trust core for false-positive calibration.

Organizations anonymously report per-rule false-positive rates. fpcal decides
whose reports count and how much, and turns them into a single consensus rate
per rule that a dishonest minority cannot drag around.

Architecture:
  Identity (registry- or payment-backed verification)
    → Nonce binding (one active pseudonymous credential per organization)
    → Reputation (base score, stake, consistency with past consensus)
    → Byzantine filter (minimum reputation, stake, Z-score outliers, bottom 20%)
    → Weighted consensus + confidence
    → Consistency feedback into the next round

All storage is injected (``fpcal.storage``); in-memory and PostgreSQL backends
ship with the package.
"""

__version__ = "0.3.0"
