"""SnapTrust — trust and commitment engine for a Seeker/Retainer marketplace.

Components:
    linking      mutual video-confirmation and approval links
    work         assignments and per-cadence work periods
    exits        exit notices and bad-exit penalty escalation
    reputation   check-ins, outcome facts and read-time scores
    service      facade with audit trail and persistence

The library installs no logging handlers; configure logging in the
application (the CLI does so through --log-level).
"""

__version__ = "0.1.0"
