"""
OrbGuard forensic spyware detection engine.

Correlates forensic artifacts (iOS shutdown logs, backups, sysdiagnose
archives, Android logcat dumps, network usage samples) against a versioned
Indicator-of-Compromise database.
"""

__version__ = "1.0.0"
