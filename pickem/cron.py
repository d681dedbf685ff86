from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from pickem import config


@dataclass(frozen=True)
class CronAuthCheck:
    ok: bool
    reason: Optional[str] = None  # missing_cron_secret / missing_auth / invalid_auth


def check_cron_authorization(
    authorization: Optional[str],
    cron_secret_header: Optional[str],
    expected_secret: Optional[str] = None,
    production: Optional[bool] = None,
) -> CronAuthCheck:
    expected = (expected_secret if expected_secret is not None else config.CRON_SECRET) or ""
    expected = expected.strip()
    if production is None:
        production = config.is_production()

    if not expected:
        # Local development runs the job without a configured secret.
        if not production:
            return CronAuthCheck(ok=True)
        return CronAuthCheck(ok=False, reason="missing_cron_secret")

    bearer = (authorization or "").strip()
    direct = (cron_secret_header or "").strip()
    if not bearer and not direct:
        return CronAuthCheck(ok=False, reason="missing_auth")
    if direct and direct == expected:
        return CronAuthCheck(ok=True)
    if bearer == f"Bearer {expected}":
        return CronAuthCheck(ok=True)
    return CronAuthCheck(ok=False, reason="invalid_auth")
