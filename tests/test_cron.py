from pickem.cron import check_cron_authorization


def test_without_secret_only_development_is_allowed():
    assert check_cron_authorization(None, None, expected_secret="", production=False).ok is True

    check = check_cron_authorization(None, None, expected_secret="", production=True)
    assert check.ok is False
    assert check.reason == "missing_cron_secret"


def test_secret_required_when_configured():
    check = check_cron_authorization(None, "  ", expected_secret="s3cret", production=False)
    assert check.ok is False
    assert check.reason == "missing_auth"


def test_bearer_or_header_secret_accepted():
    assert check_cron_authorization("Bearer s3cret", None, expected_secret="s3cret", production=True).ok
    assert check_cron_authorization(None, "s3cret", expected_secret="s3cret", production=True).ok
    assert check_cron_authorization("Bearer wrong", "s3cret", expected_secret="s3cret", production=True).ok


def test_wrong_secret_rejected():
    check = check_cron_authorization("Bearer nope", "nope", expected_secret="s3cret", production=True)
    assert check.ok is False
    assert check.reason == "invalid_auth"

    check = check_cron_authorization("s3cret", None, expected_secret="s3cret", production=True)
    assert check.reason == "invalid_auth"
