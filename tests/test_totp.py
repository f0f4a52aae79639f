"""Unit tests for two-factor enrollment and verification."""

import time
from urllib.parse import parse_qs, urlparse

import pytest

from tessera.service.errors import InvalidCodeError, NotFoundError, ServerError
from tessera.service.totp import TOTPManager, generate_totp

# RFC 6238 appendix B seed ("12345678901234567890") in base32
RFC_SECRET = "GEZDGNBVGY3TQOJQGEZDGNBVGY3TQOJQ"


@pytest.fixture
def totp(memory_store, settings):
    return TOTPManager(memory_store, settings)


@pytest.fixture
def user(memory_store):
    return memory_store.create_user("totp@example.com", "pw-123456")


class TestCodeGeneration:
    @pytest.mark.parametrize(
        "timestamp,expected",
        [(59, "287082"), (1111111109, "081804"), (1234567890, "005924")],
    )
    def test_matches_rfc_vectors(self, timestamp, expected):
        assert generate_totp(RFC_SECRET, timestamp) == expected

    def test_invalid_secret_yields_empty_code(self):
        assert generate_totp("not base32!", 59) == ""


class TestVerify:
    def test_accepts_current_step(self, totp):
        now = 1_700_000_000
        code = generate_totp(RFC_SECRET, now)

        assert totp.verify(RFC_SECRET, code, at=now) is True

    def test_accepts_one_step_of_drift_each_way(self, totp):
        now = 1_700_000_000
        assert totp.verify(RFC_SECRET, generate_totp(RFC_SECRET, now - 30), at=now)
        assert totp.verify(RFC_SECRET, generate_totp(RFC_SECRET, now + 30), at=now)

    def test_rejects_two_steps_of_drift(self, totp):
        now = 1_700_000_000
        stale = generate_totp(RFC_SECRET, now - 60)
        window = {generate_totp(RFC_SECRET, now + off) for off in (-30, 0, 30)}
        if stale in window:
            pytest.skip("code collision across steps")

        assert totp.verify(RFC_SECRET, stale, at=now) is False

    @pytest.mark.parametrize("code", ["", "12345", "1234567", "abcdef", None])
    def test_rejects_malformed_codes(self, totp, code):
        assert totp.verify(RFC_SECRET, code) is False

    def test_rejects_missing_secret(self, totp):
        assert totp.verify("", "123456") is False


class TestEnroll:
    async def test_enroll_generates_and_stores_secret(self, totp, memory_store, user):
        result = await totp.enroll(user.id)

        assert result.success is True
        assert result.secret
        stored = memory_store.get_user(user.id)
        assert stored.secret_2fa == result.secret
        assert stored.is_2fa_enabled is False

    async def test_pending_enrollment_returns_same_secret(self, totp, user):
        first = await totp.enroll(user.id)
        second = await totp.enroll(user.id)

        assert second.success is True
        assert second.secret == first.secret

    async def test_enabled_user_gets_no_secret(self, totp, memory_store, user):
        first = await totp.enroll(user.id)
        await totp.verify_and_enable(user.id, generate_totp(first.secret, time.time()))

        again = await totp.enroll(user.id)

        assert again.success is True
        assert again.secret is None
        assert memory_store.get_user(user.id).secret_2fa == first.secret

    async def test_enroll_unknown_user(self, totp):
        with pytest.raises(NotFoundError):
            await totp.enroll("missing")

    async def test_secret_retry_skips_collisions(self, totp, memory_store, user, monkeypatch):
        other = memory_store.create_user("other@example.com", "pw-123456")
        other.secret_2fa = "TAKENSECRET"
        memory_store.save_user(other)
        candidates = iter(["TAKENSECRET", "FRESHSECRET"])
        monkeypatch.setattr(TOTPManager, "_new_secret", staticmethod(lambda: next(candidates)))

        result = await totp.enroll(user.id)

        assert result.secret == "FRESHSECRET"

    async def test_secret_retry_is_bounded(self, totp, memory_store, user, monkeypatch, settings):
        other = memory_store.create_user("other@example.com", "pw-123456")
        other.secret_2fa = "TAKENSECRET"
        memory_store.save_user(other)
        calls = []

        def _always_taken():
            calls.append(1)
            return "TAKENSECRET"

        monkeypatch.setattr(TOTPManager, "_new_secret", staticmethod(_always_taken))

        with pytest.raises(ServerError):
            await totp.enroll(user.id)
        assert len(calls) == settings.totp_secret_max_attempts
        assert memory_store.get_user(user.id).secret_2fa is None


class TestVerifyAndEnable:
    async def test_without_secret_is_not_found(self, totp, user):
        with pytest.raises(NotFoundError):
            await totp.verify_and_enable(user.id, "123456")

    async def test_wrong_code_is_invalid_and_leaves_flag_off(self, totp, memory_store, user):
        enrollment = await totp.enroll(user.id)
        good = generate_totp(enrollment.secret, time.time())
        wrong = "000000" if good != "000000" else "111111"

        with pytest.raises(InvalidCodeError):
            await totp.verify_and_enable(user.id, wrong)
        assert memory_store.get_user(user.id).is_2fa_enabled is False

    async def test_good_code_enables(self, totp, memory_store, user):
        enrollment = await totp.enroll(user.id)

        ok = await totp.verify_and_enable(user.id, generate_totp(enrollment.secret, time.time()))

        assert ok is True
        assert memory_store.get_user(user.id).is_2fa_enabled is True


def test_provisioning_uri(totp):
    uri = totp.provisioning_uri("ABCDEF", "me@example.com")
    parsed = urlparse(uri)
    query = parse_qs(parsed.query)

    assert parsed.scheme == "otpauth"
    assert parsed.netloc == "totp"
    assert query["secret"] == ["ABCDEF"]
    assert query["issuer"] == ["Tessera"]
    assert query["digits"] == ["6"]
    assert query["period"] == ["30"]
