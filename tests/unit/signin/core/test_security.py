import pytest

from src.signin.core.security import email_domain, normalize_email, sanitize_local_path


class TestSanitizeLocalPath:
    @pytest.mark.parametrize(
        "path",
        ["/t/acme/dashboard", "/select-tenant", "/login?error=state_invalid&retry=1"],
    )
    def test_same_site_paths_are_kept(self, path):
        assert sanitize_local_path(path) == path

    @pytest.mark.parametrize(
        "path",
        [
            None,
            "",
            "https://evil.com",
            "evil.com/path",
            "//evil.com",
            "/\\evil.com",
            "/\\\\evil.com",
            "/t/acme\r\nSet-Cookie: x=1",
        ],
    )
    def test_off_site_targets_fall_back(self, path):
        assert sanitize_local_path(path) == "/"

    def test_custom_fallback(self):
        assert sanitize_local_path("//evil.com", fallback="/login") == "/login"


class TestEmailHelpers:
    def test_normalize_email(self):
        assert normalize_email("  Alice@Acme.COM ") == "alice@acme.com"
        assert normalize_email(None) is None

    def test_email_domain(self):
        assert email_domain("ops@Operator.test") == "operator.test"
        assert email_domain("not-an-email") is None
