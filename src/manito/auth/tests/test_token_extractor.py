"""Tests for deep link credential extraction."""

import logging

import pytest

from src.manito.auth.exceptions import InvalidInputError
from src.manito.auth.token_extractor import (
    MAX_LINK_LENGTH,
    DirectTokens,
    NoCredentials,
    OtpHash,
    SessionCode,
    extract_from_url,
    extract_link_error,
    parse_link,
)

CODE = "a" * 64


class TestExtractFromUrl:
    """Tests for extract_from_url credential priority."""

    def test_session_code_wins_over_tokens(self) -> None:
        """Test that a session code takes priority over direct tokens in the same link."""
        url = (
            f"manito://auth/callback?session_code={CODE}&type=signup"
            "&access_token=acc&refresh_token=ref"
        )

        result = extract_from_url(url)

        assert result == SessionCode(code=CODE, type="signup")

    def test_direct_tokens_from_query(self) -> None:
        """Test access/refresh pair extraction from the query string."""
        result = extract_from_url("manito://auth/callback?access_token=acc&refresh_token=ref")

        assert isinstance(result, DirectTokens)
        assert result.pair.access_token.get_secret_value() == "acc"
        assert result.pair.refresh_token.get_secret_value() == "ref"

    def test_direct_tokens_from_fragment(self) -> None:
        """Test implicit-grant tokens delivered in the fragment."""
        url = "https://auth.manito.cl/auth/callback#access_token=acc&refresh_token=ref&type=signup"

        result = extract_from_url(url)

        assert isinstance(result, DirectTokens)
        assert result.pair.type == "signup"

    def test_query_takes_precedence_over_fragment(self) -> None:
        """Test that a query value is not overridden by the fragment."""
        url = "manito://auth/callback?access_token=q&refresh_token=r#access_token=f"

        result = extract_from_url(url)

        assert result.pair.access_token.get_secret_value() == "q"

    def test_access_token_alone_is_not_a_pair(self) -> None:
        """Test that a lone access token yields no credentials."""
        assert extract_from_url("manito://auth/callback?access_token=acc") == NoCredentials()

    def test_otp_hash_requires_type(self) -> None:
        """Test that token_hash is used only together with a type."""
        with_type = extract_from_url("manito://auth/verify?token_hash=h1&type=email")
        without_type = extract_from_url("manito://auth/verify?token_hash=h1")

        assert isinstance(with_type, OtpHash)
        assert with_type.token_hash.get_secret_value() == "h1"
        assert with_type.type == "email"
        assert without_type == NoCredentials()

    def test_plain_return_link_has_no_credentials(self) -> None:
        """Test that a bare callback link is a return-to-app signal."""
        assert extract_from_url("manito://auth/verified") == NoCredentials()

    @pytest.mark.parametrize(
        "url",
        ["", "not a url", "x" * (MAX_LINK_LENGTH + 1), "manito://auth/callback?" + "a" * MAX_LINK_LENGTH],
    )
    def test_malformed_links_rejected(self, url: str) -> None:
        """Test that empty, schemeless and oversized links raise InvalidInputError."""
        with pytest.raises(InvalidInputError):
            extract_from_url(url)

    def test_invalid_link_logs_without_contents(self, caplog: pytest.LogCaptureFixture) -> None:
        """Test that a rejected link is logged without echoing it."""
        with caplog.at_level(logging.WARNING):
            with pytest.raises(InvalidInputError):
                extract_from_url("secret-token-value")

        assert "invalid link received" in caplog.text
        assert "secret-token-value" not in caplog.text

    def test_tokens_never_logged(self, caplog: pytest.LogCaptureFixture) -> None:
        """Test that extracted token values do not reach log output."""
        with caplog.at_level(logging.DEBUG):
            result = extract_from_url(
                "manito://auth/callback?access_token=very-secret&refresh_token=also-secret"
            )

        assert "very-secret" not in caplog.text
        assert "also-secret" not in repr(result)


class TestParseLink:
    """Tests for link routing helpers."""

    def test_custom_scheme_route(self) -> None:
        """Test that the custom-scheme host is part of the route."""
        link = parse_link("manito://auth/callback?type=signup")

        assert link.route == "auth/callback"
        assert link.is_auth_callback
        assert not link.is_auth_error

    def test_universal_link_route(self) -> None:
        """Test that universal links keep the host in the route."""
        link = parse_link("https://auth.manito.cl/auth/verify?token_hash=h&type=email")

        assert link.is_auth_callback

    def test_non_auth_link(self) -> None:
        """Test that other app links are not auth callbacks."""
        link = parse_link("manito://listings/42")

        assert not link.is_auth_callback
        assert not link.is_auth_error

    def test_error_link(self) -> None:
        """Test extraction of provider errors from an error link."""
        link = parse_link(
            "manito://auth/error?error=access_denied&error_description=Email+link+expired"
        )

        error = extract_link_error(link)

        assert link.is_auth_error
        assert error is not None
        assert error.error == "access_denied"
        assert error.description == "Email link expired"
