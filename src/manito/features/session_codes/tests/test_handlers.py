"""Tests for session-code API handlers."""

from jose import JWTError

from fastapi.testclient import TestClient


def issue(client: TestClient, **overrides) -> dict:
    body = {"access_token": "header.payload.sig", "refresh_token": "refresh-xyz", "type": "signup"}
    body.update(overrides)
    response = client.post("/api/session-codes", json=body)
    assert response.status_code == 201, response.text
    return response.json()


class TestCreateSessionCode:
    """Tests for POST /api/session-codes."""

    def test_issues_code_and_deep_link(self, client: TestClient, token_verifier) -> None:
        """Test that a verified pair is exchanged for a code and deep link."""
        data = issue(client)

        assert len(data["session_code"]) == 64
        assert data["deep_link"] == f"manito://auth/callback?session_code={data['session_code']}&type=signup"
        assert "expires_at" in data
        token_verifier.verify.assert_awaited_once_with("header.payload.sig")

    def test_response_never_contains_tokens(self, client: TestClient) -> None:
        response = client.post(
            "/api/session-codes",
            json={"access_token": "header.payload.sig", "refresh_token": "refresh-xyz"},
        )

        assert "refresh-xyz" not in response.text
        assert "header.payload.sig" not in response.text

    def test_invalid_access_token_rejected(self, client: TestClient, token_verifier) -> None:
        """Test that an unverifiable access token gets 401 and no code."""
        token_verifier.verify.side_effect = JWTError("Signature verification failed")

        response = client.post(
            "/api/session-codes",
            json={"access_token": "forged", "refresh_token": "refresh-xyz"},
        )

        assert response.status_code == 401

    def test_missing_tokens_is_validation_error(self, client: TestClient) -> None:
        response = client.post("/api/session-codes", json={"access_token": "a"})

        assert response.status_code == 422


class TestRetrieveSession:
    """Tests for POST /api/retrieve-session."""

    def test_redeems_code_once(self, client: TestClient) -> None:
        """Test that a code returns its pair on first use and 404 afterwards."""
        code = issue(client)["session_code"]

        first = client.post("/api/retrieve-session", json={"session_code": code})
        second = client.post("/api/retrieve-session", json={"session_code": code})

        assert first.status_code == 200
        assert first.json() == {
            "access_token": "header.payload.sig",
            "refresh_token": "refresh-xyz",
            "type": "signup",
        }
        assert second.status_code == 404

    def test_malformed_code_is_bad_request(self, client: TestClient) -> None:
        response = client.post("/api/retrieve-session", json={"session_code": "abc"})

        assert response.status_code == 400

    def test_unknown_code_is_not_found(self, client: TestClient) -> None:
        response = client.post("/api/retrieve-session", json={"session_code": "0" * 64})

        assert response.status_code == 404
