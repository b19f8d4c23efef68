"""Unit tests for bearer parsing and credential classification."""

import pytest
from hypothesis import given
from hypothesis import strategies as st

from triage_access.auth import CredentialParser, Scheme, parse_authorization_header
from triage_access.config import ServiceTokenDefinition
from triage_access.errors import AccessError

SERVICE = "internal-service-token"


@pytest.fixture
def parser() -> CredentialParser:
    return CredentialParser([ServiceTokenDefinition(name="worker", token=SERVICE)])


class TestParseAuthorizationHeader:
    """Tests for parse_authorization_header."""

    @pytest.mark.parametrize(
        "value",
        [None, "", "Bearer ", "Bearer    ", "Basic dXNlcjpwYXNz", "bearer rtm_abc", "rtm_abc"],
    )
    def test_no_token(self, value):
        assert parse_authorization_header(value) is None

    def test_extracts_token(self):
        assert parse_authorization_header("Bearer rtm_abc") == "rtm_abc"

    def test_strips_whitespace(self):
        assert parse_authorization_header("Bearer  a.b.c ") == "a.b.c"


class TestClassify:
    """Tests for shape-based classification."""

    def test_service_token(self, parser):
        assert parser.classify(SERVICE).scheme == Scheme.SERVICE_TOKEN

    def test_service_token_wins_over_api_key_marker(self):
        parser = CredentialParser([ServiceTokenDefinition(name="odd", token="rtm_service")])
        assert parser.classify("rtm_service").scheme == Scheme.SERVICE_TOKEN

    def test_api_key_marker(self, parser):
        assert parser.classify("rtm_" + "a" * 40).scheme == Scheme.API_KEY

    def test_malformed_api_key_still_api_key(self, parser):
        # Format problems are reported by the verifier, not the parser
        assert parser.classify("rtm_x").scheme == Scheme.API_KEY

    def test_session_token(self, parser):
        assert parser.classify("aaa.bbb.ccc").scheme == Scheme.SESSION_TOKEN

    def test_three_segments_at_length_limit_is_not_session(self, parser):
        token = "a" * 298 + "." + "b" * 299 + "." + "c"
        assert len(token) == 600
        assert parser.classify(token).scheme == Scheme.IDENTITY_TOKEN

    def test_long_token_is_identity(self, parser):
        assert parser.classify("x" * 101).scheme == Scheme.IDENTITY_TOKEN

    @pytest.mark.parametrize("token", ["x" * 100, "short", "a.b", "a.b.c.d"])
    def test_unrecognized(self, parser, token):
        with pytest.raises(AccessError) as exc_info:
            parser.classify(token)
        assert exc_info.value.code == "UNRECOGNIZED_FORMAT"
        assert exc_info.value.http_status == 401

    def test_repr_hides_token(self, parser):
        credential = parser.classify(SERVICE)
        assert SERVICE not in repr(credential)


def _outcome(parser: CredentialParser, token: str) -> str:
    try:
        return parser.classify(token).scheme.value
    except AccessError as e:
        return e.code


class TestClassifyProperties:
    """Property-based tests for classification."""

    @given(token=st.text(max_size=700))
    def test_classification_is_deterministic(self, token):
        parser = CredentialParser([ServiceTokenDefinition(name="worker", token=SERVICE)])
        assert _outcome(parser, token) == _outcome(parser, token)

    @given(suffix=st.text(max_size=80))
    def test_marker_always_selects_api_key(self, suffix):
        parser = CredentialParser()
        assert parser.classify("rtm_" + suffix).scheme == Scheme.API_KEY
