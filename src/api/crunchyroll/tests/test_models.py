"""
Unit tests for Crunchyroll models.
"""

import pytest
from pydantic import ValidationError

from api.crunchyroll.models import (
    AuthError,
    BrowseOptions,
    CredentialsPayload,
    CredentialsTimeoutError,
    CrunchyrollError,
    HttpError,
    ListResponse,
    MutationResult,
    ProfileData,
    TokenData,
    WatchlistOptions,
    country_to_locale,
)

pytestmark = pytest.mark.unit

NOW = 1_700_000_000.0


class TestTokenData:
    def test_expiry_margin(self):
        """A token within 60s of expiring is treated as expired."""
        assert TokenData(access_token="t", expires_at=NOW + 59).is_expired(NOW)
        assert not TokenData(access_token="t", expires_at=NOW + 61).is_expired(NOW)
        assert TokenData(access_token="t", expires_at=NOW + 60).is_expired(NOW)

    def test_missing_expiry_is_expired(self):
        assert TokenData(access_token="t").is_expired(NOW)

    def test_from_payload_expires_in_relative_to_now(self):
        token = TokenData.from_payload(
            {"access_token": "abc", "account_id": "acct", "expires_in": 300}, now=NOW
        )
        assert token.access_token == "abc"
        assert token.account_id == "acct"
        assert token.expires_at == NOW + 300

    def test_from_payload_millisecond_timestamp(self):
        token = TokenData.from_payload(
            {"access_token": "abc", "expires_in": 300, "timestamp": NOW * 1000}, now=0
        )
        assert token.expires_at == pytest.approx(NOW + 300)

    def test_from_payload_alternate_keys(self):
        token = TokenData.from_payload({"token": "abc", "account_uuid": "uuid-1", "exp": NOW + 10})
        assert token.access_token == "abc"
        assert token.account_id == "uuid-1"
        assert token.expires_at == NOW + 10

    def test_from_payload_absolute_expiry_wins(self):
        token = TokenData.from_payload(
            {"access_token": "abc", "expires_at": NOW + 5, "expires_in": 9999}, now=NOW
        )
        assert token.expires_at == NOW + 5

    def test_from_payload_without_token(self):
        assert TokenData.from_payload({"account_id": "acct"}) is None
        assert TokenData.from_payload({}) is None

    def test_locale_from_country(self):
        token = TokenData(access_token="t", country="de")
        assert token.locale == "de-DE"
        assert token.preferred_audio_language == "de-DE"


class TestCountryLocale:
    @pytest.mark.parametrize(
        "country,locale",
        [("CA", "fr-FR"), ("US", "en-US"), ("GB", "en-GB"), ("BR", "pt-BR"), ("JP", "en-US"), (None, "en-US")],
    )
    def test_country_to_locale(self, country, locale):
        assert country_to_locale(country) == locale


class TestProfileData:
    def test_selected_profile_wins(self):
        profile = ProfileData.from_payload(
            {
                "account_id": "acct",
                "profiles": [
                    {"profile_id": "p0", "is_selected": False},
                    {"profile_id": "p1", "is_selected": True},
                ],
            }
        )
        assert profile.profile_id == "p1"
        assert profile.account_id == "acct"
        assert profile.is_selected

    def test_first_profile_when_none_selected(self):
        profile = ProfileData.from_payload({"profiles": [{"id": "p0"}, {"id": "p1"}]})
        assert profile.profile_id == "p0"

    def test_persisted_dump(self):
        dumped = ProfileData(profile_id="p1", account_id="acct").to_dict()
        assert ProfileData.from_payload(dumped) == ProfileData(profile_id="p1", account_id="acct")

    def test_no_profiles(self):
        assert ProfileData.from_payload({"profiles": []}) is None
        assert ProfileData.from_payload({}) is None


class TestBrowseOptions:
    def test_to_params(self):
        options = BrowseOptions(
            type="series",
            seasonal_tag="winter-2025",
            categories=["action", "drama"],
            is_dubbed=True,
            sort_by="popularity",
            limit=20,
        )
        params = options.to_params()
        assert params["n"] == 20
        assert params["type"] == "series"
        assert params["seasonal_tag"] == "winter-2025"
        assert params["categories"] == "action,drama"
        assert params["is_dubbed"] is True
        assert params["is_subbed"] is None
        assert params["sort_by"] == "popularity"
        assert params["ratings"] == "true"

    def test_camel_case_aliases(self):
        options = BrowseOptions.model_validate(
            {"seasonalTag": "fall-2024", "isSubbed": True, "includeRatings": False, "useCache": False}
        )
        assert options.seasonal_tag == "fall-2024"
        assert options.is_subbed is True
        assert not options.use_cache
        assert "ratings" not in options.to_params()


class TestResponses:
    def test_list_response_from_raw(self):
        response = ListResponse.from_raw({"data": [{"id": "a"}], "total": 1})
        assert response.data == [{"id": "a"}]
        assert response.total == 1
        assert response.meta == {}

    def test_list_response_from_non_dict(self):
        assert ListResponse.from_raw(None) == ListResponse()
        assert ListResponse.from_raw("oops").data == []

    def test_credentials_payload_aliases(self):
        payload = CredentialsPayload.model_validate(
            {"tokenData": {"access_token": "t"}, "profileData": {"profiles": []}}
        )
        assert payload.token_data == {"access_token": "t"}
        assert payload.profile_data == {"profiles": []}

    def test_mutation_result_defaults(self):
        result = MutationResult(success=True)
        assert result.error is None
        assert not result.already_in_watchlist


class TestErrors:
    def test_http_error(self):
        error = HttpError(404, "Not Found", "https://api.test/x")
        assert error.status == 404
        assert error.url == "https://api.test/x"
        assert str(error) == "HTTP 404: Not Found"
        assert str(HttpError(500)) == "HTTP 500"
        assert isinstance(error, CrunchyrollError)

    def test_taxonomy(self):
        assert issubclass(AuthError, CrunchyrollError)
        assert issubclass(CredentialsTimeoutError, CrunchyrollError)
        assert issubclass(CredentialsTimeoutError, TimeoutError)


class TestMalformedPayloads:
    @pytest.mark.parametrize(
        "payload",
        [
            "not-a-dict",
            {"access_token": 42},
            {"access_token": "t", "expires_in": "soon"},
            {"access_token": "t", "expires_at": "later"},
            {"access_token": "t", "exp": ["x"]},
            {"access_token": "t", "expires_in": 300, "timestamp": "yesterday"},
        ],
    )
    def test_bad_token_payload_is_rejected(self, payload):
        assert TokenData.from_payload(payload, now=NOW) is None

    @pytest.mark.parametrize(
        "payload",
        [
            "not-a-dict",
            {"profiles": "p1"},
            {"profiles": ["p1", "p2"]},
            {"profiles": [None]},
        ],
    )
    def test_bad_profile_payload_is_rejected(self, payload):
        assert ProfileData.from_payload(payload) is None

    def test_non_object_profiles_are_skipped(self):
        profile = ProfileData.from_payload({"profiles": ["p0", {"profile_id": "p1"}]})
        assert profile.profile_id == "p1"

    def test_millisecond_absolute_expiry(self):
        token = TokenData.from_payload({"access_token": "t", "expires_at": (NOW + 100) * 1000})
        assert token.expires_at == pytest.approx(NOW + 100)
        assert not token.is_expired(NOW)
        assert token.is_expired(NOW + 41)

    def test_millisecond_jwt_exp(self):
        token = TokenData.from_payload({"access_token": "t", "exp": (NOW + 100) * 1000})
        assert token.expires_at == pytest.approx(NOW + 100)


class TestOptionModelsRejectUnknownKeywords:
    def test_browse_typo(self):
        with pytest.raises(ValidationError):
            BrowseOptions.model_validate({"seasonaltag": "winter-2025"})

    def test_watchlist_typo(self):
        with pytest.raises(ValidationError):
            WatchlistOptions(sortby="date_updated")
