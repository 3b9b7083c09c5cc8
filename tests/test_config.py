"""
Tests for environment configuration parsing
"""

import json
import pytest

from kis_portfolio.config import (
    PortfolioSettings,
    normalize_account_no,
    normalize_product_code,
    parse_accounts,
    parse_manual_holdings,
)


class TestNormalization:

    @pytest.mark.parametrize("value,expected", [
        ("1234-5678", "12345678"),
        (" 12345678 ", "12345678"),
        (12345678, "12345678"),
        (None, ""),
    ])
    def test_account_no(self, value, expected):
        assert normalize_account_no(value) == expected

    @pytest.mark.parametrize("value,expected", [
        ("1", "01"),
        (1, "01"),
        (" 22 ", "22"),
        ("", "01"),
        (None, "01"),
    ])
    def test_product_code(self, value, expected):
        assert normalize_product_code(value) == expected


class TestParseAccounts:

    def test_expands_product_codes_with_names(self):
        raw = json.dumps([{
            "accountNo": "1234-5678",
            "productCode": ["01", "22", "29"],
            "accountName": ["General", "Pension"],
            "appKey": "PSkey",
            "appSecret": "secret",
        }])

        accounts = parse_accounts(raw)

        assert [(a.account_no, a.product_code, a.account_name) for a in accounts] == [
            ("12345678", "01", "General"),
            ("12345678", "22", "Pension"),
            ("12345678", "29", "General"),
        ]
        assert all(a.credentials.app_key == "PSkey" for a in accounts)
        assert accounts[1].is_pension

    def test_defaults(self):
        accounts = parse_accounts('[{"accountNo": "87654321"}]')

        assert len(accounts) == 1
        assert accounts[0].product_code == "01"
        assert accounts[0].account_name == "계좌"
        assert accounts[0].credentials is None

    def test_name_falls_back_to_entry_name(self):
        accounts = parse_accounts('[{"accountNo": "87654321", "productCode": "1", "name": "Main"}]')

        assert accounts[0].account_name == "Main"
        assert accounts[0].product_code == "01"

    def test_trailing_commas_are_tolerated(self):
        accounts = parse_accounts('[{"accountNo": "87654321", "productCode": "01",},]')

        assert len(accounts) == 1

    @pytest.mark.parametrize("raw", [None, "", "not json", '{"accountNo": "1"}', "[1, 2]"])
    def test_malformed_declarations_are_absent(self, raw):
        assert parse_accounts(raw) == []


class TestParseManualHoldings:

    def test_parses_entries(self):
        raw = json.dumps([
            {"accountNo": "1234-5678", "productCode": "1", "code": "005930", "qty": 5, "buyPrice": 70000,
             "market": "kr"},
            {"accountNo": "12345678", "code": "SHOP", "qty": "2", "buyPrice": "100", "market": "CA",
             "currentPrice": 120},
        ])

        kr, ca = parse_manual_holdings(raw)

        assert (kr.account_no, kr.product_code, kr.instrument_code) == ("12345678", "01", "005930")
        assert kr.market == "KR"
        assert kr.quantity == 5.0
        assert kr.current_price is None
        assert ca.avg_cost_price == 100.0
        assert ca.current_price == 120.0

    def test_unsupported_market_is_skipped(self):
        raw = json.dumps([{"accountNo": "1", "code": "X", "qty": 1, "buyPrice": 1, "market": "MARS"}])

        assert parse_manual_holdings(raw) == []

    def test_non_positive_current_price_is_unset(self):
        raw = json.dumps([{"accountNo": "1", "code": "AAPL", "qty": 1, "buyPrice": 1, "market": "US",
                           "currentPrice": 0}])

        assert parse_manual_holdings(raw)[0].current_price is None


class TestPortfolioSettings:

    def test_from_env_mapping(self):
        settings = PortfolioSettings.from_env({
            "KIS_ENV": "VPS",
            "KIS_ACCOUNTS": '[{"accountNo": "12345678"}]',
            "MANUAL_PORTFOLIO": '[{"accountNo": "12345678", "code": "AAPL", "qty": 1, "buyPrice": 1, '
                                '"market": "US"}]',
            "KIS_APP_KEY": "PSdefault",
            "KIS_APP_SECRET": "secret",
            "KIS_TOKEN_STORE": "Redis",
            "REDIS_URL": "redis://cache:6379/1",
            "KIS_ACCOUNT_DELAY_SECONDS": "0.5",
            "EXCHANGE_RATE_CACHE_SECONDS": "60",
        })

        assert settings.kis_env == "vps"
        assert len(settings.accounts) == 1
        assert len(settings.manual_holdings) == 1
        assert settings.default_credentials.app_key == "PSdefault"
        assert settings.token_store == "redis"
        assert settings.redis_url == "redis://cache:6379/1"
        assert settings.account_delay_seconds == 0.5
        assert settings.exchange_rate_cache_seconds == 60.0

    def test_from_env_defaults(self):
        settings = PortfolioSettings.from_env({})

        assert settings.kis_env == "prod"
        assert settings.accounts == []
        assert settings.manual_holdings == []
        assert settings.default_credentials is None
        assert settings.token_store == "memory"
        assert settings.account_delay_seconds == 0.2

    def test_unknown_environment_falls_back_to_prod(self):
        assert PortfolioSettings.from_env({"KIS_ENV": "staging"}).kis_env == "prod"

    def test_half_configured_default_pair_is_ignored(self):
        assert PortfolioSettings.from_env({"KIS_APP_KEY": "PSdefault"}).default_credentials is None
