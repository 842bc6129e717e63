import pytest

from conftest import ORIGIN, json_response, page
from src.broker.pagination import PaginatedFetcher
from src.domain.errors import IntegrationFault
from src.trading.account import AccountService

ACCOUNT = f"{ORIGIN}accounts/5QR12345/"


@pytest.fixture
def accounts(transport, settings):
    return AccountService(transport, PaginatedFetcher(transport, settings), settings)


def test_logged_in(accounts, fake_http):
    fake_http.add("GET", f"{ORIGIN}user/", json_response({"username": "alice"}), json_response({}, status=401))

    assert accounts.logged_in() is True
    assert accounts.logged_in() is False


def test_no_accounts_is_an_integration_fault(accounts, fake_http):
    fake_http.add("GET", f"{ORIGIN}accounts/", page([]))

    with pytest.raises(IntegrationFault, match="number of accounts: 0"):
        accounts.account_url()


def test_account_without_url(accounts, fake_http):
    fake_http.add("GET", f"{ORIGIN}accounts/", page([{"account_number": "5QR12345"}]))

    with pytest.raises(IntegrationFault, match="'url'"):
        accounts.account()


def test_stock_positions_follow_account_link(accounts, fake_http):
    positions = f"{ACCOUNT}positions/"
    fake_http.add("GET", f"{ORIGIN}accounts/", page([{"url": ACCOUNT, "positions": positions}]))
    fake_http.add("GET", positions, page([{"quantity": "3.0000"}]))

    assert accounts.stock_positions() == [{"quantity": "3.0000"}]
    assert fake_http.calls_to("GET", positions)[0]["params"] == {"nonzero": "true"}


def test_portfolio(accounts, fake_http):
    portfolio = f"{ORIGIN}portfolios/5QR12345/"
    fake_http.add("GET", f"{ORIGIN}accounts/", page([{"url": ACCOUNT, "portfolio": portfolio}]))
    fake_http.add("GET", portfolio, json_response({"equity": "1000.00"}))

    assert accounts.portfolio() == {"equity": "1000.00"}
