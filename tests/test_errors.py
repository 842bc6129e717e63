import pytest

from src.domain.errors import (
    BrokerError,
    IntegrationFault,
    UntrustedUrlError,
    ValidationFault,
    rejects_invalid_input,
)


def test_validation_fault_becomes_default(caplog):
    @rejects_invalid_input(default_factory=list)
    def lookup(symbol):
        raise ValidationFault("symbol must be a non-empty string")

    with caplog.at_level("WARNING"):
        assert lookup("") == []
    assert "Rejected lookup input" in caplog.text


def test_untrusted_url_still_propagates():
    @rejects_invalid_input(default_factory=lambda: None)
    def fetch(url):
        raise UntrustedUrlError(f"refused {url}")

    with pytest.raises(UntrustedUrlError):
        fetch("https://evil.example.com/")


def test_other_faults_propagate():
    @rejects_invalid_input(default_factory=lambda: None)
    def fetch():
        raise IntegrationFault("bad shape", status=500)

    with pytest.raises(IntegrationFault):
        fetch()


def test_wrapped_name_and_result_preserved():
    @rejects_invalid_input(lambda: 0)
    def count(n):
        return n + 1

    assert count(1) == 2
    assert count.__name__ == "count"


def test_fault_hierarchy():
    assert issubclass(ValidationFault, ValueError)
    assert issubclass(UntrustedUrlError, ValidationFault)
    assert issubclass(IntegrationFault, BrokerError)
