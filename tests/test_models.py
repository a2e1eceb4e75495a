import pytest
from pydantic import ValidationError

from mailbox_notifier.models import (
    Account,
    AccountCreate,
    AccountUpdate,
    FilterRule,
    FilterRuleCreate,
    User,
    parse_poll_interval,
    split_host,
    validation_message,
)


def account_payload(**overrides):
    payload = {
        "user_id": 1,
        "host": "imap.test.com",
        "login": "test@test.com",
        "password": "Test123",
        "poll_interval": 3,
    }
    payload.update(overrides)
    return payload


def error_of(model, payload):
    with pytest.raises(ValidationError) as excinfo:
        model.model_validate(payload)
    return validation_message(excinfo.value)


class TestSplitHost:
    def test_default_port(self):
        assert split_host("imap.test.com") == ("imap.test.com", 993)

    def test_explicit_port(self):
        assert split_host("imap.test.com:143") == ("imap.test.com", 143)

    def test_ipv4_host(self):
        assert split_host("10.0.0.5:993") == ("10.0.0.5", 993)

    @pytest.mark.parametrize("value", ["imap.test.com:rr", "imap.test.com:0", "imap.test.com:70000"])
    def test_invalid_port(self, value):
        with pytest.raises(ValueError, match="Invalid imap port in host"):
            split_host(value)

    @pytest.mark.parametrize("value", ["localhost", "127.0.0.1", "intranet", "bad_host.com", "-x.com"])
    def test_invalid_hostname(self, value):
        with pytest.raises(ValueError, match=f"Invalid hostname for imap server {value}"):
            split_host(value)


def test_parse_poll_interval():
    assert parse_poll_interval("5") == 5
    assert parse_poll_interval(2) == 2
    for bad in ("1min", "0", "-3", None):
        with pytest.raises(ValueError, match="Invalid value for update frequency"):
            parse_poll_interval(bad)


class TestAccountCreate:
    def test_valid_payload_splits_host(self):
        data = AccountCreate.model_validate(account_payload(host="imap.test.com:143", poll_interval="10"))

        assert data.host == "imap.test.com"
        assert data.port == 143
        assert data.poll_interval == 10

    def test_explicit_port_wins(self):
        data = AccountCreate.model_validate(account_payload(host="imap.test.com:143", port=1993))

        assert data.port == 1993

    def test_rejects_login_without_domain(self):
        assert error_of(AccountCreate, account_payload(login="test")) == (
            "Wrong format for login, please set <login>@<domain>"
        )

    def test_rejects_loopback_host(self):
        assert error_of(AccountCreate, account_payload(host="localhost")) == (
            "Invalid hostname for imap server localhost"
        )

    def test_rejects_bad_port(self):
        assert error_of(AccountCreate, account_payload(host="imap.test.com:rr")).startswith(
            "Invalid imap port in host"
        )

    def test_rejects_bad_poll_interval(self):
        assert error_of(AccountCreate, account_payload(poll_interval="1min")) == (
            "Invalid value for update frequency 1min"
        )

    def test_rejects_unknown_fields(self):
        with pytest.raises(ValidationError):
            AccountCreate.model_validate(account_payload(active=True))


def test_account_update_is_partial():
    assert AccountUpdate.model_validate({}).model_dump() == {"password": None, "poll_interval": None}
    assert AccountUpdate.model_validate({"poll_interval": "7"}).poll_interval == 7
    assert error_of(AccountUpdate, {"poll_interval": "soon"}) == "Invalid value for update frequency soon"


class TestAccount:
    def make(self, **overrides):
        data = dict(id=1, user_id=1, host="imap.test.com", login="test@test.com", password="pw", poll_interval=3)
        data.update(overrides)
        return Account(**data)

    def test_activate_and_deactivate_report_changes(self):
        account = self.make()

        assert account.is_active is False
        assert account.activate() is True
        assert account.activate() is False
        assert account.is_active is True
        assert account.deactivate() is True
        assert account.deactivate() is False

    def test_summary_line(self):
        account = self.make(active=True)

        assert account.summary() == "Login: test@test.com, timeout: 3 min, active: true"

    def test_password_hidden_from_repr(self):
        assert "pw" not in repr(self.make(password="pw-secret"))

    def test_address(self):
        assert self.make(port=143).address == "imap.test.com:143"


class TestFilterRules:
    def test_values_are_lower_cased(self):
        rule = FilterRule(id=1, subject="  URGENT ", from_email="Boss@Corp.Test", from_name="The Boss")

        assert (rule.subject, rule.from_email, rule.from_name) == ("urgent", "boss@corp.test", "the boss")

    def test_describe(self):
        assert FilterRule(id=1, subject="urgent").describe() == "Subject: urgent"
        assert FilterRule(id=2, from_name="boss").describe() == "From person name: boss"
        assert FilterRule(id=3).describe() == "Any message"

    def test_create_builds_single_field_rule(self):
        rule = FilterRuleCreate(kind="from_email", value="Test@Mail.Test").to_rule(42)

        assert rule.id == 42
        assert rule.from_email == "test@mail.test"
        assert rule.subject == "" and rule.from_name == ""

    def test_create_rejects_address_without_at(self):
        assert error_of(FilterRuleCreate, {"kind": "from_email", "value": "mail.test"}) == "Email address is not valid"

    def test_create_rejects_unknown_kind(self):
        with pytest.raises(ValidationError):
            FilterRuleCreate.model_validate({"kind": "body", "value": "x"})


def test_user_patterns_default_to_empty_list():
    first = User(id=1, chat_id=10)
    second = User(id=2, chat_id=20)

    first.patterns.append(FilterRule(id=1, subject="x"))
    assert second.patterns == []
