import json
from decimal import Decimal

import pytest

import cli.main as cli_main
from tokenpulse_client.models import (
    Balance,
    BalanceSnapshot,
    Credits,
    Failure,
    Success,
)
from tokenpulse_client.registry import ProviderRegistry


class SharedCredentialStore:
    secrets = {}
    removed = []

    def __init__(self, service_name="tokenpulse"):
        self.service_name = service_name

    def get_secret(self, account_id):
        return self.secrets.get(account_id)

    def save_secret(self, account_id, secret):
        self.secrets[account_id] = secret

    def remove_secret(self, account_id):
        self.removed.append(account_id)
        self.secrets.pop(account_id, None)


class StubClient:
    def __init__(self, result_factory):
        self.result_factory = result_factory
        self.calls = []

    async def fetch_balance(self, account, secret):
        self.calls.append((account.id, secret))
        return self.result_factory(account)

    async def test_credentials(self, account, secret):
        return self.result_factory(account)


def _success(account):
    return Success(
        snapshot=BalanceSnapshot(
            account_id=account.id,
            provider_id=account.provider_id,
            balance=Balance(credits=Credits(remaining=Decimal("12.5"))),
        )
    )


@pytest.fixture(autouse=True)
def isolated_cli(monkeypatch):
    SharedCredentialStore.secrets = {}
    SharedCredentialStore.removed = []
    monkeypatch.setattr(cli_main, "CredentialStore", SharedCredentialStore)
    monkeypatch.setattr(cli_main, "configure_logging", lambda level: None)


@pytest.fixture
def config_path(tmp_path):
    path = tmp_path / "settings.json"
    path.write_text(
        json.dumps(
            {
                "accounts": [
                    {"id": "main", "name": "Main", "provider_id": "openrouter"},
                    {"id": "team", "name": "Team Cline", "provider_id": "cline"},
                    {
                        "id": "off",
                        "name": "Off",
                        "provider_id": "nebius",
                        "enabled": False,
                    },
                ]
            }
        ),
        encoding="utf-8",
    )
    return path


def _use_client(monkeypatch, client):
    def fake_registry(config=None, *, session=None, time_provider=None):
        registry = ProviderRegistry()
        for provider_id in ("openrouter", "cline", "nebius", "openai"):
            registry.register(provider_id, client)
        return registry

    monkeypatch.setattr(cli_main, "build_provider_registry", fake_registry)


def test_parser_requires_command():
    with pytest.raises(SystemExit):
        cli_main.build_parser().parse_args([])


def test_refresh_reports_missing_keys(config_path, monkeypatch, capsys):
    client = StubClient(_success)
    _use_client(monkeypatch, client)

    exit_code = cli_main.main(["refresh", "--config", str(config_path)])

    output = capsys.readouterr().out.splitlines()
    assert exit_code == 1
    assert output == [
        "Main        auth_error: Missing API key",
        "Team Cline  auth_error: Missing API key",
    ]
    assert client.calls == []


def test_refresh_success_exit_code(config_path, monkeypatch, capsys):
    SharedCredentialStore.secrets = {"main": "sk-or-main", "team": "cline-team"}
    client = StubClient(_success)
    _use_client(monkeypatch, client)

    exit_code = cli_main.main(["refresh", "--config", str(config_path), "--force"])

    assert exit_code == 0
    assert sorted(client.calls) == [("main", "sk-or-main"), ("team", "cline-team")]
    assert "Main        $12.50" in capsys.readouterr().out


def test_refresh_with_invalid_config_exits_2(tmp_path):
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({"refresh_interval_minutes": 0}), encoding="utf-8")

    assert cli_main.main(["refresh", "--config", str(path)]) == 2
    assert cli_main.main(["refresh", "--config", str(tmp_path / "nope.json")]) == 2


def test_store_key_saves_secret_and_preview(config_path):
    exit_code = cli_main.main(
        [
            "store-key",
            "--config",
            str(config_path),
            "--account",
            "main",
            "--secret",
            "sk-or-v1-0123456789abcd",
        ]
    )

    assert exit_code == 0
    assert SharedCredentialStore.secrets == {"main": "sk-or-v1-0123456789abcd"}
    saved = json.loads(config_path.read_text(encoding="utf-8"))
    main = next(item for item in saved["accounts"] if item["id"] == "main")
    assert main["key_preview"] == "sk-or-…abcd"


def test_store_key_prompts_when_secret_omitted(config_path, monkeypatch):
    monkeypatch.setattr(cli_main.getpass, "getpass", lambda prompt: "cline-secret-1")

    exit_code = cli_main.main(
        ["store-key", "--config", str(config_path), "--account", "team"]
    )

    assert exit_code == 0
    assert SharedCredentialStore.secrets["team"] == "cline-secret-1"


def test_store_key_unknown_account_exits_2(config_path):
    exit_code = cli_main.main(
        ["store-key", "--config", str(config_path), "--account", "ghost", "--secret", "x"]
    )

    assert exit_code == 2


def test_test_key_reports_result(config_path, monkeypatch, capsys):
    SharedCredentialStore.secrets = {"team": "cline-team"}
    _use_client(monkeypatch, StubClient(lambda account: Failure.auth_error("Invalid Cline token")))

    exit_code = cli_main.main(
        ["test-key", "--config", str(config_path), "--account", "team"]
    )

    assert exit_code == 1
    assert capsys.readouterr().out.strip() == "Team Cline: auth_error: Invalid Cline token"


def test_remove_account_updates_config_and_keychain(config_path):
    SharedCredentialStore.secrets = {"main": "sk-or-main"}

    exit_code = cli_main.main(
        ["remove-account", "--config", str(config_path), "--account", "main"]
    )

    assert exit_code == 0
    saved = json.loads(config_path.read_text(encoding="utf-8"))
    assert [item["id"] for item in saved["accounts"]] == ["team", "off"]
    assert SharedCredentialStore.removed == ["main"]


def test_watch_refuses_when_auto_refresh_disabled(tmp_path):
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({"auto_refresh_enabled": False}), encoding="utf-8")

    assert cli_main.main(["watch", "--config", str(path)]) == 2


@pytest.fixture
def toml_config_path(tmp_path):
    path = tmp_path / "settings.toml"
    path.write_text(
        "[[accounts]]\n"
        'id = "work"\n'
        'name = "Work"\n'
        'provider_id = "openrouter"\n',
        encoding="utf-8",
    )
    return path


def test_remove_account_on_read_only_config_keeps_secret(toml_config_path):
    SharedCredentialStore.secrets = {"work": "sk-or-work"}
    original = toml_config_path.read_text(encoding="utf-8")

    exit_code = cli_main.main(
        ["remove-account", "--config", str(toml_config_path), "--account", "work"]
    )

    assert exit_code == 2
    assert SharedCredentialStore.removed == []
    assert SharedCredentialStore.secrets == {"work": "sk-or-work"}
    assert toml_config_path.read_text(encoding="utf-8") == original


def test_store_key_on_read_only_config_leaves_keychain_alone(toml_config_path):
    exit_code = cli_main.main(
        [
            "store-key",
            "--config",
            str(toml_config_path),
            "--account",
            "work",
            "--secret",
            "sk-or-v1-0123456789abcd",
        ]
    )

    assert exit_code == 2
    assert SharedCredentialStore.secrets == {}


def test_store_credentials_uses_the_settings_credential_store(config_path, monkeypatch):
    injected = SharedCredentialStore("injected")
    store = cli_main.open_settings(str(config_path), credentials=injected)

    def unexpected_store(*args, **kwargs):
        raise AssertionError("a second credential store was created")

    monkeypatch.setattr(cli_main, "CredentialStore", unexpected_store)

    cli_main.store_credentials(store, store.find_account("team"), "cline-secret-1")

    assert store.credentials is injected
    assert SharedCredentialStore.secrets == {"team": "cline-secret-1"}
