import os
import textwrap

import pytest

from iamsync.core.config import load_config
from iamsync.core.errors import ConfigError


def _write(tmp_path, text):
    p = tmp_path / "iamsync.yml"
    p.write_text(textwrap.dedent(text), encoding="utf-8")
    return (str(p),)


def test_defaults_when_no_file(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    cfg = load_config(files=(str(tmp_path / "missing.yml"),), use_dotenv=False)
    assert cfg.provisioning.unassigned_group == "Unassigned"
    assert cfg.provisioning.groups["Engineering"] == "Engineers"
    assert cfg.reconcile.concurrency == 4
    assert cfg.aws.password_reset_required is True
    assert len(cfg.run_id) == 12


def test_file_then_env_then_cli_precedence(tmp_path, monkeypatch):
    files = _write(tmp_path, """
      aws:
        region: "eu-west-1"
        profile: "file-profile"
      reconcile:
        concurrency: 2
      logging:
        console_level: "WARNING"
    """)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("IAMSYNC_AWS__PROFILE", "env-profile")
    monkeypatch.setenv("IAMSYNC_RECONCILE__MAX_ATTEMPTS", "5")
    monkeypatch.setenv("IAMSYNC_APP__DRY_RUN", "yes")

    cfg = load_config({"aws": {"region": "us-east-2"}}, files=files, use_dotenv=False)

    assert cfg.aws.region == "us-east-2"             # CLI wins
    assert cfg.aws.profile == "env-profile"          # env over file
    assert cfg.reconcile.max_attempts == 5           # env coerced to int
    assert cfg.app.dry_run is True                   # env coerced to bool
    assert cfg.reconcile.concurrency == 2            # from file
    assert cfg.logging.console_level == "WARNING"    # from file


def test_groups_table_replaces_defaults(tmp_path, monkeypatch):
    files = _write(tmp_path, """
      provisioning:
        groups:
          Sales: Sellers
        unassigned_group: Everyone
    """)
    monkeypatch.chdir(tmp_path)
    cfg = load_config(files=files, use_dotenv=False)
    assert cfg.provisioning.groups == {"Sales": "Sellers"}
    assert cfg.provisioning.unassigned_group == "Everyone"


def test_env_interpolation(tmp_path, monkeypatch):
    files = _write(tmp_path, """
      aws:
        profile: "${OPS_PROFILE}"
    """)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("OPS_PROFILE", "ops-admin")
    cfg = load_config(files=files, use_dotenv=False)
    assert cfg.aws.profile == "ops-admin"


def test_dotenv_is_loaded(tmp_path, monkeypatch):
    (tmp_path / ".env").write_text("IAMSYNC_AWS__REGION=ap-south-1\n", encoding="utf-8")
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("IAMSYNC_AWS__REGION", raising=False)
    try:
        cfg = load_config(files=(str(tmp_path / "none.yml"),))
    finally:
        os.environ.pop("IAMSYNC_AWS__REGION", None)
    assert cfg.aws.region == "ap-south-1"


@pytest.mark.parametrize("overrides, fragment", [
    ({"reconcile": {"concurrency": 0}}, "reconcile.concurrency"),
    ({"reconcile": {"max_attempts": 0}}, "reconcile.max_attempts"),
    ({"reconcile": {"call_timeout_sec": "abc"}}, "call_timeout_sec"),
    ({"reconcile": {"concurrency": None}}, "reconcile.concurrency"),
    ({"reconcile": {"max_attempts": None}}, "reconcile.max_attempts"),
    ({"reconcile": {"call_timeout_sec": None}}, "reconcile.call_timeout_sec"),
    ({"reconcile": {"backoff_base_sec": -1}}, "reconcile.backoff_base_sec"),
    ({"reconcile": "fast"}, "reconcile must be a mapping"),
    ({"provisioning": {"unassigned_group": " "}}, "unassigned_group"),
    ({"provisioning": {"groups": {"Sales": ""}}}, "empty group name"),
    ({"aws": {"bogus": 1}}, "Unknown configuration key"),
])
def test_invalid_configuration(tmp_path, monkeypatch, overrides, fragment):
    monkeypatch.chdir(tmp_path)
    with pytest.raises(ConfigError) as ei:
        load_config(overrides, files=(str(tmp_path / "none.yml"),), use_dotenv=False)
    assert fragment in str(ei.value)
