from __future__ import annotations

import os
from pathlib import Path
from typing import Iterator

import pytest

from aauth.env import load_dotenv_if_present, reset_dotenv_state


@pytest.fixture(autouse=True)
def _fresh_dotenv_state() -> Iterator[None]:
    reset_dotenv_state()
    yield
    reset_dotenv_state()


def test_dotenv_loads_once_and_keeps_existing_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    p = tmp_path / ".env"
    p.write_text("AAUTH_TEST_FROM_FILE=file\nAAUTH_TEST_EXISTING=file\n", encoding="utf-8")
    monkeypatch.delenv("AAUTH_TEST_FROM_FILE", raising=False)
    monkeypatch.setenv("AAUTH_TEST_EXISTING", "env")

    assert load_dotenv_if_present(str(p)) is True
    assert os.environ["AAUTH_TEST_FROM_FILE"] == "file"
    assert os.environ["AAUTH_TEST_EXISTING"] == "env"

    # second call is a no-op
    assert load_dotenv_if_present(str(p)) is False
    os.environ.pop("AAUTH_TEST_FROM_FILE", None)


def test_dotenv_path_from_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    p = tmp_path / "custom.env"
    p.write_text("AAUTH_TEST_CUSTOM=yes\n", encoding="utf-8")
    monkeypatch.setenv("AAUTH_DOTENV_PATH", str(p))
    monkeypatch.delenv("AAUTH_TEST_CUSTOM", raising=False)

    assert load_dotenv_if_present() is True
    assert os.environ["AAUTH_TEST_CUSTOM"] == "yes"
    os.environ.pop("AAUTH_TEST_CUSTOM", None)


def test_missing_dotenv_is_not_an_error(tmp_path: Path) -> None:
    assert load_dotenv_if_present(str(tmp_path / "absent.env")) is False
