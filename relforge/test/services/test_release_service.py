from __future__ import annotations

from dataclasses import replace
from pathlib import Path

import pytest

from relforge.core.result import Err, Ok
from relforge.services.release import service as service_mod
from relforge.services.release.service import NoRemoteTags, build_collaborators, build_tag_store
from relforge.services.release.settings import Credentials, ReleaseConfig


def _config(tmp_path: Path, **overrides: object) -> ReleaseConfig:
    config = ReleaseConfig(root_path=tmp_path, config_dir=tmp_path)
    return replace(config, **overrides)  # type: ignore[arg-type]


def test_github_without_token_is_refused(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    def no_gh() -> None:
        raise AssertionError("gh looked up without credentials")

    monkeypatch.setattr(service_mod, "ensure_gh_available", no_gh)
    config = _config(
        tmp_path, publish_github=True, github_username="octo", github_repository="forge"
    )

    built = build_collaborators(config, Credentials(), (), environ={})
    assert isinstance(built, Err)
    assert built.error.kind == "github"

    store = build_tag_store(config, Credentials(), environ={})
    assert isinstance(store, Err)
    assert "access token" in store.error.message


def test_github_without_repository_is_refused(tmp_path: Path) -> None:
    config = _config(tmp_path, publish_github=True)
    built = build_collaborators(config, Credentials(github_token="t"), (), environ={})
    assert isinstance(built, Err)
    assert "GitHubRepositoryName" in built.error.message


def test_nuget_without_api_key_is_refused(tmp_path: Path) -> None:
    config = _config(tmp_path, publish_nuget=True)
    built = build_collaborators(config, Credentials(), (), environ={})
    assert isinstance(built, Err)
    assert built.error.kind == "nuget"


def test_tag_store_without_github_is_local(tmp_path: Path) -> None:
    store = build_tag_store(_config(tmp_path), Credentials(), environ={})
    assert isinstance(store, Ok)
    assert isinstance(store.value, NoRemoteTags)
    assert store.value.tag_exists("v1.0.0") == Ok(False)


def test_nuget_only_collaborators(tmp_path: Path) -> None:
    built = build_collaborators(
        _config(tmp_path, publish_nuget=True), Credentials(nuget_api_key="k"), (), environ={}
    )
    assert isinstance(built, Ok)
    assert built.value.nuget is not None
    assert built.value.github is None
    assert isinstance(built.value.tag_store, NoRemoteTags)
