from __future__ import annotations

from pathlib import Path

import pytest

from backuper_engine.paths_and_safety import (
    DATA_ROOT_ENV_VAR,
    SafetyViolationError,
    default_data_root,
    ensure_engine_directories,
    is_safe_logical_path,
    plan_folder,
    resolve_engine_paths,
    resolve_logical_path,
    validate_plan_name,
    validate_source_name,
    validate_source_path,
)


def test_default_data_root_prefers_explicit_env_var(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    monkeypatch.setenv(DATA_ROOT_ENV_VAR, str(tmp_path / "explicit"))
    monkeypatch.setenv("LOCALAPPDATA", str(tmp_path / "Local"))

    assert default_data_root() == tmp_path / "explicit"


def test_default_data_root_prefers_local_appdata(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    monkeypatch.delenv(DATA_ROOT_ENV_VAR, raising=False)
    monkeypatch.setenv("LOCALAPPDATA", str(tmp_path / "Local"))
    monkeypatch.setenv("APPDATA", str(tmp_path / "Roaming"))

    assert default_data_root() == tmp_path / "Local" / "backuper"


def test_default_data_root_falls_back_to_roaming(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    monkeypatch.delenv(DATA_ROOT_ENV_VAR, raising=False)
    monkeypatch.delenv("LOCALAPPDATA", raising=False)
    monkeypatch.setenv("APPDATA", str(tmp_path / "Roaming"))

    assert default_data_root() == tmp_path / "Roaming" / "backuper"


def test_engine_paths_resolve_within_data_root(tmp_path: Path) -> None:
    paths = resolve_engine_paths(tmp_path)
    ensure_engine_directories(paths)

    assert paths.data_root == tmp_path.resolve()
    assert paths.archives_root.is_dir()
    assert paths.work_root.is_dir()
    assert paths.plans_file.parent == paths.data_root
    assert not paths.plans_file.exists()


@pytest.mark.parametrize("bad_name", ["", " ", ".", "..", "a/b", r"a\b", "a:b", "a|b", ".hidden"])
def test_plan_name_rejected(bad_name: str, tmp_path: Path) -> None:
    with pytest.raises(SafetyViolationError):
        plan_folder(bad_name, tmp_path)


def test_plan_folder_is_named_after_plan(tmp_path: Path) -> None:
    assert plan_folder("Documents", tmp_path) == (tmp_path / "Documents").resolve()
    assert validate_plan_name("My Photos") == "My Photos"


@pytest.mark.parametrize("padded", ["  Photos ", "Photos ", "\tPhotos"])
def test_padded_names_are_rejected(padded: str, tmp_path: Path) -> None:
    with pytest.raises(SafetyViolationError):
        validate_plan_name(padded)
    with pytest.raises(SafetyViolationError):
        validate_source_name(padded)
    with pytest.raises(SafetyViolationError):
        plan_folder(padded, tmp_path)


def test_source_name_allows_leading_dot() -> None:
    assert validate_source_name(".config") == ".config"
    with pytest.raises(SafetyViolationError):
        validate_source_name("a/b")


@pytest.mark.parametrize(
    ("logical", "expected"),
    [
        ("docs", True),
        ("docs/a.txt", True),
        ("docs/../a.txt", False),
        ("/abs", False),
        ("docs\\a.txt", False),
        ("c:/x", False),
        ("", False),
    ],
)
def test_is_safe_logical_path(logical: str, expected: bool) -> None:
    assert is_safe_logical_path(logical) is expected


def test_resolve_logical_path_maps_under_root(tmp_path: Path) -> None:
    target = resolve_logical_path(tmp_path, "docs/sub/a.txt")
    assert target == tmp_path.resolve() / "docs" / "sub" / "a.txt"

    with pytest.raises(SafetyViolationError):
        resolve_logical_path(tmp_path, "../escape.txt")


def test_validate_source_path_requires_absolute_non_root(tmp_path: Path) -> None:
    assert validate_source_path(tmp_path / "src") == (tmp_path / "src").resolve()

    with pytest.raises(SafetyViolationError):
        validate_source_path(Path("relative/dir"))
    with pytest.raises(SafetyViolationError):
        validate_source_path(Path(tmp_path.anchor))
