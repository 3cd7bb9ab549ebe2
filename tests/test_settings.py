from pathlib import Path

import pytest

from redkit_biome_preset_standalone import (
    SESSIONS_INI_NAME,
    ConsoleChooser,
    Settings,
    SettingsError,
    discover_settings,
    find_project_names,
    load_settings,
    resolve_sessions_ini,
    resolve_workspace,
    save_settings,
)


def _quiet(_msg):
    pass


class FakeChooser:
    def __init__(self, directories=(), choice=""):
        self.directories = list(directories)
        self.choice = choice
        self.directory_titles = []
        self.list_calls = []

    def choose_directory(self, title):
        self.directory_titles.append(title)
        return self.directories.pop(0) if self.directories else ""

    def choose_from_list(self, prompt, options):
        self.list_calls.append(list(options))
        return self.choice


def _make_redkit(root: Path) -> Path:
    bin_dir = root / "The Witcher 3 REDkit" / "bin"
    bin_dir.mkdir(parents=True)
    ini = bin_dir / SESSIONS_INI_NAME
    ini.write_text("")
    return ini


def _make_workspace(root: Path, *projects: str) -> Path:
    workspace = root / "workspace"
    (workspace / "dlc").mkdir(parents=True)
    for name in projects:
        (workspace / "dlc" / name).mkdir()
    return workspace


def test_save_and_load_round_trip(tmp_path: Path):
    path = tmp_path / "config.json"
    settings = Settings(file_path="C:\\a.ini", workspace="C:\\ws", project_name="paf_x")

    save_settings(settings, path)

    assert load_settings(path) == settings


def test_load_missing_or_broken_settings(tmp_path: Path):
    broken = tmp_path / "broken.json"
    broken.write_text("{not json")

    assert load_settings(tmp_path / "none.json") is None
    assert load_settings(broken) is None


def test_resolve_sessions_ini_from_redkit_folder(tmp_path: Path):
    ini = _make_redkit(tmp_path)

    assert resolve_sessions_ini(tmp_path / "The Witcher 3 REDkit") == ini


def test_resolve_sessions_ini_from_bin_folder(tmp_path: Path):
    bin_dir = tmp_path / "editor" / "bin"
    bin_dir.mkdir(parents=True)
    ini = bin_dir / SESSIONS_INI_NAME
    ini.write_text("")

    assert resolve_sessions_ini(bin_dir) == ini


def test_resolve_sessions_ini_from_parent_folder(tmp_path: Path):
    ini = _make_redkit(tmp_path / "games")

    assert resolve_sessions_ini(tmp_path / "games") == ini


def test_resolve_sessions_ini_rejects_unrelated_folder(tmp_path: Path):
    (tmp_path / "docs").mkdir()

    with pytest.raises(SettingsError):
        resolve_sessions_ini(tmp_path / "docs")


def test_resolve_workspace_accepts_parent(tmp_path: Path):
    workspace = _make_workspace(tmp_path)

    assert resolve_workspace(tmp_path) == workspace
    assert resolve_workspace(workspace) == workspace


def test_resolve_workspace_requires_dlc(tmp_path: Path):
    (tmp_path / "workspace").mkdir()

    with pytest.raises(SettingsError, match="dlc"):
        resolve_workspace(tmp_path)


def test_find_project_names_filters_paf_folders(tmp_path: Path):
    workspace = _make_workspace(tmp_path, "paf_b", "paf_a", "bob")
    (workspace / "dlc" / "paf_file").write_text("")

    assert find_project_names(workspace / "dlc") == ["paf_a", "paf_b"]


def test_find_project_names_none_found(tmp_path: Path):
    workspace = _make_workspace(tmp_path, "bob")

    with pytest.raises(SettingsError):
        find_project_names(workspace / "dlc")


def test_discover_asks_and_saves(tmp_path: Path):
    ini = _make_redkit(tmp_path / "games")
    workspace = _make_workspace(tmp_path / "mod", "paf_only")
    chooser = FakeChooser(directories=[str(tmp_path / "games"), str(tmp_path / "mod")])
    config = tmp_path / "config.json"

    settings = discover_settings(config, chooser, log=_quiet)

    assert settings == Settings(file_path=str(ini), workspace=str(workspace), project_name="paf_only")
    assert load_settings(config) == settings
    assert chooser.list_calls == []


def test_discover_reuses_valid_settings(tmp_path: Path):
    ini = _make_redkit(tmp_path)
    workspace = _make_workspace(tmp_path, "paf_a")
    config = tmp_path / "config.json"
    stored = Settings(file_path=str(ini), workspace=str(workspace), project_name="paf_a")
    save_settings(stored, config)
    chooser = FakeChooser()

    assert discover_settings(config, chooser, log=_quiet) == stored
    assert chooser.directory_titles == []


def test_discover_lets_user_pick_among_projects(tmp_path: Path):
    _make_redkit(tmp_path)
    workspace = _make_workspace(tmp_path, "paf_a", "paf_b")
    chooser = FakeChooser(directories=[str(tmp_path / "The Witcher 3 REDkit"), str(workspace)], choice="paf_b")

    settings = discover_settings(tmp_path / "config.json", chooser, log=_quiet)

    assert settings.project_name == "paf_b"
    assert chooser.list_calls == [["paf_a", "paf_b"]]


def test_discover_cancelled_directory(tmp_path: Path):
    with pytest.raises(SettingsError):
        discover_settings(tmp_path / "config.json", FakeChooser(), log=_quiet)


def test_console_chooser_retries_until_valid():
    answers = iter(["9", "x", "2"])
    chooser = ConsoleChooser(input_fn=lambda _prompt: next(answers), log=_quiet)

    assert chooser.choose_from_list("Pick", ["paf_a", "paf_b"]) == "paf_b"


def test_console_chooser_strips_quotes():
    chooser = ConsoleChooser(input_fn=lambda _prompt: ' "C:\\REDkit" ', log=_quiet)

    assert chooser.choose_directory("REDkit") == "C:\\REDkit"


def test_discover_only_asks_for_project(tmp_path: Path):
    workspace = _make_workspace(tmp_path, "paf_a")
    chooser = FakeChooser(directories=[str(workspace)])

    settings = discover_settings(tmp_path / "config.json", chooser, need_file_path=False, log=_quiet)

    assert chooser.directory_titles == ["Select Workspace Folder"]
    assert settings.project_name == "paf_a"
    assert settings.file_path == ""


def test_discover_only_asks_for_sessions_ini(tmp_path: Path):
    ini = _make_redkit(tmp_path)
    chooser = FakeChooser(directories=[str(tmp_path / "The Witcher 3 REDkit")])

    settings = discover_settings(tmp_path / "config.json", chooser, need_project=False, log=_quiet)

    assert chooser.directory_titles == ["Select The Witcher 3 REDkit or bin Folder"]
    assert settings.file_path == str(ini)
