"""
Standalone biome preset applier for The Witcher 3 REDkit terrain tools.

Key points:
- This script edits r4LavaEditor2.sessions.ini (the REDkit session file) directly.
- It replaces the TerrainEdit MaterialPairSlot<N> blocks of one project with the blocks
  of a preset file; every other line of the session file is kept as is.
- Presets are flat text files (Windows-1251) that can be downloaded from the
  biomebrushes GitHub folder and converted from JSON.

Typical usage:
  python redkit_biome_preset_standalone.py --list
  python redkit_biome_preset_standalone.py --fetch --list
  python redkit_biome_preset_standalone.py --preset Swamp
  python redkit_biome_preset_standalone.py --preset-file "C:\\presets\\Swamp.txt" --project paf_myproject
  python redkit_biome_preset_standalone.py --preset Swamp --dry-run

Paths:
  --sessions-ini / --project override the values stored in config.json.
  When config.json is missing or stale, the tool asks for the REDkit folder and the workspace.
"""

from __future__ import annotations

import argparse
import json
import re
import sys
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Protocol, Sequence

import requests


ENCODING = "cp1251"
DOS_EOL = "\r\n"

SESSIONS_INI_NAME = "r4LavaEditor2.sessions.ini"
REDKIT_FOLDER_NAME = "The Witcher 3 REDkit"

GITHUB_PRESETS_API = "https://api.github.com/repos/nowaytofindavailableone/redkit3biometool/contents/biomebrushes"
FETCH_TIMEOUT = 15

# Output order of every block written back to the session file.
KEY_ORDER = (
    "VerticalMask",
    "VerticalUVMult",
    "VerticalUVScaleMask",
    "HeightLowLimit",
    "Probability",
    "PresetEnabled",
    "HighLimitMask",
    "HorizontalMask",
    "SelectedHorizontalTexture",
    "SlopeThresholdMask",
    "SelectedVerticalTexture",
    "LowLimitMask",
    "SlopeThresholdAction",
    "SlopeThresholdIndex",
    "HeightHighLimit",
)
TERMINAL_KEY = KEY_ORDER[-1]

_SLOT_RE = re.compile(r"MaterialPairSlot(\d+)")

LogFn = Callable[[str], object]


class BiomePresetError(Exception):
    """Base class for errors reported to the user."""


class PresetApplyError(BiomePresetError):
    pass


class PresetFetchError(BiomePresetError):
    pass


class SettingsError(BiomePresetError):
    pass


def _program_dir() -> Path:
    """
    Folder next to the program.
    - When running from source: next to this .py file.
    - When packaged: next to the executable.
    """
    if getattr(sys, "frozen", False):
        return Path(sys.executable).resolve().parent
    return Path(__file__).resolve().parent


def default_settings_path() -> Path:
    return _program_dir() / "config.json"


def default_presets_dir() -> Path:
    return _program_dir() / "presets"


@dataclass
class PresetBlock:
    header: str
    values: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class PresetTable:
    blocks: Dict[str, PresetBlock]
    skipped_lines: int = 0

    def __len__(self) -> int:
        return len(self.blocks)

    def __contains__(self, header: object) -> bool:
        return header in self.blocks

    def get(self, header: str) -> Optional[PresetBlock]:
        return self.blocks.get(header)


def _strip_eol(raw: str) -> str:
    if raw.endswith("\n"):
        raw = raw[:-1]
    if raw.endswith("\r"):
        raw = raw[:-1]
    return raw


def _iter_lines(fh) -> Iterable[str]:
    for raw in fh:
        yield _strip_eol(raw)


def parse_preset_lines(lines: Iterable[str]) -> PresetTable:
    """
    Build a preset table from already decoded lines.

    A line starting with '[' opens a block (the whole line is the header). Inside a block,
    only lines with exactly one '=' are kept. Anything else is counted as skipped; blank
    lines are ignored silently.
    """
    blocks: Dict[str, PresetBlock] = {}
    current: Optional[PresetBlock] = None
    skipped = 0

    for line in lines:
        if line.startswith("["):
            if current is not None:
                blocks[current.header] = current
            current = PresetBlock(header=line)
            continue
        if not line.strip():
            continue
        parts = line.split("=")
        if current is None or len(parts) != 2:
            skipped += 1
            continue
        current.values[parts[0].strip()] = parts[1].strip()

    if current is not None:
        blocks[current.header] = current

    return PresetTable(blocks=blocks, skipped_lines=skipped)


def load_preset_blocks(preset_path: Path, *, log: LogFn = print) -> PresetTable:
    preset_path = Path(preset_path)
    try:
        with preset_path.open("r", encoding=ENCODING, errors="replace", newline="\n") as fh:
            table = parse_preset_lines(_iter_lines(fh))
    except OSError as e:
        raise PresetApplyError(f"Error opening preset file {preset_path}: {e}") from e

    log(f"Parsed {len(table)} blocks from preset file.")
    if table.skipped_lines:
        log(f"Skipped {table.skipped_lines} malformed preset lines.")
    return table


@dataclass(frozen=True)
class RewriteResult:
    blocks_seen: int
    blocks_replaced: int
    replaced_headers: List[str]
    lines_copied: int
    skipped_lines: int
    written: bool = False


def expected_block_header(project_name: str, slot: str) -> str:
    p = project_name
    return f"[Session/dlc\\{p}\\data\\levels\\{p}\\{p}.w2w/Tools/TerrainEdit/MaterialPairSlot{slot}]"


def format_block(block: PresetBlock) -> List[str]:
    """Serialize a block as DOS lines: header, then the known keys in KEY_ORDER."""
    out = [block.header + DOS_EOL]
    for key in KEY_ORDER:
        if key in block.values:
            out.append(f"{key}={block.values[key]}{DOS_EOL}")
    return out


def rewrite_lines(
    lines: Iterable[str],
    table: PresetTable,
    project_name: str,
    write: Callable[[str], object],
    *,
    log: LogFn = print,
) -> RewriteResult:
    """
    Stream the session file once and write the new content through `write`.

    A line is a block header only when it is exactly the expected header of the slot it names
    for `project_name`. Lines are copied verbatim while no block is open. Inside a block every
    line is treated as key=value (split on the first '='); the HeightHighLimit line closes it.
    Closed blocks are replaced from the preset table when their header is found, otherwise they
    are written back from what was parsed. Both paths go through format_block().
    """
    current: Optional[PresetBlock] = None
    blocks_seen = 0
    replaced: List[str] = []
    copied = 0
    skipped = 0

    def flush(block: PresetBlock) -> None:
        new_block = table.get(block.header)
        if new_block is not None:
            for out in format_block(new_block):
                write(out)
            replaced.append(block.header)
            log(f"Block replaced: {block.header}")
        else:
            for out in format_block(block):
                write(out)

    for line in lines:
        m = _SLOT_RE.search(line)
        if m and line == expected_block_header(project_name, m.group(1)):
            if current is not None:
                flush(current)
            current = PresetBlock(header=line)
            blocks_seen += 1
            continue

        if current is None:
            write(line + DOS_EOL)
            copied += 1
            continue

        if "=" not in line:
            skipped += 1
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        current.values[key] = value.strip()
        if key == TERMINAL_KEY:
            flush(current)
            current = None

    # File ended inside a block.
    if current is not None:
        flush(current)

    return RewriteResult(
        blocks_seen=blocks_seen,
        blocks_replaced=len(replaced),
        replaced_headers=replaced,
        lines_copied=copied,
        skipped_lines=skipped,
    )


def replace_blocks_in_ini(
    sessions_ini: Path,
    preset_file: Path,
    project_name: str,
    *,
    dry_run: bool = False,
    make_backup: bool = False,
    log: LogFn = print,
) -> RewriteResult:
    """
    Replace the project's MaterialPairSlot blocks in `sessions_ini` with the blocks of `preset_file`.

    The new content goes to <sessions_ini>.tmp first. The original file is only touched by the final
    replace (and by the optional .bak copy just before it). On failure the temp file is removed and
    PresetApplyError is raised.
    """
    path = Path(sessions_ini)
    table = load_preset_blocks(Path(preset_file), log=log)
    tmp = path.with_suffix(path.suffix + ".tmp")

    try:
        with path.open("r", encoding=ENCODING, errors="replace", newline="\n") as src:
            if dry_run:
                result = rewrite_lines(_iter_lines(src), table, project_name, lambda _s: None, log=log)
            else:
                with tmp.open("w", encoding=ENCODING, errors="replace", newline="") as dst:
                    result = rewrite_lines(_iter_lines(src), table, project_name, dst.write, log=log)
    except OSError as e:
        _discard(tmp)
        raise PresetApplyError(f"Error rewriting session file {path}: {e}") from e

    if result.skipped_lines:
        log(f"Dropped {result.skipped_lines} lines without '=' inside blocks.")
    log(f"Blocks found: {result.blocks_seen}, replaced: {result.blocks_replaced}")

    if dry_run:
        log("Dry-run: no files were modified.")
        return result

    try:
        if make_backup:
            backup_path = path.with_suffix(path.suffix + ".bak")
            if not backup_path.exists():
                backup_path.write_bytes(path.read_bytes())
        tmp.replace(path)
    except OSError as e:
        _discard(tmp)
        raise PresetApplyError(f"Error replacing session file {path}: {e}") from e

    log("Replacement completed successfully.")
    return replace(result, written=True)


def _discard(path: Path) -> None:
    try:
        path.unlink()
    except OSError:
        pass


def _collapse_double_brackets(text: str) -> str:
    return text.replace("[[", "[").replace("]]", "]")


def _format_json_value(value) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if value is None:
        return ""
    return str(value)


def convert_brush_json(data: Dict[str, Dict[str, object]]) -> str:
    """
    Convert one biomebrushes JSON document to preset text.

    Entries are numbered "1".."N"; each becomes a [path] header followed by its KEY_ORDER keys.
    """
    lines: List[str] = []
    for i in range(1, len(data) + 1):
        entry = data.get(str(i))
        if entry is None:
            continue
        if not isinstance(entry, dict):
            raise PresetFetchError(f"Entry {i} is not an object")
        if "path" in entry:
            lines.append(f"[{_collapse_double_brackets(_format_json_value(entry['path']))}]")
        for key in KEY_ORDER:
            if key in entry:
                lines.append(f"{key}={_format_json_value(entry[key])}")
    text = "".join(line + "\n" for line in lines)
    return _collapse_double_brackets(text)


def write_preset_text(text: str, path: Path) -> None:
    with Path(path).open("w", encoding=ENCODING, errors="replace", newline="") as fh:
        fh.write(text)


def _get_json(session, url: str, timeout: float):
    try:
        resp = session.get(url, timeout=timeout)
    except requests.RequestException as e:
        raise PresetFetchError(f"Error fetching {url}: {e}") from e
    if resp.status_code != 200:
        raise PresetFetchError(f"Failed to fetch {url}, status: {resp.status_code} {resp.reason}")
    try:
        return resp.json()
    except ValueError as e:
        raise PresetFetchError(f"Error decoding JSON from {url}: {e}") from e


def fetch_and_convert_presets(
    presets_dir: Path,
    *,
    api_url: str = GITHUB_PRESETS_API,
    session=None,
    timeout: float = FETCH_TIMEOUT,
    log: LogFn = print,
) -> List[Path]:
    """
    Download every *.json brush from the GitHub folder listing and save it as <name>.txt.
    Any failure aborts the whole pass.
    """
    presets_dir = Path(presets_dir)
    if not presets_dir.exists():
        try:
            presets_dir.mkdir(parents=True)
        except OSError as e:
            raise PresetFetchError(f"Error creating presets folder {presets_dir}: {e}") from e
        log(f"Created presets folder: {presets_dir}")

    http = session if session is not None else requests.Session()
    listing = _get_json(http, api_url, timeout)
    if not isinstance(listing, list):
        raise PresetFetchError(f"Unexpected folder listing from {api_url}")

    written: List[Path] = []
    for item in listing:
        if not isinstance(item, dict):
            continue
        name = str(item.get("name", ""))
        if item.get("type") != "file" or Path(name).suffix != ".json":
            continue
        download_url = item.get("download_url")
        if not download_url:
            raise PresetFetchError(f"No download URL for {name}")

        brush = _get_json(http, download_url, timeout)
        if not isinstance(brush, dict):
            raise PresetFetchError(f"Unexpected JSON layout in {name}")

        out_path = presets_dir / (Path(name).stem + ".txt")
        try:
            write_preset_text(convert_brush_json(brush), out_path)
        except OSError as e:
            raise PresetFetchError(f"Error writing {out_path}: {e}") from e
        log(f"Saved preset: {out_path}")
        written.append(out_path)

    log(f"Presets downloaded: {len(written)}")
    return written


def list_available_presets(presets_dir: Path) -> List[str]:
    presets_dir = Path(presets_dir)
    if not presets_dir.is_dir():
        raise PresetFetchError(f"Presets folder not found: {presets_dir}")
    return sorted(p.stem for p in presets_dir.glob("*.txt") if p.is_file())


@dataclass(frozen=True)
class Settings:
    file_path: str = ""
    workspace: str = ""
    project_name: str = ""


class PathChooser(Protocol):
    def choose_directory(self, title: str) -> str:
        ...

    def choose_from_list(self, prompt: str, options: Sequence[str]) -> str:
        ...


def load_settings(path: Path) -> Optional[Settings]:
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return None
    if not isinstance(data, dict):
        return None
    return Settings(
        file_path=str(data.get("file_path") or ""),
        workspace=str(data.get("workspace") or ""),
        project_name=str(data.get("project_name") or ""),
    )


def save_settings(settings: Settings, path: Path) -> None:
    data = {
        "file_path": settings.file_path,
        "workspace": settings.workspace,
        "project_name": settings.project_name,
    }
    try:
        Path(path).write_text(json.dumps(data, indent=2), encoding="utf-8")
    except OSError as e:
        raise SettingsError(f"Error saving settings to {path}: {e}") from e


def resolve_sessions_ini(folder: Path) -> Path:
    """
    Accepts the REDkit folder, its bin folder, or a folder that contains "The Witcher 3 REDkit".
    """
    folder = Path(folder)
    lowered = str(folder).lower()
    if REDKIT_FOLDER_NAME.lower() in lowered:
        full_path = folder / "bin" / SESSIONS_INI_NAME
    elif lowered.endswith("bin"):
        full_path = folder / SESSIONS_INI_NAME
    else:
        full_path = folder / REDKIT_FOLDER_NAME / "bin" / SESSIONS_INI_NAME
        if not full_path.exists():
            raise SettingsError(
                f"Selected folder contains neither '{REDKIT_FOLDER_NAME}', 'bin' nor '{REDKIT_FOLDER_NAME}\\bin': {folder}"
            )
    if not full_path.exists():
        raise SettingsError(f"{SESSIONS_INI_NAME} not found in the selected folder: {full_path}")
    return full_path


def resolve_workspace(folder: Path) -> Path:
    folder = Path(folder)
    if folder.name != "workspace":
        folder = folder / "workspace"
        if not folder.is_dir():
            raise SettingsError(f"'workspace' folder not found inside the selected folder: {folder.parent}")
    if not (folder / "dlc").is_dir():
        raise SettingsError(f"'dlc' folder not found in workspace: {folder}")
    return folder


def find_project_names(dlc_dir: Path) -> List[str]:
    try:
        names = sorted(p.name for p in Path(dlc_dir).iterdir() if p.is_dir() and p.name.startswith("paf"))
    except OSError as e:
        raise SettingsError(f"Error reading 'dlc' folder {dlc_dir}: {e}") from e
    if not names:
        raise SettingsError(f"No project folders starting with 'paf' found in {dlc_dir}")
    return names


def discover_settings(
    settings_path: Path,
    chooser: PathChooser,
    *,
    need_file_path: bool = True,
    need_project: bool = True,
    log: LogFn = print,
) -> Settings:
    """
    Load config.json and fill in whatever is missing or stale by asking through `chooser`.
    Only the parts flagged with need_file_path / need_project are checked and asked for.
    The result is saved back to `settings_path`.
    """
    settings = load_settings(settings_path) or Settings()

    file_ok = bool(settings.file_path) and Path(settings.file_path).exists()
    if need_file_path and file_ok:
        log(f"Last selected file exists: {settings.file_path}")
    elif need_file_path:
        log(f"No valid configuration found for REDkit. Select the REDkit or bin folder (bin\\{SESSIONS_INI_NAME}).")
        folder = chooser.choose_directory("Select The Witcher 3 REDkit or bin Folder")
        if not folder:
            raise SettingsError("No REDkit folder selected.")
        settings = replace(settings, file_path=str(resolve_sessions_ini(Path(folder))))

    project_ok = bool(settings.workspace) and Path(settings.workspace).exists() and bool(settings.project_name)
    if need_project and project_ok:
        log(f"Last selected workspace and project exist: {settings.workspace}, {settings.project_name}")
    elif need_project:
        log("Select the workspace folder.")
        folder = chooser.choose_directory("Select Workspace Folder")
        if not folder:
            raise SettingsError("No workspace folder selected.")
        workspace = resolve_workspace(Path(folder))
        names = find_project_names(workspace / "dlc")
        if len(names) == 1:
            project = names[0]
        else:
            project = chooser.choose_from_list("Several projects found, choose one:", names)
            if project not in names:
                raise SettingsError(f"Invalid project selection: {project!r}")
        settings = replace(settings, workspace=str(workspace), project_name=project)

    save_settings(settings, settings_path)
    log(
        f"Paths saved to {Path(settings_path).name}: REDkit Path: {settings.file_path}, "
        f"Workspace Path: {settings.workspace}, Project Name: {settings.project_name}"
    )
    return settings


class ConsoleChooser:
    """PathChooser for the command line."""

    def __init__(self, input_fn: Callable[[str], str] = input, log: LogFn = print) -> None:
        self._input = input_fn
        self._log = log

    def choose_directory(self, title: str) -> str:
        return self._input(f"{title}: ").strip().strip('"')

    def choose_from_list(self, prompt: str, options: Sequence[str]) -> str:
        self._log(prompt)
        for i, option in enumerate(options, 1):
            self._log(f"{i}. {option}")
        while True:
            raw = self._input("Project number: ").strip()
            if raw.isdigit() and 1 <= int(raw) <= len(options):
                return options[int(raw) - 1]
            self._log("Invalid project number.")


def run(argv: Optional[Sequence[str]] = None, *, log=print, chooser: Optional[PathChooser] = None) -> int:
    """
    Main implementation. Kept separate so a GUI can call this and capture output via `log`.
    """
    parser = argparse.ArgumentParser(description="Apply a biome preset to the REDkit TerrainEdit material slots.")
    parser.add_argument("--preset", type=str, default=None, help="Preset name (a .txt file in the presets folder).")
    parser.add_argument("--preset-file", type=str, default=None, help="Explicit path to a preset .txt file.")
    parser.add_argument("--sessions-ini", type=str, default=None, help=f"Path to {SESSIONS_INI_NAME} (overrides config.json).")
    parser.add_argument("--project", type=str, default=None, help="Project name, eg paf_myproject (overrides config.json).")
    parser.add_argument("--settings", type=str, default=None, help="Path to config.json (default: next to the program).")
    parser.add_argument("--presets-dir", type=str, default=None, help="Presets folder (default: presets/ next to the program).")
    parser.add_argument("--fetch", action="store_true", help="Download presets from GitHub before anything else.")
    parser.add_argument("--list", action="store_true", help="List available presets and exit.")
    parser.add_argument("--dry-run", action="store_true", help="Do not write files, just report which blocks would change.")
    parser.add_argument("--no-backup", action="store_true", help="Do not create a .bak copy of the session file.")
    args = parser.parse_args(list(argv) if argv is not None else None)

    presets_dir = Path(args.presets_dir) if args.presets_dir else default_presets_dir()

    try:
        if args.fetch:
            fetch_and_convert_presets(presets_dir, log=log)

        if args.list:
            names = list_available_presets(presets_dir)
            log(f"Presets ({len(names)}):")
            for name in names:
                log(f"  - {name}")
            return 0

        if args.preset_file:
            preset_file = Path(args.preset_file)
        elif args.preset:
            preset_file = presets_dir / f"{args.preset}.txt"
        elif args.fetch:
            return 0
        else:
            raise SystemExit("Select a preset with --preset or --preset-file.")
        if not preset_file.exists():
            raise SystemExit(f"Preset file not found: {preset_file}")

        sessions_ini = args.sessions_ini
        project = args.project
        if not (sessions_ini and project):
            settings_path = Path(args.settings) if args.settings else default_settings_path()
            settings = discover_settings(
                settings_path,
                chooser or ConsoleChooser(log=log),
                need_file_path=not sessions_ini,
                need_project=not project,
                log=log,
            )
            sessions_ini = sessions_ini or settings.file_path
            project = project or settings.project_name

        sessions_path = Path(sessions_ini)
        if not sessions_path.exists():
            raise SystemExit(f"Session file not found: {sessions_path}")

        log(f"Session file: {sessions_path}")
        log(f"Project: {project}")
        log(f"Preset: {preset_file}")
        log(f"Backups: {'off' if args.no_backup else 'on'}")

        replace_blocks_in_ini(
            sessions_path,
            preset_file,
            project,
            dry_run=args.dry_run,
            make_backup=not args.no_backup,
            log=log,
        )
    except BiomePresetError as e:
        raise SystemExit(str(e))
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    return run(argv, log=print)


if __name__ == "__main__":
    raise SystemExit(main())
