from __future__ import annotations

import queue
import threading
import tkinter as tk
from tkinter import filedialog, ttk
from pathlib import Path
from typing import Sequence
import sys
import platform

import redkit_biome_preset_standalone as core


class ToolTip:
    def __init__(self, widget: tk.Widget, text: str):
        self.widget = widget
        self.text = text
        self.tip: tk.Toplevel | None = None
        widget.bind("<Enter>", self._show, add=True)
        widget.bind("<Leave>", self._hide, add=True)
        widget.bind("<ButtonPress>", self._hide, add=True)

    def _show(self, event=None):
        if self.tip or not self.text:
            return
        x = self.widget.winfo_rootx() + 12
        y = self.widget.winfo_rooty() + self.widget.winfo_height() + 8
        self.tip = tk.Toplevel(self.widget)
        self.tip.wm_overrideredirect(True)
        self.tip.wm_geometry(f"+{x}+{y}")
        lbl = ttk.Label(self.tip, text=self.text, justify="left", padding=8)
        lbl.configure(style="Tooltip.TLabel")
        lbl.pack()

    def _hide(self, _event=None):
        if self.tip:
            self.tip.destroy()
            self.tip = None


def add_tooltip(widget: tk.Widget, text: str) -> None:
    ToolTip(widget, text)


class TkChooser:
    """PathChooser backed by tkinter dialogs."""

    def __init__(self, parent: tk.Tk) -> None:
        self.parent = parent

    def choose_directory(self, title: str) -> str:
        return filedialog.askdirectory(parent=self.parent, title=title) or ""

    def choose_from_list(self, prompt: str, options: Sequence[str]) -> str:
        dlg = tk.Toplevel(self.parent)
        dlg.title("Select project")
        dlg.transient(self.parent)
        dlg.grab_set()

        frame = ttk.Frame(dlg, padding=12)
        frame.pack(fill="both", expand=True)
        ttk.Label(frame, text=prompt).pack(anchor="w", pady=(0, 6))
        lb = tk.Listbox(frame, height=min(12, max(3, len(options))), exportselection=False)
        for option in options:
            lb.insert("end", option)
        lb.selection_set(0)
        lb.pack(fill="both", expand=True)

        chosen = {"value": ""}

        def on_ok(_event=None):
            sel = lb.curselection()
            if sel:
                chosen["value"] = options[sel[0]]
            dlg.destroy()

        lb.bind("<Double-Button-1>", on_ok)
        ttk.Button(frame, text="OK", command=on_ok).pack(anchor="e", pady=(8, 0))
        dlg.protocol("WM_DELETE_WINDOW", dlg.destroy)

        self.parent.wait_window(dlg)
        return chosen["value"]


class App(tk.Tk):
    def __init__(self) -> None:
        super().__init__()
        self.title("Biome Preset Selector")
        self.geometry("900x520")
        self.minsize(700, 400)

        self._log_queue: "queue.Queue[str]" = queue.Queue()
        self._worker_thread: threading.Thread | None = None

        self.presets_dir = core.default_presets_dir()
        self.settings_path = core.default_settings_path()
        self.settings: core.Settings | None = None

        self.preset = tk.StringVar(value="")
        self.backups = tk.BooleanVar(value=True)
        self.dry_run = tk.BooleanVar(value=False)

        self._set_app_icon()
        self._build_ui()
        self.after(50, self._drain_log_queue)
        self.after(0, self._startup)

    def _set_app_icon(self) -> None:
        if platform.system().lower() != "windows":
            return
        try:
            if getattr(sys, "frozen", False):
                self.iconbitmap(default=sys.executable)
            else:
                ico = Path(__file__).resolve().parent / "app.ico"
                if ico.exists():
                    self.iconbitmap(default=str(ico))
        except tk.TclError:
            # Tk falls back to its default icon.
            return

    def _build_ui(self) -> None:
        style = ttk.Style(self)
        style.configure("Tooltip.TLabel", background="#ffffe0", relief="solid", borderwidth=1)

        root = ttk.Frame(self, padding=10)
        root.pack(fill="both", expand=True)

        root.columnconfigure(0, weight=3)
        root.columnconfigure(1, weight=2)
        root.rowconfigure(0, weight=1)
        root.rowconfigure(1, weight=0)

        # Left: output "terminal"
        left = ttk.Frame(root)
        left.grid(row=0, column=0, sticky="nsew", padx=(0, 10))
        left.rowconfigure(1, weight=1)
        left.columnconfigure(0, weight=1)

        ttk.Label(left, text="Output").grid(row=0, column=0, sticky="w", pady=(0, 6))

        self.output = tk.Text(left, wrap="word", height=20)
        self.output.grid(row=1, column=0, sticky="nsew")
        self.output.configure(state="disabled")

        yscroll = ttk.Scrollbar(left, orient="vertical", command=self.output.yview)
        yscroll.grid(row=1, column=1, sticky="ns")
        self.output.configure(yscrollcommand=yscroll.set)

        # Right: controls
        right = ttk.Frame(root)
        right.grid(row=0, column=1, sticky="nsew")
        right.columnconfigure(0, weight=1)

        lf_preset = ttk.Labelframe(right, text="Preset")
        lf_preset.grid(row=0, column=0, sticky="ew", pady=(0, 10))
        lf_preset.columnconfigure(0, weight=1)

        preset_label = ttk.Label(lf_preset, text="Select a preset to apply:")
        preset_label.grid(row=0, column=0, sticky="w")
        add_tooltip(
            preset_label,
            "Presets are the .txt files in the presets folder next to the program.\n"
            "Applying a preset rewrites the TerrainEdit MaterialPairSlot blocks of your project\n"
            f"in {core.SESSIONS_INI_NAME}. Close REDkit first.",
        )
        self.preset_box = ttk.Combobox(lf_preset, textvariable=self.preset, values=[], state="readonly")
        self.preset_box.grid(row=1, column=0, sticky="ew", pady=(4, 6))

        self.fetch_btn = ttk.Button(lf_preset, text="Download presets", command=self._start_fetch)
        self.fetch_btn.grid(row=2, column=0, sticky="ew")
        add_tooltip(self.fetch_btn, "Download the biome brushes from GitHub and convert them to presets.")

        lf_opts = ttk.Labelframe(right, text="Options")
        lf_opts.grid(row=1, column=0, sticky="ew", pady=(0, 10))
        lf_opts.columnconfigure(0, weight=1)

        backups_cb = ttk.Checkbutton(lf_opts, text="Create .bak backup (recommended)", variable=self.backups)
        backups_cb.grid(row=0, column=0, sticky="w")
        add_tooltip(
            backups_cb,
            "If enabled, the first run keeps a copy of the session file next to it:\n"
            f"  bin\\{core.SESSIONS_INI_NAME}.bak",
        )
        dryrun_cb = ttk.Checkbutton(lf_opts, text="Dry-run (no files modified)", variable=self.dry_run)
        dryrun_cb.grid(row=1, column=0, sticky="w")
        add_tooltip(dryrun_cb, "Does not write any files. Shows which blocks would be replaced.")

        actions = ttk.Frame(right)
        actions.grid(row=2, column=0, sticky="ew")
        actions.columnconfigure(0, weight=1)
        self.apply_btn = ttk.Button(actions, text="Apply preset", command=self._start_apply)
        self.apply_btn.grid(row=0, column=0, sticky="ew")
        ttk.Button(actions, text="Clear output", command=self._clear_output).grid(row=1, column=0, sticky="ew", pady=(6, 0))

        # Bottom: progress bar
        bottom = ttk.Frame(root)
        bottom.grid(row=1, column=0, columnspan=2, sticky="ew", pady=(10, 0))
        bottom.columnconfigure(0, weight=1)
        self.progress = ttk.Progressbar(bottom, mode="indeterminate")
        self.progress.grid(row=0, column=0, sticky="ew")
        self.progress_label = ttk.Label(bottom, text="Idle")
        self.progress_label.grid(row=0, column=1, sticky="e", padx=(10, 0))

    def _startup(self) -> None:
        try:
            self.settings = core.discover_settings(self.settings_path, TkChooser(self), log=self._append_output)
        except core.BiomePresetError as e:
            self._append_output(f"ERROR: {type(e).__name__}: {e}")
        self._start_fetch()

    def _append_output(self, line: str) -> None:
        self.output.configure(state="normal")
        self.output.insert("end", line + "\n")
        self.output.see("end")
        self.output.configure(state="disabled")

    def _clear_output(self) -> None:
        self.output.configure(state="normal")
        self.output.delete("1.0", "end")
        self.output.configure(state="disabled")

    def _drain_log_queue(self) -> None:
        try:
            while True:
                self._append_output(self._log_queue.get_nowait())
        except queue.Empty:
            pass
        self.after(50, self._drain_log_queue)

    def _refresh_presets(self) -> None:
        try:
            names = core.list_available_presets(self.presets_dir)
        except core.PresetFetchError as e:
            self._append_output(f"ERROR: {e}")
            names = []
        self.preset_box.configure(values=names)
        if self.preset.get() not in names:
            self.preset.set(names[0] if names else "")

    def _set_running(self, running: bool) -> None:
        state = "disabled" if running else "normal"
        self.apply_btn.configure(state=state)
        self.fetch_btn.configure(state=state)
        if running:
            self.progress.start(15)
            self.progress_label.configure(text="Running…")
        else:
            self.progress.stop()
            self.progress_label.configure(text="Idle")

    def _run_in_worker(self, argv: list[str]) -> None:
        if self._worker_thread and self._worker_thread.is_alive():
            return

        self._append_output("Running with args: " + " ".join(argv))
        self._set_running(True)

        def worker() -> None:
            try:
                rc = core.run(argv, log=self._log_queue.put)
                self._log_queue.put(f"Done. Exit code: {rc}")
            except SystemExit as e:
                self._log_queue.put(f"ERROR: {e}")
            except Exception as e:
                self._log_queue.put(f"ERROR: {type(e).__name__}: {e}")
            finally:
                self.after(0, self._finish_worker)

        self._worker_thread = threading.Thread(target=worker, daemon=True)
        self._worker_thread.start()

    def _finish_worker(self) -> None:
        self._set_running(False)
        self._refresh_presets()

    def _start_fetch(self) -> None:
        self._run_in_worker(["--fetch", "--presets-dir", str(self.presets_dir)])

    def _start_apply(self) -> None:
        name = self.preset.get().strip()
        if not name:
            self._append_output("Please select a preset to apply.")
            return
        if self.settings is None:
            self._append_output("ERROR: REDkit paths are not configured. Restart the program to select them.")
            return

        argv = [
            "--preset",
            name,
            "--presets-dir",
            str(self.presets_dir),
            "--sessions-ini",
            self.settings.file_path,
            "--project",
            self.settings.project_name,
        ]
        if self.dry_run.get():
            argv.append("--dry-run")
        if not self.backups.get():
            argv.append("--no-backup")
        self._run_in_worker(argv)


def main() -> None:
    app = App()
    app.mainloop()


if __name__ == "__main__":
    main()
