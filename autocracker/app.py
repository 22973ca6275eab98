import argparse
import asyncio
import logging
import shlex
import sys
import threading
import tkinter as tk
from functools import partial
from tkinter import filedialog, messagebox
from typing import Any, Coroutine, List, Optional

import customtkinter as ctk

from . import __version__
from .catalog import SteamCatalog
from .errors import DirectorySelectionError, describe_error
from .events import EventHub
from .installs import require_install_dir, suggest_catalog_id, validate_install_dir
from .localization import LocalizationManager, _, install
from .logging_setup import setup_logging
from .models import Game, ProgressSnapshot, ProtectionStatus
from .notification import SuccessNotification
from .patcher import SubprocessPatcher
from .progress import ProgressBridge
from .protection import ProtectionProbe
from .search import SearchResolver
from .settings import SettingsManager
from .workflow import CrackWorkflow

logger = logging.getLogger(__name__)

# --- Platform-specific asyncio policy ---
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())


class LoopThread:
    """The one event loop every core component lives on, run in a daemon thread."""

    def __init__(self) -> None:
        self.loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._run, daemon=True)

    def _run(self) -> None:
        asyncio.set_event_loop(self.loop)
        try:
            self.loop.run_forever()
        finally:
            self.loop.close()

    def start(self) -> None:
        self._thread.start()

    def call(self, func, *args) -> None:
        self.loop.call_soon_threadsafe(partial(func, *args))

    def submit(self, coro: Coroutine[Any, Any, Any]):
        return asyncio.run_coroutine_threadsafe(coro, self.loop)

    def stop(self, timeout: float = 5) -> None:
        self.loop.call_soon_threadsafe(self.loop.stop)
        self._thread.join(timeout)


# --- Main Application Class ---
class AutoCrackerApp(ctk.CTk):
    """
    Main window. Widgets only mirror core state: every change made by the
    core is pushed back to Tk with after(0, ...), and every user action is
    handed to the loop thread.
    """

    MAX_RESULTS = 5

    def __init__(self, settings_file: str = "settings.json") -> None:
        super().__init__()

        self.settings_manager = SettingsManager(settings_file)
        asyncio.run(self.settings_manager.load_or_default())
        self.localization_manager = LocalizationManager()
        self.localization_manager.set_language(self.settings_manager.get("language"))
        install(self.localization_manager)

        self.runner = LoopThread()
        self.hub = EventHub()
        self.catalog = SteamCatalog()

        self.progress = ProgressBridge(self.hub, on_change=self._on_progress)
        self.notification = SuccessNotification(on_change=self._on_notification)
        self.probe = ProtectionProbe(
            self.catalog.probe_protection,
            fallback=self.catalog.fetch_drm_notice,
            on_change=self._on_workflow_change,
        )
        self.patcher = SubprocessPatcher(self.hub)
        self.workflow = CrackWorkflow(
            self.patcher,
            self.probe,
            self.progress,
            self.notification,
            on_change=self._on_workflow_change,
        )
        self.resolver = SearchResolver(self.catalog.search, on_change=self._on_search)

        self.result_buttons: List[ctk.CTkButton] = []
        self._closing = False

        self.title(_("Better Steam AutoCracker"))
        self.geometry(self.settings_manager.get("window_geometry"))
        self.minsize(640, 520)

        self.setup_ui()
        self.protocol("WM_DELETE_WINDOW", self.on_closing)

        self.runner.start()
        self.runner.submit(self._async_startup())

    # --- Startup / teardown ---

    async def _async_startup(self) -> None:
        self.progress.activate()

        command = self.settings_manager.get("patcher_command")
        if isinstance(command, str):
            command = shlex.split(command)
        self.patcher.command = list(command)
        self.workflow.set_language(self.settings_manager.get("game_language"))

        self.after(0, self._apply_settings_to_ui)

        last_path = self.settings_manager.get("last_install_path")
        if validate_install_dir(last_path):
            self.workflow.set_install_path(last_path)
            self.after(0, partial(self._set_folder_entry, last_path))

    def _apply_settings_to_ui(self) -> None:
        theme = self.settings_manager.get("theme")
        ctk.set_appearance_mode(theme)
        self.theme_switch_var.set(theme == "dark")

    def on_closing(self) -> None:
        if self.workflow.in_progress and not messagebox.askokcancel(
            _("Quit"),
            _("The game is still being prepared and cannot be aborted. Quit anyway?"),
        ):
            return
        self._closing = True
        self.settings_manager.set("window_geometry", self.geometry())
        future = self.runner.submit(self._async_shutdown())
        try:
            future.result(timeout=5)
        except Exception as e:
            logger.warning("Shutdown did not complete cleanly: %s", describe_error(e))
        self.runner.stop()
        self.destroy()

    async def _async_shutdown(self) -> None:
        self.resolver.close()
        self.probe.close()
        self.notification.dispose()
        self.progress.deactivate()
        try:
            await self.settings_manager.save()
        except Exception as e:
            logger.error("%s", describe_error(e))
        await self.catalog.close()

    # --- Layout ---

    def setup_ui(self) -> None:
        main_container = ctk.CTkFrame(self, corner_radius=9)
        main_container.pack(fill="both", expand=True, padx=18, pady=9)

        header_frame = ctk.CTkFrame(main_container, fg_color="transparent")
        header_frame.pack(fill="x", padx=9, pady=(9, 0))
        ctk.CTkLabel(
            header_frame,
            text=_("Get Started"),
            font=("Helvetica", 22, "bold"),
        ).pack(side="left")
        self.theme_switch_var = ctk.BooleanVar(value=True)
        ctk.CTkSwitch(
            header_frame,
            text=_("Dark mode"),
            variable=self.theme_switch_var,
            command=self._toggle_theme,
        ).pack(side="right")

        languages = self.localization_manager.get_available_languages()
        self.lang_var = ctk.StringVar(
            value=languages.get(
                self.localization_manager.current_language,
                self.localization_manager.current_language,
            )
        )
        ctk.CTkOptionMenu(
            header_frame,
            variable=self.lang_var,
            values=list(languages.values()),
            width=110,
            command=self._change_language,
        ).pack(side="right", padx=9)

        # Game folder
        folder_frame = ctk.CTkFrame(main_container, corner_radius=9)
        folder_frame.pack(fill="x", padx=9, pady=9)
        ctk.CTkLabel(
            folder_frame, text=_("Game Folder"), text_color="cyan", font=("Helvetica", 14.4)
        ).pack(padx=9, pady=4.5, anchor="w")
        self.folder_entry = ctk.CTkEntry(
            folder_frame, placeholder_text=_("Select your game folder..."), state="disabled"
        )
        self.folder_entry.pack(side="left", fill="x", expand=True, padx=9, pady=4.5)
        ctk.CTkButton(
            folder_frame, text=_("Browse"), width=90, command=self._choose_folder
        ).pack(side="left", padx=9, pady=4.5)

        # App ID / search
        appid_frame = ctk.CTkFrame(main_container, corner_radius=9)
        appid_frame.pack(fill="x", padx=9, pady=9)
        ctk.CTkLabel(
            appid_frame,
            text=_("Steam App ID"),
            text_color="cyan",
            font=("Helvetica", 14.4),
        ).pack(padx=9, pady=4.5, anchor="w")
        self.game_input = ctk.CTkEntry(
            appid_frame,
            placeholder_text=_(
                "Enter Steam App ID (e.g., 1030300 for Hollow Knight: Silksong) or a game name"
            ),
        )
        self.game_input.pack(fill="x", padx=9, pady=4.5)
        self.game_input.bind("<KeyRelease>", self._on_input_changed)

        self.results_container = ctk.CTkFrame(appid_frame, fg_color="transparent")
        self.results_container.pack(fill="x", padx=9, pady=(0, 4.5))

        self.selected_label = ctk.CTkLabel(appid_frame, text="", text_color="gray")
        self.selected_label.pack(padx=9, anchor="w")
        self.drm_label = ctk.CTkLabel(appid_frame, text="", wraplength=640, justify="left")
        self.drm_label.pack(padx=9, pady=(0, 4.5), anchor="w")

        # Progress
        progress_frame = ctk.CTkFrame(main_container, corner_radius=9)
        progress_frame.pack(fill="x", padx=9, pady=9)
        progress_header = ctk.CTkFrame(progress_frame, fg_color="transparent")
        progress_header.pack(fill="x", padx=9, pady=(4.5, 0))
        ctk.CTkLabel(progress_header, text=_("Progress"), font=("Helvetica", 14.4)).pack(
            side="left"
        )
        self.percent_label = ctk.CTkLabel(progress_header, text="0%")
        self.percent_label.pack(side="right")
        self.progress_bar = ctk.CTkProgressBar(progress_frame)
        self.progress_bar.set(0)
        self.progress_bar.pack(fill="x", padx=9, pady=4.5)
        self.status_label = ctk.CTkLabel(progress_frame, text="", text_color="gray")
        self.status_label.pack(padx=9, pady=(0, 4.5), anchor="w")

        self.crack_button = ctk.CTkButton(
            main_container,
            text=_("Crack"),
            height=48,
            font=("Helvetica", 16, "bold"),
            command=self._on_crack_clicked,
            state="disabled",
        )
        self.crack_button.pack(fill="x", padx=9, pady=9)

        self.toast = ctk.CTkFrame(self, corner_radius=9, fg_color="#1f5f2f")
        self.toast_label = ctk.CTkLabel(self.toast, text="", text_color="white")
        self.toast_label.pack(padx=18, pady=9)

    # --- User actions (Tk thread) ---

    def _toggle_theme(self) -> None:
        theme = "dark" if self.theme_switch_var.get() else "light"
        ctk.set_appearance_mode(theme)
        self.settings_manager.set("theme", theme)
        self.runner.submit(self._save_settings())

    def _change_language(self, display_name: str) -> None:
        lang_code = self.localization_manager.language_code_for(display_name)
        if lang_code is None or lang_code == self.localization_manager.current_language:
            return
        self.localization_manager.set_language(lang_code)
        self.settings_manager.set("language", lang_code)
        self.runner.submit(self._save_settings())
        messagebox.showinfo(
            _("Language"),
            _(
                "Language changed to {language}. Please restart the application for the change to take effect."
            ).format(language=display_name),
            parent=self,
        )

    async def _save_settings(self) -> None:
        try:
            await self.settings_manager.save()
        except Exception as e:
            logger.error("%s", describe_error(e))

    def _ask_install_dir(self) -> Optional[str]:
        """Returns the picked folder, None if cancelled. Raises DirectorySelectionError."""
        try:
            chosen_path = filedialog.askdirectory(
                parent=self, title=_("Select your game folder")
            )
        except tk.TclError as e:
            raise DirectorySelectionError(f"Folder dialog failed: {e}") from e
        if not chosen_path:
            return None
        return require_install_dir(chosen_path)

    def _choose_folder(self) -> None:
        try:
            chosen_path = self._ask_install_dir()
        except DirectorySelectionError as e:
            logger.error("Failed to select folder: %s", describe_error(e))
            messagebox.showerror(_("Game Folder"), str(e), parent=self)
            return
        if chosen_path is None:
            return
        logger.info("Selected folder: %s", chosen_path)
        self._set_folder_entry(chosen_path)
        self.settings_manager.set("last_install_path", chosen_path)
        self.runner.call(self.workflow.set_install_path, chosen_path)
        self.runner.submit(self._suggest_from_folder(chosen_path))

    async def _suggest_from_folder(self, path: str) -> None:
        if self.workflow.catalog_id:
            return
        appid = await suggest_catalog_id(path)
        if appid and not self.workflow.catalog_id:
            logger.info("Found App ID %s for %s", appid, path)
            self.after(0, partial(self._fill_input, appid))
            self.resolver.update_query(appid)

    def _on_input_changed(self, event=None) -> None:
        self.runner.call(self.resolver.update_query, self.game_input.get())

    def _fill_input(self, text: str) -> None:
        self.game_input.delete(0, "end")
        self.game_input.insert(0, text)

    def _select_catalog_id(self, catalog_id: str) -> None:
        self.runner.call(self.workflow.set_catalog_id, catalog_id)

    def _on_crack_clicked(self) -> None:
        self.runner.call(self.workflow.trigger)

    # --- Core callbacks (loop thread) ---

    def _on_search(self, resolver: SearchResolver) -> None:
        results = list(resolver.results)
        candidate = resolver.direct_candidate
        if not resolver.query.strip():
            self.workflow.set_catalog_id("")
        if candidate:
            asyncio.ensure_future(self._describe_candidate(candidate))
        else:
            self._schedule(partial(self._render_results, results, None, None))

    async def _describe_candidate(self, candidate: str) -> None:
        name = await self.catalog.get_app_name(candidate)
        if self.resolver.direct_candidate == candidate:
            self._schedule(partial(self._render_results, [], candidate, name))

    def _on_workflow_change(self, _source: Any) -> None:
        self._schedule(self._render_workflow)

    def _on_progress(self, snapshot: ProgressSnapshot) -> None:
        self._schedule(self._render_workflow)

    def _on_notification(self, notification: SuccessNotification) -> None:
        self._schedule(self._render_toast)

    def _schedule(self, callback) -> None:
        if not self._closing:
            self.after(0, callback)

    # --- Rendering (Tk thread) ---

    def _set_folder_entry(self, path: str) -> None:
        self.folder_entry.configure(state="normal")
        self.folder_entry.delete(0, "end")
        self.folder_entry.insert(0, path)
        self.folder_entry.configure(state="disabled")

    def _render_results(
        self, results: List[Game], candidate: Optional[str], candidate_name: Optional[str]
    ) -> None:
        for button in self.result_buttons:
            button.destroy()
        self.result_buttons.clear()

        if candidate:
            text = _("Use App ID {appid}").format(appid=candidate)
            if candidate_name:
                text += f" ({candidate_name})"
            entries = [(candidate, text)]
        else:
            entries = [
                (game.catalog_id, f"{game.display_name} (AppID: {game.catalog_id})")
                for game in results[: self.MAX_RESULTS]
            ]

        for catalog_id, text in entries:
            button = ctk.CTkButton(
                self.results_container,
                text=text,
                anchor="w",
                fg_color="transparent",
                border_width=1,
                command=partial(self._select_catalog_id, catalog_id),
            )
            button.pack(fill="x", pady=2)
            self.result_buttons.append(button)

    def _render_workflow(self) -> None:
        workflow = self.workflow
        state = self.probe.state

        if workflow.catalog_id:
            self.selected_label.configure(
                text=_("Selected App ID: {appid}").format(appid=workflow.catalog_id)
            )
        else:
            self.selected_label.configure(text="")

        drm_color = {
            ProtectionStatus.CLEAR: "green",
            ProtectionStatus.PROTECTED: "red",
            ProtectionStatus.EXHAUSTED: "orange",
        }.get(state.status, "gray")
        self.drm_label.configure(text=state.message, text_color=drm_color)

        snapshot = self.progress.snapshot
        percent = snapshot.clamped_percent
        self.progress_bar.set(percent / 100)
        self.percent_label.configure(text=f"{int(percent)}%")
        self.status_label.configure(
            text=workflow.status_message,
            text_color="red" if workflow.last_error else "gray",
        )

        if workflow.in_progress:
            self.crack_button.configure(state="disabled", text=_("Cracking..."))
        elif self.probe.is_checking:
            self.crack_button.configure(state="disabled", text=_("Checking DRM..."))
        else:
            self.crack_button.configure(
                state="normal" if workflow.can_start else "disabled", text=_("Crack")
            )

    def _render_toast(self) -> None:
        if self.notification.visible:
            self.toast_label.configure(
                text=_("Success!") + "\n" + self.notification.message
            )
            self.toast.place(relx=1.0, rely=1.0, x=-24, y=-24, anchor="se")
            self.toast.lift()
        else:
            self.toast.place_forget()


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="autocracker")
    parser.add_argument("--settings", default="settings.json", help="settings file")
    parser.add_argument("--log-file", default=None, help="also log to this file")
    parser.add_argument("--debug", action="store_true", help="verbose logging")
    parser.add_argument("--version", action="version", version=__version__)
    args = parser.parse_args(argv)

    setup_logging(logging.DEBUG if args.debug else logging.INFO, args.log_file)
    app = AutoCrackerApp(settings_file=args.settings)
    app.mainloop()
    return 0
