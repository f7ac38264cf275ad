from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable, TypedDict

from langgraph.graph import END, START, StateGraph

from .dependencies import DependencyAuditor, log_dependency_report
from .errors import BuildError, DependencyInstallFailed, LaunchFailed, NoServerAvailable, SyncError
from .installer import ToolchainInstaller
from .launcher import Launcher
from .managed_build import ManagedBuildStage
from .models import PROGRESS_STEPS, LauncherState, MarkerKey, NativeBuildStatus, RemoteDescriptor, RunOutcome
from .native_build import NativeBuildStage
from .reconciler import VersionReconciler
from .remote_config import RemoteConfigResolver
from .settings import LauncherSettings
from .state_store import BaseStatusStore, InstallLayout, StatusStore, install_lock, remove_engine_tree
from .sync import PackageSyncer
from .tools import CommandRunner, run_command
from .transport import HttpTransport

logger = logging.getLogger(__name__)


class LaunchGraphState(TypedDict, total=False):
    dry_run: bool
    descriptor: dict[str, Any] | None
    need_sync: bool
    remote_version: str | None
    version: str | None
    native_status: str | None
    executable: str | None
    pid: int | None
    retries: int
    error: str | None
    last_error: str | None
    exhausted: bool
    outcome: str | None
    visited: list[str]


class LaunchOrchestrator:
    """Top-level state machine: resolve, reconcile, sync, build, launch.

    Sync and build failures share one recovery edge: wipe the EngineTree and
    the version/native markers, spend one unit of retry budget, and go back to
    version reconciliation. Once the budget is spent the run ends in FATAL.
    """

    def __init__(
        self,
        settings: LauncherSettings | None = None,
        *,
        layout: InstallLayout | None = None,
        store: BaseStatusStore | None = None,
        transport: HttpTransport | None = None,
        runner: CommandRunner = run_command,
        auditor: DependencyAuditor | None = None,
        spawn: Callable[..., Any] | None = None,
        installer: ToolchainInstaller | None = None,
    ) -> None:
        self.settings = settings if settings is not None else LauncherSettings.from_env()
        self.layout = layout if layout is not None else InstallLayout.from_settings(self.settings)
        self.store = store if store is not None else StatusStore(self.layout.root)
        self.transport = transport if transport is not None else HttpTransport.from_settings(self.settings)
        self.auditor = auditor if auditor is not None else DependencyAuditor(runner=runner)
        self.installer = (
            installer
            if installer is not None
            else ToolchainInstaller(self.settings, self.layout, self.transport, auditor=self.auditor, runner=runner)
        )

        self.resolver = RemoteConfigResolver(self.settings, self.layout, self.transport)
        self.reconciler = VersionReconciler(self.store, self.layout, self.transport)
        self.syncer = PackageSyncer(self.settings, self.store, self.layout, self.transport)
        self.native_stage = NativeBuildStage(self.settings, self.store, self.layout, auditor=self.auditor, runner=runner)
        self.managed_stage = ManagedBuildStage(
            self.settings, self.store, self.layout, auditor=self.auditor, runner=runner
        )
        self.launcher = Launcher(self.layout, spawn=spawn) if spawn is not None else Launcher(self.layout)

        self.graph = self._build_graph().compile()

    def _build_graph(self) -> StateGraph:
        graph = StateGraph(LaunchGraphState)
        graph.add_node(LauncherState.INIT.value, self._init_node)
        graph.add_node(LauncherState.RESOLVE_SERVER.value, self._resolve_server_node)
        graph.add_node(LauncherState.CHECK_VERSION.value, self._check_version_node)
        graph.add_node(LauncherState.SYNC.value, self._sync_node)
        graph.add_node(LauncherState.NATIVE_BUILD.value, self._native_build_node)
        graph.add_node(LauncherState.MANAGED_BUILD.value, self._managed_build_node)
        graph.add_node(LauncherState.LAUNCH.value, self._launch_node)
        graph.add_node(LauncherState.SYNC_FAILED.value, self._sync_failed_node)
        graph.add_node(LauncherState.BUILD_FAILED.value, self._build_failed_node)
        graph.add_node(LauncherState.DONE.value, self._done_node)
        graph.add_node(LauncherState.FATAL.value, self._fatal_node)

        graph.add_edge(START, LauncherState.INIT.value)
        graph.add_conditional_edges(
            LauncherState.INIT.value,
            self._init_route,
            {
                "resolve_server": LauncherState.RESOLVE_SERVER.value,
                "fatal": LauncherState.FATAL.value,
            },
        )
        graph.add_conditional_edges(
            LauncherState.RESOLVE_SERVER.value,
            self._resolve_route,
            {
                "check_version": LauncherState.CHECK_VERSION.value,
                "fatal": LauncherState.FATAL.value,
            },
        )
        graph.add_conditional_edges(
            LauncherState.CHECK_VERSION.value,
            self._check_version_route,
            {
                "sync": LauncherState.SYNC.value,
                "native_build": LauncherState.NATIVE_BUILD.value,
                "sync_failed": LauncherState.SYNC_FAILED.value,
                "done": LauncherState.DONE.value,
            },
        )
        graph.add_conditional_edges(
            LauncherState.SYNC.value,
            self._sync_route,
            {
                "native_build": LauncherState.NATIVE_BUILD.value,
                "sync_failed": LauncherState.SYNC_FAILED.value,
            },
        )
        graph.add_edge(LauncherState.NATIVE_BUILD.value, LauncherState.MANAGED_BUILD.value)
        graph.add_conditional_edges(
            LauncherState.MANAGED_BUILD.value,
            self._managed_build_route,
            {
                "launch": LauncherState.LAUNCH.value,
                "build_failed": LauncherState.BUILD_FAILED.value,
            },
        )
        graph.add_conditional_edges(
            LauncherState.LAUNCH.value,
            self._launch_route,
            {
                "done": LauncherState.DONE.value,
                "fatal": LauncherState.FATAL.value,
            },
        )
        for failure_state in (LauncherState.SYNC_FAILED, LauncherState.BUILD_FAILED):
            graph.add_conditional_edges(
                failure_state.value,
                self._recovery_route,
                {
                    "check_version": LauncherState.CHECK_VERSION.value,
                    "fatal": LauncherState.FATAL.value,
                },
            )
        graph.add_edge(LauncherState.DONE.value, END)
        graph.add_edge(LauncherState.FATAL.value, END)
        return graph

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _visit(self, state: LaunchGraphState, current: LauncherState) -> list[str]:
        if current in PROGRESS_STEPS:
            step = PROGRESS_STEPS.index(current) + 1
            logger.info("[%d/%d] %s", step, len(PROGRESS_STEPS), current.description)
        else:
            logger.info("%s", current.description)
        return [*state.get("visited", []), current.value]

    def _descriptor(self, state: LaunchGraphState) -> RemoteDescriptor:
        return RemoteDescriptor.model_validate(state["descriptor"])

    def _failed(self, visited: list[str], exc: Exception) -> dict[str, Any]:
        logger.error("%s", exc)
        return {"visited": visited, "error": str(exc), "last_error": str(exc)}

    # ------------------------------------------------------------------
    # Nodes
    # ------------------------------------------------------------------

    def _init_node(self, state: LaunchGraphState) -> dict[str, Any]:
        visited = self._visit(state, LauncherState.INIT)
        self.layout.ensure_structure()
        logger.info("Install directory: %s", self.layout.root)
        statuses = self.auditor.check_all()
        if not log_dependency_report(statuses):
            try:
                self.installer.install_missing(statuses, dry_run=bool(state.get("dry_run")))
            except (DependencyInstallFailed, OSError) as exc:
                return {"retries": 0, "exhausted": False, **self._failed(visited, exc)}
        return {"visited": visited, "retries": 0, "error": None, "exhausted": False}

    def _init_route(self, state: LaunchGraphState) -> str:
        return "fatal" if state.get("error") else "resolve_server"

    def _resolve_server_node(self, state: LaunchGraphState) -> dict[str, Any]:
        visited = self._visit(state, LauncherState.RESOLVE_SERVER)
        try:
            descriptor = self.resolver.resolve()
        except NoServerAvailable as exc:
            return self._failed(visited, exc)
        return {"visited": visited, "descriptor": descriptor.model_dump(mode="json"), "error": None}

    def _resolve_route(self, state: LaunchGraphState) -> str:
        return "fatal" if state.get("error") else "check_version"

    def _check_version_node(self, state: LaunchGraphState) -> dict[str, Any]:
        visited = self._visit(state, LauncherState.CHECK_VERSION)
        try:
            result = self.reconciler.reconcile(self._descriptor(state), dry_run=bool(state.get("dry_run")))
        except (SyncError, OSError) as exc:
            return self._failed(visited, exc)
        if result.need_sync:
            logger.info("Sync required")
        else:
            logger.info("Engine files up to date")
        return {
            "visited": visited,
            "need_sync": result.need_sync,
            "remote_version": result.remote_version,
            "version": result.local_version,
            "error": None,
        }

    def _check_version_route(self, state: LaunchGraphState) -> str:
        if state.get("error"):
            return "sync_failed"
        if state.get("dry_run"):
            return "done"
        return "sync" if state.get("need_sync") else "native_build"

    def _sync_node(self, state: LaunchGraphState) -> dict[str, Any]:
        visited = self._visit(state, LauncherState.SYNC)
        try:
            version = self.syncer.sync(self._descriptor(state), state.get("remote_version"))
        except (SyncError, OSError) as exc:
            return self._failed(visited, exc)
        return {"visited": visited, "version": version, "need_sync": False, "error": None}

    def _sync_route(self, state: LaunchGraphState) -> str:
        return "sync_failed" if state.get("error") else "native_build"

    def _native_build_node(self, state: LaunchGraphState) -> dict[str, Any]:
        visited = self._visit(state, LauncherState.NATIVE_BUILD)
        status = self.native_stage.build()
        return {"visited": visited, "native_status": status.value}

    def _managed_build_node(self, state: LaunchGraphState) -> dict[str, Any]:
        visited = self._visit(state, LauncherState.MANAGED_BUILD)
        try:
            executable = self.managed_stage.build()
        except BuildError as exc:
            return self._failed(visited, exc)
        return {"visited": visited, "executable": str(executable), "error": None}

    def _managed_build_route(self, state: LaunchGraphState) -> str:
        return "build_failed" if state.get("error") else "launch"

    def _launch_node(self, state: LaunchGraphState) -> dict[str, Any]:
        visited = self._visit(state, LauncherState.LAUNCH)
        native_raw = state.get("native_status")
        native_status = NativeBuildStatus(native_raw) if native_raw else None
        try:
            pid = self.launcher.launch(Path(state["executable"]), native_status)
        except LaunchFailed as exc:
            return self._failed(visited, exc)
        return {"visited": visited, "pid": pid, "error": None}

    def _launch_route(self, state: LaunchGraphState) -> str:
        return "fatal" if state.get("error") else "done"

    def _recover(self, state: LaunchGraphState, failed_state: LauncherState) -> dict[str, Any]:
        visited = self._visit(state, failed_state)
        retries = int(state.get("retries", 0))
        if retries >= self.settings.max_retries:
            logger.error("Retry budget exhausted after %d retries", retries)
            return {"visited": visited, "exhausted": True}

        retries += 1
        logger.warning("Wiping engine state and retrying (%d/%d)", retries, self.settings.max_retries)
        remove_engine_tree(self.layout)
        self.store.delete(MarkerKey.VERSION)
        self.store.delete(MarkerKey.NATIVE_BUILD_STATUS)
        return {"visited": visited, "retries": retries, "error": None, "exhausted": False}

    def _sync_failed_node(self, state: LaunchGraphState) -> dict[str, Any]:
        return self._recover(state, LauncherState.SYNC_FAILED)

    def _build_failed_node(self, state: LaunchGraphState) -> dict[str, Any]:
        return self._recover(state, LauncherState.BUILD_FAILED)

    def _recovery_route(self, state: LaunchGraphState) -> str:
        return "fatal" if state.get("exhausted") else "check_version"

    def _done_node(self, state: LaunchGraphState) -> dict[str, Any]:
        visited = self._visit(state, LauncherState.DONE)
        if state.get("dry_run"):
            action = "would sync" if state.get("need_sync") else "up to date"
            logger.info("Dry-run audit complete (%s); nothing was modified", action)
            return {"visited": visited, "outcome": RunOutcome.AUDITED.value}
        return {"visited": visited, "outcome": RunOutcome.DONE.value}

    def _fatal_node(self, state: LaunchGraphState) -> dict[str, Any]:
        visited = self._visit(state, LauncherState.FATAL)
        logger.error("Launcher failed: %s", state.get("last_error") or "unknown error")
        return {"visited": visited, "outcome": RunOutcome.FATAL.value}

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def run(self, *, dry_run: bool = False) -> dict[str, Any]:
        """Drive the state machine to DONE, AUDITED or FATAL and return the final graph state.

        Raises:
            LauncherBusy: If another launcher holds the installation lock.
        """
        initial_state: LaunchGraphState = {
            "dry_run": dry_run,
            "descriptor": None,
            "need_sync": False,
            "retries": 0,
            "error": None,
            "last_error": None,
            "exhausted": False,
            "outcome": None,
            "visited": [],
        }
        with install_lock(self.layout):
            return self.graph.invoke(
                initial_state,
                config={"recursion_limit": self.settings.recursion_limit},
            )
