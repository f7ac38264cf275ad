from importlib.metadata import PackageNotFoundError, version

from .errors import (
    BuildError,
    BuildFailed,
    CorruptDownload,
    DependencyInstallFailed,
    DownloadFailed,
    ExecutableNotFound,
    ExtractionFailed,
    IncompleteInstall,
    LaunchFailed,
    LauncherBusy,
    LauncherError,
    NoServerAvailable,
    RemoteUnavailable,
    SyncError,
)
from .installer import ToolchainInstaller
from .launcher import Launcher
from .managed_build import ManagedBuildStage
from .models import (
    BuildStatus,
    CommandResult,
    DependencyStatus,
    LauncherState,
    MarkerKey,
    NativeBuildStatus,
    ReconcileResult,
    RemoteDescriptor,
    RunOutcome,
    VersionInfo,
)
from .native_build import NativeBuildStage
from .orchestrator import LaunchOrchestrator
from .reconciler import VersionReconciler
from .remote_config import RemoteConfigResolver
from .settings import LauncherSettings
from .state_store import InMemoryStatusStore, InstallLayout, StatusStore
from .sync import PackageSyncer


def get_version() -> str:
    try:
        return version("engine-launcher")
    except PackageNotFoundError:
        return "0.0.0"


__all__ = [
    "BuildError",
    "BuildFailed",
    "BuildStatus",
    "CommandResult",
    "CorruptDownload",
    "DependencyInstallFailed",
    "DependencyStatus",
    "DownloadFailed",
    "ExecutableNotFound",
    "ExtractionFailed",
    "InMemoryStatusStore",
    "IncompleteInstall",
    "InstallLayout",
    "LaunchFailed",
    "LaunchOrchestrator",
    "Launcher",
    "LauncherBusy",
    "LauncherError",
    "LauncherSettings",
    "LauncherState",
    "ManagedBuildStage",
    "MarkerKey",
    "NativeBuildStage",
    "NativeBuildStatus",
    "NoServerAvailable",
    "PackageSyncer",
    "ReconcileResult",
    "RemoteConfigResolver",
    "RemoteDescriptor",
    "RemoteUnavailable",
    "RunOutcome",
    "StatusStore",
    "SyncError",
    "ToolchainInstaller",
    "VersionInfo",
    "VersionReconciler",
    "get_version",
]
