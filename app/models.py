"""Domain enums and typed payloads shared across services.

Enum values match the text workers send over the hub, so parsing a
worker callback is a plain ``BuildStatus(text)``.
"""

from __future__ import annotations

import enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class BuildStatus(str, enum.Enum):
    QUEUED = "Queued"
    CLONING = "Cloning"
    BUILDING = "Building"
    PACKAGING = "Packaging"
    UPLOADING = "Uploading"
    SUCCESS = "Success"
    FAILED = "Failed"
    CANCELLED = "Cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES: frozenset[BuildStatus] = frozenset({
    BuildStatus.SUCCESS,
    BuildStatus.FAILED,
    BuildStatus.CANCELLED,
})


class ScriptingBackend(str, enum.Enum):
    MONO = "Mono"
    IL2CPP = "IL2CPP"


class LogLevel(str, enum.Enum):
    INFO = "Info"
    WARNING = "Warning"
    ERROR = "Error"


class BuildStage(str, enum.Enum):
    CLONE = "Clone"
    BUILD = "Build"
    PACKAGE = "Package"
    UPLOAD = "Upload"


class BuildPhase(str, enum.Enum):
    """When a pipeline process runs relative to the engine build."""

    PRE_BUILD = "PreBuild"
    POST_BUILD = "PostBuild"


class ProcessType(str, enum.Enum):
    DEFINE_SYMBOLS = "DefineSymbols"
    PLAYER_SETTINGS = "PlayerSettings"
    SCENE_LIST = "SceneList"
    CUSTOM_CODE = "CustomCode"
    SHELL_COMMAND = "ShellCommand"
    FILE_COPY = "FileCopy"


class NotificationEvent(str, enum.Enum):
    BUILD_STARTED = "BuildStarted"
    BUILD_COMPLETED = "BuildCompleted"
    BUILD_FAILED = "BuildFailed"
    BUILD_CANCELLED = "BuildCancelled"
    UPLOAD_COMPLETED = "UploadCompleted"
    UPLOAD_FAILED = "UploadFailed"


class NotificationChannel(str, enum.Enum):
    DISCORD = "Discord"
    SLACK = "Slack"
    EMAIL = "Email"
    WEBHOOK = "Webhook"


# ---------------------------------------------------------------------------
# Pipeline process configurations (one model per ProcessType)
# ---------------------------------------------------------------------------


class _ProcessConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class DefineSymbolsConfig(_ProcessConfig):
    add: list[str] = Field(default_factory=list)
    remove: list[str] = Field(default_factory=list)


class PlayerSettingsConfig(_ProcessConfig):
    company_name: str | None = Field(default=None, alias="companyName")
    product_name: str | None = Field(default=None, alias="productName")
    version: str | None = None
    bundle_identifier: str | None = Field(default=None, alias="bundleIdentifier")
    default_screen_width: int | None = Field(default=None, alias="defaultScreenWidth")
    default_screen_height: int | None = Field(default=None, alias="defaultScreenHeight")
    fullscreen_by_default: bool | None = Field(default=None, alias="fullscreenByDefault")
    run_in_background: bool | None = Field(default=None, alias="runInBackground")


class SceneListConfig(_ProcessConfig):
    scenes: list[str] = Field(default_factory=list)
    mode: Literal["include", "exclude"] = "include"


class CustomCodeConfig(_ProcessConfig):
    code: str = ""
    usings: list[str] = Field(default_factory=lambda: ["UnityEngine", "UnityEditor"])


class ShellCommandConfig(_ProcessConfig):
    command: str = ""
    working_directory: str | None = Field(default=None, alias="workingDirectory")
    timeout_seconds: int = Field(default=300, ge=1, alias="timeoutSeconds")


class FileCopyConfig(_ProcessConfig):
    source: str = ""
    destination: str = ""
    pattern: str = "*.*"
    recursive: bool = True
    overwrite: bool = True


PROCESS_CONFIG_MODELS: dict[ProcessType, type[_ProcessConfig]] = {
    ProcessType.DEFINE_SYMBOLS: DefineSymbolsConfig,
    ProcessType.PLAYER_SETTINGS: PlayerSettingsConfig,
    ProcessType.SCENE_LIST: SceneListConfig,
    ProcessType.CUSTOM_CODE: CustomCodeConfig,
    ProcessType.SHELL_COMMAND: ShellCommandConfig,
    ProcessType.FILE_COPY: FileCopyConfig,
}
