"""Fallback builders for platforms without a prebuilt binary."""

import shutil
import subprocess
from abc import ABC, abstractmethod
from pathlib import Path

from hostdb.config import RunContext, log_success
from hostdb.database_config import BuilderKind, DatabaseConfig
from hostdb.exceptions import ConfigurationError, ToolMissing
from hostdb.models import Platform
from hostdb.shell import CommandExecutor, LocalExecutor, require_commands

GO_TARGETS = {
    Platform.LINUX_X64: ("linux", "amd64"),
    Platform.LINUX_ARM64: ("linux", "arm64"),
    Platform.DARWIN_X64: ("darwin", "amd64"),
    Platform.DARWIN_ARM64: ("darwin", "arm64"),
    Platform.WIN32_X64: ("windows", "amd64"),
}


class Builder(ABC):
    """Produces an artifact for a build-required platform.

    ``build`` reports failure as False and never raises, so one failed
    build does not stop the remaining platforms.

    Attributes:
        produces_archive: True when the build writes the final archive itself
    """

    produces_archive = False

    def __init__(
        self,
        context: RunContext,
        config: DatabaseConfig,
        executor: CommandExecutor | None = None,
    ) -> None:
        self.logger = context.child("builder")
        self.config = config
        self.executor = executor or LocalExecutor()

    def check_tools(self) -> None:
        """Raise ToolMissing if a required external command is absent."""

    @abstractmethod
    def build(self, version: str, platform: Platform, output_dir: Path) -> bool:
        """Build the artifact for one platform.

        Args:
            version: Validated version string
            platform: Target platform
            output_dir: Run output directory

        Returns:
            True when the artifact exists at ``artifact_path``
        """

    @abstractmethod
    def artifact_path(self, version: str, platform: Platform, output_dir: Path) -> Path:
        """Where a successful build leaves its artifact."""

    def _run(self, args: list[str], **kwargs) -> bool:
        try:
            result = self.executor.execute(args, timeout=self.config.build_timeout, **kwargs)
        except subprocess.TimeoutExpired:
            self.logger.error(
                f"{args[0]} timed out after {self.config.build_timeout}s"
            )
            return False
        except OSError as e:
            self.logger.error(f"Failed to start {args[0]}: {e}")
            return False

        if result.returncode < 0:
            self.logger.error(f"{args[0]} was killed by signal {-result.returncode}")
            return False
        if not result.success:
            self.logger.error(f"{args[0]} failed with exit code: {result.returncode}")
            return False
        return True


class ScriptBuilder(Builder):
    """Runs ``builds/<db>/build-local.sh``, which writes the final archive itself."""

    produces_archive = True

    def __init__(
        self,
        context: RunContext,
        config: DatabaseConfig,
        script_path: Path,
        executor: CommandExecutor | None = None,
    ) -> None:
        super().__init__(context, config, executor)
        self.script_path = script_path

    def build(self, version: str, platform: Platform, output_dir: Path) -> bool:
        if not self.config.can_build(platform):
            self.logger.error(f"{platform} cannot be built from source")
            return False

        if not self.script_path.is_file():
            self.logger.error(f"Build script not found: {self.script_path}")
            return False

        self.logger.info(f"Building {platform} from source (this may take a long time)...")
        self.logger.info(f"Running: {self.script_path}")

        args = [
            str(self.script_path.resolve()),
            "--version",
            version,
            "--platform",
            platform.value,
            "--output",
            str(output_dir.resolve()),
            "--cleanup",
        ]
        # CI=true stops the script from prompting before cleanup
        if not self._run(args, env={"CI": "true"}):
            return False

        log_success(self.logger, f"Source build completed for {platform}")
        return True

    def artifact_path(self, version: str, platform: Platform, output_dir: Path) -> Path:
        return output_dir / f"{self.config.name}-{version}-{platform}.{platform.archive_extension}"


class GoCrossCompiler(Builder):
    """Cross-compiles a Go database from a shallow clone of its release tag."""

    def check_tools(self) -> None:
        require_commands("go", "git")

    def build(self, version: str, platform: Platform, output_dir: Path) -> bool:
        if not self.config.can_build(platform):
            self.logger.error(f"{platform} cannot be cross-compiled")
            return False

        try:
            self.check_tools()
        except ToolMissing as e:
            self.logger.error(str(e))
            return False

        repo_dir = output_dir / "sources" / f"{self.config.name}-{version}"
        if not repo_dir.exists():
            self.logger.info(f"Cloning {self.config.source_repo} at v{version}...")
            clone = [
                "git",
                "clone",
                "--depth",
                "1",
                "--branch",
                f"v{version}",
                self.config.source_repo,
                str(repo_dir),
            ]
            if not self._run(clone):
                shutil.rmtree(repo_dir, ignore_errors=True)
                return False

        binary = self.artifact_path(version, platform, output_dir)
        binary.parent.mkdir(parents=True, exist_ok=True)
        goos, goarch = GO_TARGETS[platform]

        self.logger.info(
            f"Cross-compiling for {platform} (GOOS={goos}, GOARCH={goarch})..."
        )
        built = self._run(
            ["go", "build", "-o", str(binary.resolve()), self.config.build_package],
            cwd=repo_dir,
            env={"GOOS": goos, "GOARCH": goarch, "CGO_ENABLED": "0"},
        )
        if not built or not binary.is_file():
            return False

        log_success(self.logger, f"Built {self.config.display_name} for {platform}")
        return True

    def artifact_path(self, version: str, platform: Platform, output_dir: Path) -> Path:
        binary_name = self.config.binary_name or self.config.name
        return (
            output_dir
            / "builds"
            / f"{self.config.name}-{version}-{platform}"
            / platform.executable_name(binary_name)
        )


def create_builder(
    context: RunContext,
    config: DatabaseConfig,
    script_path: Path,
    executor: CommandExecutor | None = None,
) -> Builder | None:
    """Builder configured for a database, or None when it has none."""
    if config.builder is BuilderKind.SCRIPT:
        return ScriptBuilder(context, config, script_path, executor)
    if config.builder is BuilderKind.GO_CROSS_COMPILE:
        if not config.source_repo:
            raise ConfigurationError(
                f"{config.name}: go-cross-compile builder needs source_repo"
            )
        return GoCrossCompiler(context, config, executor)
    return None
