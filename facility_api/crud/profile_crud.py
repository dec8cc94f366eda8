import asyncio
import os
import re
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from facility_api.exceptions import ProfileError, ProfileNotFoundError
from facility_api.logging_config import get_child_logger, tracer

logger = get_child_logger("crud.profile")

DEFAULT_PROFILE_DIR = "/usr/share/buendia/profiles"
DEFAULT_VALIDATE_CMD = "buendia-profile-validate"
DEFAULT_APPLY_CMD = "buendia-profile-apply"
STATE_FILE_NAME = ".current_profile"


@dataclass
class CommandResult:
    ok: bool
    output: str


async def run_profile_command(command: str, path: Path) -> CommandResult:
    """
    Run `command <path>` and capture stdout and stderr together.

    A command that cannot be started counts as a failure.
    """
    with tracer.start_as_current_span("run_profile_command") as span:
        span.set_attribute("command", command)
        try:
            proc = await asyncio.create_subprocess_exec(
                command,
                str(path.resolve()),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
            stdout, _ = await proc.communicate()
        except OSError as e:
            span.set_attribute("error", True)
            logger.error(
                f"Exception while executing: {command} {path}",
                extra={"command": command},
                exc_info=True,
            )
            return CommandResult(ok=False, output=str(e))

        span.set_attribute("command.returncode", proc.returncode)
        output = stdout.decode(errors="replace").rstrip("\n")
        return CommandResult(ok=proc.returncode == 0, output=output)


def sanitize_name(filename: str) -> str:
    """Reduce an uploaded filename to a safe basename."""
    basename = filename.split("/")[-1]
    return re.sub(" +", " ", re.sub(r"[^A-Za-z0-9._-]", " ", basename))


class ProfileStore:
    """
    Profile files on disk plus the name of the currently applied profile.

    The current profile is kept in a small state file so every caller reads
    and writes it through this object.
    """

    def __init__(
        self,
        profile_dir: Path,
        state_file: Optional[Path] = None,
        validate_cmd: str = DEFAULT_VALIDATE_CMD,
        apply_cmd: str = DEFAULT_APPLY_CMD,
    ):
        self.profile_dir = Path(profile_dir)
        self.state_file = Path(state_file) if state_file else self.profile_dir / STATE_FILE_NAME
        self.validate_cmd = validate_cmd
        self.apply_cmd = apply_cmd

    @classmethod
    def from_env(cls) -> "ProfileStore":
        profile_dir = Path(os.environ.get("PROFILE_DIR", DEFAULT_PROFILE_DIR))
        state_file = os.environ.get("PROFILE_STATE_FILE")
        return cls(
            profile_dir=profile_dir,
            state_file=Path(state_file) if state_file else None,
            validate_cmd=os.environ.get("PROFILE_VALIDATE_CMD", DEFAULT_VALIDATE_CMD),
            apply_cmd=os.environ.get("PROFILE_APPLY_CMD", DEFAULT_APPLY_CMD),
        )

    def current_profile(self) -> Optional[str]:
        try:
            name = self.state_file.read_text().strip()
        except FileNotFoundError:
            return None
        return name or None

    def set_current_profile(self, name: str) -> None:
        self.state_file.parent.mkdir(parents=True, exist_ok=True)
        self.state_file.write_text(name)

    def list_profiles(self) -> List[str]:
        if not self.profile_dir.is_dir():
            return []
        return sorted(
            entry.name
            for entry in self.profile_dir.iterdir()
            if entry.is_file() and entry.resolve() != self.state_file.resolve()
        )

    def profile_path(self, name: str) -> Path:
        """
        Raises:
            ProfileNotFoundError: If no profile file has this name
        """
        path = self.profile_dir / sanitize_name(name)
        if not path.is_file() or path.resolve() == self.state_file.resolve():
            raise ProfileNotFoundError(f"No profile named {name}")
        return path

    async def add_profile(self, filename: str, content: bytes) -> str:
        """
        Validate an uploaded profile and store it under its sanitized name.

        Raises:
            ProfileError: If validation fails or the name is already taken
        """
        temp_path = await asyncio.to_thread(_write_temp_file, content)
        try:
            result = await run_profile_command(self.validate_cmd, temp_path)
            if not result.ok:
                logger.warning("Profile failed validation", extra={"profile_name": filename})
                raise ProfileError(f"Profile {filename} is not valid", output=result.output)

            name = sanitize_name(filename)
            target = self.profile_dir / name
            if not await asyncio.to_thread(self._move_into_place, temp_path, target):
                raise ProfileError(f"A profile named {name} already exists.")
            logger.info("Profile added", extra={"profile_name": name})
            return name
        finally:
            await asyncio.to_thread(temp_path.unlink, missing_ok=True)

    async def apply_profile(self, name: str) -> CommandResult:
        """
        Raises:
            ProfileNotFoundError: If the profile does not exist
            ProfileError: If the apply command fails
        """
        path = await asyncio.to_thread(self.profile_path, name)
        result = await run_profile_command(self.apply_cmd, path)
        if not result.ok:
            logger.warning("Profile failed to apply", extra={"profile_name": path.name})
            raise ProfileError(f"Profile {path.name} could not be applied", output=result.output)

        await asyncio.to_thread(self.set_current_profile, path.name)
        logger.info("Profile applied", extra={"profile_name": path.name})
        return result

    async def delete_profile(self, name: str) -> None:
        """
        Raises:
            ProfileNotFoundError: If the profile does not exist
            ProfileError: If the profile is the one currently applied
        """
        path = await asyncio.to_thread(self.profile_path, name)
        if path.name == await asyncio.to_thread(self.current_profile):
            raise ProfileError("Cannot delete the currently active profile.")
        await asyncio.to_thread(path.unlink)
        logger.info("Profile deleted", extra={"profile_name": path.name})

    def _move_into_place(self, source: Path, target: Path) -> bool:
        if target.exists():
            return False
        self.profile_dir.mkdir(parents=True, exist_ok=True)
        shutil.move(str(source), str(target))
        return True


def _write_temp_file(content: bytes) -> Path:
    fd, temp_name = tempfile.mkstemp(prefix="profile")
    with os.fdopen(fd, "wb") as f:
        f.write(content)
    return Path(temp_name)
