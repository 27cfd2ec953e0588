#  Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
#  SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

import configparser
import logging
import os
import tempfile
import threading
import uuid
from collections.abc import Mapping
from dataclasses import replace
from pathlib import Path
from typing import TYPE_CHECKING, Final

from ..exceptions import ProfileError, ProfileNotFoundError
from .profile import CredentialProfile, CredentialProfileOptions

if TYPE_CHECKING:
    from ..config import AuthConfig

logger: Final = logging.getLogger(__name__)

UNIQUE_KEY_PROPERTY: Final = "toolkit_artifact_guid"
REGION_PROPERTY: Final = "region"

_PROFILE_SECTION_PREFIX = "profile "
_SSO_SESSION_SECTION_PREFIX = "sso-session "
# Keys a profile inherits from the sso-session section it references
_SSO_SESSION_KEYS = ("sso_start_url", "sso_region")
# Profiles are allowed to be called "DEFAULT", so configparser must not treat any
# section as its defaults section.
_NO_DEFAULT_SECTION = "\0aws-sdk-auth-no-default\0"


def new_config_parser() -> configparser.ConfigParser:
    """A parser for the shared files: case-preserving keys, no interpolation and no
    ``DEFAULT`` section inheritance."""
    parser = configparser.ConfigParser(
        interpolation=None, default_section=_NO_DEFAULT_SECTION
    )
    parser.optionxform = str  # type: ignore[assignment, method-assign]
    return parser


def read_shared_file(path: Path) -> configparser.ConfigParser | None:
    """Parse a shared credentials or config file.

    :returns: The parser, or ``None`` if the file doesn't exist.
    :raises ProfileError: If the file can't be parsed.
    """
    if not path.is_file():
        return None
    parser = new_config_parser()
    try:
        parser.read(path, encoding="utf-8")
    except (configparser.Error, UnicodeDecodeError) as e:
        raise ProfileError(f"Unable to parse {path}: {e}") from e
    return parser


class _SharedFile:
    def __init__(
        self, parser: configparser.ConfigParser | None, *, config_layout: bool
    ):
        self.profiles: dict[str, dict[str, str]] = {}
        self.sso_sessions: dict[str, dict[str, str]] = {}
        if parser is None:
            return
        for section in parser.sections():
            target = self.profiles
            if not config_layout:
                name = section.strip()
            elif section == "default":
                name = section
            elif section.startswith(_PROFILE_SECTION_PREFIX):
                name = section[len(_PROFILE_SECTION_PREFIX) :].strip()
            elif section.startswith(_SSO_SESSION_SECTION_PREFIX):
                name = section[len(_SSO_SESSION_SECTION_PREFIX) :].strip()
                target = self.sso_sessions
            else:
                # services and other non-profile sections
                continue
            if name:
                target.setdefault(name, {}).update(parser.items(section))


def _profile_from_values(name: str, values: Mapping[str, str]) -> CredentialProfile:
    values = dict(values)
    region = values.pop(REGION_PROPERTY, None) or None
    unique_key = values.pop(UNIQUE_KEY_PROPERTY, None) or None
    options, properties = CredentialProfileOptions.from_file_values(values)
    return CredentialProfile(
        name=name,
        options=options,
        region=region,
        properties=properties,
        unique_key=unique_key,
    )


def _profile_to_values(profile: CredentialProfile) -> dict[str, str]:
    values = profile.options.to_file_values()
    if profile.region:
        values[REGION_PROPERTY] = profile.region
    values.update(profile.properties)
    if profile.unique_key:
        values[UNIQUE_KEY_PROPERTY] = profile.unique_key
    return values


class CredentialProfileStore:
    """Named credential profiles backed by the shared credentials file format.

    Profiles are read from an optional credentials file (``[name]`` sections) and an
    optional read-only config file (``[default]``, ``[profile name]`` and
    ``[sso-session name]`` sections). Values from the credentials file win. A
    profile naming an ``sso_session`` inherits ``sso_start_url`` and ``sso_region``
    from that section unless it sets them itself.

    The files are read lazily on first use, so a malformed file surfaces as a
    :py:class:`~aws_sdk_auth.exceptions.ProfileError` from the lookup that needed
    it. Every mutation rewrites the credentials file. Sections the store didn't
    register are written back with their original values; comments and section
    order are not preserved. A store with neither path lives purely in memory.
    """

    def __init__(
        self,
        *,
        path: str | Path | None = None,
        config_path: str | Path | None = None,
    ):
        self._path = Path(path).expanduser() if path is not None else None
        self._config_path = (
            Path(config_path).expanduser() if config_path is not None else None
        )
        self._lock = threading.RLock()
        self._loaded = False
        self._profiles: dict[str, CredentialProfile] = {}
        # The credentials file as it will be written back
        self._credentials_sections: dict[str, dict[str, str]] = {}
        self._names: frozenset[str] | None = None

    @classmethod
    def from_shared_files(cls, config: AuthConfig) -> CredentialProfileStore:
        """Create a store over the shared credentials and config files."""
        return cls(
            path=config.shared_credentials_file, config_path=config.config_file
        )

    @property
    def path(self) -> Path | None:
        return self._path

    @property
    def config_path(self) -> Path | None:
        return self._config_path

    def reload(self) -> None:
        """Discard in-memory state and read the backing files again.

        :raises ProfileError: If either file can't be parsed.
        """
        config_file = _SharedFile(
            read_shared_file(self._config_path) if self._config_path else None,
            config_layout=True,
        )
        credentials_file = _SharedFile(
            read_shared_file(self._path) if self._path else None,
            config_layout=False,
        )

        merged: dict[str, dict[str, str]] = {}
        for source in (config_file.profiles, credentials_file.profiles):
            for name, values in source.items():
                merged.setdefault(name, {}).update(values)
        for values in merged.values():
            session = config_file.sso_sessions.get(values.get("sso_session", ""))
            if session is not None:
                for key in _SSO_SESSION_KEYS:
                    if not values.get(key) and session.get(key):
                        values[key] = session[key]

        with self._lock:
            self._profiles = {}
            for name, values in merged.items():
                profile = _profile_from_values(name, values)
                profile._store = self
                self._profiles[name] = profile
            self._credentials_sections = credentials_file.profiles
            self._names = None
            self._loaded = True
        logger.debug(
            "Loaded %d profile(s) from %s and %s",
            len(merged),
            self._path,
            self._config_path,
        )

    def _ensure_loaded(self) -> None:
        with self._lock:
            if not self._loaded:
                self.reload()

    def register_profile(self, profile: CredentialProfile) -> None:
        """Add or overwrite a profile, keyed by its name.

        A unique key is assigned to profiles that don't have one yet.
        """
        with self._lock:
            self._ensure_loaded()
            if profile.unique_key is None:
                profile.unique_key = str(uuid.uuid4())
            profile._store = self
            self._profiles[profile.name] = profile
            self._credentials_sections[profile.name] = _profile_to_values(profile)
            self._names = None
            self._write()

    def get_profile(self, name: str) -> CredentialProfile:
        """Look up a profile by name.

        :raises ProfileNotFoundError: If no profile has the given name.
        :raises ProfileError: If the backing files can't be parsed.
        """
        with self._lock:
            self._ensure_loaded()
            try:
                return self._profiles[name]
            except KeyError:
                raise ProfileNotFoundError(name) from None

    def try_get_profile(self, name: str) -> CredentialProfile | None:
        with self._lock:
            self._ensure_loaded()
            return self._profiles.get(name)

    def list_profile_names(self) -> frozenset[str]:
        with self._lock:
            self._ensure_loaded()
            if self._names is None:
                self._names = frozenset(self._profiles)
            return self._names

    def list_profiles(self) -> list[CredentialProfile]:
        with self._lock:
            self._ensure_loaded()
            return [self._profiles[name] for name in sorted(self._profiles)]

    def unregister_profile(self, name: str) -> None:
        """Remove a profile from the store.

        Only the credentials file is rewritten; a profile that is also defined in
        the read-only config file shows up again after :py:meth:`reload`.

        :raises ProfileNotFoundError: If no profile has the given name.
        """
        with self._lock:
            self._ensure_loaded()
            profile = self._profiles.pop(name, None)
            if profile is None:
                raise ProfileNotFoundError(name)
            profile._store = None
            self._credentials_sections.pop(name, None)
            self._names = None
            self._write()

    def rename_profile(self, old_name: str, new_name: str) -> CredentialProfile:
        """Rename a profile, keeping its options and unique key.

        :raises ProfileNotFoundError: If ``old_name`` isn't registered.
        :raises ValueError: If ``new_name`` is already taken.
        """
        with self._lock:
            profile = self.get_profile(old_name)
            if old_name == new_name:
                return profile
            if new_name in self._profiles:
                raise ValueError(f"A profile named {new_name!r} already exists.")
            renamed = replace(profile, name=new_name)
            del self._profiles[old_name]
            self._credentials_sections.pop(old_name, None)
            profile._store = None
            renamed._store = self
            self._profiles[new_name] = renamed
            self._credentials_sections[new_name] = _profile_to_values(renamed)
            self._names = None
            self._write()
            return renamed

    def __contains__(self, name: object) -> bool:
        with self._lock:
            self._ensure_loaded()
            return name in self._profiles

    def __len__(self) -> int:
        with self._lock:
            self._ensure_loaded()
            return len(self._profiles)

    def _write(self) -> None:
        if self._path is None:
            return

        parser = new_config_parser()
        for name in sorted(self._credentials_sections):
            parser[name] = self._credentials_sections[name]

        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, temp_name = tempfile.mkstemp(
            dir=self._path.parent, prefix=f".{self._path.name}.", text=True
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                parser.write(f)
            os.chmod(temp_name, 0o600)
            os.replace(temp_name, self._path)
        except BaseException:
            os.unlink(temp_name)
            raise
        logger.debug(
            "Wrote %d profile(s) to %s", len(self._credentials_sections), self._path
        )
