#  Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
#  SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Awaitable, Callable, Mapping
from datetime import timedelta
from pathlib import Path
from typing import Any, ClassVar, Final, Literal

from .profiles.store import new_config_parser
from .utils import strict_parse_bool

logger: Final = logging.getLogger(__name__)

SOURCE_CONSTRUCTOR = "constructor"
SOURCE_ENVIRONMENT = "environment"
SOURCE_CONFIG_FILE = "config_file"
SOURCE_DEFAULT = "default"
SOURCE_IN_CODE_UPDATE = "in_code_update"

SourceType = Literal[
    "constructor",
    "environment",
    "config_file",
    "default",
    "in_code_update",
]

DEFAULT_PROFILE_NAME = "default"
DEFAULT_CONFIG_FILE = "~/.aws/config"
DEFAULT_SHARED_CREDENTIALS_FILE = "~/.aws/credentials"

EndpointMode = Literal["IPv4", "IPv6"]


class ConfigValue:
    """Configuration value with metadata about its source"""

    def __init__(self, value: Any, source: SourceType):
        self.value = value
        self.source = source

    def __repr__(self) -> str:
        return f"ConfigValue(value={self.value!r}, source={self.source!r})"


def _seconds_to_timedelta(value: str) -> timedelta:
    return timedelta(seconds=float(value))


def read_profile_section(path: str | Path, profile: str) -> dict[str, str]:
    """Read the section for ``profile`` from a shared config file.

    The default profile lives in ``[default]`` and every other profile in
    ``[profile <name>]``. A missing file or section yields an empty mapping.
    """
    config_path = Path(path).expanduser()
    if not config_path.is_file():
        return {}

    parser = new_config_parser()
    parser.read(config_path, encoding="utf-8")

    if profile == DEFAULT_PROFILE_NAME:
        section_names = [DEFAULT_PROFILE_NAME, f"profile {DEFAULT_PROFILE_NAME}"]
    else:
        section_names = [f"profile {profile}"]
    for section_name in section_names:
        if parser.has_section(section_name):
            return dict(parser.items(section_name))
    return {}


class AuthConfig:
    """
    Credential and signing configuration with precedence-based resolution.

    Each field resolves from, in order: the constructor, the environment, the
    profile's section of the shared config file, and finally its default. The
    constructor uses sentinel values (...) so that "not provided" can be told apart
    from "explicitly set to None".

    HOW TO ADD A NEW CONFIG FIELD:

    1. Add the parameter to the __init__ method with sentinel default:
       my_field: str | None = ...,  # type: ignore[assignment]

    2. Add to CONFIG_FIELDS dictionary:
        "my_field": {
            "default": None,  # required
            "type": str | None,  # required - the expected type after conversion
            "env_var": "MY_ENV_VAR",  # optional environment variable name
            "config_key": "my_config_key",  # optional config file key
            "converter": int,  # optional, applied to environment and file values
            "validator": "_validate_string"  # optional validation method
        }

       Fields that need more than one lookup also get an
       ``async def _resolve_<name>(...)`` method.

    3. Add property getter and setter.
    """

    CONFIG_FIELDS: ClassVar[dict[str, dict[str, Any]]] = {
        "region": {
            "default": None,
            "type": str | None,
            "config_key": "region",
        },
        "profile": {
            "env_var": "AWS_PROFILE",
            "default": DEFAULT_PROFILE_NAME,
            "type": str,
        },
        "config_file": {
            "env_var": "AWS_CONFIG_FILE",
            "default": DEFAULT_CONFIG_FILE,
            "type": str,
        },
        "shared_credentials_file": {
            "env_var": "AWS_SHARED_CREDENTIALS_FILE",
            "default": DEFAULT_SHARED_CREDENTIALS_FILE,
            "type": str,
        },
        "credentials_safety_window": {
            "config_key": "credentials_safety_window_seconds",
            "default": timedelta(minutes=5),
            "type": timedelta,
            "converter": _seconds_to_timedelta,
            "validator": "_validate_non_negative",
        },
        "attempt_timeout": {
            "config_key": "credentials_attempt_timeout",
            "default": 5.0,
            "type": float,
            "converter": float,
            "validator": "_validate_positive",
        },
        "max_role_chain_depth": {
            "config_key": "max_role_chain_depth",
            "default": 5,
            "type": int,
            "converter": int,
            "validator": "_validate_positive",
        },
        "ec2_metadata_disabled": {
            "env_var": "AWS_EC2_METADATA_DISABLED",
            "default": False,
            "type": bool,
            "converter": strict_parse_bool,
        },
        "ec2_metadata_endpoint": {
            "env_var": "AWS_EC2_METADATA_SERVICE_ENDPOINT",
            "config_key": "ec2_metadata_service_endpoint",
            "default": None,
            "type": str | None,
        },
        "ec2_metadata_endpoint_mode": {
            "env_var": "AWS_EC2_METADATA_SERVICE_ENDPOINT_MODE",
            "config_key": "ec2_metadata_service_endpoint_mode",
            "default": "IPv4",
            "type": str,
            "validator": "_validate_endpoint_mode",
        },
    }

    def __init__(
        self,
        *,
        region: str | None = ...,  # type: ignore[assignment]
        profile: str = ...,  # type: ignore[assignment]
        config_file: str = ...,  # type: ignore[assignment]
        shared_credentials_file: str = ...,  # type: ignore[assignment]
        credentials_safety_window: timedelta = ...,  # type: ignore[assignment]
        attempt_timeout: float = ...,  # type: ignore[assignment]
        max_role_chain_depth: int = ...,  # type: ignore[assignment]
        ec2_metadata_disabled: bool = ...,  # type: ignore[assignment]
        ec2_metadata_endpoint: str | None = ...,  # type: ignore[assignment]
        ec2_metadata_endpoint_mode: EndpointMode = ...,  # type: ignore[assignment]
    ):
        self._constructor_values = {
            k: v for k, v in locals().items() if k != "self" and v is not ...
        }
        self._resolved = False

    async def resolve(
        self,
        *,
        environment_loader: Callable[[], Awaitable[Mapping[str, str]]] | None = None,
        config_file_loader: Callable[[], Awaitable[Mapping[str, str]]] | None = None,
    ) -> None:
        """Resolve configuration from all sources

        Args:
            environment_loader: Custom environment loader function
            config_file_loader: Custom config file loader function; the default
                reads the selected profile's section of the shared config file
        """
        if self._resolved:
            raise RuntimeError(
                "Config has already been resolved. Multiple calls to resolve() are "
                "not allowed."
            )

        env_values = await (environment_loader or self._load_environment_values)()
        if config_file_loader is None:
            config_file_values = await self._load_config_file_values(env_values)
        else:
            config_file_values = await config_file_loader()

        for field_name, field_info in self.CONFIG_FIELDS.items():
            resolved_value = await self._resolve_field(
                field_name,
                self._constructor_values,
                env_values,
                config_file_values,
                field_info["default"],
                field_info.get("validator"),
            )
            setattr(self, f"_{field_name}", resolved_value)

        self._resolved = True

    async def _load_environment_values(self) -> Mapping[str, str]:
        return os.environ

    async def _load_config_file_values(
        self, env_values: Mapping[str, str]
    ) -> dict[str, str]:
        profile = self._constructor_values.get("profile") or env_values.get(
            "AWS_PROFILE", DEFAULT_PROFILE_NAME
        )
        config_path = self._constructor_values.get("config_file") or env_values.get(
            "AWS_CONFIG_FILE", DEFAULT_CONFIG_FILE
        )
        logger.debug("Loading config for profile %r from %s", profile, config_path)
        return await asyncio.to_thread(read_profile_section, config_path, profile)

    async def _resolve_field(
        self,
        field_name: str,
        constructor_values: dict[str, Any],
        env_values: Mapping[str, Any],
        config_file_values: Mapping[str, Any],
        default_value: Any,
        validator: str | None,
    ) -> ConfigValue:
        custom_resolver = getattr(self, f"_resolve_{field_name}", None)
        if custom_resolver:
            config_value = await custom_resolver(
                constructor_values, env_values, config_file_values, default_value
            )
        else:
            config_value = self._resolve_standard_field(
                field_name,
                constructor_values,
                env_values,
                config_file_values,
                default_value,
            )

        field_config = self.CONFIG_FIELDS.get(field_name, {})
        converter = field_config.get("converter")
        value = config_value.value
        from_text = config_value.source in (SOURCE_ENVIRONMENT, SOURCE_CONFIG_FILE)
        if converter and from_text:
            try:
                value = converter(value)
            except ValueError as e:
                raise ValueError(
                    f"Invalid value {value!r} for {field_name} from "
                    f"{config_value.source}: {e}"
                ) from e

        expected_type = field_config["type"]
        if not isinstance(value, expected_type):
            # ints are accepted where floats are expected
            if not (expected_type is float and isinstance(value, int)):
                actual_name = type(value).__name__
                expected_name = getattr(expected_type, "__name__", str(expected_type))
                raise TypeError(
                    f"{field_name} must be {expected_name}, got {actual_name}"
                )
            value = float(value)

        if validator:
            getattr(self, validator)(value, field_name)

        return ConfigValue(value, config_value.source)

    def _resolve_standard_field(
        self,
        field_name: str,
        constructor_values: dict[str, Any],
        env_values: Mapping[str, Any],
        config_file_values: Mapping[str, Any],
        default_value: Any,
    ) -> ConfigValue:
        field_config = self.CONFIG_FIELDS.get(field_name, {})
        env_var = field_config.get("env_var")
        config_key = field_config.get("config_key")

        if field_name in constructor_values:
            return ConfigValue(constructor_values[field_name], SOURCE_CONSTRUCTOR)
        if env_var and env_var in env_values:
            return ConfigValue(env_values[env_var], SOURCE_ENVIRONMENT)
        if config_key and config_key in config_file_values:
            return ConfigValue(config_file_values[config_key], SOURCE_CONFIG_FILE)
        return ConfigValue(default_value, SOURCE_DEFAULT)

    async def _resolve_region(
        self,
        constructor_values: dict[str, Any],
        env_values: Mapping[str, Any],
        config_file_values: Mapping[str, Any],
        default_value: Any,
    ) -> ConfigValue:
        if "region" in constructor_values:
            return ConfigValue(constructor_values["region"], SOURCE_CONSTRUCTOR)
        for env_var in ("AWS_REGION", "AWS_DEFAULT_REGION"):
            if env_values.get(env_var):
                return ConfigValue(env_values[env_var], SOURCE_ENVIRONMENT)
        if config_file_values.get("region"):
            return ConfigValue(config_file_values["region"], SOURCE_CONFIG_FILE)
        return ConfigValue(default_value, SOURCE_DEFAULT)

    def _validate_positive(self, value: Any, field_name: str) -> None:
        if value <= 0:
            raise ValueError(f"{field_name} must be positive, got {value}")

    def _validate_non_negative(self, value: Any, field_name: str) -> None:
        if value < timedelta(0):
            raise ValueError(f"{field_name} must not be negative, got {value}")

    def _validate_endpoint_mode(self, value: Any, field_name: str) -> None:
        if value not in ("IPv4", "IPv6"):
            raise ValueError(f"{field_name} must be 'IPv4' or 'IPv6', got {value!r}")

    def get_config_value_object(self, field_name: str) -> ConfigValue:
        """Get the raw ConfigValue object for a field"""
        if not self._resolved:
            raise RuntimeError("Config must be resolved before accessing values")
        return getattr(self, f"_{field_name}")

    def _get(self, field_name: str) -> Any:
        return self.get_config_value_object(field_name).value

    @property
    def region(self) -> str | None:
        return self._get("region")

    @region.setter
    def region(self, value: str | None) -> None:
        self._region = ConfigValue(value, SOURCE_IN_CODE_UPDATE)

    @property
    def profile(self) -> str:
        return self._get("profile")

    @profile.setter
    def profile(self, value: str) -> None:
        self._profile = ConfigValue(value, SOURCE_IN_CODE_UPDATE)

    @property
    def config_file(self) -> str:
        return self._get("config_file")

    @config_file.setter
    def config_file(self, value: str) -> None:
        self._config_file = ConfigValue(value, SOURCE_IN_CODE_UPDATE)

    @property
    def shared_credentials_file(self) -> str:
        return self._get("shared_credentials_file")

    @shared_credentials_file.setter
    def shared_credentials_file(self, value: str) -> None:
        self._shared_credentials_file = ConfigValue(value, SOURCE_IN_CODE_UPDATE)

    @property
    def credentials_safety_window(self) -> timedelta:
        return self._get("credentials_safety_window")

    @credentials_safety_window.setter
    def credentials_safety_window(self, value: timedelta) -> None:
        self._credentials_safety_window = ConfigValue(value, SOURCE_IN_CODE_UPDATE)

    @property
    def attempt_timeout(self) -> float:
        return self._get("attempt_timeout")

    @attempt_timeout.setter
    def attempt_timeout(self, value: float) -> None:
        self._attempt_timeout = ConfigValue(value, SOURCE_IN_CODE_UPDATE)

    @property
    def max_role_chain_depth(self) -> int:
        return self._get("max_role_chain_depth")

    @max_role_chain_depth.setter
    def max_role_chain_depth(self, value: int) -> None:
        self._max_role_chain_depth = ConfigValue(value, SOURCE_IN_CODE_UPDATE)

    @property
    def ec2_metadata_disabled(self) -> bool:
        return self._get("ec2_metadata_disabled")

    @ec2_metadata_disabled.setter
    def ec2_metadata_disabled(self, value: bool) -> None:
        self._ec2_metadata_disabled = ConfigValue(value, SOURCE_IN_CODE_UPDATE)

    @property
    def ec2_metadata_endpoint(self) -> str | None:
        return self._get("ec2_metadata_endpoint")

    @ec2_metadata_endpoint.setter
    def ec2_metadata_endpoint(self, value: str | None) -> None:
        self._ec2_metadata_endpoint = ConfigValue(value, SOURCE_IN_CODE_UPDATE)

    @property
    def ec2_metadata_endpoint_mode(self) -> EndpointMode:
        return self._get("ec2_metadata_endpoint_mode")

    @ec2_metadata_endpoint_mode.setter
    def ec2_metadata_endpoint_mode(self, value: EndpointMode) -> None:
        self._ec2_metadata_endpoint_mode = ConfigValue(value, SOURCE_IN_CODE_UPDATE)
