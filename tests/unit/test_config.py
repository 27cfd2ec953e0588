#  Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
#  SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from datetime import timedelta
from pathlib import Path
from typing import Any

import pytest
from aws_sdk_auth.config import (
    SOURCE_CONFIG_FILE,
    SOURCE_CONSTRUCTOR,
    SOURCE_DEFAULT,
    SOURCE_ENVIRONMENT,
    SOURCE_IN_CODE_UPDATE,
    AuthConfig,
    read_profile_section,
)


def loader(values: Mapping[str, str]) -> Callable[[], Awaitable[Mapping[str, str]]]:
    async def load() -> Mapping[str, str]:
        return values

    return load


def loaders(
    env: Mapping[str, str] | None = None, config_file: Mapping[str, str] | None = None
) -> dict[str, Any]:
    return {
        "environment_loader": loader(env or {}),
        "config_file_loader": loader(config_file or {}),
    }


class TestAuthConfig:
    @pytest.mark.asyncio
    async def test_defaults(self):
        config = AuthConfig()
        await config.resolve(**loaders())

        assert config.region is None
        assert config.profile == "default"
        assert config.config_file == "~/.aws/config"
        assert config.shared_credentials_file == "~/.aws/credentials"
        assert config.credentials_safety_window == timedelta(minutes=5)
        assert config.attempt_timeout == 5.0
        assert config.max_role_chain_depth == 5
        assert config.ec2_metadata_disabled is False
        assert config.ec2_metadata_endpoint is None
        assert config.ec2_metadata_endpoint_mode == "IPv4"
        for field_name in AuthConfig.CONFIG_FIELDS:
            assert config.get_config_value_object(field_name).source == SOURCE_DEFAULT

    @pytest.mark.asyncio
    async def test_constructor_wins(self):
        config = AuthConfig(region="us-east-1", profile="explicit")
        await config.resolve(
            **loaders(
                env={"AWS_REGION": "us-west-2", "AWS_PROFILE": "env"},
                config_file={"region": "eu-west-1"},
            )
        )

        assert config.region == "us-east-1"
        assert config.profile == "explicit"
        assert config.get_config_value_object("region").source == SOURCE_CONSTRUCTOR

    @pytest.mark.asyncio
    async def test_explicit_none_is_kept(self):
        config = AuthConfig(region=None)
        await config.resolve(**loaders(env={"AWS_REGION": "us-west-2"}))

        assert config.region is None
        assert config.get_config_value_object("region").source == SOURCE_CONSTRUCTOR

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "field_name,env_var,value",
        [
            ("profile", "AWS_PROFILE", "dev"),
            ("config_file", "AWS_CONFIG_FILE", "/tmp/config"),
            ("shared_credentials_file", "AWS_SHARED_CREDENTIALS_FILE", "/tmp/creds"),
            ("ec2_metadata_endpoint", "AWS_EC2_METADATA_SERVICE_ENDPOINT", "http://x"),
            (
                "ec2_metadata_endpoint_mode",
                "AWS_EC2_METADATA_SERVICE_ENDPOINT_MODE",
                "IPv6",
            ),
        ],
    )
    async def test_environment_precedence(
        self, field_name: str, env_var: str, value: str
    ):
        config = AuthConfig()
        await config.resolve(**loaders(env={env_var: value}))

        assert getattr(config, field_name) == value
        assert config.get_config_value_object(field_name).source == SOURCE_ENVIRONMENT

    @pytest.mark.asyncio
    async def test_environment_beats_config_file(self):
        config = AuthConfig()
        await config.resolve(
            **loaders(
                env={"AWS_EC2_METADATA_SERVICE_ENDPOINT_MODE": "IPv6"},
                config_file={"ec2_metadata_service_endpoint_mode": "IPv4"},
            )
        )

        assert config.ec2_metadata_endpoint_mode == "IPv6"

    @pytest.mark.asyncio
    async def test_config_file_values(self):
        config = AuthConfig()
        await config.resolve(
            **loaders(
                config_file={
                    "region": "eu-central-1",
                    "credentials_safety_window_seconds": "90",
                    "credentials_attempt_timeout": "2.5",
                    "max_role_chain_depth": "3",
                }
            )
        )

        assert config.region == "eu-central-1"
        assert config.credentials_safety_window == timedelta(seconds=90)
        assert config.attempt_timeout == 2.5
        assert config.max_role_chain_depth == 3
        assert (
            config.get_config_value_object("max_role_chain_depth").source
            == SOURCE_CONFIG_FILE
        )

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "env, expected",
        [
            (
                {"AWS_REGION": "us-west-2", "AWS_DEFAULT_REGION": "us-east-2"},
                "us-west-2",
            ),
            ({"AWS_DEFAULT_REGION": "us-east-2"}, "us-east-2"),
            ({"AWS_REGION": "", "AWS_DEFAULT_REGION": "us-east-2"}, "us-east-2"),
        ],
    )
    async def test_region_environment_order(
        self, env: dict[str, str], expected: str
    ):
        config = AuthConfig()
        await config.resolve(**loaders(env=env, config_file={"region": "eu-west-1"}))

        assert config.region == expected
        assert config.get_config_value_object("region").source == SOURCE_ENVIRONMENT

    @pytest.mark.asyncio
    @pytest.mark.parametrize("value, expected", [("true", True), ("False", False)])
    async def test_bool_conversion(self, value: str, expected: bool):
        config = AuthConfig()
        await config.resolve(**loaders(env={"AWS_EC2_METADATA_DISABLED": value}))

        assert config.ec2_metadata_disabled is expected

    @pytest.mark.asyncio
    async def test_invalid_bool_from_environment(self):
        config = AuthConfig()
        with pytest.raises(ValueError, match="ec2_metadata_disabled"):
            await config.resolve(**loaders(env={"AWS_EC2_METADATA_DISABLED": "yes"}))

    @pytest.mark.asyncio
    async def test_invalid_number_from_config_file(self):
        config = AuthConfig()
        with pytest.raises(ValueError, match="max_role_chain_depth"):
            await config.resolve(
                **loaders(config_file={"max_role_chain_depth": "three"})
            )

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "kwargs",
        [
            {"attempt_timeout": 0},
            {"max_role_chain_depth": -1},
            {"credentials_safety_window": timedelta(seconds=-1)},
            {"ec2_metadata_endpoint_mode": "IPv5"},
        ],
    )
    async def test_validators(self, kwargs: dict[str, Any]):
        config = AuthConfig(**kwargs)
        with pytest.raises(ValueError):
            await config.resolve(**loaders())

    @pytest.mark.asyncio
    async def test_constructor_values_are_not_converted(self):
        config = AuthConfig(max_role_chain_depth="3")  # type: ignore[arg-type]
        with pytest.raises(TypeError, match="max_role_chain_depth must be int"):
            await config.resolve(**loaders())

    @pytest.mark.asyncio
    async def test_int_accepted_for_float(self):
        config = AuthConfig(attempt_timeout=3)
        await config.resolve(**loaders())

        assert config.attempt_timeout == 3.0
        assert isinstance(config.attempt_timeout, float)

    @pytest.mark.asyncio
    async def test_resolve_twice(self):
        config = AuthConfig()
        await config.resolve(**loaders())
        with pytest.raises(RuntimeError, match="already been resolved"):
            await config.resolve(**loaders())

    def test_access_before_resolve(self):
        config = AuthConfig(region="us-east-1")
        with pytest.raises(RuntimeError, match="must be resolved"):
            _ = config.region

    @pytest.mark.asyncio
    async def test_in_code_update(self):
        config = AuthConfig()
        await config.resolve(**loaders())
        config.region = "ap-south-1"

        assert config.region == "ap-south-1"
        assert (
            config.get_config_value_object("region").source == SOURCE_IN_CODE_UPDATE
        )

    @pytest.mark.asyncio
    async def test_default_config_file_loader_reads_selected_profile(
        self, tmp_path: Path
    ):
        config_path = tmp_path / "config"
        config_path.write_text(
            "[default]\nregion = us-east-1\n\n"
            "[profile dev]\nregion = eu-west-1\nmax_role_chain_depth = 2\n",
            encoding="utf-8",
        )
        config = AuthConfig()
        await config.resolve(
            environment_loader=loader(
                {"AWS_PROFILE": "dev", "AWS_CONFIG_FILE": str(config_path)}
            )
        )

        assert config.profile == "dev"
        assert config.region == "eu-west-1"
        assert config.max_role_chain_depth == 2


class TestReadProfileSection:
    def test_missing_file(self, tmp_path: Path):
        assert read_profile_section(tmp_path / "missing", "default") == {}

    def test_default_section(self, tmp_path: Path):
        path = tmp_path / "config"
        path.write_text("[default]\nregion = us-east-1\n", encoding="utf-8")

        assert read_profile_section(path, "default") == {"region": "us-east-1"}

    def test_default_profile_prefixed_section(self, tmp_path: Path):
        path = tmp_path / "config"
        path.write_text("[profile default]\nregion = us-east-2\n", encoding="utf-8")

        assert read_profile_section(path, "default") == {"region": "us-east-2"}

    def test_named_profile(self, tmp_path: Path):
        path = tmp_path / "config"
        path.write_text(
            "[dev]\nregion = wrong\n\n[profile dev]\nRegion_Case = Kept\n",
            encoding="utf-8",
        )

        assert read_profile_section(path, "dev") == {"Region_Case": "Kept"}

    def test_missing_section(self, tmp_path: Path):
        path = tmp_path / "config"
        path.write_text("[profile other]\nregion = us-east-1\n", encoding="utf-8")

        assert read_profile_section(path, "dev") == {}

    def test_default_section_values_not_inherited(self, tmp_path: Path):
        path = tmp_path / "config"
        path.write_text(
            "[DEFAULT]\nregion = leaked\n\n[profile dev]\noutput = json\n",
            encoding="utf-8",
        )

        assert read_profile_section(path, "dev") == {"output": "json"}
