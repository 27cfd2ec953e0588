#  Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
#  SPDX-License-Identifier: Apache-2.0
from .assume_role import (
    AssumeRoleCredentialsResolver,
    AssumeRoleParameters,
    RoleAssumer,
    STSRoleAssumer,
)
from .chain import CredentialsResolverChain, create_default_chain
from .container import ContainerCredentialsConfig, ContainerCredentialsResolver
from .environment import EnvironmentCredentialsResolver
from .imds import IMDSConfig, IMDSCredentialsResolver
from .process import ProcessCredentialsConfig, ProcessCredentialsResolver
from .profile import ProfileCredentialsResolver
from .sso import SSOCredentialsResolver, SSOParameters
from .static import StaticCredentialsResolver

__all__ = (
    "AssumeRoleCredentialsResolver",
    "AssumeRoleParameters",
    "ContainerCredentialsConfig",
    "ContainerCredentialsResolver",
    "CredentialsResolverChain",
    "EnvironmentCredentialsResolver",
    "IMDSConfig",
    "IMDSCredentialsResolver",
    "ProcessCredentialsConfig",
    "ProcessCredentialsResolver",
    "ProfileCredentialsResolver",
    "RoleAssumer",
    "SSOCredentialsResolver",
    "SSOParameters",
    "STSRoleAssumer",
    "StaticCredentialsResolver",
    "create_default_chain",
)
