from __future__ import annotations

from collections.abc import Mapping, Sequence

import jsii
from aws_cdk import Resource, SecretValue
from aws_cdk import aws_cognito as cognito
from constructs import Construct

from src.common.errors import ValidationError

APPLE_PROVIDER = "SignInWithApple"


@jsii.implements(cognito.IUserPoolIdentityProvider)
class UserPoolIdentityProviderApple(Resource):
    """Sign in with Apple as a federated identity provider of a user pool.

    ``attribute_mapping`` maps user pool attributes to Apple attributes,
    e.g. ``{"email": "email"}``.
    """

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        *,
        user_pool: cognito.IUserPool,
        client_id: str,
        team_id: str,
        key_id: str,
        private_key: str | None = None,
        private_key_value: SecretValue | None = None,
        scopes: Sequence[str] | None = None,
        attribute_mapping: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(scope, construct_id)

        if bool(private_key) == (private_key_value is not None):
            raise ValidationError('Exactly one of "private_key" or "private_key_value" must be configured.', self)

        resource = cognito.CfnUserPoolIdentityProvider(
            self,
            "Resource",
            user_pool_id=user_pool.user_pool_id,
            # The name must equal the type for Apple
            provider_name=APPLE_PROVIDER,
            provider_type=APPLE_PROVIDER,
            provider_details={
                "client_id": client_id,
                "team_id": team_id,
                "key_id": key_id,
                "private_key": private_key_value.unsafe_unwrap() if private_key_value is not None else private_key,
                "authorize_scopes": " ".join(scopes if scopes is not None else ["name"]),
            },
            attribute_mapping=dict(attribute_mapping) if attribute_mapping else None,
        )

        self._provider_name = self._get_resource_name_attribute(resource.ref)
        user_pool.register_identity_provider(self)

    @property
    def provider_name(self) -> str:
        return self._provider_name
