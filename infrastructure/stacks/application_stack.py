"""
Application Stack
Contains Cognito user and identity pools, the main Lambda function and API Gateway
"""
from pathlib import Path
from typing import Optional

import aws_cdk as cdk
from aws_cdk import (
    Stack,
    aws_lambda as _lambda,
    aws_apigateway as apigateway,
    aws_cognito as cognito,
    aws_ec2 as ec2,
    aws_iam as iam,
    aws_logs as logs,
    Duration,
    RemovalPolicy,
    CfnOutput
)
from constructs import Construct

from .constants import (
    ENV_NAME_PRODUCTION,
    EXPORT_PROXY_ENDPOINT,
    EXPORT_SECRET_ARN,
    LAMBDA_TIMEOUT_SECONDS,
)
from .export_registry import ExportView
from .network_policy import parse_https_allow_list
from .security_group_mesh import GroupHandle

# Lambda code is the runtime source tree (handler + shared modules)
LAMBDA_SOURCE_DIR = Path(__file__).resolve().parents[2] / "src"
LAMBDA_LAYER_DIR = Path(__file__).resolve().parents[1] / "lambda_layer"


class ApplicationStack(Stack):
    """
    Application stack. Depends on the base stack directly for the VPC and the
    lambda group. Datastore values arrive only through export keys; the stack
    dependency on the datastore orders deployment.
    """

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        vpc: ec2.IVpc,
        lambda_group: GroupHandle,
        exports: ExportView,
        allow_https_ips: Optional[str] = "",
        **kwargs
    ) -> None:
        # Resolve every import and the perimeter before anything is created
        exports.require_all(EXPORT_SECRET_ARN, EXPORT_PROXY_ENDPOINT)
        self.https_allow_list = parse_https_allow_list(allow_https_ips)

        super().__init__(scope, construct_id, **kwargs)

        self.secret_arn = exports.import_value(EXPORT_SECRET_ARN)
        self.proxy_endpoint = exports.import_value(EXPORT_PROXY_ENDPOINT)

        # Cognito user pool (email sign-in)
        self.user_pool = cognito.UserPool(
            self,
            "UserPool",
            self_sign_up_enabled=True,
            sign_in_aliases=cognito.SignInAliases(email=True),
            auto_verify=cognito.AutoVerifiedAttrs(email=True),
            standard_attributes=cognito.StandardAttributes(
                email=cognito.StandardAttribute(required=True, mutable=False)
            ),
            password_policy=cognito.PasswordPolicy(
                min_length=8,
                require_lowercase=True,
                require_uppercase=True,
                require_digits=True,
                require_symbols=False
            ),
            account_recovery=cognito.AccountRecovery.EMAIL_ONLY
        )

        self.user_pool_client = cognito.UserPoolClient(
            self,
            "UserPoolClient",
            user_pool=self.user_pool,
            generate_secret=False
        )

        # Identity pool for signed-in users only
        self.identity_pool = cognito.CfnIdentityPool(
            self,
            "IdentityPool",
            allow_unauthenticated_identities=False,
            cognito_identity_providers=[
                cognito.CfnIdentityPool.CognitoIdentityProviderProperty(
                    client_id=self.user_pool_client.user_pool_client_id,
                    provider_name=self.user_pool.user_pool_provider_name
                )
            ]
        )

        self.authenticated_role = iam.Role(
            self,
            "CognitoAuthenticatedRole",
            assumed_by=iam.FederatedPrincipal(
                "cognito-identity.amazonaws.com",
                conditions={
                    "StringEquals": {
                        "cognito-identity.amazonaws.com:aud": self.identity_pool.ref
                    },
                    "ForAnyValue:StringLike": {
                        "cognito-identity.amazonaws.com:amr": "authenticated"
                    }
                },
                assume_role_action="sts:AssumeRoleWithWebIdentity"
            )
        )

        cognito.CfnIdentityPoolRoleAttachment(
            self,
            "IdentityPoolRoleAttachment",
            identity_pool_id=self.identity_pool.ref,
            roles={"authenticated": self.authenticated_role.role_arn}
        )

        # Runtime dependencies (SQLAlchemy, PyMySQL) installed into a layer
        self.dependencies_layer = _lambda.LayerVersion(
            self,
            "RuntimeDependenciesLayer",
            code=_lambda.Code.from_asset(
                str(LAMBDA_LAYER_DIR),
                bundling=cdk.BundlingOptions(
                    image=_lambda.Runtime.PYTHON_3_12.bundling_image,
                    command=[
                        "bash", "-c",
                        "pip install -r requirements.txt -t /asset-output/python"
                    ]
                )
            ),
            compatible_runtimes=[_lambda.Runtime.PYTHON_3_12],
            description="Database client libraries for the main function"
        )

        # Main Lambda (private subnets, reaches the datastore through the proxy)
        self.main_function = _lambda.Function(
            self,
            "MainFunction",
            runtime=_lambda.Runtime.PYTHON_3_12,
            architecture=_lambda.Architecture.X86_64,
            handler="lambda_functions.main_function.handler.lambda_handler",
            code=_lambda.Code.from_asset(
                str(LAMBDA_SOURCE_DIR),
                exclude=["**/__pycache__", "*.pyc"]
            ),
            timeout=Duration.seconds(LAMBDA_TIMEOUT_SECONDS),
            layers=[self.dependencies_layer],
            tracing=_lambda.Tracing.ACTIVE,
            vpc=vpc,
            vpc_subnets=ec2.SubnetSelection(
                subnet_type=ec2.SubnetType.PRIVATE_WITH_EGRESS
            ),
            security_groups=[lambda_group.security_group],
            environment={
                "RDS_PROXY_ENDPOINT": self.proxy_endpoint,
                "ENV_NAME": ENV_NAME_PRODUCTION,
                "SECRET_MANAGER_ARN": self.secret_arn
            },
            description="Main API function - connects to Aurora through RDS Proxy"
        )

        # Read access to the exact secret only
        self.main_function.add_to_role_policy(
            iam.PolicyStatement(
                effect=iam.Effect.ALLOW,
                actions=["secretsmanager:GetSecretValue"],
                resources=[self.secret_arn]
            )
        )

        api_log_group = logs.LogGroup(
            self,
            "ApiGatewayLogGroup",
            retention=logs.RetentionDays.ONE_MONTH,
            removal_policy=RemovalPolicy.DESTROY
        )

        # API Gateway
        self.api = apigateway.RestApi(
            self,
            "ApiGatewayApi",
            rest_api_name="MainAPI",
            cloud_watch_role=True,
            deploy_options=apigateway.StageOptions(
                stage_name="api",
                access_log_destination=apigateway.LogGroupLogDestination(api_log_group),
                access_log_format=apigateway.AccessLogFormat.clf()
            ),
            policy=self._https_perimeter_policy()
        )

        authorizer = apigateway.CognitoUserPoolsAuthorizer(
            self,
            "CognitoAuthorizer",
            cognito_user_pools=[self.user_pool]
        )

        self.api.root.add_resource("hello").add_method(
            "GET",
            apigateway.LambdaIntegration(self.main_function),
            authorizer=authorizer,
            authorization_type=apigateway.AuthorizationType.COGNITO
        )

        # CloudFormation Outputs
        CfnOutput(
            self,
            "UserPoolId",
            value=self.user_pool.user_pool_id
        )

        CfnOutput(
            self,
            "UserPoolClientId",
            value=self.user_pool_client.user_pool_client_id
        )

        CfnOutput(
            self,
            "IdentityPoolId",
            value=self.identity_pool.ref
        )

        CfnOutput(
            self,
            "ApiUrl",
            value=self.api.url,
            description="API Gateway URL"
        )

    def _https_perimeter_policy(self) -> Optional[iam.PolicyDocument]:
        """Resource policy limiting invocation to the HTTPS allow-list; None allows all"""
        if not self.https_allow_list:
            return None

        return iam.PolicyDocument(
            statements=[
                iam.PolicyStatement(
                    effect=iam.Effect.ALLOW,
                    principals=[iam.AnyPrincipal()],
                    actions=["execute-api:Invoke"],
                    resources=["execute-api:/*/*/*"],
                    conditions={
                        "IpAddress": {"aws:SourceIp": list(self.https_allow_list)}
                    }
                )
            ]
        )
