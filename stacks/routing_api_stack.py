"""Routing API Stack - private API Gateway, WAF throttling and alarms."""

import logging
from typing import Mapping, Optional

from aws_cdk import (
    Stack,
    Duration,
    CfnOutput,
    aws_apigateway as apigateway,
    aws_cloudwatch as cloudwatch,
    aws_cloudwatch_actions as cloudwatch_actions,
    aws_ec2 as ec2,
    aws_iam as iam,
    aws_logs as logs,
    aws_sns as sns,
    aws_wafv2 as wafv2,
)
from constructs import Construct

from routing_config.chains import ChainId, monitored_chains
from routing_config.environments import RoutingConfig, require_environment_config
from routing_config.parameters import DeploymentParameters, Stage

from .routing_caching_stack import RoutingCachingStack
from .routing_database_stack import RoutingDatabaseStack
from .routing_lambda_stack import RoutingLambdaStack

logger = logging.getLogger(__name__)

DEFAULT_THROTTLE_PER_FIVE_MINS = 120
INTERNAL_API_KEY_HEADER = "x-api-key"
THROTTLED_RESPONSE_BODY_KEY = "RoutingAPIThrottledResponseBody"
METRIC_NAMESPACE = "Uniswap"


def throttling_limit(parameters: DeploymentParameters) -> int:
    """Requests per 5 minutes allowed from one forwarded IP."""
    limit = parameters.throttling_limit
    return DEFAULT_THROTTLE_PER_FIVE_MINS if limit is None else limit


class RoutingAPIStack(Stack):
    """Top-level stack for the routing API.

    Resolves the environment configuration once and shares it with the
    caching, database and Lambda nested stacks.
    """

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        *,
        env_name: str,
        parameters: DeploymentParameters,
        environ: Optional[Mapping[str, str]] = None,
        **kwargs,
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)

        self.parameters = parameters
        self.config: RoutingConfig = require_environment_config(self, env_name, environ)
        environment = self.config.environment

        # Network: imported VPC, private subnets and security groups
        vpc = ec2.Vpc.from_vpc_attributes(
            self,
            "ImportVPC",
            vpc_id=self.config.vpc_id,
            availability_zones=list(self.config.vpc_availability_zones),
            private_subnet_ids=list(self.config.vpc_private_subnets),
        )
        subnet_filters = [ec2.SubnetFilter.by_ids(list(self.config.vpc_private_subnets))]
        default_sg = ec2.SecurityGroup.from_security_group_id(
            self, "DefaultSG", self.config.default_sg_id, mutable=False
        )
        api_gateway_sg = ec2.SecurityGroup.from_security_group_id(
            self, "ApiGwVpceSG", self.config.api_gateway_sg_id, mutable=False
        )
        self.vpc_endpoint = vpc.add_interface_endpoint(
            "routing-api-vpc-endpoint",
            service=ec2.InterfaceVpcEndpointAwsService.APIGATEWAY,
            subnets=ec2.SubnetSelection(subnet_filters=subnet_filters),
            security_groups=[api_gateway_sg],
            # Ingress on the endpoint security group is managed outside this stack
            open=False,
        )

        # Nested stacks
        caching = RoutingCachingStack(
            self,
            "RoutingCachingStack",
            vpc=vpc,
            subnet_filters=subnet_filters,
            security_group=default_sg,
            lambda_bundle_path=parameters.lambda_bundle_path,
            caching_schedule_mins=environment.caching_lambda_schedule_mins,
            stage=parameters.stage,
            chatbot_sns_arn=parameters.chatbot_sns_arn,
            route53_arn=parameters.route53_arn,
            pinata_key=parameters.pinata_key,
            pinata_secret=parameters.pinata_secret,
            hosted_zone=parameters.hosted_zone,
        )

        database = RoutingDatabaseStack(self, "RoutingDatabaseStack")

        compute = RoutingLambdaStack(
            self,
            "RoutingLambdaStack",
            pool_cache_bucket=caching.pool_cache_bucket,
            pool_cache_bucket2=caching.pool_cache_bucket2,
            pool_cache_key=caching.pool_cache_key,
            token_list_cache_bucket=caching.token_list_cache_bucket,
            json_rpc_providers=environment.json_rpc_providers,
            cached_routes_dynamo_db=database.cached_routes_dynamo_db,
            cached_v3_pools_dynamo_db=database.cached_v3_pools_dynamo_db,
            vpc=vpc,
            subnet_filters=subnet_filters,
            security_group=default_sg,
            lambda_bundle_path=parameters.lambda_bundle_path,
            provisioned_concurrency=parameters.provisioned_concurrency,
            eth_gas_station_info_url=parameters.eth_gas_station_info_url,
            chatbot_sns_arn=parameters.chatbot_sns_arn,
            tenderly_user=parameters.tenderly_user or environment.tenderly_user,
            tenderly_project=parameters.tenderly_project or environment.tenderly_project,
            tenderly_access_key=(
                parameters.tenderly_access_key or environment.tenderly_access_key
            ),
            throttle_per_five_mins=environment.throttle_per_five_mins,
        )
        self.caching_stack = caching
        self.database_stack = database
        self.lambda_stack = compute

        self.api = self._create_api()
        self._create_api_key()
        self.web_acl = self._create_web_acl()

        lambda_integration = apigateway.LambdaIntegration(compute.routing_lambda_alias)
        quote = self.api.root.add_resource(
            "quote",
            default_cors_preflight_options=apigateway.CorsOptions(
                allow_origins=apigateway.Cors.ALL_ORIGINS,
                allow_methods=apigateway.Cors.ALL_METHODS,
            ),
            default_method_options=apigateway.MethodOptions(api_key_required=True),
        )
        quote.add_method("GET", lambda_integration, api_key_required=True)

        self.alarms = self._create_alarms()
        self.percent_4xx_by_chain_alarms = self._create_percent_4xx_by_chain_alarms()
        self.success_rate_by_chain_alarms = self._create_success_rate_by_chain_alarms()

        if parameters.chatbot_sns_arn:
            self._route_alarms_to_topic(parameters.chatbot_sns_arn)
        else:
            logger.info("No chatbot SNS topic supplied; alarms have no actions")

        self.url = CfnOutput(
            self,
            "Url",
            value=self.api.url,
            description="Invocation URL of the routing API",
        )

    @property
    def all_alarms(self) -> list[cloudwatch.Alarm]:
        return [
            *self.alarms,
            *self.percent_4xx_by_chain_alarms,
            *self.success_rate_by_chain_alarms,
        ]

    def _create_api(self) -> apigateway.RestApi:
        """Private REST API reachable only through the declared VPC endpoint."""
        access_log_group = logs.LogGroup(self, "RoutingAPIGAccessLogs")

        api_resource_policy = iam.PolicyDocument(
            statements=[
                iam.PolicyStatement(
                    actions=["execute-api:Invoke"],
                    principals=[iam.AnyPrincipal()],
                    resources=["execute-api:/*/*/*"],
                ),
                iam.PolicyStatement(
                    effect=iam.Effect.DENY,
                    principals=[iam.AnyPrincipal()],
                    actions=["execute-api:Invoke"],
                    resources=["execute-api:/*/*/*"],
                    conditions={
                        "StringNotEquals": {
                            "aws:SourceVpce": self.vpc_endpoint.vpc_endpoint_id,
                        },
                    },
                ),
            ]
        )

        return apigateway.RestApi(
            self,
            "routing-api",
            rest_api_name="Routing API",
            deploy_options=apigateway.StageOptions(
                tracing_enabled=True,
                logging_level=apigateway.MethodLoggingLevel.ERROR,
                access_log_destination=apigateway.LogGroupLogDestination(
                    access_log_group
                ),
                access_log_format=apigateway.AccessLogFormat.json_with_standard_fields(
                    ip=False,
                    caller=False,
                    user=False,
                    request_time=True,
                    http_method=True,
                    resource_path=True,
                    status=True,
                    protocol=True,
                    response_length=True,
                ),
            ),
            endpoint_configuration=apigateway.EndpointConfiguration(
                types=[apigateway.EndpointType.PRIVATE],
                vpc_endpoints=[self.vpc_endpoint],
            ),
            default_cors_preflight_options=apigateway.CorsOptions(
                allow_origins=apigateway.Cors.ALL_ORIGINS,
                allow_methods=apigateway.Cors.ALL_METHODS,
            ),
            policy=api_resource_policy,
        )

    def _create_api_key(self) -> None:
        api_key = self.api.add_api_key(
            "RoutingApiKey",
            api_key_name="routing-api-key",
            value=self.config.environment.api_key,
            description="Routing API key",
        )

        usage_plan = self.api.add_usage_plan(
            "RoutingApiPlan",
            name="RoutingApiPlan",
            api_stages=[
                apigateway.UsagePlanPerApiStage(
                    api=self.api, stage=self.api.deployment_stage
                )
            ],
            throttle=apigateway.ThrottleSettings(burst_limit=500, rate_limit=1000),
            quota=apigateway.QuotaSettings(
                limit=10_000_000, period=apigateway.Period.MONTH
            ),
        )
        usage_plan.add_api_key(api_key)

    def _create_web_acl(self) -> wafv2.CfnWebACL:
        """Per-IP rate limiting in front of the API stage."""
        limit = throttling_limit(self.parameters)
        logger.info("Throttling each forwarded IP to %d requests per 5 minutes", limit)

        rate_based_statement = wafv2.CfnWebACL.RateBasedStatementProperty(
            limit=limit,
            # Clients reach the API through a proxy; aggregate on the
            # forwarded client IP, not the proxy's.
            aggregate_key_type="FORWARDED_IP",
            forwarded_ip_config=wafv2.CfnWebACL.ForwardedIPConfigurationProperty(
                header_name="X-Forwarded-For",
                fallback_behavior="MATCH",
            ),
            scope_down_statement=self._internal_api_key_exemption(),
        )

        web_acl = wafv2.CfnWebACL(
            self,
            "RoutingAPIIPThrottlingACL",
            default_action=wafv2.CfnWebACL.DefaultActionProperty(
                allow=wafv2.CfnWebACL.AllowActionProperty()
            ),
            scope="REGIONAL",
            visibility_config=wafv2.CfnWebACL.VisibilityConfigProperty(
                sampled_requests_enabled=True,
                cloud_watch_metrics_enabled=True,
                metric_name="RoutingAPIIPBasedThrottling",
            ),
            custom_response_bodies={
                THROTTLED_RESPONSE_BODY_KEY: wafv2.CfnWebACL.CustomResponseBodyProperty(
                    content_type="APPLICATION_JSON",
                    content='{"errorCode": "TOO_MANY_REQUESTS"}',
                ),
            },
            name="RoutingAPIIPThrottling",
            rules=[
                wafv2.CfnWebACL.RuleProperty(
                    name="ip",
                    priority=0,
                    statement=wafv2.CfnWebACL.StatementProperty(
                        rate_based_statement=rate_based_statement
                    ),
                    action=wafv2.CfnWebACL.RuleActionProperty(
                        block=wafv2.CfnWebACL.BlockActionProperty(
                            custom_response=wafv2.CfnWebACL.CustomResponseProperty(
                                response_code=429,
                                custom_response_body_key=THROTTLED_RESPONSE_BODY_KEY,
                            )
                        )
                    ),
                    visibility_config=wafv2.CfnWebACL.VisibilityConfigProperty(
                        sampled_requests_enabled=True,
                        cloud_watch_metrics_enabled=True,
                        metric_name="RoutingAPIIPBasedThrottlingRule",
                    ),
                )
            ],
        )

        api_arn = (
            f"arn:aws:apigateway:{self.region}::/restapis/{self.api.rest_api_id}"
            f"/stages/{self.api.deployment_stage.stage_name}"
        )
        wafv2.CfnWebACLAssociation(
            self,
            "RoutingAPIIPThrottlingAssociation",
            resource_arn=api_arn,
            web_acl_arn=web_acl.attr_arn,
        )
        return web_acl

    def _internal_api_key_exemption(
        self,
    ) -> Optional[wafv2.CfnWebACL.StatementProperty]:
        """Statement matching every request not carrying the internal API key."""
        internal_api_key = self.parameters.internal_api_key
        if not internal_api_key:
            return None

        return wafv2.CfnWebACL.StatementProperty(
            not_statement=wafv2.CfnWebACL.NotStatementProperty(
                statement=wafv2.CfnWebACL.StatementProperty(
                    byte_match_statement=wafv2.CfnWebACL.ByteMatchStatementProperty(
                        field_to_match=wafv2.CfnWebACL.FieldToMatchProperty(
                            single_header={"Name": INTERNAL_API_KEY_HEADER}
                        ),
                        positional_constraint="EXACTLY",
                        search_string=internal_api_key,
                        text_transformations=[
                            wafv2.CfnWebACL.TextTransformationProperty(
                                priority=0, type="NONE"
                            )
                        ],
                    )
                )
            )
        )

    def _create_alarms(self) -> list[cloudwatch.Alarm]:
        """Gateway alarms at SEV2 and SEV3, plus the simulation failure rate.

        All alarms trigger when the metric is greater than or equal to the
        threshold. For the error metrics, the 'avg' statistic is the error rate.
        """
        # Beta has far less traffic and is more prone to transient errors
        error_evaluation_periods = 5 if self.parameters.stage == Stage.BETA else 3

        def alarm(
            name: str,
            metric: cloudwatch.IMetric,
            threshold: float,
            evaluation_periods: int = 3,
            **kwargs,
        ) -> cloudwatch.Alarm:
            return cloudwatch.Alarm(
                self,
                name,
                alarm_name=name,
                metric=metric,
                threshold=threshold,
                evaluation_periods=evaluation_periods,
                **kwargs,
            )

        five_minutes = Duration.minutes(5)
        alarms = [
            alarm(
                "RoutingAPI-SEV2-5XX",
                self.api.metric_server_error(period=five_minutes, statistic="avg"),
                threshold=0.05,
                evaluation_periods=error_evaluation_periods,
            ),
            alarm(
                "RoutingAPI-SEV2-4XX",
                self.api.metric_client_error(period=five_minutes, statistic="avg"),
                threshold=0.95,
            ),
            alarm(
                "RoutingAPI-SEV2-Latency",
                self.api.metric_latency(period=five_minutes, statistic="p90"),
                threshold=8500,
            ),
            alarm(
                "RoutingAPI-SEV3-5XX",
                self.api.metric_server_error(period=five_minutes, statistic="avg"),
                threshold=0.03,
                evaluation_periods=error_evaluation_periods,
            ),
            alarm(
                "RoutingAPI-SEV3-4XX",
                self.api.metric_client_error(period=five_minutes, statistic="avg"),
                threshold=0.8,
            ),
            alarm(
                "RoutingAPI-SEV3-Latency",
                self.api.metric_latency(period=five_minutes, statistic="p90"),
                threshold=5500,
            ),
        ]

        # Simulations fail for valid reasons too (slippage on fee-on-transfer
        # tokens), so this only alerts at SEV3.
        simulation_metric = cloudwatch.MathExpression(
            expression="100*(simulationFailed/simulationRequested)",
            period=Duration.minutes(30),
            using_metrics={
                "simulationRequested": self._service_metric("Simulation Requested"),
                "simulationFailed": self._service_metric("SimulationFailed"),
            },
        )
        alarms.append(
            alarm(
                "RoutingAPI-SEV3-Simulation",
                simulation_metric,
                threshold=75,
                treat_missing_data=cloudwatch.TreatMissingData.NOT_BREACHING,
            )
        )
        return alarms

    def _service_metric(self, metric_name: str) -> cloudwatch.Metric:
        return cloudwatch.Metric(
            namespace=METRIC_NAMESPACE,
            metric_name=metric_name,
            dimensions_map={"Service": "RoutingAPI"},
            unit=cloudwatch.Unit.COUNT,
            statistic="sum",
        )

    def _quote_metric(self, name: str, chain: ChainId) -> cloudwatch.Metric:
        return self.api.metric(
            f"{name}_CHAINID: {int(chain)}",
            period=Duration.minutes(5),
            statistic="sum",
        )

    def _create_percent_4xx_by_chain_alarms(self) -> list[cloudwatch.Alarm]:
        """High 4XX rate per monitored chain."""
        chains = monitored_chains()
        logger.info("Per-chain alarms for chains %s", [int(c) for c in chains])

        alarms = []
        for chain in chains:
            alarm_name = f"RoutingAPI-SEV3-4XXAlarm-ChainId: {int(chain)}"
            metric = cloudwatch.MathExpression(
                expression="100*(response400/invocations)",
                using_metrics={
                    "invocations": self._quote_metric("GET_QUOTE_REQUESTED", chain),
                    "response400": self._quote_metric("GET_QUOTE_400", chain),
                },
            )
            alarms.append(
                cloudwatch.Alarm(
                    self,
                    alarm_name,
                    alarm_name=alarm_name,
                    metric=metric,
                    threshold=80,
                    evaluation_periods=2,
                )
            )
        return alarms

    def _create_success_rate_by_chain_alarms(self) -> list[cloudwatch.Alarm]:
        """Low success rate (excluding client errors) per monitored chain."""
        alarms = []
        for chain in monitored_chains():
            alarm_name = f"RoutingAPI-SEV2-SuccessRate-Alarm-ChainId: {int(chain)}"
            metric = cloudwatch.MathExpression(
                expression="100*(response200/(invocations-response400))",
                using_metrics={
                    "invocations": self._quote_metric("GET_QUOTE_REQUESTED", chain),
                    "response400": self._quote_metric("GET_QUOTE_400", chain),
                    "response200": self._quote_metric("GET_QUOTE_200", chain),
                },
            )
            alarms.append(
                cloudwatch.Alarm(
                    self,
                    alarm_name,
                    alarm_name=alarm_name,
                    metric=metric,
                    comparison_operator=(
                        cloudwatch.ComparisonOperator.LESS_THAN_OR_EQUAL_TO_THRESHOLD
                    ),
                    threshold=95,
                    evaluation_periods=2,
                )
            )
        return alarms

    def _route_alarms_to_topic(self, topic_arn: str) -> None:
        chatbot_topic = sns.Topic.from_topic_arn(self, "ChatbotTopic", topic_arn)
        alarms = self.all_alarms
        for alarm in alarms:
            alarm.add_alarm_action(cloudwatch_actions.SnsAction(chatbot_topic))
        logger.info("Routing %d alarms to %s", len(alarms), topic_arn)
