"""Caching Stack - pool and token list caches refreshed on a schedule."""

from pathlib import Path
from typing import Optional, Sequence

from aws_cdk import (
    NestedStack,
    Duration,
    RemovalPolicy,
    Token,
    aws_cloudwatch as cloudwatch,
    aws_cloudwatch_actions as cloudwatch_actions,
    aws_ec2 as ec2,
    aws_events as events,
    aws_events_targets as targets,
    aws_iam as iam,
    aws_lambda as lambda_,
    aws_s3 as s3,
    aws_sns as sns,
)
from constructs import Construct

from routing_config.chains import SUPPORTED_CHAINS, ChainId
from routing_config.errors import ConfigurationError
from routing_config.parameters import Stage, parse_int

POOL_CACHE_KEY = "poolCache.json"
POOL_CACHE_HANDLER = "index.poolCacheHandler"
IPFS_POOL_CACHE_HANDLER = "index.ipfsPoolCacheHandler"
DEFAULT_CACHING_SCHEDULE_MINS = 15


def caching_schedule(minutes: Optional[str]) -> events.Schedule:
    """Rate schedule for the caching Lambdas.

    ``minutes`` may be a literal or an SSM token resolved at deploy time.
    A token is only checked by EventBridge on deploy and must be at least 2,
    since ``rate(1 minutes)`` is rejected.

    Raises:
        ConfigurationError: If a literal ``minutes`` is not a positive integer.
    """
    if minutes is None:
        return events.Schedule.rate(Duration.minutes(DEFAULT_CACHING_SCHEDULE_MINS))
    if Token.is_unresolved(minutes):
        return events.Schedule.expression(f"rate({minutes} minutes)")
    interval = parse_int("CACHING_LAMBDA_SCHEDULE_MINS", minutes)
    if interval < 1:
        raise ConfigurationError(
            f"CACHING_LAMBDA_SCHEDULE_MINS must be at least 1, got {interval}"
        )
    return events.Schedule.rate(Duration.minutes(interval))


class RoutingCachingStack(NestedStack):
    """Nested stack owning the S3 caches and the Lambdas that fill them."""

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        *,
        vpc: ec2.IVpc,
        subnet_filters: Sequence[ec2.SubnetFilter],
        security_group: ec2.ISecurityGroup,
        lambda_bundle_path: Path,
        caching_schedule_mins: Optional[str] = None,
        stage: Stage = Stage.BETA,
        chatbot_sns_arn: Optional[str] = None,
        route53_arn: Optional[str] = None,
        pinata_key: Optional[str] = None,
        pinata_secret: Optional[str] = None,
        hosted_zone: Optional[str] = None,
        cached_chains: Sequence[ChainId] = SUPPORTED_CHAINS,
        **kwargs,
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)

        self.alarms: list[cloudwatch.Alarm] = []
        self.pool_cache_key = POOL_CACHE_KEY

        # S3 Buckets: pool caches (current and next format) and token lists
        self.pool_cache_bucket = self._cache_bucket("PoolCacheBucket")
        self.pool_cache_bucket2 = self._cache_bucket("PoolCacheBucket2")
        self.token_list_cache_bucket = self._cache_bucket("TokenListCacheBucket")

        # Lambda: refresh pool caches for each chain
        self.pool_caching_fn = lambda_.Function(
            self,
            "PoolCacheLambda",
            runtime=lambda_.Runtime.NODEJS_18_X,
            handler=POOL_CACHE_HANDLER,
            code=lambda_.Code.from_asset(str(lambda_bundle_path)),
            memory_size=1024,
            timeout=Duration.minutes(15),
            vpc=vpc,
            vpc_subnets=ec2.SubnetSelection(subnet_filters=list(subnet_filters)),
            security_groups=[security_group],
            tracing=lambda_.Tracing.ACTIVE,
            environment={
                "POOL_CACHE_BUCKET": self.pool_cache_bucket.bucket_name,
                "POOL_CACHE_BUCKET_2": self.pool_cache_bucket2.bucket_name,
                "POOL_CACHE_KEY": self.pool_cache_key,
                "TOKEN_LIST_CACHE_BUCKET": self.token_list_cache_bucket.bucket_name,
                "STAGE": stage.value,
            },
            description="Caches pools and token lists to S3 for the routing Lambda",
        )

        self.pool_cache_bucket.grant_read_write(self.pool_caching_fn)
        self.pool_cache_bucket2.grant_read_write(self.pool_caching_fn)
        self.token_list_cache_bucket.grant_read_write(self.pool_caching_fn)

        # EventBridge Rules: one per cached chain
        schedule = caching_schedule(caching_schedule_mins)
        self.schedule_rules: list[events.Rule] = []
        for chain in cached_chains:
            rule = events.Rule(
                self,
                f"PoolCacheSchedule{int(chain)}",
                schedule=schedule,
                description=f"Refreshes the pool cache for chain {int(chain)}",
            )
            rule.add_target(
                targets.LambdaFunction(
                    self.pool_caching_fn,
                    event=events.RuleTargetInput.from_object({"chainId": int(chain)}),
                )
            )
            self.schedule_rules.append(rule)

        self.alarms.append(
            self._error_rate_alarm(
                "PoolCacheToS3LambdaErrorRate", self.pool_caching_fn
            )
        )

        # Lambda: publish pool caches to IPFS, only with Pinata credentials
        self.ipfs_pool_caching_fn: Optional[lambda_.Function] = None
        if pinata_key and pinata_secret:
            environment = {
                "PINATA_API_KEY": pinata_key,
                "PINATA_API_SECRET": pinata_secret,
                "STAGE": stage.value,
            }
            if hosted_zone:
                environment["HOSTED_ZONE"] = hosted_zone
            if route53_arn:
                environment["ROLE_ARN"] = route53_arn

            self.ipfs_pool_caching_fn = lambda_.Function(
                self,
                "IpfsPoolCacheLambda",
                runtime=lambda_.Runtime.NODEJS_18_X,
                handler=IPFS_POOL_CACHE_HANDLER,
                code=lambda_.Code.from_asset(str(lambda_bundle_path)),
                memory_size=1024,
                timeout=Duration.minutes(15),
                tracing=lambda_.Tracing.ACTIVE,
                environment=environment,
                description="Publishes pool caches to IPFS",
            )

            if route53_arn:
                self.ipfs_pool_caching_fn.add_to_role_policy(
                    iam.PolicyStatement(
                        actions=["sts:AssumeRole"],
                        resources=[route53_arn],
                    )
                )

            events.Rule(
                self,
                "IpfsPoolCacheSchedule",
                schedule=events.Schedule.rate(Duration.minutes(15)),
                description="Publishes the pool cache to IPFS",
                targets=[targets.LambdaFunction(self.ipfs_pool_caching_fn)],
            )

            self.alarms.append(
                self._error_rate_alarm(
                    "IpfsPoolCacheLambdaErrorRate", self.ipfs_pool_caching_fn
                )
            )

        if chatbot_sns_arn:
            chatbot_topic = sns.Topic.from_topic_arn(
                self, "ChatbotTopic", chatbot_sns_arn
            )
            for alarm in self.alarms:
                alarm.add_alarm_action(cloudwatch_actions.SnsAction(chatbot_topic))

    def _cache_bucket(self, construct_id: str) -> s3.Bucket:
        return s3.Bucket(
            self,
            construct_id,
            encryption=s3.BucketEncryption.S3_MANAGED,
            removal_policy=RemovalPolicy.RETAIN,
            block_public_access=s3.BlockPublicAccess.BLOCK_ALL,
        )

    def _error_rate_alarm(
        self, name: str, function: lambda_.IFunction
    ) -> cloudwatch.Alarm:
        alarm_name = f"RoutingAPI-SEV3-{name}"
        return cloudwatch.Alarm(
            self,
            alarm_name,
            alarm_name=alarm_name,
            metric=cloudwatch.MathExpression(
                expression="100*(errors/invocations)",
                period=Duration.minutes(60),
                using_metrics={
                    "errors": function.metric_errors(
                        period=Duration.minutes(60), statistic="sum"
                    ),
                    "invocations": function.metric_invocations(
                        period=Duration.minutes(60), statistic="sum"
                    ),
                },
            ),
            threshold=50,
            evaluation_periods=1,
            treat_missing_data=cloudwatch.TreatMissingData.NOT_BREACHING,
        )
