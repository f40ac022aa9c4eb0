"""Database Stack - DynamoDB tables for cached routes and pools."""

from aws_cdk import (
    NestedStack,
    RemovalPolicy,
    aws_dynamodb as dynamodb,
)
from constructs import Construct


class RoutingDatabaseStack(NestedStack):
    """Nested stack owning the DynamoDB caches used by the routing Lambda."""

    def __init__(self, scope: Construct, construct_id: str, **kwargs) -> None:
        super().__init__(scope, construct_id, **kwargs)

        # Cached routes, keyed by pair/trade type/chain and bucketed by block
        self.cached_routes_dynamo_db = dynamodb.Table(
            self,
            "RouteCachingDB",
            table_name="RouteCachingDB",
            partition_key=dynamodb.Attribute(
                name="pairTradeTypeChainId", type=dynamodb.AttributeType.STRING
            ),
            sort_key=dynamodb.Attribute(
                name="protocolsBucketBlockNumber", type=dynamodb.AttributeType.STRING
            ),
            billing_mode=dynamodb.BillingMode.PAY_PER_REQUEST,
            time_to_live_attribute="ttl",
            removal_policy=RemovalPolicy.DESTROY,
        )

        # Cached V3 pools, keyed by pool address and block number
        self.cached_v3_pools_dynamo_db = dynamodb.Table(
            self,
            "V3PoolsCachingDB",
            table_name="V3PoolsCachingDB",
            partition_key=dynamodb.Attribute(
                name="poolAddress", type=dynamodb.AttributeType.STRING
            ),
            sort_key=dynamodb.Attribute(
                name="blockNumber", type=dynamodb.AttributeType.NUMBER
            ),
            billing_mode=dynamodb.BillingMode.PAY_PER_REQUEST,
            time_to_live_attribute="ttl",
            removal_policy=RemovalPolicy.DESTROY,
        )
