from .routing_api_stack import RoutingAPIStack
from .routing_caching_stack import RoutingCachingStack
from .routing_database_stack import RoutingDatabaseStack
from .routing_lambda_stack import RoutingLambdaStack

__all__ = [
    "RoutingAPIStack",
    "RoutingCachingStack",
    "RoutingDatabaseStack",
    "RoutingLambdaStack",
]
