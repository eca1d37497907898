"""AWS adapters for shardrun.

Implements the shardrun-core interfaces on AWS:

    - S3Store: DurableStore over an S3 bucket.
    - EcsBackend: ComputeBackend running one Fargate task per shard.

Both wrap boto3 clients and move each blocking call off the event loop.
"""

from shardrun_aws.ecs import DEFAULT_CONTAINER_NAME, EcsBackend, map_status
from shardrun_aws.s3 import S3Store, create_client

__all__ = [
    "DEFAULT_CONTAINER_NAME",
    "EcsBackend",
    "S3Store",
    "create_client",
    "map_status",
]
