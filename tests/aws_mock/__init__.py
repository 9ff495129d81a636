"""AWS API mocks for reconciler testing.

In-memory stand-ins for the boto3 CloudFormation and EC2 clients. They
raise real botocore ClientErrors so the error normalisation of the
operator is exercised exactly as against AWS.

Usage:
    from aws_mock import MockCloudFormationClient, MockEC2Client

    cfn = MockCloudFormationClient()
    ec2 = MockEC2Client()
    ec2.add_instance("i-1", "vpc-a")

    provisioning = ProvisioningClient(cfn, ec2, "PublicRouteTable", "PrivateRouteTable")

    # Error injection (one-shot, per operation)
    cfn.fail_next("describe_stacks", client_error("Throttling"))
"""

from .cloudformation import MockCloudFormationClient, MockStack, client_error
from .ec2 import MockEC2Client

__all__ = [
    "MockCloudFormationClient",
    "MockEC2Client",
    "MockStack",
    "client_error",
]
