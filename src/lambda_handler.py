"""AWS Lambda handler for the Trading Data API Gatekeeper.

Wraps the FastAPI application with the Mangum adapter so it can run on AWS
Lambda behind API Gateway.
"""

from mangum import Mangum

from src.main import app

# Lifespan runs around every invocation, so the shutdown hook drains pending
# usage records before Lambda freezes the execution environment.
handler = Mangum(app, lifespan="auto")


def lambda_handler(event: dict, context: object) -> dict:
    """
    AWS Lambda function handler.

    Args:
        event: API Gateway event containing request details
        context: Lambda context object with runtime information

    Returns:
        API Gateway response dict with statusCode, headers, and body

    Notes:
        - DynamoDB credentials come from the function's IAM role unless
          AWS_ACCESS_KEY_ID and friends are set
        - Quota counters live in DynamoDB, so any number of concurrent
          execution environments share them
    """
    return handler(event, context)
