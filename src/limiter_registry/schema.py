"""DynamoDB schema definitions and key builders."""

from typing import Any

# Key prefixes
LIMITER_PREFIX = "LIMITER#"

# Sort keys
SK_DEFINITION = "#DEFINITION"

# Attribute names
ATTR_NAME = "name"
ATTR_APPS = "apps"
ATTR_MAX_PERMITS = "max_permits"
ATTR_RATE = "rate"
ATTR_VERSION = "version"
ATTR_UPDATED_AT = "updated_at"


def pk_limiter(name: str) -> str:
    """Build partition key for a limiter definition."""
    return f"{LIMITER_PREFIX}{name}"


def sk_definition() -> str:
    """Build sort key for a limiter definition."""
    return SK_DEFINITION


def definition_key(name: str) -> dict[str, Any]:
    """Build the full primary key of a definition item."""
    return {
        "PK": {"S": pk_limiter(name)},
        "SK": {"S": sk_definition()},
    }


def get_table_definition(table_name: str) -> dict[str, Any]:
    """
    Get the DynamoDB table definition for CreateTable.

    Returns a dictionary suitable for boto3 create_table().
    """
    return {
        "TableName": table_name,
        "BillingMode": "PAY_PER_REQUEST",
        "AttributeDefinitions": [
            {"AttributeName": "PK", "AttributeType": "S"},
            {"AttributeName": "SK", "AttributeType": "S"},
        ],
        "KeySchema": [
            {"AttributeName": "PK", "KeyType": "HASH"},
            {"AttributeName": "SK", "KeyType": "RANGE"},
        ],
    }
