"""DynamoDB repository for limiter definitions."""

import dataclasses
import logging
import time
from typing import Any

import aioboto3  # type: ignore[import-untyped]
from botocore.exceptions import ClientError

from . import schema
from .exceptions import ConcurrentModificationError, ValidationError
from .models import RateLimiterDefinition, decode_apps, encode_apps
from .naming import validate_table_name

logger = logging.getLogger(__name__)


class Repository:
    """
    Async DynamoDB repository for limiter definitions.

    Every write is conditional on the stored ``version`` attribute, which
    turns the registry's read-modify-write cycles into compare-and-swap
    operations. One item per limiter, keyed ``LIMITER#<name>`` / ``#DEFINITION``.
    """

    def __init__(
        self,
        table_name: str,
        region: str | None = None,
        endpoint_url: str | None = None,
    ) -> None:
        validate_table_name(table_name)
        self.table_name = table_name
        self.region = region
        self.endpoint_url = endpoint_url
        self._session: aioboto3.Session | None = None
        self._client: Any = None

    async def _get_client(self) -> Any:
        """Get or create the DynamoDB client."""
        if self._client is None:
            self._session = aioboto3.Session()
            self._client = await self._session.client(
                "dynamodb",
                region_name=self.region,
                endpoint_url=self.endpoint_url,
            ).__aenter__()
        return self._client

    async def close(self) -> None:
        """Close the DynamoDB client."""
        if self._client is not None:
            await self._client.__aexit__(None, None, None)
            self._client = None
            self._session = None

    async def __aenter__(self) -> "Repository":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def ping(self) -> bool:
        """Check that the table is reachable."""
        client = await self._get_client()
        try:
            await client.describe_table(TableName=self.table_name)
        except ClientError as e:
            logger.warning("Registry table %s unreachable: %s", self.table_name, e)
            return False
        return True

    # -------------------------------------------------------------------------
    # Table operations
    # -------------------------------------------------------------------------

    async def create_table(self) -> None:
        """Create the DynamoDB table if it doesn't exist."""
        client = await self._get_client()
        definition = schema.get_table_definition(self.table_name)

        try:
            await client.create_table(**definition)
            # Wait for table to be active
            waiter = client.get_waiter("table_exists")
            await waiter.wait(TableName=self.table_name)
        except ClientError as e:
            if e.response["Error"]["Code"] != "ResourceInUseException":
                raise

    async def delete_table(self) -> None:
        """Delete the DynamoDB table."""
        client = await self._get_client()
        try:
            await client.delete_table(TableName=self.table_name)
        except ClientError as e:
            if e.response["Error"]["Code"] != "ResourceNotFoundException":
                raise

    # -------------------------------------------------------------------------
    # Definition operations
    # -------------------------------------------------------------------------

    async def list_definitions(self) -> list[RateLimiterDefinition]:
        """
        List every limiter definition.

        Follows scan pagination internally. Results are sorted by name so
        callers see a stable listing order.
        """
        client = await self._get_client()
        definitions: list[RateLimiterDefinition] = []
        scan_kwargs: dict[str, Any] = {
            "TableName": self.table_name,
            "FilterExpression": "SK = :sk",
            "ExpressionAttributeValues": {":sk": {"S": schema.sk_definition()}},
        }

        while True:
            response = await client.scan(**scan_kwargs)
            for item in response.get("Items", []):
                definitions.append(self._deserialize_definition(item))
            last_key = response.get("LastEvaluatedKey")
            if not last_key:
                break
            scan_kwargs["ExclusiveStartKey"] = last_key

        definitions.sort(key=lambda d: d.name)
        return definitions

    async def get_definition(self, name: str) -> RateLimiterDefinition | None:
        """Get a limiter definition by name."""
        client = await self._get_client()
        response = await client.get_item(
            TableName=self.table_name,
            Key=schema.definition_key(name),
            ConsistentRead=True,
        )
        item = response.get("Item")
        if not item:
            return None
        return self._deserialize_definition(item)

    async def put_definition(
        self,
        definition: RateLimiterDefinition,
        expected_version: int | None,
    ) -> RateLimiterDefinition:
        """
        Create or replace a limiter definition.

        Args:
            definition: Definition to store
            expected_version: None to create, otherwise the stored version to replace

        Returns:
            The stored definition with its new version

        Raises:
            ValidationError: If the definition has no app contexts
            ConcurrentModificationError: If the version check fails
        """
        if not definition.apps:
            raise ValidationError(
                "apps",
                definition.encoded_apps,
                "A limiter without app contexts must be deleted, not stored",
            )

        client = await self._get_client()
        new_version = 1 if expected_version is None else expected_version + 1
        item: dict[str, Any] = {
            **schema.definition_key(definition.name),
            schema.ATTR_NAME: {"S": definition.name},
            schema.ATTR_APPS: {"S": encode_apps(definition.apps)},
            schema.ATTR_MAX_PERMITS: {"N": str(definition.max_permits)},
            schema.ATTR_RATE: {"N": str(definition.rate)},
            schema.ATTR_VERSION: {"N": str(new_version)},
            schema.ATTR_UPDATED_AT: {"S": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())},
        }

        try:
            await client.put_item(
                TableName=self.table_name,
                Item=item,
                **self._version_condition(expected_version),
            )
        except ClientError as e:
            if e.response["Error"]["Code"] == "ConditionalCheckFailedException":
                raise ConcurrentModificationError(definition.name) from e
            raise

        return dataclasses.replace(definition, version=new_version)

    async def delete_definition(self, name: str, expected_version: int) -> None:
        """
        Delete a limiter definition.

        Raises:
            ConcurrentModificationError: If the version check fails
        """
        client = await self._get_client()
        try:
            await client.delete_item(
                TableName=self.table_name,
                Key=schema.definition_key(name),
                **self._version_condition(expected_version),
            )
        except ClientError as e:
            if e.response["Error"]["Code"] == "ConditionalCheckFailedException":
                raise ConcurrentModificationError(name) from e
            raise

    # -------------------------------------------------------------------------
    # Serialization helpers
    # -------------------------------------------------------------------------

    def _version_condition(self, expected_version: int | None) -> dict[str, Any]:
        """Build the condition arguments guarding a write."""
        if expected_version is None:
            return {"ConditionExpression": "attribute_not_exists(PK)"}
        if expected_version == 0:
            # Items written before versioning carry no version attribute
            return {
                "ConditionExpression": "attribute_exists(PK) AND attribute_not_exists(#version)",
                "ExpressionAttributeNames": {"#version": schema.ATTR_VERSION},
            }
        return {
            "ConditionExpression": "#version = :expected",
            "ExpressionAttributeNames": {"#version": schema.ATTR_VERSION},
            "ExpressionAttributeValues": {":expected": {"N": str(expected_version)}},
        }

    def _deserialize_definition(self, item: dict[str, Any]) -> RateLimiterDefinition:
        """Deserialize a DynamoDB item to RateLimiterDefinition."""
        version_attr = item.get(schema.ATTR_VERSION)
        return RateLimiterDefinition(
            name=item[schema.ATTR_NAME]["S"],
            apps=decode_apps(item[schema.ATTR_APPS]["S"]),
            max_permits=int(item[schema.ATTR_MAX_PERMITS]["N"]),
            rate=int(item[schema.ATTR_RATE]["N"]),
            version=int(version_attr["N"]) if version_attr else 0,
        )
