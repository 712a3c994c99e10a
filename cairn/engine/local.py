"""
Local provider: a simulated AWS account for development and testing.

Objects live in memory, optionally mirrored to a JSON file so that
separate CLI runs see the same "cloud". ARNs, ids and URLs follow the
real formats, so outputs and references look exactly like a deploy.
"""

import copy
import json
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import structlog

from cairn.core.references import contains_unknown
from cairn.engine.provider import Provider
from cairn.errors import ProviderApplyError
from cairn.resources import types as t

logger = structlog.get_logger(__name__)

# Length of the provider-generated id for types the caller cannot name
_GENERATED_IDS = {
    t.REST_API: 10,
    t.API_RESOURCE: 6,
    t.API_DEPLOYMENT: 6,
}

# Attributes that must be unique across live objects of a type
_UNIQUE_ATTRIBUTES = {
    t.BUCKET: "bucket",
    t.TOPIC: "name",
    t.ROLE: "name",
    t.FUNCTION: "function_name",
}


class LocalCloudProvider(Provider):
    """
    Simulated AWS provider.

    Example:
        provider = LocalCloudProvider(region="us-east-1", account_id="123456789012")
        outputs = provider.create("aws:sns:Topic.notices", "aws:sns:Topic", {"name": "notices"})
        outputs["arn"]  # "arn:aws:sns:us-east-1:123456789012:notices"

    Args:
        region: Region used in ARNs and URLs
        account_id: Account used in ARNs
        path: Optional JSON file the simulated objects are persisted to
        fail_on: Map of node key -> reason; any mutating call for that
            node raises ProviderApplyError (fault injection)
    """

    def __init__(
        self,
        region: str = "us-east-1",
        account_id: str = "123456789012",
        path: str | Path | None = None,
        fail_on: dict[str, str] | None = None,
    ):
        super().__init__(region, account_id)
        self.path = Path(path) if path is not None else None
        self.fail_on = dict(fail_on or {})
        self.mutations: list[tuple[str, str]] = []
        self.objects: dict[str, dict[str, Any]] = {}
        self._lock = threading.Lock()
        self._load()

    def get_provider_name(self) -> str:
        return "local"

    # Provider interface

    def create(self, key: str, type: str, attributes: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            self._record("create", key)
            self._check_unique(key, type, attributes)

            outputs = self._derive(type, attributes)
            length = _GENERATED_IDS.get(type)
            if length:
                outputs["id"] = uuid.uuid4().hex[:length]
            if type == t.REST_API:
                outputs["root_resource_id"] = uuid.uuid4().hex[:10]
                outputs["execution_arn"] = (
                    f"arn:aws:execute-api:{self.region}:{self.account_id}:{outputs['id']}"
                )
            elif type == t.API_DEPLOYMENT:
                outputs["created_date"] = datetime.now(timezone.utc).isoformat()

            object_id = f"{type}|{outputs['id']}"
            if object_id in self.objects:
                raise ProviderApplyError(key, "create", f"{outputs['id']} already exists")

            self.objects[object_id] = {
                "type": type,
                "attributes": copy.deepcopy(attributes),
                "outputs": outputs,
            }
            self._save()

        logger.debug("local_object_created", key=key, id=outputs["id"])
        return dict(outputs)

    def read(self, type: str, outputs: dict[str, Any]) -> dict[str, Any] | None:
        with self._lock:
            obj = self.objects.get(f"{type}|{outputs.get('id')}")
            return copy.deepcopy(obj["attributes"]) if obj else None

    def update(
        self, key: str, type: str, outputs: dict[str, Any], attributes: dict[str, Any]
    ) -> dict[str, Any]:
        with self._lock:
            self._record("update", key)
            obj = self.objects.get(f"{type}|{outputs.get('id')}")
            if obj is None:
                raise ProviderApplyError(key, "update", f"{outputs.get('id')} not found")

            obj["attributes"] = copy.deepcopy(attributes)
            obj["outputs"] = {**obj["outputs"], **self._derive(type, attributes)}
            self._save()
            return dict(obj["outputs"])

    def delete(self, key: str, type: str, outputs: dict[str, Any]) -> None:
        with self._lock:
            self._record("delete", key)
            self.objects.pop(f"{type}|{outputs.get('id')}", None)
            self._save()

    def predict_outputs(self, type: str, attributes: dict[str, Any]) -> dict[str, Any]:
        return self._derive(type, attributes)

    # Out-of-band changes, as if someone edited the account by hand

    def modify_out_of_band(self, type: str, object_id: str, **attributes: Any) -> None:
        with self._lock:
            obj = self.objects[f"{type}|{object_id}"]
            obj["attributes"] = {**obj["attributes"], **attributes}
            self._save()

    def remove_out_of_band(self, type: str, object_id: str) -> None:
        with self._lock:
            del self.objects[f"{type}|{object_id}"]
            self._save()

    def count(self, type: str | None = None) -> int:
        """Number of live objects, optionally of one type."""
        return sum(1 for obj in self.objects.values() if type is None or obj["type"] == type)

    # Internals

    def _derive(self, type: str, attrs: dict[str, Any]) -> dict[str, Any]:
        """
        Outputs that follow from attributes alone.

        Outputs whose inputs are still unknown are left out.
        """
        region, account = self.region, self.account_id

        def known(*names: str) -> bool:
            return all(not contains_unknown(attrs.get(name)) for name in names)

        outputs: dict[str, Any] = {}

        if type == t.BUCKET and known("bucket"):
            bucket = attrs["bucket"]
            outputs.update(
                id=bucket,
                arn=f"arn:aws:s3:::{bucket}",
                bucket=bucket,
                bucket_regional_domain_name=f"{bucket}.s3.{region}.amazonaws.com",
            )
        elif type == t.BUCKET_WEBSITE and known("bucket"):
            bucket = attrs["bucket"]
            outputs.update(id=bucket, website_endpoint=f"{bucket}.s3-website-{region}.amazonaws.com")
        elif type in (t.BUCKET_PUBLIC_ACCESS, t.BUCKET_POLICY) and known("bucket"):
            outputs["id"] = attrs["bucket"]
        elif type == t.TOPIC and known("name"):
            arn = f"arn:aws:sns:{region}:{account}:{attrs['name']}"
            outputs.update(id=arn, arn=arn)
        elif type == t.ROLE and known("name"):
            name = attrs["name"]
            outputs.update(id=name, arn=f"arn:aws:iam::{account}:role/{name}", name=name)
        elif type == t.ROLE_POLICY_ATTACHMENT and known("role", "policy_arn"):
            outputs["id"] = f"{attrs['role']}/{attrs['policy_arn']}"
        elif type == t.FUNCTION and known("function_name"):
            name = attrs["function_name"]
            arn = f"arn:aws:lambda:{region}:{account}:function:{name}"
            outputs.update(
                id=name,
                arn=arn,
                invoke_arn=f"arn:aws:apigateway:{region}:lambda:path/2015-03-31/functions/{arn}/invocations",
                function_name=name,
            )
        elif type == t.PERMISSION and known("function", "statement_id"):
            outputs["id"] = f"{attrs['function']}/{attrs['statement_id']}"
        elif type == t.API_RESOURCE and known("parent_id", "path_part"):
            outputs["path"] = f"{self._resource_path(attrs['parent_id'])}/{attrs['path_part']}"
        elif type in (t.API_METHOD, t.API_INTEGRATION) and known("rest_api", "resource_id", "http_method"):
            prefix = "agm" if type == t.API_METHOD else "agi"
            outputs["id"] = f"{prefix}-{attrs['rest_api']}-{attrs['resource_id']}-{attrs['http_method']}"
        elif type == t.API_DEPLOYMENT and known("rest_api"):
            outputs["invoke_url"] = f"https://{attrs['rest_api']}.execute-api.{region}.amazonaws.com/"
        elif type == t.API_STAGE and known("rest_api", "stage_name"):
            rest_api, stage_name = attrs["rest_api"], attrs["stage_name"]
            outputs.update(
                id=f"ags-{rest_api}-{stage_name}",
                invoke_url=f"https://{rest_api}.execute-api.{region}.amazonaws.com/{stage_name}",
            )

        return outputs

    def _resource_path(self, resource_id: str) -> str:
        """Full path of an API resource; the API root resolves to an empty prefix."""
        for obj in self.objects.values():
            if obj["type"] == t.API_RESOURCE and obj["outputs"].get("id") == resource_id:
                return obj["outputs"].get("path", "")
        return ""

    def _check_unique(self, key: str, type: str, attributes: dict[str, Any]) -> None:
        attribute = _UNIQUE_ATTRIBUTES.get(type)
        if attribute is None:
            return
        for obj in self.objects.values():
            if obj["type"] == type and obj["attributes"].get(attribute) == attributes.get(attribute):
                raise ProviderApplyError(
                    key, "create", f"{attribute} {attributes.get(attribute)!r} already exists"
                )

    def _record(self, operation: str, key: str) -> None:
        if key in self.fail_on:
            raise ProviderApplyError(key, operation, self.fail_on[key])
        self.mutations.append((operation, key))

    def _load(self) -> None:
        if self.path is not None and self.path.exists():
            with open(self.path) as f:
                self.objects = json.load(f).get("objects", {})

    def _save(self) -> None:
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w") as f:
            json.dump({"region": self.region, "objects": self.objects}, f, indent=2, default=str)
