"""
Resource type schemas.

Each ResourceType describes what the graph builder validates and what the
planner needs to classify a change: required attributes, attributes whose
change forces replacement, attributes holding policy documents, and the
outputs the provider computes.
"""

from dataclasses import dataclass, field

from cairn.core.policy import PolicyKind


@dataclass(frozen=True)
class ResourceType:
    """Schema for one resource type token."""

    token: str
    required: tuple[str, ...] = ()
    force_new: tuple[str, ...] = ()
    outputs: tuple[str, ...] = ("id",)
    policies: dict[str, PolicyKind] = field(default_factory=dict)
    immutable: bool = False
    """Any attribute change replaces the resource"""
    create_before_destroy: bool = False
    """On replacement, create the new object before deleting the old one"""

    def forces_replacement(self, attribute: str) -> bool:
        return self.immutable or attribute in self.force_new


BUCKET = "aws:s3:Bucket"
BUCKET_WEBSITE = "aws:s3:BucketWebsiteConfiguration"
BUCKET_PUBLIC_ACCESS = "aws:s3:BucketPublicAccessBlock"
BUCKET_POLICY = "aws:s3:BucketPolicy"
TOPIC = "aws:sns:Topic"
ROLE = "aws:iam:Role"
ROLE_POLICY_ATTACHMENT = "aws:iam:RolePolicyAttachment"
FUNCTION = "aws:lambda:Function"
PERMISSION = "aws:lambda:Permission"
REST_API = "aws:apigateway:RestApi"
API_RESOURCE = "aws:apigateway:Resource"
API_METHOD = "aws:apigateway:Method"
API_INTEGRATION = "aws:apigateway:Integration"
API_DEPLOYMENT = "aws:apigateway:Deployment"
API_STAGE = "aws:apigateway:Stage"


RESOURCE_TYPES: dict[str, ResourceType] = {
    schema.token: schema
    for schema in [
        ResourceType(
            BUCKET,
            required=("bucket",),
            force_new=("bucket",),
            outputs=("id", "arn", "bucket", "bucket_regional_domain_name"),
        ),
        ResourceType(
            BUCKET_WEBSITE,
            required=("bucket", "index_document"),
            force_new=("bucket",),
            outputs=("id", "website_endpoint"),
        ),
        ResourceType(
            BUCKET_PUBLIC_ACCESS,
            required=("bucket",),
            force_new=("bucket",),
        ),
        ResourceType(
            BUCKET_POLICY,
            required=("bucket", "policy"),
            force_new=("bucket",),
            policies={"policy": "resource"},
        ),
        ResourceType(
            TOPIC,
            required=("name",),
            force_new=("name",),
            outputs=("id", "arn"),
        ),
        ResourceType(
            ROLE,
            required=("name", "assume_role_policy"),
            force_new=("name",),
            outputs=("id", "arn", "name"),
            policies={"assume_role_policy": "trust"},
        ),
        ResourceType(
            ROLE_POLICY_ATTACHMENT,
            required=("role", "policy_arn"),
            force_new=("role", "policy_arn"),
        ),
        ResourceType(
            FUNCTION,
            required=("function_name", "role", "handler", "runtime", "filename", "source_code_hash"),
            force_new=("function_name", "source_code_hash"),
            outputs=("id", "arn", "invoke_arn", "function_name"),
        ),
        ResourceType(
            PERMISSION,
            required=("statement_id", "action", "function", "principal", "source_arn"),
            immutable=True,
        ),
        ResourceType(
            REST_API,
            required=("name",),
            force_new=("name",),
            outputs=("id", "root_resource_id", "execution_arn"),
        ),
        ResourceType(
            API_RESOURCE,
            required=("rest_api", "parent_id", "path_part"),
            force_new=("rest_api", "parent_id", "path_part"),
            outputs=("id", "path"),
        ),
        ResourceType(
            API_METHOD,
            required=("rest_api", "resource_id", "http_method", "authorization"),
            force_new=("rest_api", "resource_id", "http_method"),
        ),
        ResourceType(
            API_INTEGRATION,
            required=("rest_api", "resource_id", "http_method", "type", "integration_http_method", "uri"),
            force_new=("rest_api", "resource_id", "http_method"),
        ),
        ResourceType(
            API_DEPLOYMENT,
            required=("rest_api", "triggers"),
            outputs=("id", "invoke_url", "created_date"),
            immutable=True,
            create_before_destroy=True,
        ),
        ResourceType(
            API_STAGE,
            required=("rest_api", "deployment_id", "stage_name"),
            force_new=("rest_api", "stage_name"),
            outputs=("id", "invoke_url"),
        ),
    ]
}


def get_resource_type(token: str) -> ResourceType | None:
    """Look up a resource type schema by token."""
    return RESOURCE_TYPES.get(token)
