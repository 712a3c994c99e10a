"""
Pulumi Compiler.

Registers one pulumi_aws resource per graph node, in dependency order.
References become resource output properties, joins become
`Output.concat`, and policy documents are serialized with
`Output.json_dumps` once their references resolve.
"""

from typing import Any

try:
    import pulumi
except ImportError:
    raise ImportError(
        "pulumi required for PulumiCompiler. "
        "Install with: pip install 'cairn-infra[pulumi]'"
    )

import structlog

from cairn.compilation.compiler import Compiler, CompiledStack
from cairn.core.graph import ResourceGraph
from cairn.core.node import ResourceNode
from cairn.core.references import Join, Reference
from cairn.errors import CompilationError
from cairn.resources import types as t

logger = structlog.get_logger(__name__)

# Module and class candidates per type; later names cover older pulumi-aws releases
_CLASSES: dict[str, tuple[str, tuple[str, ...]]] = {
    t.BUCKET: ("s3", ("Bucket",)),
    t.BUCKET_WEBSITE: ("s3", ("BucketWebsiteConfiguration", "BucketWebsiteConfigurationV2")),
    t.BUCKET_PUBLIC_ACCESS: ("s3", ("BucketPublicAccessBlock",)),
    t.BUCKET_POLICY: ("s3", ("BucketPolicy",)),
    t.TOPIC: ("sns", ("Topic",)),
    t.ROLE: ("iam", ("Role",)),
    t.ROLE_POLICY_ATTACHMENT: ("iam", ("RolePolicyAttachment",)),
    t.FUNCTION: ("lambda_", ("Function",)),
    t.PERMISSION: ("lambda_", ("Permission",)),
    t.REST_API: ("apigateway", ("RestApi",)),
    t.API_RESOURCE: ("apigateway", ("Resource",)),
    t.API_METHOD: ("apigateway", ("Method",)),
    t.API_INTEGRATION: ("apigateway", ("Integration",)),
    t.API_DEPLOYMENT: ("apigateway", ("Deployment",)),
    t.API_STAGE: ("apigateway", ("Stage",)),
}

# Node attribute -> pulumi argument, where the names differ
_ARGUMENTS: dict[str, dict[str, str]] = {
    t.FUNCTION: {"function_name": "name", "filename": "code"},
    t.API_STAGE: {"deployment_id": "deployment"},
}

# Node output -> pulumi resource property, where the names differ
_PROPERTIES: dict[str, dict[str, str]] = {
    t.FUNCTION: {"function_name": "name"},
}


class PulumiCompiler(Compiler):
    """
    Compiles a resource graph to pulumi_aws resources.

    Must run inside a Pulumi program (or under pulumi mocks), since
    constructing a resource registers it with the engine.

    Example:
        # __main__.py of a Pulumi project
        built = declare_event_notices(config, packages)
        compiled = PulumiCompiler(region=config.region).compile(built.build(), config.project)
        compiled.export_outputs()
    """

    def __init__(self, region: str | None = None):
        self.region = region

    def compile(self, graph: ResourceGraph, stack_name: str = "cairn") -> CompiledStack:
        """
        Compile a graph to Pulumi resources.

        Args:
            graph: Validated resource graph
            stack_name: Name recorded on the compiled stack

        Returns:
            CompiledStack with one resource per node

        Raises:
            CompilationError: If a node cannot be compiled
        """
        try:
            import pulumi_aws as aws
        except ImportError:
            raise CompilationError(
                "pulumi-aws required for AWS resources. "
                "Install with: pip install pulumi-aws"
            )

        resources: dict[str, pulumi.Resource] = {}
        try:
            for node in graph.order():
                resources[str(node.key)] = self._compile_node(aws, node, resources)

            outputs = {
                name: self._input(value, resources)
                for name, value in graph.outputs.items()
            }
        except CompilationError:
            raise
        except Exception as e:
            raise CompilationError(f"Failed to compile stack '{stack_name}': {e}") from e

        logger.info("stack_compiled", stack=stack_name, resources=len(resources))
        return CompiledStack(
            stack_name=stack_name,
            resources=resources,
            outputs=outputs,
            metadata={
                "resource_count": len(resources),
                "output_count": len(outputs),
                "region": self.region or "",
                "project": stack_name,
            },
        )

    def _compile_node(self, aws: Any, node: ResourceNode, resources: dict[str, pulumi.Resource]) -> pulumi.Resource:
        resource_class = _resource_class(aws, node.type)
        schema = t.get_resource_type(node.type)
        renames = _ARGUMENTS.get(node.type, {})

        kwargs: dict[str, Any] = {}
        for attribute, value in node.attributes.items():
            value = self._input(value, resources)
            if schema is not None and attribute in schema.policies:
                value = pulumi.Output.json_dumps(value)
            kwargs[renames.get(attribute, attribute)] = value

        if node.type == t.FUNCTION:
            kwargs["code"] = pulumi.FileArchive(node.attributes["filename"])
        elif node.type == t.BUCKET_WEBSITE:
            kwargs["index_document"] = {"suffix": kwargs["index_document"]}
            if "error_document" in kwargs:
                kwargs["error_document"] = {"key": kwargs["error_document"]}

        depends_on = [resources[str(key)] for key in node.depends_on]
        opts = pulumi.ResourceOptions(
            depends_on=depends_on or None,
            replace_on_changes=["*"] if schema is not None and schema.immutable else None,
            # Named resources collide on create-first replacement
            delete_before_replace=not (schema is not None and schema.create_before_destroy),
        )
        return resource_class(node.name, opts=opts, **kwargs)

    def _input(self, value: Any, resources: dict[str, pulumi.Resource]) -> Any:
        """Translate a declared value into a Pulumi input."""
        if isinstance(value, Reference):
            producer = resources.get(str(value.producer))
            if producer is None:
                raise CompilationError(f"Reference to uncompiled node {value.producer}")
            prop = _PROPERTIES.get(value.producer.type, {}).get(value.output, value.output)
            return getattr(producer, prop)
        if isinstance(value, Join):
            return pulumi.Output.concat(*(self._input(part, resources) for part in value.parts))
        if isinstance(value, dict):
            return {key: self._input(item, resources) for key, item in value.items()}
        if isinstance(value, (list, tuple)):
            return [self._input(item, resources) for item in value]
        return value


def _resource_class(aws: Any, type_token: str) -> type:
    if type_token not in _CLASSES:
        raise CompilationError(f"No Pulumi mapping for resource type {type_token!r}")
    module_name, class_names = _CLASSES[type_token]
    module = getattr(aws, module_name)
    for class_name in class_names:
        resource_class = getattr(module, class_name, None)
        if resource_class is not None:
            return resource_class
    raise CompilationError(
        f"pulumi_aws.{module_name} has none of {', '.join(class_names)} (type {type_token!r})"
    )
