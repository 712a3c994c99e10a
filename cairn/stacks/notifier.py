"""
The event-notices stack.

A static website bucket, a notification topic, two functions behind an
HTTP API:

    POST /subscribers  -> subscribers  (SNS_TOPIC_ARN)
    POST /new-events   -> new-events   (BUCKET_NAME, EVENTS_FILE, SNS_TOPIC_ARN)

Both functions run as one execution role that only carries the managed
basic-logging policy.
"""

from dataclasses import dataclass, field
from pathlib import Path

from cairn.config import CairnConfig
from cairn.core.node import ResourceNode
from cairn.core.references import join
from cairn.core.stack import Stack
from cairn.errors import ConfigError
from cairn.packaging import FunctionPackage, build_package
from cairn.resources import types as t
from cairn.resources.routing import Route, add_proxy_route, declare_deployment

SUBSCRIBERS = "subscribers"
NEW_EVENTS = "new-events"
FUNCTIONS = (SUBSCRIBERS, NEW_EVENTS)

EVENTS_FILE = "events.json"
STAGE_NAME = "prod"
BASIC_EXECUTION_POLICY_ARN = "arn:aws:iam::aws:policy/service-role/AWSLambdaBasicExecutionRole"

DEFAULT_ROUTES = {
    "/subscribers": SUBSCRIBERS,
    "/new-events": NEW_EVENTS,
}


@dataclass
class EventNoticesStack:
    """The declared stack plus handles the CLI and tests need."""

    stack: Stack
    routes: list[Route]
    functions: dict[str, ResourceNode] = field(default_factory=dict)
    site_policy: ResourceNode | None = None

    def build(self):
        return self.stack.build()


def default_packages(config: CairnConfig, source_root: str | Path = "functions") -> dict[str, FunctionPackage]:
    """
    Locate (or build) one package per function.

    Uses <package_dir>/<function>.zip when it exists, otherwise zips
    <source_root>/<function>/ into that path.

    Raises:
        ConfigError: If neither an archive nor a source directory exists
    """
    packages = {}
    for function in FUNCTIONS:
        archive = Path(config.package_dir) / f"{function}.zip"
        source = Path(source_root) / function
        if not archive.exists():
            if not source.is_dir():
                raise ConfigError(
                    f"No package for function {function!r}: expected {archive} or {source}/"
                )
            build_package(source, archive)
        packages[function] = FunctionPackage(str(archive), handler="handler.lambda_handler")
    return packages


def declare_event_notices(
    config: CairnConfig,
    packages: dict[str, FunctionPackage],
    routes: dict[str, str] | None = None,
) -> EventNoticesStack:
    """
    Declare every resource of the event-notices stack.

    Args:
        config: Project configuration (project name, region)
        packages: Deployment package per function name
        routes: Route path -> function name; defaults to DEFAULT_ROUTES

    Returns:
        EventNoticesStack wrapping the declared Stack
    """
    missing = [name for name in FUNCTIONS if name not in packages]
    if missing:
        raise ConfigError(f"Missing packages for: {', '.join(missing)}")

    project = config.project
    stack = Stack(name=project, region=config.region, tags={"Project": project, "ManagedBy": "cairn"})

    # Storage
    site = stack.add(t.BUCKET, "site", bucket=f"{project}-site", tags=stack.tags)
    website = stack.add(
        t.BUCKET_WEBSITE,
        "site",
        bucket=site.output("id"),
        index_document="index.html",
        error_document="error.html",
    )
    public_access = stack.add(
        t.BUCKET_PUBLIC_ACCESS,
        "site",
        bucket=site.output("id"),
        block_public_acls=False,
        block_public_policy=False,
        ignore_public_acls=False,
        restrict_public_buckets=False,
    )
    site_policy = stack.add(
        t.BUCKET_POLICY,
        "site",
        depends_on=[public_access],
        bucket=site.output("id"),
        policy={
            "Version": "2012-10-17",
            "Statement": [
                {
                    "Sid": "PublicReadGetObject",
                    "Effect": "Allow",
                    "Principal": "*",
                    "Action": "s3:GetObject",
                    "Resource": join(site.output("arn"), "/*"),
                }
            ],
        },
    )

    # Messaging
    notices = stack.add(t.TOPIC, "notices", name=f"{project}-notices", tags=stack.tags)

    # Identity
    role = stack.add(
        t.ROLE,
        "lambda-exec",
        name=f"{project}-lambda-exec",
        assume_role_policy={
            "Version": "2012-10-17",
            "Statement": [
                {
                    "Effect": "Allow",
                    "Principal": {"Service": "lambda.amazonaws.com"},
                    "Action": "sts:AssumeRole",
                }
            ],
        },
        tags=stack.tags,
    )
    logging_policy = stack.add(
        t.ROLE_POLICY_ATTACHMENT,
        "lambda-basic-logging",
        role=role.output("name"),
        policy_arn=BASIC_EXECUTION_POLICY_ARN,
    )

    # Compute
    environments = {
        SUBSCRIBERS: {"SNS_TOPIC_ARN": notices.output("arn")},
        NEW_EVENTS: {
            "BUCKET_NAME": site.output("bucket"),
            "EVENTS_FILE": EVENTS_FILE,
            "SNS_TOPIC_ARN": notices.output("arn"),
        },
    }
    functions = {}
    for name in FUNCTIONS:
        package = packages[name]
        functions[name] = stack.add(
            t.FUNCTION,
            name,
            depends_on=[logging_policy],
            function_name=f"{project}-{name}",
            role=role.output("arn"),
            handler=package.handler,
            runtime=package.runtime,
            filename=package.path,
            source_code_hash=package.source_code_hash,
            environment={"variables": environments[name]},
            tags=stack.tags,
        )

    # API surface
    api = stack.add(t.REST_API, "api", name=f"{project}-api", tags=stack.tags)
    declared_routes = [
        add_proxy_route(stack, api, "POST", path, functions[target])
        for path, target in (routes or DEFAULT_ROUTES).items()
    ]
    declare_deployment(stack, api, declared_routes, stage_name=STAGE_NAME)

    # Public outputs
    stack.export("website_url", join("http://", website.output("website_endpoint")))
    stack.export("sns_topic_arn", notices.output("arn"))
    stack.export(
        "api_url",
        join("https://", api.output("id"), f".execute-api.{config.region}.amazonaws.com/{STAGE_NAME}"),
    )

    return EventNoticesStack(
        stack=stack,
        routes=declared_routes,
        functions=functions,
        site_policy=site_policy,
    )
