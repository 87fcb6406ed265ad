"""Built-in transformers.

Each transformer handles one directive and contributes resources, resolver
templates and schema extensions to the shared InfrastructureFragments.
Their relative order is fixed by the pipeline (see plugins.pipeline):

    model -> versioned -> function -> http -> key -> connection -> predictions
    -> searchable (optional) -> custom transformers -> auth

Later transformers rely on what earlier ones produced: ``key`` edits the
tables created by ``model``, and ``auth`` guards every resolver that exists
when it runs.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any
from urllib.parse import urlsplit

import structlog
from graphql import NamedTypeNode

from gqlforge.errors import ConfigurationError
from gqlforge.models import AuthConfig, AuthProviderConfig
from gqlforge.plugins.base import (
    TransformerPlugin,
    directive_arguments,
    fields_with_directive,
    find_directive,
    find_directives,
    object_types,
    types_with_directive,
)

if TYPE_CHECKING:
    from graphql import FieldDefinitionNode, TypeNode

    from gqlforge.models import InfrastructureFragments, StorageConfig
    from gqlforge.schema.loader import ParsedSchema

logger = structlog.get_logger(__name__)

TABLE_RESOURCE_TYPE = "AWS::DynamoDB::Table"
RESOLVER_RESOURCE_TYPE = "AWS::AppSync::Resolver"
DATA_SOURCE_RESOURCE_TYPE = "AWS::AppSync::DataSource"
API_RESOURCE_ID = "GraphQLAPI"

DEPLOYMENT_BUCKET_PARAMETER = "deploymentBucket"
DEPLOYMENT_ROOT_KEY_PARAMETER = "deploymentRootKey"
API_NAME_PARAMETER = "AppSyncApiName"

APPSYNC_EXTRA_DIRECTIVES = """\
directive @aws_subscribe(mutations: [String]) on FIELD_DEFINITION
directive @aws_auth(cognito_groups: [String]) on FIELD_DEFINITION
directive @aws_api_key on FIELD_DEFINITION | OBJECT
directive @aws_iam on FIELD_DEFINITION | OBJECT
directive @aws_oidc on FIELD_DEFINITION | OBJECT
directive @aws_cognito_user_pools(cognito_groups: [String]) on FIELD_DEFINITION | OBJECT
directive @aws_lambda on FIELD_DEFINITION | OBJECT
scalar AWSDate
scalar AWSTime
scalar AWSDateTime
scalar AWSTimestamp
scalar AWSEmail
scalar AWSJSON
scalar AWSURL
scalar AWSPhone
scalar AWSIPAddress"""
"""Directives and scalars provided by the GraphQL service itself."""


# =============================================================================
# Fragment helpers
# =============================================================================


def _identifier(*parts: str) -> str:
    """Logical resource id built from arbitrary name parts."""
    return "".join(re.sub(r"[^0-9A-Za-z]", "", p[:1].upper() + p[1:]) for p in parts if p)


def _base_type_name(type_node: TypeNode) -> str:
    while not isinstance(type_node, NamedTypeNode):
        type_node = type_node.type  # type: ignore[attr-defined]
    return type_node.name.value


def _ensure_deployment_parameters(fragments: InfrastructureFragments) -> None:
    for name in (DEPLOYMENT_BUCKET_PARAMETER, DEPLOYMENT_ROOT_KEY_PARAMETER):
        fragments.parameters.setdefault(name, {"Type": "String"})


def _add_resolver(
    fragments: InfrastructureFragments,
    type_name: str,
    field_name: str,
    data_source: str,
    request: str,
    response: str = "$util.toJson($ctx.result)",
) -> str:
    """Register a resolver resource and its request/response templates."""
    _ensure_deployment_parameters(fragments)
    base = f"{type_name}.{field_name}"
    for suffix, template in (("req", request), ("res", response)):
        fragments.resolvers[f"{base}.{suffix}.vtl"] = template
    root = type_name in ("Query", "Mutation", "Subscription")
    resource_id = _identifier(field_name if root else type_name + field_name, "Resolver")
    location = (
        f"s3://${{{DEPLOYMENT_BUCKET_PARAMETER}}}/${{{DEPLOYMENT_ROOT_KEY_PARAMETER}}}/resolvers/{base}"
    )
    fragments.resources[resource_id] = {
        "Type": RESOLVER_RESOURCE_TYPE,
        "Properties": {
            "TypeName": type_name,
            "FieldName": field_name,
            "DataSourceName": data_source,
            "RequestMappingTemplateS3Location": {"Fn::Sub": f"{location}.req.vtl"},
            "ResponseMappingTemplateS3Location": {"Fn::Sub": f"{location}.res.vtl"},
        },
    }
    return resource_id


def _add_data_source(
    fragments: InfrastructureFragments,
    name: str,
    kind: str,
    config: dict[str, Any],
) -> str:
    fragments.resources.setdefault(
        name,
        {"Type": DATA_SOURCE_RESOURCE_TYPE, "Properties": {"Name": name, "Type": kind, **config}},
    )
    return name


def model_operations(type_name: str) -> dict[str, str]:
    """Root fields generated for a model type, keyed by operation."""
    return {
        "get": f"get{type_name}",
        "list": f"list{type_name}s",
        "create": f"create{type_name}",
        "update": f"update{type_name}",
        "delete": f"delete{type_name}",
        "search": f"search{type_name}s",
    }


def _model_type_names(schema: ParsedSchema) -> list[str]:
    return [node.name.value for node, _ in types_with_directive(schema, "model")]


# =============================================================================
# Structural transformers
# =============================================================================


class ModelTransformer(TransformerPlugin):
    """Maps each @model type to a table with CRUD resolvers."""

    name = "model"
    directive = (
        "directive @model(queries: ModelQueryMap, mutations: ModelMutationMap, "
        "subscriptions: ModelSubscriptionMap, timestamps: TimestampConfiguration) on OBJECT"
    )
    type_definitions = (
        "input ModelMutationMap { create: String update: String delete: String }",
        "input ModelQueryMap { get: String list: String }",
        "input ModelSubscriptionMap { onCreate: [String] onUpdate: [String] onDelete: [String] level: ModelSubscriptionLevel }",
        "enum ModelSubscriptionLevel { off public on }",
        "input TimestampConfiguration { createdAt: String updatedAt: String }",
    )

    def transform(
        self,
        schema: ParsedSchema,
        fragments: InfrastructureFragments,
    ) -> InfrastructureFragments:
        for node, _ in types_with_directive(schema, "model"):
            type_name = node.name.value
            table_id = f"{type_name}Table"
            fragments.resources[table_id] = {
                "Type": TABLE_RESOURCE_TYPE,
                "Properties": {
                    "TableName": type_name,
                    "KeySchema": [{"AttributeName": "id", "KeyType": "HASH"}],
                    "AttributeDefinitions": [{"AttributeName": "id", "AttributeType": "S"}],
                    "BillingMode": "PAY_PER_REQUEST",
                },
            }
            data_source = _add_data_source(
                fragments,
                f"{type_name}DataSource",
                "AMAZON_DYNAMODB",
                {"DynamoDBConfig": {"TableName": {"Ref": table_id}}},
            )
            ops = model_operations(type_name)
            for op in ("get", "list"):
                _add_resolver(
                    fragments,
                    "Query",
                    ops[op],
                    data_source,
                    f'{{"version": "2018-05-29", "operation": "{"GetItem" if op == "get" else "Scan"}"}}',
                )
            for op, operation in (("create", "PutItem"), ("update", "UpdateItem"), ("delete", "DeleteItem")):
                _add_resolver(
                    fragments,
                    "Mutation",
                    ops[op],
                    data_source,
                    f'{{"version": "2018-05-29", "operation": "{operation}"}}',
                )
            fragments.schema_extensions.append(
                f"extend type Query {{ {ops['get']}(id: ID!): {type_name} {ops['list']}: [{type_name}] }}\n"
                f"extend type Mutation {{ {ops['create']}(input: AWSJSON!): {type_name} "
                f"{ops['update']}(input: AWSJSON!): {type_name} {ops['delete']}(id: ID!): {type_name} }}"
            )
        return fragments


class VersionedModelTransformer(TransformerPlugin):
    """Adds optimistic concurrency checks to @versioned models."""

    name = "versioned"
    directive = 'directive @versioned(versionField: String = "version", versionInput: String = "expectedVersion") on OBJECT'

    def transform(
        self,
        schema: ParsedSchema,
        fragments: InfrastructureFragments,
    ) -> InfrastructureFragments:
        for node, directive in types_with_directive(schema, "versioned"):
            if find_directive(node, "model") is None:
                raise ConfigurationError(
                    f"Type {node.name.value} annotated with @versioned must also be annotated with @model"
                )
            args = directive_arguments(directive)
            version_field = args.get("versionField", "version")
            version_input = args.get("versionInput", "expectedVersion")
            ops = model_operations(node.name.value)
            for op in ("update", "delete"):
                key = f"Mutation.{ops[op]}.req.vtl"
                fragments.resolvers[key] = (
                    f"#set( $condition = {{ \"expression\": \"#version = :expectedVersion\", "
                    f"\"expressionNames\": {{ \"#version\": \"{version_field}\" }}, "
                    f"\"expressionValues\": {{ \":expectedVersion\": $util.dynamodb.toDynamoDB($ctx.args.input.{version_input}) }} }} )\n"
                    + fragments.resolvers.get(key, "")
                )
        return fragments


class FunctionTransformer(TransformerPlugin):
    """Binds @function fields to serverless functions."""

    name = "function"
    directive = "directive @function(name: String!, region: String) repeatable on FIELD_DEFINITION"

    def transform(
        self,
        schema: ParsedSchema,
        fragments: InfrastructureFragments,
    ) -> InfrastructureFragments:
        for node in object_types(schema):
            for field in node.fields or ():
                for directive in find_directives(field, "function"):
                    function_name = str(directive_arguments(directive).get("name", ""))
                    data_source = _add_data_source(
                        fragments,
                        _identifier(function_name, "LambdaDataSource"),
                        "AWS_LAMBDA",
                        {"LambdaConfig": {"LambdaFunctionArn": {"Fn::Sub": f"arn:aws:lambda:${{AWS::Region}}:${{AWS::AccountId}}:function:{function_name}"}}},
                    )
                    _add_resolver(
                        fragments,
                        node.name.value,
                        field.name.value,
                        data_source,
                        '{"version": "2018-05-29", "operation": "Invoke", "payload": $util.toJson($ctx)}',
                    )
        return fragments


class HttpTransformer(TransformerPlugin):
    """Binds @http fields to HTTP endpoints."""

    name = "http"
    directive = "directive @http(method: HttpMethod = GET, url: String!, headers: [HttpHeader] = []) on FIELD_DEFINITION"
    type_definitions = (
        "enum HttpMethod { GET POST PUT DELETE PATCH }",
        "input HttpHeader { key: String value: String }",
    )

    def transform(
        self,
        schema: ParsedSchema,
        fragments: InfrastructureFragments,
    ) -> InfrastructureFragments:
        for node, field, directive in fields_with_directive(schema, "http"):
            args = directive_arguments(directive)
            url = urlsplit(str(args.get("url", "")))
            endpoint = f"{url.scheme}://{url.netloc}"
            data_source = _add_data_source(
                fragments,
                _identifier(url.netloc, "HttpDataSource"),
                "HTTP",
                {"HttpConfig": {"Endpoint": endpoint}},
            )
            _add_resolver(
                fragments,
                node.name.value,
                field.name.value,
                data_source,
                f'{{"version": "2018-05-29", "method": "{args.get("method", "GET")}", "resourcePath": "{url.path or "/"}"}}',
            )
        return fragments


class KeyTransformer(TransformerPlugin):
    """Applies @key primary and secondary indexes to model tables.

    A key without a name replaces the primary key. A named key sharing the
    primary hash key becomes a local index, any other named key a global
    index.
    """

    name = "key"
    directive = "directive @key(name: String, fields: [String!]!, queryField: String) repeatable on OBJECT"

    def transform(
        self,
        schema: ParsedSchema,
        fragments: InfrastructureFragments,
    ) -> InfrastructureFragments:
        for node in object_types(schema):
            keys = [directive_arguments(d) for d in find_directives(node, "key")]
            if not keys:
                continue
            table = fragments.resources.get(f"{node.name.value}Table")
            if table is None:
                raise ConfigurationError(
                    f"@key directive on {node.name.value} requires the type to be annotated with @model"
                )
            props = table["Properties"]
            # primary key first so secondary indexes see the final hash key
            for args in sorted(keys, key=lambda a: a.get("name") is not None):
                fields = [str(f) for f in args.get("fields") or []]
                if not fields:
                    raise ConfigurationError(f"@key on {node.name.value} must list at least one field")
                key_schema = [{"AttributeName": fields[0], "KeyType": "HASH"}]
                if len(fields) > 1:
                    key_schema.append({"AttributeName": "#".join(fields[1:]), "KeyType": "RANGE"})
                for attribute in key_schema:
                    self._define_attribute(props, attribute["AttributeName"])
                index_name = args.get("name")
                if index_name is None:
                    props["KeySchema"] = key_schema
                    continue
                index = {
                    "IndexName": index_name,
                    "KeySchema": key_schema,
                    "Projection": {"ProjectionType": "ALL"},
                }
                if fields[0] == props["KeySchema"][0]["AttributeName"] and len(fields) > 1:
                    props.setdefault("LocalSecondaryIndexes", []).append(index)
                else:
                    props.setdefault("GlobalSecondaryIndexes", []).append(index)
        return fragments

    @staticmethod
    def _define_attribute(props: dict[str, Any], name: str) -> None:
        definitions = props.setdefault("AttributeDefinitions", [])
        if all(d["AttributeName"] != name for d in definitions):
            definitions.append({"AttributeName": name, "AttributeType": "S"})


class ModelConnectionTransformer(TransformerPlugin):
    """Resolves @connection fields against the related model's table."""

    name = "connection"
    directive = (
        "directive @connection(name: String, keyField: String, sortField: String, "
        "keyName: String, limit: Int, fields: [String]) on FIELD_DEFINITION"
    )

    def transform(
        self,
        schema: ParsedSchema,
        fragments: InfrastructureFragments,
    ) -> InfrastructureFragments:
        models = set(_model_type_names(schema))
        for node, field, _ in fields_with_directive(schema, "connection"):
            related = _base_type_name(field.type)
            if related not in models:
                raise ConfigurationError(
                    f"Object type {related} referenced by @connection on "
                    f"{node.name.value}.{field.name.value} must be annotated with @model"
                )
            _add_resolver(
                fragments,
                node.name.value,
                field.name.value,
                f"{related}DataSource",
                '{"version": "2018-05-29", "operation": "Query"}',
            )
        return fragments


class PredictionsTransformer(TransformerPlugin):
    """Binds @predictions fields to AI services, staging data in project storage."""

    name = "predictions"
    directive = "directive @predictions(actions: [PredictionsActions!]!) on FIELD_DEFINITION"
    type_definitions = (
        "enum PredictionsActions { identifyText identifyLabels convertTextToSpeech translateText }",
    )

    def __init__(self, storage_config: StorageConfig | None = None) -> None:
        self.storage_config = storage_config

    def transform(
        self,
        schema: ParsedSchema,
        fragments: InfrastructureFragments,
    ) -> InfrastructureFragments:
        for node, field, directive in fields_with_directive(schema, "predictions"):
            if self.storage_config is None:
                raise ConfigurationError(
                    "Please configure storage in your project in order to use @predictions directive",
                    remediation="Add a storage resource to the project and compile again",
                )
            fragments.resources.setdefault(
                "PredictionsIAMRole",
                {
                    "Type": "AWS::IAM::Role",
                    "Properties": {"StorageBucket": self.storage_config.bucket_name},
                },
            )
            actions = directive_arguments(directive).get("actions") or []
            data_source = _add_data_source(fragments, "PredictionsDataSource", "HTTP", {})
            _add_resolver(
                fragments,
                node.name.value,
                field.name.value,
                data_source,
                '{"version": "2018-05-29", "actions": ' + ", ".join(f'"{a}"' for a in actions) + "}",
            )
        return fragments


# =============================================================================
# Capability transformers
# =============================================================================


class SearchableModelTransformer(TransformerPlugin):
    """Streams @searchable models into a search domain and adds search queries."""

    name = "searchable"
    directive = "directive @searchable(queries: SearchableQueryMap) on OBJECT"
    type_definitions = ("input SearchableQueryMap { search: String }",)

    def transform(
        self,
        schema: ParsedSchema,
        fragments: InfrastructureFragments,
    ) -> InfrastructureFragments:
        for node, directive in types_with_directive(schema, "searchable"):
            type_name = node.name.value
            fragments.parameters.setdefault(
                "ElasticsearchInstanceType",
                {"Type": "String", "Default": "t2.small.elasticsearch"},
            )
            fragments.resources.setdefault(
                "ElasticSearchDomain",
                {
                    "Type": "AWS::Elasticsearch::Domain",
                    "Properties": {
                        "ElasticsearchClusterConfig": {
                            "InstanceType": {"Ref": "ElasticsearchInstanceType"}
                        }
                    },
                },
            )
            data_source = _add_data_source(
                fragments,
                "ElasticSearchDataSource",
                "AMAZON_ELASTICSEARCH",
                {"ElasticsearchConfig": {"Endpoint": {"Fn::GetAtt": ["ElasticSearchDomain", "DomainEndpoint"]}}},
            )
            query = (directive_arguments(directive).get("queries") or {}).get(
                "search", model_operations(type_name)["search"]
            )
            _add_resolver(
                fragments,
                "Query",
                query,
                data_source,
                f'{{"version": "2018-05-29", "operation": "GET", "path": "/{type_name.lower()}/doc/_search"}}',
            )
            fragments.schema_extensions.append(f"extend type Query {{ {query}: [{type_name}] }}")
        return fragments


# =============================================================================
# Authorization
# =============================================================================

_PROVIDER_AUTH_TYPES = {
    "apiKey": "API_KEY",
    "iam": "AWS_IAM",
    "oidc": "OPENID_CONNECT",
    "userPools": "AMAZON_COGNITO_USER_POOLS",
    "function": "AWS_LAMBDA",
}

_STRATEGY_DEFAULT_PROVIDERS = {
    "owner": "userPools",
    "groups": "userPools",
    "private": "userPools",
    "public": "apiKey",
    "custom": "function",
}

DEFAULT_AUTH_CONFIG = AuthConfig(
    default_authentication=AuthProviderConfig(authentication_type="API_KEY"),
)


class ModelAuthTransformer(TransformerPlugin):
    """Creates the API resource and guards resolvers of @auth types.

    Runs last so it sees every resolver produced by the other transformers.

    Args:
        auth_config: Authorization providers of the API.
        admin_mode: Whether administrative (IAM) access is enabled for the
            app. Adds IAM to the output schema of every model type.
    """

    name = "auth"
    directive = "directive @auth(rules: [AuthRule!]!) on OBJECT | FIELD_DEFINITION"
    type_definitions = (
        "input AuthRule { allow: AuthStrategy! provider: AuthProvider identityClaim: String "
        "groupClaim: String ownerField: String groupsField: String groups: [String] "
        "operations: [ModelOperation] }",
        "enum AuthStrategy { owner groups private public custom }",
        "enum AuthProvider { apiKey iam oidc userPools function }",
        "enum ModelOperation { create update delete read }",
    )

    def __init__(self, auth_config: AuthConfig | None = None, admin_mode: bool = False) -> None:
        self.auth_config = auth_config or DEFAULT_AUTH_CONFIG
        self.admin_mode = admin_mode

    def transform(
        self,
        schema: ParsedSchema,
        fragments: InfrastructureFragments,
    ) -> InfrastructureFragments:
        configured = set(self.auth_config.provider_types)
        if self.admin_mode:
            configured.add("AWS_IAM")

        fragments.parameters.setdefault(API_NAME_PARAMETER, {"Type": "String"})
        fragments.resources[API_RESOURCE_ID] = {
            "Type": "AWS::AppSync::GraphQLApi",
            "Properties": {
                "Name": {"Ref": API_NAME_PARAMETER},
                "AuthenticationType": self.auth_config.default_authentication.authentication_type,
                "AdditionalAuthenticationProviders": [
                    {"AuthenticationType": p.authentication_type}
                    for p in self.auth_config.additional_authentication_providers
                ],
            },
        }
        if "API_KEY" in configured:
            fragments.resources["GraphQLAPIKey"] = {
                "Type": "AWS::AppSync::ApiKey",
                "Properties": {"ApiId": {"Fn::GetAtt": [API_RESOURCE_ID, "ApiId"]}},
            }

        for node in object_types(schema):
            type_name = node.name.value
            directive = find_directive(node, "auth")
            if directive is not None:
                rules = directive_arguments(directive).get("rules") or []
                self._check_providers(type_name, rules, configured)
                self._guard(fragments, self._type_resolver_prefixes(type_name, node.fields or ()), rules)
            for field in node.fields or ():
                field_directive = find_directive(field, "auth")
                if field_directive is None:
                    continue
                rules = directive_arguments(field_directive).get("rules") or []
                self._check_providers(f"{type_name}.{field.name.value}", rules, configured)
                self._guard(fragments, [f"{type_name}.{field.name.value}."], rules)

        if self.admin_mode and self.auth_config.default_authentication.authentication_type != "AWS_IAM":
            for type_name in _model_type_names(schema):
                fragments.schema_extensions.append(f"extend type {type_name} @aws_iam")
        return fragments

    @staticmethod
    def _type_resolver_prefixes(type_name: str, fields: tuple[FieldDefinitionNode, ...]) -> list[str]:
        ops = model_operations(type_name)
        prefixes = [f"Query.{ops[op]}." for op in ("get", "list", "search")]
        prefixes += [f"Mutation.{ops[op]}." for op in ("create", "update", "delete")]
        prefixes += [f"{type_name}.{field.name.value}." for field in fields]
        return prefixes

    @staticmethod
    def _check_providers(owner: str, rules: list[dict[str, Any]], configured: set[str]) -> None:
        for rule in rules:
            provider = rule.get("provider") or _STRATEGY_DEFAULT_PROVIDERS.get(str(rule.get("allow")), "apiKey")
            auth_type = _PROVIDER_AUTH_TYPES.get(str(provider))
            if auth_type not in configured:
                raise ConfigurationError(
                    f"@auth directive with '{provider}' provider found on {owner}, but the "
                    f"project has no {auth_type} authentication provider configured",
                    {"owner": owner, "provider": provider},
                    remediation="Add the provider to the API authorization configuration",
                )

    @staticmethod
    def _guard(fragments: InfrastructureFragments, prefixes: list[str], rules: list[dict[str, Any]]) -> None:
        strategies = ", ".join(sorted({str(r.get("allow")) for r in rules}))
        for name in list(fragments.resolvers):
            if name.endswith(".req.vtl") and any(name.startswith(p) for p in prefixes):
                fragments.resolvers[name] = (
                    f"## [Start] Authorization Steps ({strategies}). **\n"
                    "#set( $isAuthorized = false )\n"
                    "## [End] Authorization Steps. **\n" + fragments.resolvers[name]
                )


__all__ = [
    "APPSYNC_EXTRA_DIRECTIVES",
    "DEPLOYMENT_BUCKET_PARAMETER",
    "DEPLOYMENT_ROOT_KEY_PARAMETER",
    "RESOLVER_RESOURCE_TYPE",
    "TABLE_RESOURCE_TYPE",
    "FunctionTransformer",
    "HttpTransformer",
    "KeyTransformer",
    "ModelAuthTransformer",
    "ModelConnectionTransformer",
    "ModelTransformer",
    "PredictionsTransformer",
    "SearchableModelTransformer",
    "VersionedModelTransformer",
    "model_operations",
]
