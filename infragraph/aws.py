"""Resource type schemas for the AWS kinds used by a three-tier deployment."""
import typing

import marshmallow
from marshmallow import validate

from infragraph import fields, schemas, values


def _is_literal(*items: typing.Any) -> bool:
    return not any(isinstance(item, values.Expression) for item in items)


class Vpc(schemas.Resource):
    type_name = "aws_vpc"

    cidr_block = fields.String(required=True)
    enable_dns_hostnames = fields.Bool(optional=True)
    enable_dns_support = fields.Bool(optional=True)
    tags = fields.Map(optional=True)
    default_security_group_id = fields.String(computed=True)


class Subnet(schemas.Resource):
    type_name = "aws_subnet"

    vpc_id = fields.String(required=True)
    cidr_block = fields.String(required=True)
    availability_zone = fields.String(optional=True, computed=True)
    map_public_ip_on_launch = fields.Bool(optional=True)
    tags = fields.Map(optional=True)


class SecurityGroupRule(schemas.Schema):
    from_port = fields.Int(required=True, validate=validate.Range(min=-1, max=65535))
    to_port = fields.Int(required=True, validate=validate.Range(min=-1, max=65535))
    protocol = fields.String(required=True)
    cidr_blocks = fields.List(fields.String(), optional=True)
    security_groups = fields.List(fields.String(), optional=True)
    description = fields.String(optional=True)


class SecurityGroup(schemas.Resource):
    type_name = "aws_security_group"

    name = fields.String(optional=True, computed=True)
    description = fields.String(optional=True)
    vpc_id = fields.String(required=True)
    ingress = fields.List(fields.Nested(SecurityGroupRule()), optional=True)
    egress = fields.List(fields.Nested(SecurityGroupRule()), optional=True)
    tags = fields.Map(optional=True)


class LoadBalancer(schemas.Resource):
    type_name = "aws_lb"
    asynchronous = True

    name = fields.String(optional=True, computed=True)
    internal = fields.Bool(optional=True)
    load_balancer_type = fields.String(
        optional=True, validate=validate.OneOf(["application", "network"])
    )
    security_groups = fields.Set(fields.String(), optional=True)
    subnets = fields.Set(fields.String(), required=True, min_items=1)
    tags = fields.Map(optional=True)
    dns_name = fields.String(computed=True)
    zone_id = fields.String(computed=True)


class HealthCheck(schemas.Schema):
    path = fields.String(optional=True)
    port = fields.String(optional=True)
    protocol = fields.String(optional=True)
    healthy_threshold = fields.Int(optional=True, validate=validate.Range(2, 10))
    unhealthy_threshold = fields.Int(optional=True, validate=validate.Range(2, 10))
    interval = fields.Int(optional=True, validate=validate.Range(5, 300))
    timeout = fields.Int(optional=True, validate=validate.Range(2, 120))
    matcher = fields.String(optional=True)


class TargetGroup(schemas.Resource):
    type_name = "aws_lb_target_group"

    name = fields.String(optional=True, computed=True)
    port = fields.Int(required=True, validate=validate.Range(1, 65535))
    protocol = fields.String(
        required=True, validate=validate.OneOf(["HTTP", "HTTPS", "TCP", "TLS"])
    )
    vpc_id = fields.String(required=True)
    target_type = fields.String(
        optional=True, validate=validate.OneOf(["instance", "ip", "lambda"])
    )
    health_check = fields.Nested(HealthCheck(), optional=True)
    tags = fields.Map(optional=True)
    arn_suffix = fields.String(computed=True)


class Listener(schemas.Resource):
    type_name = "aws_lb_listener"

    load_balancer_arn = fields.String(required=True)
    port = fields.Int(required=True, validate=validate.Range(1, 65535))
    protocol = fields.String(
        optional=True, validate=validate.OneOf(["HTTP", "HTTPS", "TCP", "TLS"])
    )
    target_group_arn = fields.String(required=True)


class TargetGroupAttachment(schemas.Resource):
    type_name = "aws_lb_target_group_attachment"

    target_group_arn = fields.String(required=True)
    target_id = fields.String(required=True)
    port = fields.Int(optional=True, validate=validate.Range(1, 65535))


class LaunchTemplate(schemas.Resource):
    type_name = "aws_launch_template"

    name_prefix = fields.String(optional=True)
    image_id = fields.String(required=True)
    instance_type = fields.String(required=True)
    key_name = fields.String(optional=True)
    vpc_security_group_ids = fields.Set(fields.String(), optional=True)
    user_data = fields.String(optional=True)
    tags = fields.Map(optional=True)
    latest_version = fields.Int(computed=True)


class LaunchTemplateSpecification(schemas.Schema):
    id = fields.String(required=True)
    version = fields.String(optional=True)


class AutoScalingGroup(schemas.Resource):
    type_name = "aws_autoscaling_group"
    asynchronous = True

    name = fields.String(optional=True, computed=True)
    min_size = fields.Int(required=True, validate=validate.Range(min=0))
    max_size = fields.Int(required=True, validate=validate.Range(min=0))
    desired_capacity = fields.Int(optional=True, validate=validate.Range(min=0))
    vpc_zone_identifier = fields.Set(fields.String(), required=True, min_items=1)
    target_group_arns = fields.Set(fields.String(), optional=True)
    health_check_type = fields.String(
        optional=True, validate=validate.OneOf(["EC2", "ELB"])
    )
    health_check_grace_period = fields.Int(optional=True)
    launch_template = fields.Nested(LaunchTemplateSpecification(), required=True)
    tags = fields.Map(optional=True)

    @marshmallow.validates_schema
    def validate_capacity(self, data, **kwargs):
        min_size = data.get("min_size")
        max_size = data.get("max_size")
        desired = data.get("desired_capacity")

        if None in (min_size, max_size) or not _is_literal(min_size, max_size):
            return
        if min_size > max_size:
            raise marshmallow.ValidationError(
                "Must not be greater than max_size.", "min_size"
            )
        if desired is not None and _is_literal(desired):
            if not min_size <= desired <= max_size:
                raise marshmallow.ValidationError(
                    "Must be between min_size and max_size.", "desired_capacity"
                )


class Instance(schemas.Resource):
    type_name = "aws_instance"
    asynchronous = True

    ami = fields.String(required=True)
    instance_type = fields.String(required=True)
    subnet_id = fields.String(optional=True)
    vpc_security_group_ids = fields.Set(fields.String(), optional=True)
    key_name = fields.String(optional=True)
    user_data = fields.String(optional=True)
    tags = fields.Map(optional=True)
    private_ip = fields.String(computed=True)
    public_ip = fields.String(computed=True)
    public_dns = fields.String(computed=True)


class DBCluster(schemas.Resource):
    type_name = "aws_rds_cluster"
    asynchronous = True

    cluster_identifier = fields.String(required=True)
    engine = fields.String(
        required=True, validate=validate.OneOf(["aurora-mysql", "aurora-postgresql"])
    )
    engine_version = fields.String(optional=True)
    database_name = fields.String(optional=True)
    master_username = fields.String(required=True)
    master_password = fields.String(required=True, sensitive=True)
    db_subnet_group_name = fields.String(optional=True)
    vpc_security_group_ids = fields.Set(fields.String(), optional=True)
    skip_final_snapshot = fields.Bool(optional=True)
    tags = fields.Map(optional=True)
    endpoint = fields.String(computed=True)
    reader_endpoint = fields.String(computed=True)
    port = fields.Int(optional=True, computed=True)


class DBClusterInstance(schemas.Resource):
    type_name = "aws_rds_cluster_instance"
    asynchronous = True

    identifier = fields.String(required=True)
    cluster_identifier = fields.String(required=True)
    instance_class = fields.String(required=True)
    engine = fields.String(
        required=True, validate=validate.OneOf(["aurora-mysql", "aurora-postgresql"])
    )
    endpoint = fields.String(computed=True)


class CacheReplicationGroup(schemas.Resource):
    type_name = "aws_elasticache_replication_group"
    asynchronous = True

    replication_group_id = fields.String(required=True)
    description = fields.String(required=True)
    node_type = fields.String(required=True)
    num_cache_clusters = fields.Int(optional=True, validate=validate.Range(1, 6))
    engine_version = fields.String(optional=True)
    port = fields.Int(optional=True, validate=validate.Range(1, 65535))
    subnet_group_name = fields.String(optional=True)
    security_group_ids = fields.Set(fields.String(), optional=True)
    automatic_failover_enabled = fields.Bool(optional=True)
    tags = fields.Map(optional=True)
    primary_endpoint_address = fields.String(computed=True)
    reader_endpoint_address = fields.String(computed=True)


class FileSystem(schemas.Resource):
    type_name = "aws_efs_file_system"
    asynchronous = True

    creation_token = fields.String(optional=True, computed=True)
    performance_mode = fields.String(
        optional=True, validate=validate.OneOf(["generalPurpose", "maxIO"])
    )
    encrypted = fields.Bool(optional=True)
    tags = fields.Map(optional=True)
    dns_name = fields.String(computed=True)


class MountTarget(schemas.Resource):
    type_name = "aws_efs_mount_target"
    asynchronous = True

    file_system_id = fields.String(required=True)
    subnet_id = fields.String(required=True)
    security_groups = fields.Set(fields.String(), optional=True)
    ip_address = fields.String(optional=True, computed=True)
    dns_name = fields.String(computed=True)


RESOURCE_TYPES: typing.Sequence[typing.Type[schemas.Resource]] = (
    Vpc,
    Subnet,
    SecurityGroup,
    LoadBalancer,
    TargetGroup,
    Listener,
    TargetGroupAttachment,
    LaunchTemplate,
    AutoScalingGroup,
    Instance,
    DBCluster,
    DBClusterInstance,
    CacheReplicationGroup,
    FileSystem,
    MountTarget,
)


class Provider(schemas.Provider):
    """Base for providers that manage the AWS resource types above."""

    name = "aws"

    region = fields.String(optional=True)
    profile = fields.String(optional=True)
    default_tags = fields.Map(optional=True)

    def __init__(self):
        super().__init__(resources=[cls() for cls in RESOURCE_TYPES])
