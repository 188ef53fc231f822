"""Cloud security posture management (CSPM) checks.

Modelled on the foundational security standard controls for storage and
network exposure. Both checks are deterministic sandboxed scripts.
"""

from __future__ import annotations

import textwrap

from cloudward.frameworks.catalog import register_catalog_framework
from cloudward.frameworks.schema import (
    Framework,
    FrameworkType,
    Rule,
    RuleImplementation,
    RuleImplementationKind,
    Severity,
)

FRAMEWORK_ID = "cloud-security-posture"

_S3_PUBLIC_ACCESS_SCRIPT = textwrap.dedent(
    """
    _BLOCK_SETTINGS = (
        "BlockPublicAcls",
        "BlockPublicPolicy",
        "IgnorePublicAcls",
        "RestrictPublicBuckets",
    )

    def evaluate(resources, rule, parameters, utils):
        for resource in resources:
            if resource.get("Type") != "AWS::S3::Bucket":
                continue
            properties = resource.get("Properties") or {}
            name = resource.get("LogicalResourceId", "unknown")

            access_control = properties.get("AccessControl")
            if access_control in ("PublicRead", "PublicReadWrite"):
                utils.create_finding(
                    resource,
                    "S3 bucket has public access via ACL",
                    f"S3 bucket {name} has public access configured via ACL: {access_control}",
                )

            block = properties.get("PublicAccessBlockConfiguration") or {}
            if not all(block.get(setting) for setting in _BLOCK_SETTINGS):
                utils.create_finding(
                    resource,
                    "S3 bucket public access block not properly configured",
                    f"S3 bucket {name} should have all public access block settings enabled",
                )
    """
)

_SSH_EXPOSURE_SCRIPT = textwrap.dedent(
    """
    def evaluate(resources, rule, parameters, utils):
        port = parameters.get("port", 22)
        for resource in resources:
            if resource.get("Type") != "AWS::EC2::SecurityGroup":
                continue
            properties = resource.get("Properties") or {}
            name = resource.get("LogicalResourceId", "unknown")

            for ingress in properties.get("SecurityGroupIngress") or []:
                if ingress.get("IpProtocol") != "tcp":
                    continue
                from_port = ingress.get("FromPort")
                to_port = ingress.get("ToPort")
                if from_port is None or to_port is None:
                    continue
                if not int(from_port) <= port <= int(to_port):
                    continue
                if ingress.get("CidrIp") == "0.0.0.0/0" or ingress.get("CidrIpv6") == "::/0":
                    utils.create_finding(
                        resource,
                        "Security group allows unrestricted SSH access",
                        f"Security group {name} allows SSH access (port {port}) from anywhere.",
                    )
    """
)

SECURITY_POSTURE = Framework(
    id=FRAMEWORK_ID,
    type=FrameworkType.POSTURE_MANAGEMENT,
    name="Cloud Security Posture",
    description="Posture management checks based on foundational security standards.",
    version="1.0",
    categories=["Security", "Compliance", "Data Protection", "Access Control"],
    metadata={
        "source": "builtin",
        "standards": ["foundational-security-best-practices", "cis-foundations", "pci-dss"],
    },
)

SECURITY_POSTURE_RULES: list[Rule] = [
    Rule(
        id="cspm-s3-01",
        framework_id=FRAMEWORK_ID,
        rule_id="S3.1",
        name="S3 bucket public access",
        description="S3 buckets should not have public read or write access",
        severity=Severity.CRITICAL,
        category="S3",
        tags=["s3", "public-access", "data-exposure"],
        implementation=RuleImplementation(
            kind=RuleImplementationKind.SANDBOXED_SCRIPT,
            payload=_S3_PUBLIC_ACCESS_SCRIPT,
            language="python",
        ),
        conditions={
            "resourceTypes": ["AWS::S3::Bucket"],
            "checkpoints": [
                "S3 buckets should not have public read access",
                "S3 buckets should not have public write access",
                "Public access block should be enabled",
            ],
        },
        remediation=(
            "Enable S3 bucket public access block settings and remove public ACLs "
            "and bucket policies unless specifically required."
        ),
    ),
    Rule(
        id="cspm-ec2-02",
        framework_id=FRAMEWORK_ID,
        rule_id="EC2.2",
        name="EC2 security groups SSH access",
        description="Security groups should not allow unrestricted SSH access from 0.0.0.0/0",
        severity=Severity.HIGH,
        category="EC2",
        tags=["ec2", "security-groups", "ssh"],
        implementation=RuleImplementation(
            kind=RuleImplementationKind.SANDBOXED_SCRIPT,
            payload=_SSH_EXPOSURE_SCRIPT,
            language="python",
        ),
        conditions={
            "resourceTypes": ["AWS::EC2::SecurityGroup"],
            "checkpoints": [
                "Security groups should not allow SSH (port 22) from 0.0.0.0/0",
                "Security groups should not allow SSH (port 22) from ::/0",
            ],
        },
        parameters={"port": 22},
        remediation=(
            "Restrict SSH access to specific IP ranges or use a managed session "
            "service for administrative access."
        ),
    ),
]

# Register on import
register_catalog_framework(SECURITY_POSTURE, SECURITY_POSTURE_RULES)
